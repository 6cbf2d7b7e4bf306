"""
Scheduler instance lock.

Two schedulers driving the same order store would both fire the same TWAP
slice, so the runner takes a PID-file lock next to the store before it
starts ticking. Stale locks (dead PID) are reclaimed.
"""

import os
import atexit
from pathlib import Path
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class SingleInstanceLock:
    """
    PID-file lock.

    Usage:
        with SingleInstanceLock(lock_file_for_store("data/algo_orders.json")):
            loop.run_forever()
    """

    def __init__(self, lock_file: str):
        self.lock_file = Path(lock_file)
        self.acquired = False
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        atexit.register(self.release)

    @staticmethod
    def _is_process_running(pid: int) -> bool:
        try:
            os.kill(pid, 0)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists, owned by someone else
            return True

    def _owner_pid(self) -> Optional[int]:
        try:
            return int(self.lock_file.read_text().strip())
        except (ValueError, OSError):
            return None

    def acquire(self) -> bool:
        """
        Returns:
            True if the lock is held by this process, False if another live process holds it
        """
        if self.acquired:
            return True

        if self.lock_file.exists():
            pid = self._owner_pid()
            if pid is not None and pid != os.getpid() and self._is_process_running(pid):
                logger.error(f"Another scheduler is running (PID={pid}). Lock file: {self.lock_file}")
                return False
            logger.warning(f"Removing stale lock file {self.lock_file} (PID={pid})")
            self.lock_file.unlink(missing_ok=True)

        try:
            fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            logger.error(f"Lost race for lock file {self.lock_file}")
            return False
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))

        self.acquired = True
        logger.info(f"Lock acquired (PID={os.getpid()}, file={self.lock_file})")
        return True

    def release(self) -> None:
        if not self.acquired:
            return
        try:
            if self._owner_pid() == os.getpid():
                self.lock_file.unlink(missing_ok=True)
                logger.info(f"Lock released (file={self.lock_file})")
        except OSError as e:
            logger.warning(f"Failed to release lock: {e}")
        self.acquired = False

    def __enter__(self):
        if not self.acquire():
            raise RuntimeError(f"Failed to acquire lock {self.lock_file}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


def lock_file_for_store(orders_file: str) -> str:
    path = Path(orders_file)
    return str(path.with_name(f"{path.stem}.pid"))


def check_single_instance(orders_file: str) -> Optional[SingleInstanceLock]:
    """Acquire the lock guarding `orders_file`, or None if another scheduler holds it."""
    lock = SingleInstanceLock(lock_file_for_store(orders_file))
    if lock.acquire():
        return lock
    return None
