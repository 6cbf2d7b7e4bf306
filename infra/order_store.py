"""
polyalgo Infrastructure: Algo Order Store

Durable record of algo orders and their execution history.

Features:
- JSON file, atomic writes (temp file + rename)
- Thread-safe read-modify-write via update()
- Retention purge of old terminal orders
"""

import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import logging

from core.algo_order import AlgoOrder, AlgoOrderStatus

logger = logging.getLogger(__name__)


class JsonAlgoOrderStore:
    """
    Persistent algo order storage using a JSON file.

    Layout: {"version": 1, "orders": {order_id: order_dict}}
    """

    VERSION = 1

    def __init__(self, orders_file: Optional[str] = None):
        """
        Args:
            orders_file: Path to orders JSON file (default: $ALGO_ORDERS_FILE or data/algo_orders.json)
        """
        self.orders_file = Path(orders_file or os.getenv("ALGO_ORDERS_FILE", "data/algo_orders.json"))
        self.orders_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        logger.info(f"Initialized JsonAlgoOrderStore at {self.orders_file}")

    def _read(self) -> Dict[str, Dict[str, Any]]:
        if not self.orders_file.exists():
            return {}

        try:
            with open(self.orders_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            # Keep the unreadable file for inspection instead of overwriting it
            stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
            backup = self.orders_file.with_name(f"{self.orders_file.name}.corrupt-{stamp}")
            os.replace(self.orders_file, backup)
            logger.error(f"Corrupt order store moved to {backup}: {e}")
            return {}

        if not isinstance(data, dict) or not isinstance(data.get("orders"), dict):
            logger.warning("Invalid order store format, starting empty")
            return {}
        return data["orders"]

    def _write(self, orders: Dict[str, Dict[str, Any]]) -> None:
        temp_fd, temp_path = tempfile.mkstemp(
            dir=self.orders_file.parent,
            prefix=".algo_orders_",
            suffix=".json.tmp",
        )
        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                json.dump({"version": self.VERSION, "orders": orders}, f, indent=2)
            os.replace(temp_path, self.orders_file)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def load(self, order_id: str) -> Optional[AlgoOrder]:
        with self._lock:
            data = self._read().get(order_id)
        return AlgoOrder.from_dict(data) if data else None

    def save(self, order: AlgoOrder) -> None:
        with self._lock:
            orders = self._read()
            orders[order.id] = order.to_dict()
            self._write(orders)
        logger.debug(f"Saved algo order {order.id} ({order.status.value})")

    def delete(self, order_id: str) -> bool:
        with self._lock:
            orders = self._read()
            if orders.pop(order_id, None) is None:
                return False
            self._write(orders)
        logger.info(f"Removed algo order {order_id} from store")
        return True

    def update(self, order_id: str, mutate: Callable[[AlgoOrder], Any]) -> Optional[AlgoOrder]:
        """
        Atomically re-read, mutate and persist one order.

        Returns the updated order, or None if it no longer exists.
        """
        with self._lock:
            orders = self._read()
            data = orders.get(order_id)
            if data is None:
                return None
            order = AlgoOrder.from_dict(data)
            mutate(order)
            orders[order_id] = order.to_dict()
            self._write(orders)
        return order

    def list_all(self, status: Optional[AlgoOrderStatus] = None) -> List[AlgoOrder]:
        with self._lock:
            raw = list(self._read().values())
        orders = [AlgoOrder.from_dict(d) for d in raw]
        if status is not None:
            orders = [o for o in orders if o.status == status]
        return sorted(orders, key=lambda o: o.created_at)

    def list_active(self) -> List[AlgoOrder]:
        return self.list_all(AlgoOrderStatus.ACTIVE)

    def purge_terminal(self, keep_last_n: int = 100) -> int:
        """
        Remove old terminal orders, keeping only the newest N.

        Returns:
            Number of orders removed
        """
        with self._lock:
            orders = self._read()
            terminal = [AlgoOrder.from_dict(d) for d in orders.values()]
            terminal = sorted(
                (o for o in terminal if o.is_terminal()),
                key=lambda o: o.completed_at or o.updated_at,
                reverse=True,
            )
            to_remove = terminal[keep_last_n:]
            for order in to_remove:
                del orders[order.id]
            if to_remove:
                self._write(orders)

        if to_remove:
            logger.info(f"Cleaned up {len(to_remove)} old terminal algo orders")
        return len(to_remove)
