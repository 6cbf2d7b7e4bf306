"""
polyalgo Runner: Main Loop

Wires config, session, exchange adapters and the scheduler together and
drives ticks at a fixed period.

Flow per tick:
1. List ACTIVE algo orders
2. For each (concurrently, one in-flight tick per order): price → evaluate
   → validate → balance → submit
3. Commit fills/failures, journal, notify

Also exposes the order commands (create/pause/resume/cancel/list/...) as
CLI sub-commands operating on the same store.
"""

import json
import os
import random
import signal
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional
import logging

from core.algo_engine import AlgoScheduler
from core.exceptions import SessionError
from core.execution import ExecutionEngine
from core.interfaces import CredentialsClient, ExchangeClient, PriceFeed
from core.order_service import AlgoOrderService
from core.proxy_wallet import ProxyWalletConfig
from core.retry import RetryPolicy
from core.trading_session import TradingSessionManager
from infra.alerting import AlertService, AlertSeverity
from infra.clob_client import ClobCredentialsClient, ClobPriceFeed
from infra.instance_lock import check_single_instance, lock_file_for_store
from infra.metrics import AlgoMetrics
from infra.order_history import OrderHistoryLog
from infra.order_store import JsonAlgoOrderStore
from infra.paper_exchange import PaperExchange
from tools.config_validator import load_app_config

logger = logging.getLogger(__name__)

PRIVATE_KEY_ENV = "POLYALGO_PRIVATE_KEY"
PRIVATE_KEY_FILE_ENV = "POLYALGO_PRIVATE_KEY_FILE"
PROXY_ADDRESS_ENV = "POLYALGO_PROXY_ADDRESS"


def load_secret_key() -> Optional[str]:
    """Signing key from $POLYALGO_PRIVATE_KEY, else the file named by $POLYALGO_PRIVATE_KEY_FILE."""
    key = os.getenv(PRIVATE_KEY_ENV, "").strip()
    if key:
        return key
    key_file = os.getenv(PRIVATE_KEY_FILE_ENV, "").strip()
    if key_file:
        return Path(key_file).read_text().strip() or None
    return None


def configure_logging(log_cfg: Dict[str, Any]) -> None:
    handlers = [logging.StreamHandler()]
    log_file = log_cfg.get("file")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(log_cfg.get("level", "INFO")).upper()),
        format=log_cfg.get("format") or "%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
    )


class AlgoTradingLoop:
    """
    Main algo scheduler loop.

    Responsibilities:
    - Load and validate config
    - Build the session manager, adapters and scheduler
    - Run periodic ticks until signalled
    - Release the instance lock and clear the session on exit
    """

    def __init__(
        self,
        config_dir: str = "config",
        exchange: Optional[ExchangeClient] = None,
        price_feed: Optional[PriceFeed] = None,
        credentials_client: Optional[CredentialsClient] = None,
        acquire_lock: bool = True,
        setup_logging: bool = True,
    ):
        self.config_dir = Path(config_dir)
        self.app_config = load_app_config(config_dir)
        if setup_logging:
            configure_logging(self.app_config.get("logging") or {})

        self.mode = self.app_config["app"]["mode"].upper()
        loop_cfg = self.app_config["loop"]
        self.loop_interval_seconds = float(loop_cfg["interval_seconds"])
        self.loop_jitter_pct = max(0.0, min(float(loop_cfg.get("jitter_pct", 0.0)), 20.0))

        logger.info(f"Starting polyalgo in mode={self.mode}")

        store_cfg = self.app_config["store"]
        self.instance_lock = None
        if acquire_lock:
            self.instance_lock = check_single_instance(store_cfg["orders_file"])
            if not self.instance_lock:
                logger.error(
                    f"Another scheduler is already driving {store_cfg['orders_file']}. "
                    f"If none is running, remove {lock_file_for_store(store_cfg['orders_file'])}"
                )
                raise RuntimeError("Another scheduler instance is already running")

        self.keep_terminal_orders = int(store_cfg.get("keep_terminal_orders", 100))
        self.store = JsonAlgoOrderStore(store_cfg["orders_file"])
        self.history = OrderHistoryLog(store_cfg["history_file"])
        self.alerts = AlertService.from_config(self.app_config.get("alerts"))

        retry_policy = RetryPolicy.from_config(self.app_config.get("retry"))
        clob_cfg = self.app_config["clob"]
        session_cfg = self.app_config["session"]

        self.session_manager = TradingSessionManager(
            credentials_client=credentials_client or ClobCredentialsClient(
                base_url=clob_cfg["base_url"],
                chain_id=int(session_cfg["chain_id"]),
                timeout_seconds=float(clob_cfg["timeout_seconds"]),
            ),
            proxy_config=ProxyWalletConfig.from_config(self.app_config.get("proxy_wallet")),
            timeout_seconds=float(session_cfg["timeout_seconds"]),
            retry_policy=retry_policy,
        )

        self.price_feed = price_feed or ClobPriceFeed(
            base_url=clob_cfg["base_url"],
            timeout_seconds=float(clob_cfg["timeout_seconds"]),
        )
        self.exchange = exchange or self._default_exchange()

        execution_cfg = self.app_config["execution"]
        self.execution = ExecutionEngine(
            session_manager=self.session_manager,
            exchange=self.exchange,
            mode=self.mode,
            config=execution_cfg,
            retry_policy=retry_policy,
        )
        self.scheduler = AlgoScheduler(
            store=self.store,
            price_feed=self.price_feed,
            execution=self.execution,
            history=self.history,
            notifier=self.alerts,
            max_workers=int(loop_cfg.get("max_workers", 4)),
            max_consecutive_failures=int(execution_cfg.get("max_consecutive_failures", 5)),
        )
        self.service = AlgoOrderService(self.store, session_manager=self.session_manager, history=self.history)

        metrics_cfg = self.app_config.get("metrics") or {}
        self.metrics = AlgoMetrics(enabled=bool(metrics_cfg.get("enabled")), port=int(metrics_cfg.get("port", 9100)))

        self._running = True
        self._stop_event = threading.Event()
        logger.info(f"Initialized AlgoTradingLoop in {self.mode} mode")

    def _default_exchange(self) -> Optional[ExchangeClient]:
        if self.mode == "PAPER":
            paper_cfg = self.app_config.get("paper") or {}
            return PaperExchange(
                collateral=float(paper_cfg.get("starting_collateral", 0.0)),
                shares=paper_cfg.get("starting_shares") or {},
            )
        if self.mode == "LIVE":
            raise ValueError("LIVE mode requires an ExchangeClient to be supplied by the embedding program")
        return None

    def unlock(self, secret_key: Optional[str] = None, proxy_address: Optional[str] = None) -> bool:
        """
        Initialize the trading session.

        Returns:
            True if a session is active afterwards
        """
        secret_key = secret_key or load_secret_key()
        if not secret_key:
            if self.mode == "DRY_RUN":
                logger.info("No signing key configured; DRY_RUN runs without a trading session")
            else:
                logger.warning(
                    f"No signing key in ${PRIVATE_KEY_ENV}/${PRIVATE_KEY_FILE_ENV}; "
                    "orders will fail with 'No active trading session' until one is provided"
                )
            return False

        try:
            session = self.session_manager.initialize(
                secret_key, proxy_address=proxy_address or os.getenv(PROXY_ADDRESS_ENV) or None
            )
        except SessionError as e:
            logger.error(f"Could not unlock trading session: {e}")
            self.alerts.notify(AlertSeverity.CRITICAL, "Trading Session Failed", str(e))
            return False

        logger.info(f"Trading session active: eoa={session.eoa_address} proxy={session.proxy_address}")
        return True

    def run_once(self) -> Dict[str, int]:
        started = time.monotonic()
        outcomes = self.scheduler.tick()
        elapsed = time.monotonic() - started
        self.metrics.record_tick(outcomes, elapsed, self.session_manager.describe()["is_active"])
        if outcomes:
            summary = ", ".join(f"{k}={v}" for k, v in sorted(outcomes.items()))
            logger.info(f"Tick took {elapsed:.2f}s: {summary}")
        return outcomes

    def purge_terminal_orders(self) -> int:
        removed = self.store.purge_terminal(keep_last_n=self.keep_terminal_orders)
        return removed

    def _handle_stop(self, signum, _frame):
        logger.info(f"Received signal {signum}, stopping after current tick...")
        self.stop()

    def stop(self) -> None:
        self._running = False
        self._stop_event.set()

    def run_forever(self, interval_seconds: Optional[float] = None) -> None:
        """
        Tick continuously with time-aware sleep.

        Args:
            interval_seconds: Seconds between tick starts (default: loop.interval_seconds)
        """
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, self._handle_stop)
            signal.signal(signal.SIGTERM, self._handle_stop)

        interval = float(interval_seconds) if interval_seconds else self.loop_interval_seconds
        logger.info(f"Starting continuous loop (interval={interval}s, jitter={self.loop_jitter_pct:.1f}%)")

        self.metrics.start()
        self.purge_terminal_orders()
        try:
            while self._running:
                start = time.monotonic()
                try:
                    self.run_once()
                except Exception as e:
                    logger.exception(f"Tick failed: {e}")
                elapsed = time.monotonic() - start

                jitter = random.uniform(0, self.loop_jitter_pct / 100.0) * interval
                sleep_for = max(0.0, interval - elapsed) + jitter
                if elapsed > interval:
                    logger.warning(f"Tick took {elapsed:.2f}s, longer than the {interval}s interval")

                self._stop_event.wait(sleep_for)
        finally:
            self.close()

        logger.info("Algo loop stopped cleanly.")

    def close(self) -> None:
        self.scheduler.shutdown(wait=True)
        self.session_manager.clear()
        if self.instance_lock:
            self.instance_lock.release()


def _print(result: Dict[str, Any]) -> int:
    print(json.dumps(result, indent=2, default=str))
    return 0 if result.get("success") else 1


def _order_service(config_dir: str) -> AlgoOrderService:
    cfg = load_app_config(config_dir)
    store_cfg = cfg["store"]
    return AlgoOrderService(
        JsonAlgoOrderStore(store_cfg["orders_file"]),
        history=OrderHistoryLog(store_cfg["history_file"]),
    )


def _create_params(args) -> Dict[str, Any]:
    params = {
        "duration_minutes": args.duration,
        "interval_minutes": args.interval_minutes,
        "stop_loss_price": args.stop_loss,
        "take_profit_price": args.take_profit,
        "trail_percent": args.trail_percent,
        "trigger_price": args.trigger_price,
    }
    return {k: v for k, v in params.items() if v is not None}


def build_parser():
    import argparse

    parser = argparse.ArgumentParser(description="polyalgo algo order scheduler")
    parser.add_argument("--config-dir", default="config", help="Config directory")
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Run the scheduler (default)")
    run.add_argument("--once", action="store_true", help="Run one tick and exit")
    run.add_argument("--interval", type=float, default=None, help="Seconds between ticks")
    run.add_argument("--proxy-address", default=None, help="Known proxy wallet address")

    orders = sub.add_parser("orders", help="Manage algo orders")
    order_cmd = orders.add_subparsers(dest="order_command", required=True)

    create = order_cmd.add_parser("create", help="Create an algo order")
    create.add_argument("type", choices=["TWAP", "STOP_LOSS", "TAKE_PROFIT", "TRAILING_STOP"])
    create.add_argument("side", choices=["BUY", "SELL"])
    create.add_argument("token_id")
    create.add_argument("size", type=float)
    create.add_argument("--duration", type=float, help="TWAP duration (minutes)")
    create.add_argument("--interval-minutes", type=float, help="TWAP slice interval (minutes)")
    create.add_argument("--stop-loss", type=float, help="Stop-loss price")
    create.add_argument("--take-profit", type=float, help="Take-profit price")
    create.add_argument("--trail-percent", type=float, help="Trailing stop percent")
    create.add_argument("--trigger-price", type=float, help="Trailing stop activation price")
    create.add_argument("--limit-price", type=float, help="Limit price (default: market with slippage)")
    create.add_argument("--market-question", default=None)
    create.add_argument("--outcome", default=None)

    for name in ("pause", "resume", "show"):
        cmd = order_cmd.add_parser(name)
        cmd.add_argument("order_id")
    cancel = order_cmd.add_parser("cancel")
    cancel.add_argument("order_id")
    cancel.add_argument("--purge", action="store_true", help="Also remove it from the store")

    list_cmd = order_cmd.add_parser("list")
    list_cmd.add_argument("--status", default=None)

    history = order_cmd.add_parser("history")
    history.add_argument("order_id", nargs="?")
    history.add_argument("--limit", type=int, default=50)

    purge = order_cmd.add_parser("purge", help="Remove old terminal orders")
    purge.add_argument("--keep", type=int, default=100)

    return parser


def run_orders_command(args) -> int:
    service = _order_service(args.config_dir)
    cmd = args.order_command
    if cmd == "create":
        return _print(service.create_order(
            args.type, args.side, args.token_id, args.size,
            params=_create_params(args),
            limit_price=args.limit_price,
            market_question=args.market_question,
            outcome=args.outcome,
        ))
    if cmd == "pause":
        return _print(service.pause_order(args.order_id))
    if cmd == "resume":
        return _print(service.resume_order(args.order_id))
    if cmd == "cancel":
        return _print(service.cancel_order(args.order_id, purge=args.purge))
    if cmd == "show":
        return _print(service.get_order(args.order_id))
    if cmd == "list":
        return _print(service.list_orders(args.status))
    if cmd == "history":
        return _print(service.get_execution_history(args.order_id, limit=args.limit))
    if cmd == "purge":
        return _print(service.purge_terminal_orders(keep_last_n=args.keep))
    raise ValueError(f"Unknown order command: {cmd}")


def main(argv=None) -> int:
    """Entry point"""
    args = build_parser().parse_args(argv)

    if args.command == "orders":
        logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
        return run_orders_command(args)

    loop = AlgoTradingLoop(config_dir=args.config_dir)
    loop.unlock(proxy_address=getattr(args, "proxy_address", None))

    if getattr(args, "once", False):
        try:
            loop.run_once()
        finally:
            loop.close()
    else:
        loop.run_forever(interval_seconds=getattr(args, "interval", None))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
