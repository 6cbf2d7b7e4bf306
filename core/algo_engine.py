"""
polyalgo Core: Algo Scheduler

Drives every ACTIVE algo order once per tick:

    re-check status → price → evaluate → (persist state | execute) → commit

Orders are processed concurrently, but each order is serialized by its own
lock: a tick for an order whose previous submission is still in flight is
skipped, so a TWAP interval can never fire twice.

Outcomes are committed with store.update(), which re-reads the order; a
pause or cancel issued while a submission was in flight keeps its status.
"""

import logging
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from core.algo_order import (
    AlgoOrder,
    AlgoOrderStatus,
    AlgoOrderType,
    Fill,
    SIZE_EPSILON,
    utc_now,
)
from core.execution import (
    ExecutionEngine,
    ExecutionResult,
    KIND_INACTIVE,
    KIND_TERMINAL,
    SUBMISSION_FAILURE_KINDS,
)
from core.interfaces import AlgoOrderStore, Notifier, PriceFeed
from infra.alerting import AlertSeverity
from infra.order_history import OrderHistoryEntry, OrderHistoryLog
from strategy.base import EvaluationResult
from strategy.registry import evaluate

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONSECUTIVE_FAILURES = 5

# Tick outcomes (counted per tick)
OUTCOME_INACTIVE = "inactive"
OUTCOME_BUSY = "busy"
OUTCOME_NO_PRICE = "no_price"
OUTCOME_HELD = "held"
OUTCOME_DRY_RUN = "dry_run"
OUTCOME_EXECUTED = "executed"
OUTCOME_COMPLETED = "completed"
OUTCOME_REJECTED = "rejected"
OUTCOME_FAILED = "failed"
OUTCOME_ERROR = "error"


class AlgoScheduler:
    """
    Execution coordinator for algo orders.

    Example:
        >>> scheduler = AlgoScheduler(store, price_feed, engine)
        >>> scheduler.tick()
        {'held': 2, 'executed': 1}
    """

    def __init__(
        self,
        store: AlgoOrderStore,
        price_feed: PriceFeed,
        execution: ExecutionEngine,
        history: Optional[OrderHistoryLog] = None,
        notifier: Optional[Notifier] = None,
        max_workers: int = 4,
        max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.price_feed = price_feed
        self.execution = execution
        self.history = history
        self.notifier = notifier
        self.max_consecutive_failures = max_consecutive_failures
        self._clock = clock

        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="algo-order")
        self._order_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, order_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._order_locks.get(order_id)
            if lock is None:
                lock = threading.Lock()
                self._order_locks[order_id] = lock
            return lock

    def _forget_locks(self, active_ids) -> None:
        """Drop locks of orders that left the active set and are idle."""
        with self._locks_guard:
            for order_id in list(self._order_locks):
                lock = self._order_locks[order_id]
                if order_id not in active_ids and not lock.locked():
                    del self._order_locks[order_id]

    def tick(self) -> Dict[str, int]:
        """
        Evaluate every ACTIVE order once.

        Returns:
            Count of orders per outcome
        """
        outcomes: Counter = Counter()
        orders = self.store.list_active()
        if not orders:
            return {}

        logger.debug(f"Evaluating {len(orders)} active algo orders")
        futures = []
        for order in orders:
            lock = self._lock_for(order.id)
            if not lock.acquire(blocking=False):
                logger.info(f"Order {order.id} still in flight from a previous tick; skipping")
                outcomes[OUTCOME_BUSY] += 1
                continue
            futures.append(self._executor.submit(self._process_locked, order.id, lock))

        for future in futures:
            outcomes[future.result()] += 1

        self._forget_locks({o.id for o in orders})
        return dict(outcomes)

    def _process_locked(self, order_id: str, lock: threading.Lock) -> str:
        try:
            return self.process_order(order_id)
        except Exception as e:
            logger.exception(f"Unexpected error processing algo order {order_id}: {e}")
            self._record_unexpected_error(order_id, e)
            return OUTCOME_ERROR
        finally:
            lock.release()

    def _is_still_active(self, order_id: str) -> bool:
        order = self.store.load(order_id)
        return order is not None and order.is_active()

    def _fetch_price(self, token_id: str) -> Optional[float]:
        try:
            return self.price_feed.get_price(token_id)
        except Exception as e:
            logger.warning(f"Price fetch failed for {token_id}: {e}")
            return None

    def process_order(self, order_id: str) -> str:
        """Run one tick for one order. Caller holds the order's lock."""
        order = self.store.load(order_id)
        if order is None or not order.is_active():
            return OUTCOME_INACTIVE

        price = self._fetch_price(order.token_id)
        if price is None:
            logger.warning(f"No price for token {order.token_id}, skipping order {order.id}")
            return OUTCOME_NO_PRICE

        # Paused/cancelled during the price fetch?
        order = self.store.load(order_id)
        if order is None or not order.is_active():
            return OUTCOME_INACTIVE

        now = self._clock()
        decision = evaluate(order, price, now=now)

        if not decision.should_execute:
            return self._commit_hold(order, decision, now)

        result = self.execution.execute(
            order.token_id,
            order.side.value,
            decision.execute_size,
            price,
            limit_price=order.limit_price,
            still_active=lambda: self._is_still_active(order_id),
        )

        if result.route == "dry_run":
            self._persist_state(order, decision)
            return OUTCOME_DRY_RUN
        if result.error_kind == KIND_INACTIVE:
            self._persist_state(order, decision)
            return OUTCOME_INACTIVE

        self._journal(order, decision, result, price)
        if result.success:
            return self._commit_fill(order, decision, result, price)
        return self._commit_failure(order, decision, result)

    def _persist_state(self, order: AlgoOrder, decision: EvaluationResult) -> None:
        if decision.updated_state is None or decision.updated_state == order.strategy_state:
            return

        def _mutate(stored: AlgoOrder) -> None:
            stored.strategy_state = dict(decision.updated_state)
            stored.updated_at = self._clock()

        self.store.update(order.id, _mutate)

    def _commit_hold(self, order: AlgoOrder, decision: EvaluationResult, now: datetime) -> str:
        if not decision.is_complete:
            self._persist_state(order, decision)
            return OUTCOME_HELD

        # TWAP past its deadline with nothing left to trade
        completed = []

        def _mutate(stored: AlgoOrder) -> None:
            if decision.updated_state is not None:
                stored.strategy_state = dict(decision.updated_state)
            if stored.is_active() and stored.transition(AlgoOrderStatus.COMPLETED, now=now):
                completed.append(stored)

        self.store.update(order.id, _mutate)
        if completed:
            self._notify_completed(completed[0])
            return OUTCOME_COMPLETED
        return OUTCOME_HELD

    def _commit_fill(
        self,
        order: AlgoOrder,
        decision: EvaluationResult,
        result: ExecutionResult,
        market_price: float,
    ) -> str:
        now = self._clock()
        completed = []

        def _mutate(stored: AlgoOrder) -> None:
            if decision.updated_state is not None:
                stored.strategy_state = dict(decision.updated_state)
            size = min(result.size, stored.remaining_size())
            if size > SIZE_EPSILON:
                stored.record_fill(
                    Fill(
                        price=market_price,
                        size=size,
                        timestamp=now,
                        reason=decision.reason or "Algo condition met",
                        exchange_order_id=result.order_id,
                    ),
                    now=now,
                )
            else:
                logger.warning(f"Order {stored.id} already fully executed; dropping extra fill of {result.size}")

            fully_executed = stored.remaining_size() <= SIZE_EPSILON
            if (decision.is_complete or fully_executed) and not stored.is_terminal():
                if stored.transition(AlgoOrderStatus.COMPLETED, now=now):
                    completed.append(stored)

        updated = self.store.update(order.id, _mutate)
        if updated is None:
            logger.error(f"Order {order.id} vanished from store after executing {result.order_id}")
            return OUTCOME_EXECUTED

        self._notify(
            AlertSeverity.INFO,
            "Algo Order Executed",
            f"{order.type.value} {order.side.value} {result.size:g} @ {market_price:.4f}",
            {"algo_order_id": order.id, "exchange_order_id": result.order_id, "reason": decision.reason},
        )
        if completed:
            self._notify_completed(completed[0])
            return OUTCOME_COMPLETED
        return OUTCOME_EXECUTED

    def _commit_failure(self, order: AlgoOrder, decision: EvaluationResult, result: ExecutionResult) -> str:
        now = self._clock()
        counts = result.error_kind in SUBMISSION_FAILURE_KINDS
        failed = []

        def _mutate(stored: AlgoOrder) -> None:
            if decision.updated_state is not None:
                stored.strategy_state = dict(decision.updated_state)
            stored.record_failure(result.error or "Unknown error", now=now, count=counts)
            if not stored.is_active():
                return
            if result.error_kind == KIND_TERMINAL:
                reason = result.error
            elif counts and stored.consecutive_failures >= self.max_consecutive_failures:
                reason = f"Giving up after {stored.consecutive_failures} consecutive failures: {result.error}"
            else:
                return
            if stored.transition(AlgoOrderStatus.FAILED, now=now, error=reason):
                failed.append(stored)

        self.store.update(order.id, _mutate)

        if failed:
            self._notify(
                AlertSeverity.CRITICAL,
                "Algo Order Failed",
                f"{order.type.value} order failed: {failed[0].last_error}",
                {"algo_order_id": order.id, "error_kind": result.error_kind},
            )
            return OUTCOME_FAILED

        self._notify(
            AlertSeverity.WARNING,
            "Algo Order Failed",
            f"{order.type.value} execution failed ({result.error_kind}): {result.error}",
            {"algo_order_id": order.id, "error_kind": result.error_kind},
        )
        return OUTCOME_REJECTED

    def _record_unexpected_error(self, order_id: str, error: Exception) -> None:
        now = self._clock()

        def _mutate(stored: AlgoOrder) -> None:
            stored.record_failure(f"Unexpected error: {error}", now=now)
            if stored.is_active() and stored.consecutive_failures >= self.max_consecutive_failures:
                stored.transition(AlgoOrderStatus.FAILED, now=now)

        try:
            self.store.update(order_id, _mutate)
        except Exception as e:
            logger.error(f"Could not record failure for order {order_id}: {e}")

    def _journal(
        self,
        order: AlgoOrder,
        decision: EvaluationResult,
        result: ExecutionResult,
        market_price: float,
    ) -> None:
        if self.history is None or not result.reached_exchange:
            return
        entry = OrderHistoryEntry(
            algo_order_id=order.id,
            algo_type=order.type.value,
            token_id=order.token_id,
            side=order.side.value,
            size=result.size,
            price=result.price,
            status="EXECUTED" if result.success else "FAILED",
            executed_price=market_price if result.success else None,
            exchange_order_id=result.order_id,
            error=result.error,
            reason=decision.reason,
            market_question=order.market_question,
            outcome=order.outcome,
        )
        try:
            self.history.record(entry)
        except OSError as e:
            logger.error(f"Failed to journal execution for {order.id}: {e}")

    def _notify_completed(self, order: AlgoOrder) -> None:
        if order.type == AlgoOrderType.TWAP:
            self._notify(
                AlertSeverity.INFO,
                "TWAP Order Complete",
                f"TWAP order completed: {order.executed_size:g} {order.side.value} "
                f"@ avg price {order.average_price():.4f}",
                {"algo_order_id": order.id},
            )

    def _notify(self, severity: AlertSeverity, title: str, message: str, context: Dict[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(severity, title, message, context)
        except Exception as e:
            logger.warning(f"Notification '{title}' failed: {e}")

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
