"""
polyalgo Core: Algo Order Service

User-facing commands (create, pause, resume, cancel, purge) and read models.

Every command returns a plain dict:
    {"success": True, "order_id": ...} | {"success": True, "data": ...}
    {"success": False, "error": "..."}
so UI/CLI callers never need to catch exceptions.
"""

import math
import random
import string
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from core.algo_order import (
    AlgoOrder,
    AlgoOrderStatus,
    AlgoOrderType,
    OrderSide,
    StopLossParams,
    TrailingStopParams,
    TWAPParams,
    utc_now,
)
from core.order_validation import MAX_ORDER_SIZE, MIN_ORDER_SIZE
from core.trading_session import TradingSessionManager
from infra.order_history import OrderHistoryLog
from infra.order_store import JsonAlgoOrderStore

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def generate_order_id(now: Optional[datetime] = None) -> str:
    """order_<epoch-ms>_<7 random base36 chars>"""
    now = now or utc_now()
    suffix = "".join(random.choice(_BASE36) for _ in range(7))
    return f"order_{int(now.timestamp() * 1000)}_{suffix}"


def _positive(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value) and value > 0


def _optional_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _build_params(order_type: AlgoOrderType, size: float, params: Dict[str, Any], now: datetime):
    """Build and validate type-specific params. Raises ValueError."""
    if order_type == AlgoOrderType.TWAP:
        duration = params.get("duration_minutes")
        interval = params.get("interval_minutes")
        if not _positive(duration):
            raise ValueError("TWAP duration_minutes must be greater than 0")
        if not _positive(interval):
            raise ValueError("TWAP interval_minutes must be greater than 0")
        if interval > duration:
            raise ValueError("TWAP interval_minutes cannot exceed duration_minutes")
        return TWAPParams(
            total_size=size,
            duration_minutes=float(duration),
            interval_minutes=float(interval),
            start_time=now,
        )

    if order_type == AlgoOrderType.STOP_LOSS:
        stop = _optional_float(params.get("stop_loss_price"))
        take = _optional_float(params.get("take_profit_price"))
        if stop is None and take is None:
            raise ValueError("Stop-loss order needs stop_loss_price and/or take_profit_price")
        for name, value in (("stop_loss_price", stop), ("take_profit_price", take)):
            if value is not None and not 0 < value < 1:
                raise ValueError(f"{name} must be between 0 and 1")
        return StopLossParams(stop_loss_price=stop, take_profit_price=take)

    trail = params.get("trail_percent")
    if not _positive(trail) or trail >= 100:
        raise ValueError("trail_percent must be between 0 and 100")
    trigger = _optional_float(params.get("trigger_price"))
    if trigger is not None and not 0 < trigger < 1:
        raise ValueError("trigger_price must be between 0 and 1")
    return TrailingStopParams(trail_percent=float(trail), trigger_price=trigger)


class AlgoOrderService:
    """Command/query facade over the order store and the trading session."""

    def __init__(
        self,
        store: JsonAlgoOrderStore,
        session_manager: Optional[TradingSessionManager] = None,
        history: Optional[OrderHistoryLog] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.session_manager = session_manager
        self.history = history
        self._clock = clock

    def create_order(
        self,
        order_type: str,
        side: str,
        token_id: str,
        size: float,
        params: Optional[Dict[str, Any]] = None,
        limit_price: Optional[float] = None,
        market_question: Optional[str] = None,
        outcome: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create an ACTIVE algo order. TAKE_PROFIT is accepted as a stop-loss alias."""
        try:
            parsed_type = AlgoOrderType.from_string(order_type)
            parsed_side = OrderSide.from_string(side)
        except ValueError:
            return {"success": False, "error": f"Invalid order type or side: {order_type}/{side}"}

        if not token_id or not str(token_id).strip():
            return {"success": False, "error": "Token ID is required"}
        if not _positive(size) or not MIN_ORDER_SIZE <= size <= MAX_ORDER_SIZE:
            return {"success": False, "error": f"Size must be between {MIN_ORDER_SIZE} and {MAX_ORDER_SIZE}"}
        if limit_price is not None and not 0 < limit_price < 1:
            return {"success": False, "error": "limit_price must be between 0 and 1"}

        now = self._clock()
        try:
            algo_params = _build_params(parsed_type, float(size), params or {}, now)
            order = AlgoOrder(
                id=generate_order_id(now),
                type=parsed_type,
                side=parsed_side,
                token_id=str(token_id).strip(),
                size=float(size),
                params=algo_params,
                status=AlgoOrderStatus.ACTIVE,
                limit_price=limit_price,
                market_question=market_question,
                outcome=outcome,
                created_at=now,
                updated_at=now,
            )
        except (ValueError, TypeError) as e:
            return {"success": False, "error": str(e)}

        self.store.save(order)
        logger.info(f"Algo order created: {order.id} ({order.type.value} {order.side.value} {order.size} of {order.token_id})")
        return {"success": True, "order_id": order.id, "data": order.to_dict()}

    def _set_status(self, order_id: str, status: AlgoOrderStatus) -> Dict[str, Any]:
        outcome: Dict[str, Any] = {}

        def _mutate(order: AlgoOrder) -> None:
            outcome["from"] = order.status
            outcome["ok"] = order.transition(status, now=self._clock())

        if self.store.update(order_id, _mutate) is None:
            return {"success": False, "error": "Order not found"}
        if not outcome["ok"]:
            return {
                "success": False,
                "error": f"Cannot change order from {outcome['from'].value} to {status.value}",
            }
        logger.info(f"Algo order {order_id} → {status.value}")
        return {"success": True, "order_id": order_id}

    def pause_order(self, order_id: str) -> Dict[str, Any]:
        return self._set_status(order_id, AlgoOrderStatus.PAUSED)

    def resume_order(self, order_id: str) -> Dict[str, Any]:
        return self._set_status(order_id, AlgoOrderStatus.ACTIVE)

    def cancel_order(self, order_id: str, purge: bool = False) -> Dict[str, Any]:
        """Cancel an order; with purge=True it is also removed from the store."""
        if purge:
            if not self.store.delete(order_id):
                return {"success": False, "error": "Order not found"}
            return {"success": True, "order_id": order_id}

        order = self.store.load(order_id)
        if order is not None and order.status == AlgoOrderStatus.CANCELLED:
            return {"success": True, "order_id": order_id}
        return self._set_status(order_id, AlgoOrderStatus.CANCELLED)

    def get_order(self, order_id: str) -> Dict[str, Any]:
        order = self.store.load(order_id)
        if order is None:
            return {"success": False, "error": "Order not found"}
        return {"success": True, "data": order.summary()}

    def list_orders(self, status: Optional[str] = None) -> Dict[str, Any]:
        try:
            wanted = AlgoOrderStatus(status.upper()) if status else None
        except ValueError:
            return {"success": False, "error": f"Unknown status: {status}"}
        return {"success": True, "data": [o.summary() for o in self.store.list_all(wanted)]}

    def get_execution_history(self, order_id: Optional[str] = None, limit: Optional[int] = None) -> Dict[str, Any]:
        if self.history is None:
            return {"success": True, "data": []}
        return {"success": True, "data": self.history.entries(algo_order_id=order_id, limit=limit)}

    def purge_terminal_orders(self, keep_last_n: int = 100) -> Dict[str, Any]:
        removed = self.store.purge_terminal(keep_last_n=keep_last_n)
        return {"success": True, "data": {"removed": removed}}

    def session_status(self) -> Dict[str, Any]:
        if self.session_manager is None:
            return {"success": True, "data": {"eoa_address": None, "proxy_address": None, "is_active": False}}
        return {"success": True, "data": self.session_manager.describe()}
