"""
Trailing-stop evaluator.

Follows the favourable extreme since activation and fires when price
retraces from it by `trail_percent`:
- BUY orders trail up from the lowest price seen (buy the rebound)
- SELL orders trail down from the highest price seen (sell the pullback)

With a trigger price the stop stays dormant until price reaches it
(BUY: price <= trigger, SELL: price >= trigger); without one it arms on
the first evaluation using the current price as the initial extreme.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from core.algo_order import AlgoOrder, OrderSide, TrailingStopParams
from strategy.base import EvaluationResult, PRICE_EPSILON

logger = logging.getLogger(__name__)


@dataclass
class TrailingStopState:
    is_activated: bool = False
    extreme_price: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"is_activated": self.is_activated, "extreme_price": self.extreme_price}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TrailingStopState":
        data = data or {}
        extreme = data.get("extreme_price")
        return cls(
            is_activated=bool(data.get("is_activated", False)),
            extreme_price=float(extreme) if extreme is not None else None,
        )


def evaluate_trailing_stop(
    order: AlgoOrder,
    current_price: float,
    state: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> EvaluationResult:
    """Always returns updated_state, which must be persisted before the next tick."""
    params: TrailingStopParams = order.params
    current = TrailingStopState.from_dict(state if state is not None else order.strategy_state)
    price = current_price

    if not current.is_activated:
        if params.trigger_price is not None:
            armed = price <= params.trigger_price if order.side == OrderSide.BUY else price >= params.trigger_price
            if not armed:
                return EvaluationResult.hold(updated_state=current.to_dict())

        logger.info(f"Trailing stop activated for order {order.id} at price {price}")
        activated = TrailingStopState(is_activated=True, extreme_price=price)
        return EvaluationResult.hold(updated_state=activated.to_dict())

    previous = current.extreme_price if current.extreme_price is not None else price
    trail = params.trail_percent / 100.0

    if order.side == OrderSide.BUY:
        extreme = min(previous, price)
        stop_price = extreme * (1 + trail)
        triggered = price >= stop_price - PRICE_EPSILON and extreme < price
    else:
        extreme = max(previous, price)
        stop_price = extreme * (1 - trail)
        triggered = price <= stop_price + PRICE_EPSILON and extreme > price

    updated = TrailingStopState(is_activated=True, extreme_price=extreme).to_dict()

    if triggered:
        logger.info(
            f"Trailing stop {order.side.value} triggered for order {order.id}: "
            f"price {price} vs stop {stop_price:.4f} (extreme {extreme:.4f})"
        )
        return EvaluationResult(
            should_execute=True,
            execute_size=order.remaining_size(),
            is_complete=True,
            updated_state=updated,
            reason=f"Trailing stop at {stop_price:.4f}",
        )

    if extreme != previous:
        logger.debug(f"Trailing stop {order.side.value}: new extreme {extreme:.4f} (stop at {stop_price:.4f})")

    return EvaluationResult.hold(updated_state=updated)
