"""
Stop-loss / take-profit evaluator.

Stateless price-level trigger:
- BUY (long):  stop-loss at price <= stop, take-profit at price >= target
- SELL (short): stop-loss at price >= stop, take-profit at price <= target

Stop-loss wins when both levels are crossed on the same tick.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from core.algo_order import AlgoOrder, OrderSide, StopLossParams
from strategy.base import EvaluationResult

logger = logging.getLogger(__name__)


def _stop_loss_hit(side: OrderSide, price: float, stop_loss_price: float) -> bool:
    if side == OrderSide.BUY:
        return price <= stop_loss_price
    return price >= stop_loss_price


def _take_profit_hit(side: OrderSide, price: float, take_profit_price: float) -> bool:
    if side == OrderSide.BUY:
        return price >= take_profit_price
    return price <= take_profit_price


def evaluate_stop_loss(
    order: AlgoOrder,
    current_price: float,
    state: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> EvaluationResult:
    params: StopLossParams = order.params

    if params.stop_loss_price is not None and _stop_loss_hit(order.side, current_price, params.stop_loss_price):
        logger.info(
            f"Stop-loss triggered for order {order.id}: price {current_price} vs stop {params.stop_loss_price}"
        )
        return EvaluationResult(
            should_execute=True,
            execute_size=order.remaining_size(),
            is_complete=True,
            reason=f"Stop-loss at {params.stop_loss_price}",
        )

    if params.take_profit_price is not None and _take_profit_hit(order.side, current_price, params.take_profit_price):
        logger.info(
            f"Take-profit triggered for order {order.id}: price {current_price} vs target {params.take_profit_price}"
        )
        return EvaluationResult(
            should_execute=True,
            execute_size=order.remaining_size(),
            is_complete=True,
            reason=f"Take-profit at {params.take_profit_price}",
        )

    return EvaluationResult.hold()
