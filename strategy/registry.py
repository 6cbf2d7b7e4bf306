"""
Evaluator registry: maps each algo order type to its evaluator.

The scheduler only ever calls evaluate(); each evaluator sees only orders
of its own type and its own params variant.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from core.algo_order import AlgoOrder, AlgoOrderType
from strategy.base import EvaluationResult
from strategy.stop_loss import evaluate_stop_loss
from strategy.trailing_stop import evaluate_trailing_stop
from strategy.twap import evaluate_twap

logger = logging.getLogger(__name__)

Evaluator = Callable[..., EvaluationResult]

EVALUATORS: Dict[AlgoOrderType, Evaluator] = {
    AlgoOrderType.TWAP: evaluate_twap,
    AlgoOrderType.STOP_LOSS: evaluate_stop_loss,
    AlgoOrderType.TRAILING_STOP: evaluate_trailing_stop,
}


def get_evaluator(order_type: AlgoOrderType) -> Evaluator:
    try:
        return EVALUATORS[order_type]
    except KeyError:
        raise ValueError(f"No evaluator registered for order type {order_type}") from None


def evaluate(order: AlgoOrder, current_price: float, now: Optional[datetime] = None) -> EvaluationResult:
    """Run the evaluator for `order`, passing it a copy of its own state."""
    evaluator = get_evaluator(order.type)
    return evaluator(order, current_price, dict(order.strategy_state), now=now)
