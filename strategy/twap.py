"""
TWAP (Time-Weighted Average Price) evaluator.

Splits the target size into equal slices, one per interval, over a fixed
duration. Whatever is left when the duration runs out is liquidated in one
final execution.
"""

import math
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from core.algo_order import AlgoOrder, TWAPParams, utc_now
from strategy.base import EvaluationResult, MIN_EXECUTION_SIZE

logger = logging.getLogger(__name__)


def evaluate_twap(
    order: AlgoOrder,
    current_price: float,
    state: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> EvaluationResult:
    """
    Decide whether a TWAP slice is due.

    A slice fires only while the number of recorded fills lags the number
    of elapsed intervals, so repeated ticks inside one interval are no-ops.
    """
    params: TWAPParams = order.params
    now = now or utc_now()

    elapsed_minutes = (now - params.start_time).total_seconds() / 60.0
    remaining = min(params.total_size - order.executed_size, order.remaining_size())

    if elapsed_minutes > params.duration_minutes:
        if remaining > MIN_EXECUTION_SIZE:
            logger.info(f"TWAP duration exceeded for order {order.id}, executing remaining {remaining}")
            return EvaluationResult(
                should_execute=True,
                execute_size=remaining,
                is_complete=True,
                reason="TWAP final slice",
            )
        # Already fully executed
        return EvaluationResult(should_execute=False, is_complete=True)

    expected_slices = math.floor(elapsed_minutes / params.interval_minutes)
    actual_slices = len(order.execution_history)

    if actual_slices < expected_slices:
        total_slices = math.ceil(params.duration_minutes / params.interval_minutes)
        slice_size = params.total_size / total_slices
        execute_size = min(slice_size, remaining)

        if execute_size >= MIN_EXECUTION_SIZE:
            logger.info(
                f"TWAP executing slice {actual_slices + 1}/{total_slices} of order {order.id}: "
                f"{execute_size} shares"
            )
            return EvaluationResult(
                should_execute=True,
                execute_size=execute_size,
                is_complete=False,
                reason="TWAP slice",
            )

    return EvaluationResult.hold()
