"""
Strategy evaluator contract for algo orders.

Each evaluator is a pure function:

    (order, current_price, state, now) -> EvaluationResult

Evaluators never perform I/O, never touch the order store and never mutate
the order they are given; any state they need to carry forward between
ticks is returned in `updated_state` and persisted by the scheduler.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

# Smallest size the exchange will accept for one execution
MIN_EXECUTION_SIZE = 0.01

# Absorbs float noise in price threshold comparisons
PRICE_EPSILON = 1e-9


@dataclass
class EvaluationResult:
    should_execute: bool
    execute_size: Optional[float] = None
    is_complete: bool = False
    updated_state: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None

    @classmethod
    def hold(cls, updated_state: Optional[Dict[str, Any]] = None) -> "EvaluationResult":
        return cls(should_execute=False, updated_state=updated_state)
