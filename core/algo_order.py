"""
polyalgo Core: Algo Order Model

Algo order data model with explicit lifecycle management.

States: PENDING → ACTIVE ⇄ PAUSED → (COMPLETED | CANCELLED | FAILED)

Provides:
- Per-type params (TWAP, stop-loss/take-profit, trailing stop)
- State transition validation
- Fill recording with executed-size invariants
- JSON-friendly serialization for the order store
"""

from enum import Enum
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Union
import logging

logger = logging.getLogger(__name__)

# Float tolerance when comparing cumulative fill sizes against the target
SIZE_EPSILON = 1e-9


class AlgoOrderType(Enum):
    """Algo order strategies"""
    TWAP = "TWAP"
    STOP_LOSS = "STOP_LOSS"
    TRAILING_STOP = "TRAILING_STOP"

    @classmethod
    def from_string(cls, value: str) -> "AlgoOrderType":
        normalized = (value or "").strip().upper()
        # Take-profit only orders run through the stop-loss evaluator
        if normalized == "TAKE_PROFIT":
            return cls.STOP_LOSS
        return cls(normalized)


class OrderSide(Enum):
    """Order side"""
    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def from_string(cls, value: str) -> "OrderSide":
        return cls((value or "").strip().upper())


class AlgoOrderStatus(Enum):
    """Algo order lifecycle states"""
    PENDING = "PENDING"        # Created, not yet monitored
    ACTIVE = "ACTIVE"          # Evaluated on every tick
    PAUSED = "PAUSED"          # Kept, but skipped by the scheduler
    COMPLETED = "COMPLETED"    # Target size executed (or trigger fired and filled)
    CANCELLED = "CANCELLED"    # Cancelled by user
    FAILED = "FAILED"          # Gave up after unrecoverable error


TERMINAL_STATUSES = {
    AlgoOrderStatus.COMPLETED,
    AlgoOrderStatus.CANCELLED,
    AlgoOrderStatus.FAILED,
}

VALID_TRANSITIONS = {
    AlgoOrderStatus.PENDING: {AlgoOrderStatus.ACTIVE, AlgoOrderStatus.CANCELLED, AlgoOrderStatus.FAILED},
    AlgoOrderStatus.ACTIVE: {
        AlgoOrderStatus.PAUSED,
        AlgoOrderStatus.COMPLETED,
        AlgoOrderStatus.CANCELLED,
        AlgoOrderStatus.FAILED,
    },
    # COMPLETED: a submission in flight when the order was paused filled the rest
    AlgoOrderStatus.PAUSED: {AlgoOrderStatus.ACTIVE, AlgoOrderStatus.CANCELLED, AlgoOrderStatus.COMPLETED},
    # Terminal states have no outbound transitions
    AlgoOrderStatus.COMPLETED: set(),
    AlgoOrderStatus.CANCELLED: set(),
    AlgoOrderStatus.FAILED: set(),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Optional[Union[str, datetime]]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class TWAPParams:
    """Slice `total_size` evenly over `duration_minutes`, one slice per interval."""
    total_size: float
    duration_minutes: float
    interval_minutes: float
    start_time: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_size": self.total_size,
            "duration_minutes": self.duration_minutes,
            "interval_minutes": self.interval_minutes,
            "start_time": _iso(self.start_time),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TWAPParams":
        return cls(
            total_size=float(data["total_size"]),
            duration_minutes=float(data["duration_minutes"]),
            interval_minutes=float(data["interval_minutes"]),
            start_time=_parse_time(data["start_time"]),
        )


@dataclass
class StopLossParams:
    """Either price may be absent; an absent price never fires."""
    stop_loss_price: Optional[float] = None
    take_profit_price: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StopLossParams":
        stop = data.get("stop_loss_price")
        take = data.get("take_profit_price")
        return cls(
            stop_loss_price=float(stop) if stop is not None else None,
            take_profit_price=float(take) if take is not None else None,
        )


@dataclass
class TrailingStopParams:
    trail_percent: float
    trigger_price: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrailingStopParams":
        trigger = data.get("trigger_price")
        return cls(
            trail_percent=float(data["trail_percent"]),
            trigger_price=float(trigger) if trigger is not None else None,
        )


AlgoParams = Union[TWAPParams, StopLossParams, TrailingStopParams]

PARAMS_BY_TYPE = {
    AlgoOrderType.TWAP: TWAPParams,
    AlgoOrderType.STOP_LOSS: StopLossParams,
    AlgoOrderType.TRAILING_STOP: TrailingStopParams,
}


@dataclass(frozen=True)
class Fill:
    """One successful execution. Appended to history, never mutated."""
    price: float
    size: float
    timestamp: datetime
    reason: Optional[str] = None
    exchange_order_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "price": self.price,
            "size": self.size,
            "timestamp": _iso(self.timestamp),
            "reason": self.reason,
            "exchange_order_id": self.exchange_order_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Fill":
        return cls(
            price=float(data["price"]),
            size=float(data["size"]),
            timestamp=_parse_time(data["timestamp"]),
            reason=data.get("reason"),
            exchange_order_id=data.get("exchange_order_id"),
        )


@dataclass
class AlgoOrder:
    """
    Standing conditional order.

    `strategy_state` is opaque to everything except the evaluator that owns
    the order type; the scheduler only persists what the evaluator returns.
    """
    # Identifiers
    id: str
    type: AlgoOrderType
    side: OrderSide
    token_id: str

    # Sizing
    size: float
    params: AlgoParams
    executed_size: float = 0.0

    # State
    status: AlgoOrderStatus = AlgoOrderStatus.ACTIVE
    strategy_state: Dict[str, Any] = field(default_factory=dict)

    # Pricing: None means market order with slippage protection
    limit_price: Optional[float] = None

    # Execution details
    execution_history: List[Fill] = field(default_factory=list)
    failure_history: List[Dict[str, Any]] = field(default_factory=list)
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    exchange_order_id: Optional[str] = None

    # Market metadata (display only)
    market_question: Optional[str] = None
    outcome: Optional[str] = None

    # Timestamps
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    MAX_FAILURE_HISTORY = 50

    def __post_init__(self):
        """Validate initial state"""
        if not self.token_id or not self.token_id.strip():
            raise ValueError("Order token_id is required")
        if self.size <= 0:
            raise ValueError("Order size must be positive")
        expected = PARAMS_BY_TYPE[self.type]
        if not isinstance(self.params, expected):
            raise TypeError(
                f"{self.type.value} order requires {expected.__name__}, got {type(self.params).__name__}"
            )

    def remaining_size(self) -> float:
        return max(0.0, self.size - self.executed_size)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_active(self) -> bool:
        return self.status == AlgoOrderStatus.ACTIVE

    def can_transition(self, new_status: AlgoOrderStatus) -> bool:
        return new_status in VALID_TRANSITIONS.get(self.status, set())

    def transition(
        self,
        new_status: AlgoOrderStatus,
        now: Optional[datetime] = None,
        error: Optional[str] = None,
    ) -> bool:
        """
        Move the order to `new_status`.

        Returns:
            True if the transition happened, False if it is not allowed
        """
        if new_status == self.status:
            return True
        if not self.can_transition(new_status):
            logger.warning(
                f"Invalid transition for {self.id}: {self.status.value} → {new_status.value}"
            )
            return False

        now = now or utc_now()
        old_status = self.status
        self.status = new_status
        self.updated_at = now
        if new_status in TERMINAL_STATUSES:
            self.completed_at = now
        if error:
            self.last_error = error

        logger.info(f"Algo order {self.id} transitioned: {old_status.value} → {new_status.value}")
        return True

    def record_fill(self, fill: Fill, now: Optional[datetime] = None) -> None:
        """
        Append a fill and advance executed_size.

        Raises:
            ValueError: if the fill is empty or would overfill the order
        """
        if fill.size <= 0:
            raise ValueError("Fill size must be positive")
        if fill.size > self.remaining_size() + SIZE_EPSILON:
            raise ValueError(
                f"Fill of {fill.size} exceeds remaining size {self.remaining_size()} for order {self.id}"
            )

        self.execution_history.append(fill)
        self.executed_size = min(self.size, self.executed_size + fill.size)
        self.consecutive_failures = 0
        self.last_error = None
        if fill.exchange_order_id:
            self.exchange_order_id = fill.exchange_order_id
        self.updated_at = now or utc_now()

    def record_failure(self, error: str, now: Optional[datetime] = None, count: bool = True) -> None:
        """Remember a failed execution attempt (bounded history)."""
        now = now or utc_now()
        self.last_error = error
        if count:
            self.consecutive_failures += 1
        self.failure_history.append({"timestamp": _iso(now), "error": error})
        if len(self.failure_history) > self.MAX_FAILURE_HISTORY:
            self.failure_history = self.failure_history[-self.MAX_FAILURE_HISTORY:]
        self.updated_at = now

    def fill_percentage(self) -> float:
        """Return fill percentage (0-100)"""
        return (self.executed_size / self.size) * 100.0 if self.size > 0 else 0.0

    def average_price(self) -> float:
        filled = sum(f.size for f in self.execution_history)
        if filled <= 0:
            return 0.0
        return sum(f.price * f.size for f in self.execution_history) / filled

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "type": self.type.value,
            "side": self.side.value,
            "token_id": self.token_id,
            "size": self.size,
            "executed_size": self.executed_size,
            "status": self.status.value,
            "params": self.params.to_dict(),
            "strategy_state": dict(self.strategy_state),
            "limit_price": self.limit_price,
            "execution_history": [f.to_dict() for f in self.execution_history],
            "failure_history": list(self.failure_history),
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
            "exchange_order_id": self.exchange_order_id,
            "market_question": self.market_question,
            "outcome": self.outcome,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlgoOrder":
        order_type = AlgoOrderType.from_string(data["type"])
        params = PARAMS_BY_TYPE[order_type].from_dict(data.get("params") or {})
        limit_price = data.get("limit_price")
        return cls(
            id=data["id"],
            type=order_type,
            side=OrderSide.from_string(data["side"]),
            token_id=data["token_id"],
            size=float(data["size"]),
            params=params,
            executed_size=float(data.get("executed_size") or 0.0),
            status=AlgoOrderStatus(data.get("status", AlgoOrderStatus.ACTIVE.value)),
            strategy_state=dict(data.get("strategy_state") or {}),
            limit_price=float(limit_price) if limit_price is not None else None,
            execution_history=[Fill.from_dict(f) for f in data.get("execution_history") or []],
            failure_history=list(data.get("failure_history") or []),
            consecutive_failures=int(data.get("consecutive_failures") or 0),
            last_error=data.get("last_error"),
            exchange_order_id=data.get("exchange_order_id"),
            market_question=data.get("market_question"),
            outcome=data.get("outcome"),
            created_at=_parse_time(data.get("created_at")) or utc_now(),
            updated_at=_parse_time(data.get("updated_at")) or utc_now(),
            completed_at=_parse_time(data.get("completed_at")),
        )

    def summary(self) -> Dict[str, Any]:
        """Read model exposed to UI/CLI collaborators."""
        return {
            "id": self.id,
            "type": self.type.value,
            "side": self.side.value,
            "token_id": self.token_id,
            "status": self.status.value,
            "size": self.size,
            "executed_size": self.executed_size,
            "fill_percentage": self.fill_percentage(),
            "average_price": self.average_price(),
            "execution_history": [f.to_dict() for f in self.execution_history],
            "last_error": self.last_error,
        }
