"""
polyalgo Core: Execution Engine

Turns a fired evaluator decision into an exchange order.

Pipeline (each step can end the attempt with a structured result):
1. Limit price: market orders pay a slippage tolerance, clamped to the
   tradable range; limit orders use the caller's price
2. Order validation (never retried)
3. Fresh balance fetch + balance gate (never cached, never retried on gate failure)
4. Tick size / neg-risk lookups
5. Session recapture and submission (network call retried)

Nothing here raises for an expected failure: every outcome is an
ExecutionResult with an error_kind the scheduler can act on.
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from core.algo_order import utc_now
from core.exceptions import ExecutionRejected, SessionError, TransientNetworkError
from core.interfaces import AssetRef, ExchangeClient, OrderMeta
from core.order_validation import (
    ValidationResult,
    format_validation_errors,
    validate_balance,
    validate_order,
)
from core.retry import RetryPolicy, is_retryable_error, retry_with_backoff, retry_with_result
from core.trading_session import TradingSessionManager

logger = logging.getLogger(__name__)

# error_kind values
KIND_VALIDATION = "validation"
KIND_BALANCE = "balance"
KIND_SESSION = "session"
KIND_NETWORK = "network"
KIND_REJECTED = "rejected"
KIND_TERMINAL = "terminal"
KIND_INACTIVE = "inactive"

# Failures that happened at (or on the way to) the exchange
SUBMISSION_FAILURE_KINDS = {KIND_NETWORK, KIND_REJECTED, KIND_TERMINAL}

DEFAULT_TERMINAL_REJECTION_MARKERS = [
    "invalid market",
    "market not found",
    "market closed",
    "market is closed",
    "market resolved",
    "invalid token",
    "token not found",
]


@dataclass
class ExecutionResult:
    """Result of one execution attempt"""
    success: bool
    order_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    price: float = 0.0
    size: float = 0.0
    route: str = "live"  # "live" | "paper" | "dry_run"
    validation: Optional[ValidationResult] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = utc_now()

    @property
    def reached_exchange(self) -> bool:
        """True if the order was handed to the exchange (journal-worthy)."""
        if self.route == "dry_run":
            return False
        return self.success or self.error_kind in SUBMISSION_FAILURE_KINDS


class ExecutionEngine:
    """
    Order execution engine.

    Safety:
    - DRY_RUN mode validates and logs but never submits
    - Session is recaptured at the moment of submission, not at tick start
    - `still_active` is re-checked before every suspension point
    """

    def __init__(
        self,
        session_manager: TradingSessionManager,
        exchange: Optional[ExchangeClient] = None,
        mode: str = "DRY_RUN",
        config: Optional[Dict[str, Any]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Args:
            session_manager: Owner of the signing session
            exchange: ExchangeClient (required unless mode is DRY_RUN)
            mode: "DRY_RUN" | "PAPER" | "LIVE"
            config: `execution` section of app.yaml
        """
        self.mode = mode.upper()
        if self.mode not in ("DRY_RUN", "PAPER", "LIVE"):
            raise ValueError(f"Invalid mode: {mode}")
        if self.mode != "DRY_RUN" and exchange is None:
            raise ValueError(f"{self.mode} mode requires an exchange client")

        self.session_manager = session_manager
        self.exchange = exchange
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

        config = config or {}
        self.slippage = float(config.get("slippage", 0.05))
        self.min_price = float(config.get("min_price", 0.01))
        self.max_price = float(config.get("max_price", 0.99))
        self.market_order_type = str(config.get("order_type", "FOK")).upper()
        self.limit_order_type = str(config.get("limit_order_type", "GTC")).upper()
        self.terminal_rejection_markers: List[str] = [
            m.lower() for m in (config.get("terminal_rejection_markers") or DEFAULT_TERMINAL_REJECTION_MARKERS)
        ]

        logger.info(
            f"Initialized ExecutionEngine (mode={self.mode}, slippage={self.slippage:.2%}, "
            f"market_order_type={self.market_order_type})"
        )

    def compute_limit_price(self, side: str, current_price: float, limit_price: Optional[float] = None) -> float:
        """Limit orders keep their price; market orders get slippage room within [min_price, max_price]."""
        if limit_price is not None:
            return limit_price
        if side.upper() == "BUY":
            return min(self.max_price, current_price * (1 + self.slippage))
        return max(self.min_price, current_price * (1 - self.slippage))

    def is_terminal_rejection(self, error: Optional[str]) -> bool:
        text = (error or "").lower()
        return any(marker in text for marker in self.terminal_rejection_markers)

    def classify_rejection(self, error: Optional[str]) -> ExecutionRejected:
        reason = error or "Unknown error"
        return ExecutionRejected(reason, terminal=self.is_terminal_rejection(reason))

    def _call_exchange(self, operation: Callable[[], Any], label: str) -> Any:
        """
        Retried exchange lookup.

        Raises:
            TransientNetworkError: the lookup failed (after retries, when retryable)
        """
        try:
            return retry_with_backoff(operation, policy=self.retry_policy, sleep=self._sleep, label=label)
        except SessionError:
            raise
        except Exception as e:
            raise TransientNetworkError(label, e) from e

    def _fetch_balance(self, side: str, token_id: str, session) -> float:
        asset = AssetRef.collateral() if side.upper() == "BUY" else AssetRef.shares(token_id)
        return float(self._call_exchange(
            lambda: self.exchange.get_balance(asset, session),
            label=f"get_balance({asset.asset_type})",
        ))

    def _fetch_meta(self, token_id: str, is_market: bool) -> OrderMeta:
        tick_size = self._call_exchange(lambda: self.exchange.get_tick_size(token_id), label="get_tick_size")
        neg_risk = self._call_exchange(lambda: self.exchange.get_neg_risk(token_id), label="get_neg_risk")
        order_type = self.market_order_type if is_market else self.limit_order_type
        return OrderMeta(tick_size=str(tick_size), neg_risk=bool(neg_risk), order_type=order_type)

    def execute(
        self,
        token_id: str,
        side: str,
        size: float,
        current_price: float,
        limit_price: Optional[float] = None,
        still_active: Optional[Callable[[], bool]] = None,
    ) -> ExecutionResult:
        """
        Execute one order.

        Args:
            token_id: Outcome token to trade
            side: "BUY" or "SELL"
            size: Shares to trade
            current_price: Latest observed market price
            limit_price: Caller price for limit orders (None = market order)
            still_active: Re-checked before each external call; False aborts

        Returns:
            ExecutionResult (never raises for exchange, session or validation failures)
        """
        side = side.upper()
        price = self.compute_limit_price(side, current_price, limit_price)

        def _aborted(stage: str) -> Optional[ExecutionResult]:
            if still_active is not None and not still_active():
                logger.info(f"Order on {token_id} no longer active before {stage}; skipping")
                return ExecutionResult(
                    success=False, error="Order is no longer active",
                    error_kind=KIND_INACTIVE, price=price, size=size,
                )
            return None

        validation = validate_order(token_id, side, size, price)
        if not validation.is_valid:
            error = format_validation_errors(validation.errors)
            logger.warning(f"Order validation failed for {token_id}: {error}")
            return ExecutionResult(
                success=False, error=error, error_kind=KIND_VALIDATION,
                price=price, size=size, validation=validation,
            )

        if self.mode == "DRY_RUN":
            logger.info(f"DRY_RUN: Would execute {side} {size} of {token_id} @ {price:.4f}")
            return ExecutionResult(
                success=True, order_id=f"dry_run_{uuid.uuid4().hex[:12]}",
                price=price, size=size, route="dry_run",
            )

        aborted = _aborted("balance check")
        if aborted:
            return aborted

        try:
            session = self.session_manager.require_session()
        except SessionError as e:
            logger.error(f"Cannot execute {side} {size} of {token_id}: {e}")
            return ExecutionResult(success=False, error=str(e), error_kind=KIND_SESSION, price=price, size=size)

        try:
            available = self._fetch_balance(side, token_id, session)
        except SessionError as e:
            logger.error(f"Session rejected during balance fetch for {token_id}: {e}")
            return ExecutionResult(success=False, error=str(e), error_kind=KIND_SESSION, price=price, size=size)
        except TransientNetworkError as e:
            logger.error(f"Balance fetch failed for {token_id}: {e}")
            return ExecutionResult(
                success=False, error=f"Balance fetch failed: {e}",
                error_kind=KIND_NETWORK, price=price, size=size,
            )

        balance_check = validate_balance(side, size, price, available)
        if not balance_check.is_valid:
            error = format_validation_errors(balance_check.errors)
            logger.warning(f"Balance check failed for {token_id}: {error}")
            return ExecutionResult(
                success=False, error=error, error_kind=KIND_BALANCE,
                price=price, size=size, validation=balance_check,
            )

        try:
            meta = self._fetch_meta(token_id, is_market=limit_price is None)
        except SessionError as e:
            logger.error(f"Session rejected during metadata lookup for {token_id}: {e}")
            return ExecutionResult(success=False, error=str(e), error_kind=KIND_SESSION, price=price, size=size)
        except TransientNetworkError as e:
            logger.error(f"Order metadata lookup failed for {token_id}: {e}")
            return ExecutionResult(
                success=False, error=f"Order metadata lookup failed: {e}",
                error_kind=KIND_NETWORK, price=price, size=size,
            )

        aborted = _aborted("submission")
        if aborted:
            return aborted

        # Lock may have happened while we were fetching balance/metadata
        try:
            session = self.session_manager.require_session()
        except SessionError as e:
            logger.error(f"Session lost before submitting {side} {size} of {token_id}: {e}")
            return ExecutionResult(success=False, error=str(e), error_kind=KIND_SESSION, price=price, size=size)

        logger.info(
            f"Submitting {meta.order_type} {side} {size} of {token_id} @ {price:.4f} "
            f"(tick={meta.tick_size}, neg_risk={meta.neg_risk})"
        )
        route = "paper" if self.mode == "PAPER" else "live"
        try:
            submitted = retry_with_result(
                lambda: self.exchange.submit_order(token_id, side, size, price, meta, session),
                policy=self.retry_policy,
                sleep=self._sleep,
                label="submit_order",
            )
            if not submitted.success:
                raise self.classify_rejection(submitted.error)
        except TransientNetworkError as e:
            error = str(e.original or e)
            logger.error(f"Order submission failed for {token_id} after retries: {error}")
            return ExecutionResult(
                success=False, error=error, error_kind=KIND_NETWORK, price=price, size=size, route=route,
            )
        except ExecutionRejected as e:
            kind = KIND_TERMINAL if e.terminal or self.is_terminal_rejection(e.reason) else KIND_REJECTED
            logger.warning(f"Order rejected for {token_id} ({kind}): {e.reason}")
            return ExecutionResult(
                success=False, error=e.reason, error_kind=kind, price=price, size=size, route=route,
            )
        except SessionError as e:
            logger.error(f"Session rejected while submitting {side} {size} of {token_id}: {e}")
            return ExecutionResult(success=False, error=str(e), error_kind=KIND_SESSION, price=price, size=size)
        except Exception as e:
            kind = KIND_NETWORK if is_retryable_error(e, self.retry_policy.retryable_errors) else KIND_REJECTED
            logger.error(f"Order submission failed for {token_id}: {e}")
            return ExecutionResult(success=False, error=str(e), error_kind=kind, price=price, size=size)

        logger.info(f"✅ Order placed for {token_id}: {submitted.order_id}")
        return ExecutionResult(
            success=True, order_id=submitted.order_id, price=price, size=size, route=route,
        )
