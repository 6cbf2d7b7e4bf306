"""
polyalgo Core: Retry with Exponential Backoff

Retries calls that fail for transient network reasons.

Retries on:
- Errors whose message matches a retryable marker (case-insensitive)
- requests Timeout / ConnectionError, builtin ConnectionError / TimeoutError

Does NOT retry on:
- Anything else (rethrown immediately, no delay)

Two entry points:
- retry_with_backoff(): operation raises on failure
- retry_with_result(): operation returns a {success, error} result; a
  retryable error is retried and raises TransientNetworkError once
  retries run out; a non-retryable failure is returned as-is
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from requests import exceptions as requests_exceptions

from core.exceptions import TransientNetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_ERRORS = [
    "network",
    "timeout",
    "timed out",
    "econnreset",
    "connection reset",
    "etimedout",
    "enotfound",
    "name or service not known",
    "fetch failed",
    "connection aborted",
    "max retries exceeded",
]

_TRANSIENT_EXCEPTIONS = (
    requests_exceptions.Timeout,
    requests_exceptions.ConnectionError,
    ConnectionError,
    TimeoutError,
)


@dataclass
class RetryPolicy:
    max_retries: int = 3
    initial_delay_ms: float = 1000
    max_delay_ms: float = 10000
    backoff_multiplier: float = 2
    retryable_errors: List[str] = field(default_factory=lambda: list(DEFAULT_RETRYABLE_ERRORS))

    @classmethod
    def from_config(cls, raw: Optional[Dict[str, Any]]) -> "RetryPolicy":
        raw = raw or {}
        defaults = cls()
        return cls(
            max_retries=int(raw.get("max_retries", defaults.max_retries)),
            initial_delay_ms=float(raw.get("initial_delay_ms", defaults.initial_delay_ms)),
            max_delay_ms=float(raw.get("max_delay_ms", defaults.max_delay_ms)),
            backoff_multiplier=float(raw.get("backoff_multiplier", defaults.backoff_multiplier)),
            retryable_errors=list(raw.get("retryable_errors") or defaults.retryable_errors),
        )


class RetryableResultError(Exception):
    """Internal: a failed result whose error is worth another attempt."""

    def __init__(self, result: Any, message: str):
        super().__init__(message)
        self.result = result


def is_retryable_error(error: Any, retryable_errors: Sequence[str] = DEFAULT_RETRYABLE_ERRORS) -> bool:
    """Check the error's message and string form against the retryable markers."""
    if error is None:
        return False
    if isinstance(error, _TRANSIENT_EXCEPTIONS):
        return True

    message = str(getattr(error, "message", "") or "").lower()
    text = str(error).lower()
    if isinstance(error, BaseException):
        text = f"{type(error).__name__}: {text}".lower()

    for marker in retryable_errors:
        needle = marker.lower()
        if needle in message or needle in text:
            return True
    return False


def calculate_delay(attempt: int, initial_delay_ms: float, max_delay_ms: float, multiplier: float) -> float:
    """Backoff delay in milliseconds for a zero-based attempt number."""
    delay = initial_delay_ms * (multiplier ** attempt)
    return min(delay, max_delay_ms)


def retry_with_backoff(
    operation: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    sleep: Optional[Callable[[float], None]] = None,
    label: str = "operation",
) -> T:
    """
    Call `operation`, retrying transient failures with exponential backoff.

    Makes at most policy.max_retries + 1 attempts. A non-retryable error is
    rethrown immediately; once retries are exhausted the last error is rethrown.
    """
    policy = policy or RetryPolicy()
    last_error: Optional[BaseException] = None

    for attempt in range(policy.max_retries + 1):
        try:
            return operation()
        except Exception as exc:
            last_error = exc

            if attempt == policy.max_retries:
                break

            if not is_retryable_error(exc, policy.retryable_errors):
                logger.debug(f"{label}: non-retryable error, failing immediately: {exc}")
                raise

            delay_ms = calculate_delay(
                attempt, policy.initial_delay_ms, policy.max_delay_ms, policy.backoff_multiplier
            )
            logger.warning(
                f"{label}: attempt {attempt + 1}/{policy.max_retries} failed: {exc}. "
                f"Retrying in {delay_ms:.0f}ms..."
            )
            (sleep or time.sleep)(delay_ms / 1000.0)

    logger.error(f"{label}: all {policy.max_retries} retry attempts failed")
    raise last_error


def _result_field(result: Any, name: str) -> Any:
    if isinstance(result, dict):
        return result.get(name)
    return getattr(result, name, None)


def retry_with_result(
    operation: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    sleep: Optional[Callable[[float], None]] = None,
    label: str = "operation",
) -> T:
    """
    Retry an operation that reports failure through a {success, error} result.

    - success → returned
    - failure with a retryable error → retried; once retries are exhausted
      TransientNetworkError is raised carrying the last error
    - failure with a non-retryable error → returned as-is, no retry
    Exceptions raised by the operation follow retry_with_backoff() rules.
    """
    policy = policy or RetryPolicy()

    def _attempt() -> T:
        result = operation()
        error = _result_field(result, "error")
        if not _result_field(result, "success") and error:
            if is_retryable_error(str(error), policy.retryable_errors):
                raise RetryableResultError(result, str(error))
        return result

    try:
        return retry_with_backoff(_attempt, policy=policy, sleep=sleep, label=label)
    except RetryableResultError as exc:
        raise TransientNetworkError(label, exc) from exc
