"""Shared exception types for core trading logic."""

from typing import Optional


class TradingError(RuntimeError):
    """Base class for errors raised by the algo execution core."""


class SessionError(TradingError):
    """Raised when no usable trading session exists (never retried)."""

    def __init__(self, message: str = "No active trading session"):
        super().__init__(message)


class TransientNetworkError(TradingError):
    """Raised when a price/balance/submission call keeps failing after retries."""

    def __init__(self, source: str, original: Optional[Exception] = None):
        message = f"{source}: {original}" if original else source
        super().__init__(message)
        self.source = source
        self.original = original


class ExecutionRejected(TradingError):
    """Raised when the exchange declines an order."""

    def __init__(self, reason: str, terminal: bool = False):
        super().__init__(reason)
        self.reason = reason
        self.terminal = terminal


class ProxyDerivationError(TradingError):
    """Raised when a proxy wallet address cannot be derived."""
