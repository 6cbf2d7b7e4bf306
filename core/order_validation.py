"""
polyalgo Core: Order Validation

Pre-submission checks for prediction-market orders:
- Field constraints (token, size, price, minimum notional)
- Balance gate (collateral for BUY, shares for SELL)

Both checks are pure and return a ValidationResult; they never raise and
never reach the retry layer. Callers fetch a fresh balance right before
calling validate_balance().
"""

import math
from dataclasses import dataclass, field
from typing import List

# Exchange order constraints
MIN_ORDER_SIZE = 0.01       # Minimum shares
MAX_ORDER_SIZE = 1_000_000  # Maximum shares
MIN_PRICE = 0.0001
MAX_PRICE = 0.9999
MIN_NOTIONAL_USD = 1.0      # Minimum $1 order value


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    message: str


@dataclass
class ValidationResult:
    errors: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add(self, field_name: str, message: str) -> None:
        self.errors.append(ValidationIssue(field_name, message))

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": [{"field": e.field, "message": e.message} for e in self.errors],
        }


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_order(token_id: str, side: str, size: float, price: float) -> ValidationResult:
    """
    Validate order parameters before submission.

    All rules are checked independently; every violation is reported.
    """
    result = ValidationResult()

    if not token_id or not str(token_id).strip():
        result.add("token_id", "Token ID is required")

    size_ok = _is_number(size) and math.isfinite(size) and size > 0
    price_ok = _is_number(price) and math.isfinite(price) and price > 0

    if size_ok and size < MIN_ORDER_SIZE:
        result.add("size", f"Order size must be at least {MIN_ORDER_SIZE} shares")
    if size_ok and size > MAX_ORDER_SIZE:
        result.add("size", f"Order size cannot exceed {MAX_ORDER_SIZE} shares")
    if not size_ok:
        result.add("size", "Order size must be a positive number")

    if price_ok and price < MIN_PRICE:
        result.add("price", f"Price must be at least {MIN_PRICE}")
    if price_ok and price > MAX_PRICE:
        result.add("price", f"Price cannot exceed {MAX_PRICE}")
    if not price_ok:
        result.add("price", "Price must be a positive number")

    if size_ok and price_ok:
        notional = size * price
        if notional < MIN_NOTIONAL_USD:
            result.add(
                "size",
                f"Order value must be at least ${MIN_NOTIONAL_USD:g} "
                f"({size} × ${price:.4f} = ${notional:.2f})",
            )
    elif _is_number(size) and _is_number(price):
        # Zero/negative inputs can never meet the minimum notional either
        result.add("size", f"Order value must be at least ${MIN_NOTIONAL_USD:g}")

    return result


def validate_balance(side: str, size: float, price: float, available_balance: float) -> ValidationResult:
    """
    Check that the available balance covers the order.

    BUY needs collateral >= size × price; SELL needs shares >= size.
    """
    result = ValidationResult()

    if str(side).upper() == "BUY":
        required = size * price
        if required > available_balance:
            result.add(
                "balance",
                f"Insufficient USDC balance. Required: ${required:.2f}, Available: ${available_balance:.2f}",
            )
    else:
        if size > available_balance:
            result.add(
                "balance",
                f"Insufficient shares. Required: {size}, Available: {available_balance}",
            )

    return result


def format_validation_errors(errors: List[ValidationIssue]) -> str:
    """Format validation errors for display"""
    return "\n".join(f"{e.field}: {e.message}" for e in errors)
