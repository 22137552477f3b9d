"""
CPDEX Checked Integer Arithmetic

Every amount in the exchange is an unsigned 64-bit integer. Intermediate
products are evaluated in a widened unsigned 128-bit domain. Any step that
leaves its domain, divides by zero or underflows raises LiquidityError, so a
failed calculation never produces a partially-applied result.
"""

from __future__ import annotations

from ..constants import U64_MAX, U128_MAX
from ..exceptions import LiquidityError


def require_u64(value: int, name: str = "amount") -> int:
    """Validate a caller-supplied amount as an unsigned 64-bit integer."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise LiquidityError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0 or value > U64_MAX:
        raise LiquidityError(f"{name} out of u64 range: {value}")
    return value


def to_u64(value: int) -> int:
    """Narrow a widened result back to u64."""
    if value < 0 or value > U64_MAX:
        raise LiquidityError(f"Result {value} does not fit in u64")
    return value


def checked_add(a: int, b: int, limit: int = U128_MAX) -> int:
    result = a + b
    if result > limit:
        raise LiquidityError("Arithmetic overflow on addition")
    return result


def checked_sub(a: int, b: int) -> int:
    if b > a:
        raise LiquidityError("Arithmetic underflow on subtraction")
    return a - b


def checked_mul(a: int, b: int, limit: int = U128_MAX) -> int:
    result = a * b
    if result > limit:
        raise LiquidityError("Arithmetic overflow on multiplication")
    return result


def checked_div(a: int, b: int) -> int:
    """Floor division; a zero divisor is a liquidity failure, not a ZeroDivisionError."""
    if b == 0:
        raise LiquidityError("Division by zero")
    return a // b


def isqrt_floor(value: int) -> int:
    """
    Largest integer r with r*r <= value, by integer binary search.

    No floating point is involved.
    """
    if value < 0:
        raise LiquidityError("Square root of a negative value")
    result = 0
    low, high = 0, value
    while low <= high:
        mid = (low + high) // 2
        mid_squared = mid * mid
        if mid_squared == value:
            return mid
        if mid_squared < value:
            result = mid
            low = mid + 1
        else:
            high = mid - 1
    return result
