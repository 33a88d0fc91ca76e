"""
Fixed-point helpers at 10^18 scale.

All values are plain non-negative ints. Multiplication is checked against
the uint256 range and every division truncates toward zero, so rounding
always favours the pool.
"""
from decimal import Decimal

from subnet_amm.errors import ArithmeticOverflowError

PRECISION = 10 ** 18
MAX_UINT256 = 2 ** 256 - 1
BASIS_POINTS = 10_000


def _check_range(value: int, operation: str) -> int:
    if value < 0 or value > MAX_UINT256:
        raise ArithmeticOverflowError(f"{operation} out of uint256 range: {value}")
    return value


def checked_add(a: int, b: int) -> int:
    return _check_range(a + b, "add")


def checked_sub(a: int, b: int) -> int:
    return _check_range(a - b, "sub")


def checked_mul(a: int, b: int) -> int:
    return _check_range(a * b, "mul")


def mul_div(a: int, b: int, denominator: int) -> int:
    """
    Compute (a * b) // denominator with a checked product.

    Raises:
        ZeroDivisionError: if denominator is zero
    """
    if denominator == 0:
        raise ZeroDivisionError("mul_div by zero")
    return checked_mul(a, b) // denominator


def ratio(numerator: int, denominator: int) -> int:
    """Fixed-point ratio numerator/denominator, 0 when the denominator is empty."""
    if denominator == 0:
        return 0
    return mul_div(numerator, PRECISION, denominator)


def to_decimal(value: int) -> Decimal:
    """Convert a fixed-point value to a Decimal for display."""
    return Decimal(value) / Decimal(PRECISION)
