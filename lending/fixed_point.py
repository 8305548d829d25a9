"""
fixed_point.py - Checked integer arithmetic for WAD-scaled quantities.

All ledger arithmetic is done on Python ints. Rates, indices, utilization and
health factors are scaled by WAD (10**18); basis-point parameters by
BPS_SCALE (10_000). Every helper rounds toward zero (floor for the
non-negative operands used throughout) and fails loudly instead of
wrapping, so results stay inside the 128-bit range a persisted record can hold.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Optional

from .core import ArithmeticOverflow, ArithmeticUnderflow


WAD = 10 ** 18
BPS_SCALE = 10_000
SECONDS_PER_YEAR = 31_536_000

U64_MAX = 2 ** 64 - 1
U128_MAX = 2 ** 128 - 1


def _check_operand(value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be int, got {type(value).__name__}")
    if value < 0:
        raise ArithmeticOverflow(f"{name} must be non-negative, got {value}")


def _bounded(value: int, bound: Optional[int]) -> int:
    if bound is not None and value > bound:
        raise ArithmeticOverflow(f"result {value} exceeds bound {bound}")
    return value


def mul_div(a: int, b: int, denominator: int, bound: Optional[int] = U128_MAX) -> int:
    """
    Compute floor(a * b / denominator) with a full-width intermediate.

    Raises:
        ArithmeticOverflow: If denominator is zero, an operand is negative,
            or the result exceeds bound (None for unbounded quote values).
    """
    _check_operand(a, "a")
    _check_operand(b, "b")
    _check_operand(denominator, "denominator")
    if denominator == 0:
        raise ArithmeticOverflow("division by zero")
    return _bounded((a * b) // denominator, bound)


def checked_add(a: int, b: int, bound: int = U128_MAX) -> int:
    _check_operand(a, "a")
    _check_operand(b, "b")
    return _bounded(a + b, bound)


def checked_sub(a: int, b: int) -> int:
    _check_operand(a, "a")
    _check_operand(b, "b")
    if b > a:
        raise ArithmeticUnderflow(f"{a} - {b} is negative")
    return a - b


def checked_mul(a: int, b: int, bound: int = U128_MAX) -> int:
    _check_operand(a, "a")
    _check_operand(b, "b")
    return _bounded(a * b, bound)


def saturating_sub(a: int, b: int) -> int:
    """Subtract, clamping at zero. Only for absorbing aggregate rounding dust."""
    _check_operand(a, "a")
    _check_operand(b, "b")
    return a - b if a > b else 0


def pow1p(rate_per_second: int, seconds: int) -> int:
    """
    Linear growth factor WAD + rate * seconds for one accrual interval.

    Compounding happens across intervals, since each accrual multiplies the
    indices by this factor.
    """
    _check_operand(rate_per_second, "rate_per_second")
    _check_operand(seconds, "seconds")
    return checked_add(WAD, checked_mul(rate_per_second, seconds))


def to_decimal(value: int, scale: int = WAD) -> Decimal:
    """Render a scaled integer as a Decimal, e.g. for display."""
    return Decimal(value) / Decimal(scale)


def bps_to_wad(bps: int) -> int:
    return mul_div(bps, WAD, BPS_SCALE)
