"""
rate_model.py - Utilization-driven two-slope interest rate model.

All rates are per-second and WAD-scaled. Below the optimal utilization the
borrow rate rises gently along slope1; above it, steeply along slope2.
Suppliers earn the borrow rate scaled by utilization, less the protocol fee.

Pure functions only; no state.
"""

from __future__ import annotations
from dataclasses import dataclass

from .core import InvalidParameters
from .fixed_point import WAD, BPS_SCALE, mul_div, checked_add, checked_sub


# Per-second WAD rates: ~2%, ~10% and ~100% a year.
DEFAULT_BASE_RATE = 634_195_839
DEFAULT_SLOPE1 = 3_170_979_196
DEFAULT_SLOPE2 = 31_709_791_959
DEFAULT_OPTIMAL_UTILIZATION = 8 * WAD // 10


@dataclass(frozen=True, slots=True)
class RateModelParams:
    """
    Parameters of the two-slope model.

    Attributes:
        base_rate: Borrow rate at zero utilization
        slope1: Rate added between zero and optimal utilization
        slope2: Rate added between optimal and full utilization
        optimal_utilization: Kink point, WAD-scaled, strictly between 0 and WAD
    """
    base_rate: int = DEFAULT_BASE_RATE
    slope1: int = DEFAULT_SLOPE1
    slope2: int = DEFAULT_SLOPE2
    optimal_utilization: int = DEFAULT_OPTIMAL_UTILIZATION

    def __post_init__(self):
        for name in ("base_rate", "slope1", "slope2"):
            if getattr(self, name) < 0:
                raise InvalidParameters(f"{name} must be non-negative")
        if not 0 < self.optimal_utilization < WAD:
            raise InvalidParameters(
                f"optimal_utilization must be in (0, WAD), got {self.optimal_utilization}"
            )


def utilization(total_borrowed: int, total_supplied: int) -> int:
    """Return borrowed / supplied as a WAD fraction, 0 for an empty pool, capped at WAD."""
    if total_supplied == 0:
        return 0
    return min(mul_div(total_borrowed, WAD, total_supplied), WAD)


def borrow_rate(u: int, params: RateModelParams) -> int:
    opt = params.optimal_utilization
    if u <= opt:
        return checked_add(params.base_rate, mul_div(params.slope1, u, opt))
    excess = mul_div(params.slope2, checked_sub(u, opt), WAD - opt)
    return checked_add(checked_add(params.base_rate, params.slope1), excess)


def supply_rate(u: int, borrow_rate_value: int, protocol_fee_bps: int) -> int:
    """
    Rate earned by suppliers: borrow_rate * u * (1 - fee).

    Args:
        u: Utilization (WAD)
        borrow_rate_value: Per-second borrow rate (WAD)
        protocol_fee_bps: Protocol share of interest in basis points
    """
    gross = mul_div(borrow_rate_value, u, WAD)
    return mul_div(gross, BPS_SCALE - protocol_fee_bps, BPS_SCALE)
