"""
analytics.py - Vectorized rate and compounding analytics for reporting

Float-valued views of the integer rate model, for dashboards and parameter
reviews. Nothing here feeds back into ledger arithmetic.

Provides:
- Annualization of per-second WAD rates
- Borrow/supply rate curves over a utilization grid
- Linear vs exact compounding comparison
- Longest accrual interval for a given compounding tolerance

Accrual grows indices by the linear factor 1 + r*t per interval rather than
exp(r*t). The relative shortfall

    error(x) = 1 - (1 + x) * exp(-x),   x = r * t

is zero at x = 0 and increases with x, so rarely-touched markets under-accrue
more than busy ones.
"""

import math
import numpy as np
from typing import Dict, Tuple, Union
from scipy.special import lambertw

from .fixed_point import WAD, BPS_SCALE, SECONDS_PER_YEAR
from .rate_model import RateModelParams


# Type alias for scalar or array inputs
Numeric = Union[float, np.ndarray]


# ============================================================================
# RATE CONVERSIONS
# ============================================================================

def per_second(rate_wad: Numeric) -> Numeric:
    """Per-second WAD-scaled rate as a float fraction."""
    return np.asarray(rate_wad, dtype=float) / WAD


def annualize(rate_wad: Numeric) -> Numeric:
    """Simple annual rate (APR) of a per-second WAD-scaled rate."""
    return per_second(rate_wad) * SECONDS_PER_YEAR


def rate_curve(
    utilization: Numeric,
    params: RateModelParams,
    protocol_fee_bps: int = 0,
) -> Tuple[Numeric, Numeric]:
    """
    Annual borrow and supply rates over utilization fractions in [0, 1].

    Returns:
        (borrow_apr, supply_apr), each shaped like utilization
    """
    u = np.asarray(utilization, dtype=float)
    if np.any(u < 0) or np.any(u > 1):
        raise ValueError("utilization must be in [0, 1]")
    opt = params.optimal_utilization / WAD
    base = params.base_rate / WAD
    slope1 = params.slope1 / WAD
    slope2 = params.slope2 / WAD

    borrow = np.where(
        u <= opt,
        base + slope1 * u / opt,
        base + slope1 + slope2 * (u - opt) / (1.0 - opt),
    )
    supply = borrow * u * (1.0 - protocol_fee_bps / BPS_SCALE)
    return borrow * SECONDS_PER_YEAR, supply * SECONDS_PER_YEAR


def market_rate_table(params: RateModelParams, protocol_fee_bps: int = 0, points: int = 101) -> Dict[str, np.ndarray]:
    """Rate curve sampled on an evenly spaced utilization grid."""
    u = np.linspace(0.0, 1.0, points)
    borrow, supply = rate_curve(u, params, protocol_fee_bps)
    return {'utilization': u, 'borrow_apr': borrow, 'supply_apr': supply}


# ============================================================================
# COMPOUNDING
# ============================================================================

def linear_growth(rate_per_second: Numeric, seconds: Numeric) -> Numeric:
    return 1.0 + np.asarray(rate_per_second, dtype=float) * np.asarray(seconds, dtype=float)


def exact_growth(rate_per_second: Numeric, seconds: Numeric) -> Numeric:
    return np.exp(np.asarray(rate_per_second, dtype=float) * np.asarray(seconds, dtype=float))


def linear_compounding_error(rate_per_second: Numeric, seconds: Numeric) -> Numeric:
    """
    Relative shortfall of linear growth against continuous compounding.

    Non-negative and non-decreasing in elapsed time for non-negative rates.
    """
    x = np.asarray(rate_per_second, dtype=float) * np.asarray(seconds, dtype=float)
    if np.any(x < 0):
        raise ValueError("rate and elapsed time must be non-negative")
    # -expm1(-x) - x*exp(-x) keeps precision for small x
    return -np.expm1(-x) - x * np.exp(-x)


def max_accrual_interval(rate_per_second: Numeric, tolerance: float) -> Numeric:
    """
    Longest interval (seconds) between accruals whose compounding error stays
    within `tolerance`.

    Solves 1 - (1 + x) * exp(-x) = tolerance on the lower branch of the
    Lambert W function: x = -1 - W_{-1}(-(1 - tolerance) / e).
    Zero rates never under-accrue and return inf.
    """
    if not 0.0 < tolerance < 1.0:
        raise ValueError("tolerance must be in (0, 1)")
    r = np.asarray(rate_per_second, dtype=float)
    if np.any(r < 0):
        raise ValueError("rate must be non-negative")
    x = -1.0 - lambertw(-(1.0 - tolerance) / math.e, k=-1).real
    with np.errstate(divide='ignore'):
        return np.where(r > 0, x / np.where(r > 0, r, 1.0), np.inf)
