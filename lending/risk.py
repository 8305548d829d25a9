"""
risk.py - Oracle validation and account health.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - OraclePrice: One price quote with its publish time
   - AccountSnapshot: All of a user's markets, claims and debts, accrued to one instant

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - calculate_account_health(snapshot, prices, config) -> AccountHealth

3. ADAPTER FUNCTIONS (snapshot_account):
   - Read the user's records from a LendingView once, accruing every market
     to the same `now`
   - Accept overrides so callers can evaluate a proposed post-operation state

4. CONVENIENCE FUNCTIONS (compute_*):
   - compute_account_health(view, user, now, prices, config)

Key Formulas:
    value              = amount * price              (WAD-scaled quote)
    weighted_value     = value * liquidation_threshold_bps / 10000
    borrow_limit_value = value * ltv_bps / 10000
    health_factor      = sum(weighted_value) * WAD / sum(debt_value)

A missing, non-positive or stale price fails closed with StaleOracle. An
account without debt has INFINITE_HEALTH_FACTOR. Liquidation requires
health_factor < 1.0 strictly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from .core import LendingView, StaleOracle, HealthFactorTooLow
from .config import ProtocolConfig
from .fixed_point import WAD, BPS_SCALE, U128_MAX, mul_div
from .market import Market, BorrowPosition
from .accrual import accrue, position_owed, claims_to_amount


INFINITE_HEALTH_FACTOR = U128_MAX


# ============================================================================
# FROZEN DATACLASSES - Explicit Inputs for Pure Functions
# ============================================================================

@dataclass(frozen=True, slots=True)
class OraclePrice:
    """
    A price quote for one asset.

    Attributes:
        price: Quote-currency value of one native unit, WAD-scaled
        published_at: Unix seconds the quote was published
        confidence: Half-width of the confidence interval, same scale as price
    """
    price: int
    published_at: int
    confidence: int = 0


# Oracle key -> quote
PriceMap = Mapping[str, OraclePrice]


@dataclass(frozen=True, slots=True)
class AccountSnapshot:
    """
    A user's positions with every market accrued to the same instant.

    Attributes:
        user: Account owner
        now: Instant all markets were accrued to
        markets: market_id -> accrued Market
        claims: market_id -> claim units held
        positions: market_id -> open BorrowPosition
    """
    user: str
    now: int
    markets: Dict[str, Market] = field(default_factory=dict)
    claims: Dict[str, int] = field(default_factory=dict)
    positions: Dict[str, BorrowPosition] = field(default_factory=dict)

    @property
    def has_debt(self) -> bool:
        return any(p.principal > 0 for p in self.positions.values())


@dataclass(frozen=True, slots=True)
class AccountHealth:
    """
    Result of a health computation. All values are WAD-scaled quote.

    Attributes:
        collateral_value: Value of all claim units at current exchange rates
        weighted_collateral_value: Collateral weighted by liquidation thresholds
        borrow_limit_value: Collateral weighted by loan-to-value ratios
        debt_value: Value of all owed amounts
        health_factor: weighted_collateral_value / debt_value (WAD)
    """
    collateral_value: int
    weighted_collateral_value: int
    borrow_limit_value: int
    debt_value: int
    health_factor: int

    @property
    def is_liquidatable(self) -> bool:
        return is_liquidatable(self.health_factor)

    @property
    def borrow_capacity_value(self) -> int:
        """Additional debt value the LTV limit still allows (0 if exhausted)."""
        return max(self.borrow_limit_value - self.debt_value, 0)


# ============================================================================
# ORACLE VALIDATION
# ============================================================================

def validate_price(
    quote: Optional[OraclePrice],
    now: int,
    config: ProtocolConfig,
    key: str = "",
) -> int:
    """
    Return the quote's price if it is usable at `now`.

    Raises:
        StaleOracle: If the quote is missing, non-positive, older than
            config.max_price_age, or its confidence interval is too wide.
    """
    if quote is None:
        raise StaleOracle(f"No price for {key}")
    if quote.price <= 0:
        raise StaleOracle(f"Invalid price for {key}: {quote.price}")
    age = now - quote.published_at
    if age < 0:
        raise StaleOracle(f"Price for {key} is published {-age}s after {now}")
    if age > config.max_price_age:
        raise StaleOracle(f"Price for {key} is {age}s old (max {config.max_price_age}s)")
    if quote.confidence * BPS_SCALE > quote.price * config.max_confidence_bps:
        raise StaleOracle(f"Price for {key} has confidence {quote.confidence} wider than allowed")
    return quote.price


def is_liquidatable(health_factor: int) -> bool:
    return health_factor < WAD


# ============================================================================
# ADAPTER - the only place that reads a LendingView
# ============================================================================

def snapshot_account(
    view: LendingView,
    user: str,
    now: int,
    market_overrides: Optional[Mapping[str, Market]] = None,
    claim_overrides: Optional[Mapping[str, int]] = None,
    position_overrides: Optional[Mapping[str, Optional[BorrowPosition]]] = None,
) -> AccountSnapshot:
    """
    Read a user's positions across all their markets at one instant.

    Overrides replace the stored (accrued) values for the given market ids;
    a None position override means the position is closed.
    """
    market_overrides = market_overrides or {}
    claim_overrides = claim_overrides or {}
    position_overrides = position_overrides or {}

    market_ids = set(view.list_user_markets(user))
    market_ids.update(market_overrides, claim_overrides, position_overrides)

    markets: Dict[str, Market] = {}
    claims: Dict[str, int] = {}
    positions: Dict[str, BorrowPosition] = {}
    for market_id in sorted(market_ids):
        if market_id in market_overrides:
            markets[market_id] = market_overrides[market_id]
        else:
            markets[market_id] = accrue(view.get_market(market_id), now)

        if market_id in claim_overrides:
            balance = claim_overrides[market_id]
        else:
            balance = view.get_claim_balance(user, market_id)
        if balance:
            claims[market_id] = balance

        if market_id in position_overrides:
            position = position_overrides[market_id]
        else:
            position = view.get_borrow_position(user, market_id)
        if position is not None and position.principal > 0:
            positions[market_id] = position

    return AccountSnapshot(user, now, markets, claims, positions)


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_account_health(
    snapshot: AccountSnapshot,
    prices: PriceMap,
    config: ProtocolConfig,
) -> AccountHealth:
    """
    Value a snapshot and compute its health factor.

    Only markets where the user holds claims or debt need a price; each
    of those prices must pass validate_price.
    """
    collateral = 0
    weighted = 0
    limit = 0
    debt = 0
    for market_id, market in sorted(snapshot.markets.items()):
        claims = snapshot.claims.get(market_id, 0)
        owed = position_owed(snapshot.positions.get(market_id), market)
        if claims == 0 and owed == 0:
            continue
        price = validate_price(prices.get(market.oracle), snapshot.now, config, market.oracle)
        if claims:
            value = claims_to_amount(claims, market) * price
            collateral += value
            weighted += mul_div(value, market.liquidation_threshold_bps, BPS_SCALE, None)
            limit += mul_div(value, market.ltv_bps, BPS_SCALE, None)
        debt += owed * price

    if debt == 0:
        health_factor = INFINITE_HEALTH_FACTOR
    else:
        health_factor = min(mul_div(weighted, WAD, debt, None), INFINITE_HEALTH_FACTOR)
    return AccountHealth(collateral, weighted, limit, debt, health_factor)


def require_healthy(health: AccountHealth, check_borrow_limit: bool = False) -> None:
    """
    Raises:
        HealthFactorTooLow: If the health factor is below 1.0, or (with
            check_borrow_limit) the debt exceeds the LTV-weighted collateral.
    """
    if health.health_factor < WAD:
        raise HealthFactorTooLow(
            f"Health factor {health.health_factor} below {WAD}"
        )
    if check_borrow_limit and health.debt_value > health.borrow_limit_value:
        raise HealthFactorTooLow(
            f"Debt value {health.debt_value} exceeds borrow limit {health.borrow_limit_value}"
        )


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def compute_account_health(
    view: LendingView,
    user: str,
    now: int,
    prices: PriceMap,
    config: ProtocolConfig,
) -> AccountHealth:
    """Health of a user's stored positions with every market accrued to `now`."""
    return calculate_account_health(snapshot_account(view, user, now), prices, config)
