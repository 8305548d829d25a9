"""
market.py - Market and borrow-position records, market creation and pausing.

A Market is the only record of a pool's totals and cumulative indices; a
BorrowPosition is the only record of one user's debt in one market. Both are
frozen and replaced wholesale through StateChange records.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from .core import (
    LendingView, PendingTransaction, StateChange, TransactionOrigin, OriginType,
    InvalidParameters, MarketAlreadyExists, Unauthorized,
    EVENT_CREATE_MARKET, EVENT_SET_PAUSED,
    build_transaction, empty_pending_transaction, market_key,
)
from .config import (
    ProtocolConfig,
    DEFAULT_LTV_BPS, DEFAULT_LIQUIDATION_THRESHOLD_BPS, DEFAULT_LIQUIDATION_BONUS_BPS,
)
from .fixed_point import WAD, BPS_SCALE, mul_div
from .rate_model import RateModelParams


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class MarketParams:
    """
    Creation parameters for a market.

    Attributes:
        market_id: Asset identity the market is keyed by
        asset: Underlying asset (defaults to market_id)
        oracle: Price key for this asset (defaults to asset)
        ltv_bps: Maximum borrow value per unit of collateral value at origination
        liquidation_threshold_bps: Collateral weight in the health factor
        liquidation_bonus_bps: Extra collateral awarded to liquidators
        rate_model: Interest rate curve
    """
    market_id: str
    asset: Optional[str] = None
    oracle: Optional[str] = None
    ltv_bps: int = DEFAULT_LTV_BPS
    liquidation_threshold_bps: int = DEFAULT_LIQUIDATION_THRESHOLD_BPS
    liquidation_bonus_bps: int = DEFAULT_LIQUIDATION_BONUS_BPS
    rate_model: RateModelParams = field(default_factory=RateModelParams)


@dataclass(frozen=True, slots=True)
class Market:
    """
    Pool state for one asset.

    Invariants:
        total_borrowed <= total_supplied
        borrow_index and supply_index never decrease
        last_accrual_timestamp never moves backward
    """
    market_id: str
    asset: str
    oracle: str
    ltv_bps: int
    liquidation_threshold_bps: int
    liquidation_bonus_bps: int
    protocol_fee_bps: int
    rate_model: RateModelParams
    total_supplied: int = 0
    total_borrowed: int = 0
    total_claim_units: int = 0
    borrow_index: int = WAD
    supply_index: int = WAD
    last_accrual_timestamp: int = 0
    protocol_reserves: int = 0
    paused: bool = False
    creator: str = ""
    created_at: int = 0

    @property
    def available_liquidity(self) -> int:
        return self.total_supplied - self.total_borrowed


@dataclass(frozen=True, slots=True)
class BorrowPosition:
    """
    A user's debt in one market.

    owed = principal * market.borrow_index / index_snapshot. A position whose
    principal reaches zero is removed from the ledger.
    """
    user: str
    market_id: str
    principal: int
    index_snapshot: int
    created_at: int
    last_updated: int


# ============================================================================
# MARKET CREATION
# ============================================================================

def validate_market_params(params: MarketParams, config: ProtocolConfig) -> None:
    """
    Check risk parameters against protocol bounds.

    Raises:
        InvalidParameters: If any bound is violated.
    """
    if not params.market_id or not params.market_id.strip():
        raise InvalidParameters("market_id cannot be empty")
    ltv = params.ltv_bps
    threshold = params.liquidation_threshold_bps
    bonus = params.liquidation_bonus_bps
    if ltv <= 0:
        raise InvalidParameters(f"ltv_bps must be positive, got {ltv}")
    if ltv >= threshold:
        raise InvalidParameters(f"ltv_bps ({ltv}) must be below liquidation_threshold_bps ({threshold})")
    if threshold >= BPS_SCALE:
        raise InvalidParameters(f"liquidation_threshold_bps must be below {BPS_SCALE}, got {threshold}")
    if ltv > config.max_ltv_bps:
        raise InvalidParameters(f"ltv_bps ({ltv}) exceeds maximum {config.max_ltv_bps}")
    if threshold < config.min_liquidation_threshold_bps:
        raise InvalidParameters(
            f"liquidation_threshold_bps ({threshold}) below minimum {config.min_liquidation_threshold_bps}"
        )
    if bonus < 0:
        raise InvalidParameters(f"liquidation_bonus_bps must be non-negative, got {bonus}")
    # A liquidation at the threshold must not seize more value than is posted.
    if mul_div(threshold, BPS_SCALE + bonus, BPS_SCALE) > BPS_SCALE:
        raise InvalidParameters(
            f"liquidation_threshold_bps ({threshold}) with bonus ({bonus}) exceeds 100%"
        )


def create_market(
    params: MarketParams,
    now: int,
    config: ProtocolConfig,
    caller: str,
) -> Market:
    """
    Build a fresh market record with unit indices and empty totals.

    Raises:
        Unauthorized: If caller is not the protocol authority.
        InvalidParameters: If the risk parameters violate protocol bounds.
    """
    if caller != config.authority:
        raise Unauthorized(f"{caller} is not the protocol authority")
    validate_market_params(params, config)
    asset = params.asset or params.market_id
    return Market(
        market_id=params.market_id,
        asset=asset,
        oracle=params.oracle or asset,
        ltv_bps=params.ltv_bps,
        liquidation_threshold_bps=params.liquidation_threshold_bps,
        liquidation_bonus_bps=params.liquidation_bonus_bps,
        protocol_fee_bps=config.protocol_fee_bps,
        rate_model=params.rate_model,
        last_accrual_timestamp=now,
        creator=caller,
        created_at=now,
    )


def compute_create_market(
    view: LendingView,
    params: MarketParams,
    caller: str,
    now: int,
    config: ProtocolConfig,
) -> Tuple[PendingTransaction, Market]:
    """
    Create a market unless one already exists for the same id or asset.

    Returns:
        (PendingTransaction inserting the market, the new Market)

    Raises:
        MarketAlreadyExists: If the id or asset is taken.
        InvalidParameters: If the ledger already holds config.max_markets markets.
    """
    market = create_market(params, now, config, caller)
    existing = view.list_markets()
    if market.market_id in existing:
        raise MarketAlreadyExists(f"Market {market.market_id} already exists")
    for other_id in existing:
        if view.get_market(other_id).asset == market.asset:
            raise MarketAlreadyExists(f"Asset {market.asset} already has market {other_id}")
    if len(existing) >= config.max_markets:
        raise InvalidParameters(f"Market limit of {config.max_markets} reached")

    origin = TransactionOrigin(OriginType.AUTHORITY, caller, market.market_id, EVENT_CREATE_MARKET)
    change = StateChange(market_key(market.market_id), None, market)
    return build_transaction(view, [], [change], origin=origin, timestamp=now), market


def compute_set_paused(
    view: LendingView,
    market_id: str,
    paused: bool,
    caller: str,
    now: int,
    config: ProtocolConfig,
) -> PendingTransaction:
    """Pause or unpause supply and borrow on a market. Withdraw, repay and liquidate stay open."""
    if caller != config.authority:
        raise Unauthorized(f"{caller} is not the protocol authority")
    market = view.get_market(market_id)
    if market.paused == paused:
        return empty_pending_transaction(view, now)
    origin = TransactionOrigin(OriginType.AUTHORITY, caller, market_id, EVENT_SET_PAUSED)
    change = StateChange(market_key(market_id), market, replace(market, paused=paused))
    return build_transaction(view, [], [change], origin=origin, timestamp=now)


def exchange_rate(market: Market) -> int:
    """Underlying per claim unit (WAD). WAD for an empty pool."""
    if market.total_claim_units == 0 or market.total_supplied == 0:
        return WAD
    return mul_div(market.total_supplied, WAD, market.total_claim_units)
