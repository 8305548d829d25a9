"""
config.py - Protocol-wide configuration passed explicitly through every call.

Defaults are the protocol constants of the deployed lending program.
"""

from __future__ import annotations
from dataclasses import dataclass

from .core import InvalidParameters
from .fixed_point import BPS_SCALE


DEFAULT_AUTHORITY = "authority"
DEFAULT_PROTOCOL_FEE_BPS = 500
DEFAULT_LIQUIDATION_BONUS_BPS = 500
DEFAULT_LTV_BPS = 7500
DEFAULT_LIQUIDATION_THRESHOLD_BPS = 8500
MAX_LTV_BPS = 8000
MIN_LIQUIDATION_THRESHOLD_BPS = 8000
MAX_PRICE_AGE_SECONDS = 300
MAX_MARKETS = 50


@dataclass(frozen=True, slots=True)
class ProtocolConfig:
    """
    Protocol parameters shared by every market.

    Attributes:
        authority: Identity allowed to create and pause markets
        protocol_fee_bps: Share of borrower interest skimmed to reserves
        max_price_age: Oldest acceptable oracle quote, in seconds
        max_confidence_bps: Widest acceptable confidence interval relative to price
        close_factor_bps: Largest share of a debt one liquidation may repay
        min_supply_amount: Smallest accepted deposit
        min_borrow_amount: Smallest accepted borrow
        max_ltv_bps: Upper bound on a market's loan-to-value
        min_liquidation_threshold_bps: Lower bound on a market's liquidation threshold
        max_markets: Maximum number of markets the ledger holds
    """
    authority: str = DEFAULT_AUTHORITY
    protocol_fee_bps: int = DEFAULT_PROTOCOL_FEE_BPS
    max_price_age: int = MAX_PRICE_AGE_SECONDS
    max_confidence_bps: int = BPS_SCALE
    close_factor_bps: int = BPS_SCALE
    min_supply_amount: int = 1
    min_borrow_amount: int = 1
    max_ltv_bps: int = MAX_LTV_BPS
    min_liquidation_threshold_bps: int = MIN_LIQUIDATION_THRESHOLD_BPS
    max_markets: int = MAX_MARKETS

    def __post_init__(self):
        if not self.authority:
            raise InvalidParameters("authority cannot be empty")
        if not 0 <= self.protocol_fee_bps <= BPS_SCALE:
            raise InvalidParameters(f"protocol_fee_bps out of range: {self.protocol_fee_bps}")
        if not 0 < self.close_factor_bps <= BPS_SCALE:
            raise InvalidParameters(f"close_factor_bps out of range: {self.close_factor_bps}")
        if not 0 <= self.max_confidence_bps <= BPS_SCALE:
            raise InvalidParameters(f"max_confidence_bps out of range: {self.max_confidence_bps}")
        if self.max_price_age < 0:
            raise InvalidParameters("max_price_age must be non-negative")
        if self.min_supply_amount < 1 or self.min_borrow_amount < 1:
            raise InvalidParameters("minimum amounts must be at least 1")
        if self.max_markets < 1:
            raise InvalidParameters("max_markets must be positive")
