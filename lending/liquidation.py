"""
liquidation.py - Third-party unwinding of unhealthy positions.

A liquidator repays part of a borrower's debt in one market and receives the
borrower's claim units in a collateral market, worth the repaid value plus
the collateral market's liquidation bonus:

    seized_amount = debt_repaid * (10000 + bonus_bps) / 10000
                    * debt_price / collateral_price

The seized amount is converted to claim units at the collateral market's
current exchange rate (floor).

Caps, in order:
    1. debt_to_repay is capped at the position's owed amount
    2. ...and at config.close_factor_bps of it
    3. if the seizure needs more claim units than the borrower holds, all
       of the borrower's claim units are seized and debt_repaid is reduced
       in the same proportion

The borrower's health factor is recomputed at call time from fresh prices;
positions at exactly 1.0 are not liquidatable.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Tuple

from .core import (
    LendingView, Move, CustodyTransfer, PendingTransaction, StateChange,
    TransactionOrigin, OriginType,
    InvalidParameters, NoBorrowPosition, PositionHealthy, InsufficientCollateral,
    SlippageExceeded, ZeroAmount,
    EVENT_LIQUIDATE, build_transaction, market_key, borrow_key, reserve_account,
)
from .config import ProtocolConfig
from .fixed_point import BPS_SCALE, mul_div
from .accrual import accrue, position_owed, claims_to_amount, amount_to_claims
from .positions import apply_repayment, check_amount
from .risk import PriceMap, validate_price, snapshot_account, calculate_account_health


@dataclass(frozen=True, slots=True)
class LiquidationReceipt:
    """
    Outcome of a liquidation.

    Attributes:
        borrower: Account liquidated
        liquidator: Account that repaid and received collateral
        debt_market_id: Market whose debt was repaid
        collateral_market_id: Market whose claim units were seized
        debt_repaid: Underlying the liquidator pays into the debt market
        collateral_seized: Underlying value of the seized claim units
        claims_seized: Claim units moved from borrower to liquidator
        seized_value: collateral_seized valued at the collateral price (WAD quote)
        capped: True if the borrower's collateral limited the seizure
        health_factor_before: Borrower's health factor at call time
    """
    borrower: str
    liquidator: str
    debt_market_id: str
    collateral_market_id: str
    debt_repaid: int
    collateral_seized: int
    claims_seized: int
    seized_value: int
    capped: bool
    health_factor_before: int


def calculate_seizure(
    debt_repaid: int,
    bonus_bps: int,
    debt_price: int,
    collateral_price: int,
) -> int:
    """Collateral amount owed to a liquidator for repaying `debt_repaid`."""
    return mul_div(
        debt_repaid * (BPS_SCALE + bonus_bps),
        debt_price,
        BPS_SCALE * collateral_price,
        None,
    )


def max_repayable(owed: int, config: ProtocolConfig) -> int:
    """Largest repayment one liquidation accepts under the close factor."""
    if config.close_factor_bps >= BPS_SCALE:
        return owed
    return max(mul_div(owed, config.close_factor_bps, BPS_SCALE), min(owed, 1))


def compute_liquidation(
    view: LendingView,
    debt_market_id: str,
    collateral_market_id: str,
    borrower: str,
    liquidator: str,
    debt_to_repay: int,
    now: int,
    prices: PriceMap,
    config: ProtocolConfig,
    min_claims_out: int = 0,
) -> Tuple[PendingTransaction, LiquidationReceipt]:
    """
    Repay a borrower's debt in exchange for their collateral claim units.

    Args:
        view: Read-only ledger access
        debt_market_id: Market whose debt is repaid
        collateral_market_id: Market whose claim units are seized
        borrower: Account being liquidated
        liquidator: Account repaying the debt
        debt_to_repay: Requested repayment (capped, see module docstring)
        now: Instant of the liquidation
        prices: Quotes for every market the borrower touches
        config: Protocol configuration
        min_claims_out: Fewest claim units the liquidator accepts

    Returns:
        (PendingTransaction, LiquidationReceipt)

    Raises:
        InvalidParameters: If the liquidator is the borrower.
        NoBorrowPosition: If the borrower has no debt in the debt market.
        PositionHealthy: If the borrower's health factor is at least 1.0.
        InsufficientCollateral: If the borrower holds no collateral claim units.
        StaleOracle: If any required price is unusable.
        SlippageExceeded: If fewer than min_claims_out claim units would be seized.
        ZeroAmount: If the repayment or the seizure rounds to zero.
    """
    check_amount(debt_to_repay, "debt_to_repay")
    if liquidator == borrower:
        raise InvalidParameters("Borrower cannot liquidate their own position")

    position = view.get_borrow_position(borrower, debt_market_id)
    if position is None:
        raise NoBorrowPosition(f"{borrower} has no borrow position in {debt_market_id}")

    stored_debt = view.get_market(debt_market_id)
    debt_market = accrue(stored_debt, now)
    if collateral_market_id == debt_market_id:
        stored_coll, coll_market = stored_debt, debt_market
    else:
        stored_coll = view.get_market(collateral_market_id)
        coll_market = accrue(stored_coll, now)

    health = calculate_account_health(snapshot_account(view, borrower, now), prices, config)
    if not health.is_liquidatable:
        raise PositionHealthy(
            f"{borrower} has health factor {health.health_factor}, not liquidatable"
        )

    claims_available = view.get_claim_balance(borrower, collateral_market_id)
    if claims_available == 0:
        raise InsufficientCollateral(f"{borrower} has no collateral in {collateral_market_id}")

    debt_price = validate_price(prices.get(debt_market.oracle), now, config, debt_market.oracle)
    coll_price = validate_price(prices.get(coll_market.oracle), now, config, coll_market.oracle)

    owed = position_owed(position, debt_market)
    repay = min(debt_to_repay, max_repayable(owed, config))
    seized_amount = calculate_seizure(repay, coll_market.liquidation_bonus_bps, debt_price, coll_price)
    claims_needed = amount_to_claims(seized_amount, coll_market)

    capped = claims_needed > claims_available
    if capped:
        debt_repaid = mul_div(repay, claims_available, claims_needed)
        claims_seized = claims_available
    else:
        debt_repaid = repay
        claims_seized = claims_needed
    # The receipt reports what the moved claim units redeem for.
    seized_amount = claims_to_amount(claims_seized, coll_market)

    if debt_repaid == 0:
        raise ZeroAmount("Liquidation repays nothing after capping")
    if claims_seized == 0:
        raise ZeroAmount(f"Repaying {debt_repaid} seizes no claim units")
    if claims_seized < min_claims_out:
        raise SlippageExceeded(f"Seizing {claims_seized} claim units, minimum {min_claims_out}")

    new_position, new_debt_market, applied = apply_repayment(position, debt_market, debt_repaid, now)

    changes = [
        StateChange(market_key(debt_market_id), stored_debt, new_debt_market),
        StateChange(borrow_key(borrower, debt_market_id), position, new_position),
    ]
    if collateral_market_id != debt_market_id and coll_market != stored_coll:
        changes.append(StateChange(market_key(collateral_market_id), stored_coll, coll_market))

    memo = f"liquidate_{debt_market_id}_{collateral_market_id}"
    moves = [Move(claims_seized, collateral_market_id, borrower, liquidator, memo)]
    transfers = [CustodyTransfer(applied, debt_market.asset, liquidator, reserve_account(debt_market_id), memo)]
    origin = TransactionOrigin(OriginType.LIQUIDATOR, liquidator, debt_market_id, EVENT_LIQUIDATE)

    receipt = LiquidationReceipt(
        borrower=borrower,
        liquidator=liquidator,
        debt_market_id=debt_market_id,
        collateral_market_id=collateral_market_id,
        debt_repaid=applied,
        collateral_seized=seized_amount,
        claims_seized=claims_seized,
        seized_value=seized_amount * coll_price,
        capped=capped,
        health_factor_before=health.health_factor,
    )
    return build_transaction(view, moves, changes, transfers, origin, now), receipt
