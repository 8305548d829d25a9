"""
accrual.py - Lazy interest accrual through cumulative indices.

Interest is never pushed to individual positions. Each market carries a
borrow index and a supply index; accruing a market to `now` multiplies both
by the linear growth factor of the elapsed interval and grows the pool
totals to match. A borrow position then reads its debt as

    owed = principal * borrow_index / index_snapshot

and a supplier reads the value of their claim units as

    amount = claims * total_supplied / total_claim_units

Accrual must run before any read or write of a market's balances. It is
idempotent within a timestamp: a second call at the same `now` is a no-op.

Of the interest borrowers owe, suppliers receive the growth implied by the
supply rate and the remainder (the protocol fee) is skimmed into
protocol_reserves.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from .core import (
    LendingView, PendingTransaction, StateChange, TransactionOrigin, OriginType,
    EVENT_ACCRUE, build_transaction, empty_pending_transaction, market_key,
)
from .fixed_point import WAD, U64_MAX, mul_div, checked_add, pow1p
from .market import Market, BorrowPosition
from .rate_model import utilization, borrow_rate, supply_rate


@dataclass(frozen=True, slots=True)
class AccrualResult:
    """
    Outcome of accruing one market over one interval.

    Attributes:
        market: Market record after accrual
        elapsed: Seconds accrued
        utilization: Utilization the rates were computed from (WAD)
        borrow_rate: Per-second borrow rate applied (WAD)
        supply_rate: Per-second supply rate applied (WAD)
        interest: Increase in total_borrowed
        supplier_growth: Increase in total_supplied
        protocol_fee: Increase in protocol_reserves (interest - supplier_growth)
    """
    market: Market
    elapsed: int
    utilization: int
    borrow_rate: int
    supply_rate: int
    interest: int
    supplier_growth: int
    protocol_fee: int


def calculate_accrual(market: Market, now: int) -> AccrualResult:
    """
    Accrue a market to `now`.

    Returns the market unchanged (with zero interest) when `now` is not past
    last_accrual_timestamp, so the timestamp never moves backward.
    """
    last = market.last_accrual_timestamp
    if now <= last:
        return AccrualResult(market, 0, utilization(market.total_borrowed, market.total_supplied),
                             0, 0, 0, 0, 0)

    elapsed = now - last
    supplied = market.total_supplied
    borrowed = market.total_borrowed
    u = utilization(borrowed, supplied)
    br = borrow_rate(u, market.rate_model)
    sr = supply_rate(u, br, market.protocol_fee_bps)

    borrow_factor = pow1p(br, elapsed)
    supply_factor = pow1p(sr, elapsed)

    new_borrowed = mul_div(borrowed, borrow_factor, WAD, U64_MAX)
    interest = new_borrowed - borrowed
    growth = mul_div(supplied, supply_factor, WAD, U64_MAX) - supplied
    # Suppliers absorb at least enough interest to keep borrowed <= supplied.
    growth = min(max(growth, new_borrowed - supplied), interest)
    fee = interest - growth

    accrued = replace(
        market,
        total_borrowed=new_borrowed,
        total_supplied=checked_add(supplied, growth, U64_MAX),
        borrow_index=mul_div(market.borrow_index, borrow_factor, WAD),
        supply_index=mul_div(market.supply_index, supply_factor, WAD),
        protocol_reserves=checked_add(market.protocol_reserves, fee, U64_MAX),
        last_accrual_timestamp=now,
    )
    return AccrualResult(accrued, elapsed, u, br, sr, interest, growth, fee)


def accrue(market: Market, now: int) -> Market:
    """Return the market accrued to `now` (the same record if nothing elapsed)."""
    return calculate_accrual(market, now).market


def compute_accrue(
    view: LendingView,
    market_id: str,
    now: int,
    caller: str = "system",
) -> PendingTransaction:
    """
    Standalone accrual of one market, e.g. before a read-only query.

    Returns an empty PendingTransaction when no time has elapsed.
    """
    market = view.get_market(market_id)
    accrued = accrue(market, now)
    if accrued == market:
        return empty_pending_transaction(view, now)
    origin = TransactionOrigin(OriginType.SYSTEM, caller, market_id, EVENT_ACCRUE)
    change = StateChange(market_key(market_id), market, accrued)
    return build_transaction(view, [], [change], origin=origin, timestamp=now)


# ============================================================================
# INDEX CONVERSIONS
# ============================================================================

def owed_amount(principal: int, index_snapshot: int, borrow_index: int) -> int:
    """Current debt of a position: principal grown by the index since its snapshot."""
    if principal == 0:
        return 0
    return mul_div(principal, borrow_index, index_snapshot)


def position_owed(position: Optional[BorrowPosition], market: Market) -> int:
    if position is None:
        return 0
    return owed_amount(position.principal, position.index_snapshot, market.borrow_index)


def claims_to_amount(claims: int, market: Market) -> int:
    """Underlying redeemable for `claims` at the market's current state (floor)."""
    if market.total_claim_units == 0:
        return 0
    return mul_div(claims, market.total_supplied, market.total_claim_units)


def amount_to_claims(amount: int, market: Market) -> int:
    """
    Claim units minted for depositing `amount` (floor).

    An empty pool mints 1:1, so the first deposit defines the exchange rate.
    """
    if market.total_supplied == 0 or market.total_claim_units == 0:
        return amount
    return mul_div(amount, market.total_claim_units, market.total_supplied)


def current_rates(market: Market) -> Tuple[int, int]:
    """(borrow_rate, supply_rate) per second at the market's current utilization."""
    u = utilization(market.total_borrowed, market.total_supplied)
    br = borrow_rate(u, market.rate_model)
    return br, supply_rate(u, br, market.protocol_fee_bps)
