"""
positions.py - Supply, withdraw, borrow and repay.

Each compute_* function reads a LendingView, accrues the touched market to
`now`, validates the resulting state (amounts, liquidity, pause flag and,
where debt is involved, account health) and returns a PendingTransaction
together with the operation's result. Nothing is written until the ledger
executes the transaction, and the accrual is part of the same transaction,
so a failed operation leaves no trace, not even interest.

Results:
    compute_supply   -> claim units minted
    compute_withdraw -> underlying amount redeemed
    compute_borrow   -> amount borrowed
    compute_repay    -> amount applied (never more than owed)
"""

from __future__ import annotations
from dataclasses import replace
from typing import Optional, Tuple

from .core import (
    LendingView, Move, CustodyTransfer, PendingTransaction, StateChange,
    TransactionOrigin, OriginType, SYSTEM_WALLET,
    InvalidAmount, ZeroAmount, InsufficientBalance, InsufficientLiquidity,
    NoBorrowPosition, MarketPaused,
    EVENT_SUPPLY, EVENT_WITHDRAW, EVENT_BORROW, EVENT_REPAY,
    build_transaction, market_key, borrow_key, reserve_account,
)
from .config import ProtocolConfig
from .fixed_point import U64_MAX, checked_add, checked_sub, saturating_sub
from .market import Market, BorrowPosition
from .accrual import accrue, owed_amount, position_owed, claims_to_amount, amount_to_claims
from .risk import PriceMap, snapshot_account, calculate_account_health, require_healthy


def check_amount(amount: int, name: str = "amount") -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"{name} must be int, got {type(amount).__name__}")
    if amount <= 0:
        raise ZeroAmount(f"{name} must be positive, got {amount}")
    if amount > U64_MAX:
        raise InvalidAmount(f"{name} exceeds {U64_MAX}")


def _load_accrued(view: LendingView, market_id: str, now: int) -> Tuple[Market, Market]:
    """Return (stored, accrued) market records."""
    stored = view.get_market(market_id)
    return stored, accrue(stored, now)


def apply_repayment(
    position: BorrowPosition,
    market: Market,
    amount: int,
    now: int,
) -> Tuple[Optional[BorrowPosition], Market, int]:
    """
    Re-base a position to the market's current index and pay down `amount`.

    The market must already be accrued. Returns (new position or None if
    closed, new market, amount applied).
    """
    owed = position_owed(position, market)
    applied = min(amount, owed)
    remaining = owed - applied
    if remaining == 0:
        new_position = None
    else:
        new_position = replace(
            position,
            principal=remaining,
            index_snapshot=market.borrow_index,
            last_updated=now,
        )
    # Per-position floors can leave the aggregate a unit short.
    new_market = replace(market, total_borrowed=saturating_sub(market.total_borrowed, applied))
    return new_position, new_market, applied


# ============================================================================
# SUPPLY
# ============================================================================

def compute_supply(
    view: LendingView,
    market_id: str,
    user: str,
    amount: int,
    now: int,
    config: ProtocolConfig,
) -> Tuple[PendingTransaction, int]:
    """
    Deposit `amount` of the market's asset and mint claim units.

    Claims minted = amount * total_claim_units / total_supplied, or `amount`
    when the pool is empty.

    Raises:
        ZeroAmount: If amount is not positive or would mint no claim units.
        InvalidAmount: If amount is below config.min_supply_amount.
        MarketPaused: If the market is paused.
    """
    check_amount(amount)
    if amount < config.min_supply_amount:
        raise InvalidAmount(f"Supply of {amount} below minimum {config.min_supply_amount}")
    stored, market = _load_accrued(view, market_id, now)
    if market.paused:
        raise MarketPaused(f"Market {market_id} is paused")

    claims = amount_to_claims(amount, market)
    if claims == 0:
        raise ZeroAmount(f"Supply of {amount} mints no claim units")

    new_market = replace(
        market,
        total_supplied=checked_add(market.total_supplied, amount, U64_MAX),
        total_claim_units=checked_add(market.total_claim_units, claims, U64_MAX),
    )
    moves = [Move(claims, market_id, SYSTEM_WALLET, user, f"supply_{market_id}")]
    transfers = [CustodyTransfer(amount, market.asset, user, reserve_account(market_id), f"supply_{market_id}")]
    changes = [StateChange(market_key(market_id), stored, new_market)]
    origin = TransactionOrigin(OriginType.USER_ACTION, user, market_id, EVENT_SUPPLY)
    return build_transaction(view, moves, changes, transfers, origin, now), claims


# ============================================================================
# WITHDRAW
# ============================================================================

def compute_withdraw(
    view: LendingView,
    market_id: str,
    user: str,
    claim_units: int,
    now: int,
    prices: Optional[PriceMap],
    config: ProtocolConfig,
) -> Tuple[PendingTransaction, int]:
    """
    Burn claim units and redeem the underlying.

    amount = claim_units * total_supplied / total_claim_units. When the user
    has debt in any market, the account must stay healthy afterwards.

    Raises:
        ZeroAmount: If claim_units is not positive or redeems nothing.
        InsufficientBalance: If the user holds fewer claim units.
        InsufficientLiquidity: If the pool cannot pay out the amount.
        HealthFactorTooLow: If the withdrawal would make the account unhealthy.
        StaleOracle: If a price needed for the health check is unusable.
    """
    check_amount(claim_units, "claim_units")
    balance = view.get_claim_balance(user, market_id)
    if claim_units > balance:
        raise InsufficientBalance(
            f"{user} holds {balance} claim units of {market_id}, cannot redeem {claim_units}"
        )
    stored, market = _load_accrued(view, market_id, now)

    amount = claims_to_amount(claim_units, market)
    if amount == 0:
        raise ZeroAmount(f"{claim_units} claim units redeem nothing")
    if amount > market.available_liquidity:
        raise InsufficientLiquidity(
            f"Withdrawal of {amount} exceeds available liquidity {market.available_liquidity}"
        )

    new_market = replace(
        market,
        total_supplied=checked_sub(market.total_supplied, amount),
        total_claim_units=checked_sub(market.total_claim_units, claim_units),
    )
    snapshot = snapshot_account(
        view, user, now,
        market_overrides={market_id: new_market},
        claim_overrides={market_id: balance - claim_units},
    )
    if snapshot.has_debt:
        require_healthy(calculate_account_health(snapshot, prices or {}, config))

    moves = [Move(claim_units, market_id, user, SYSTEM_WALLET, f"withdraw_{market_id}")]
    transfers = [CustodyTransfer(amount, market.asset, reserve_account(market_id), user, f"withdraw_{market_id}")]
    changes = [StateChange(market_key(market_id), stored, new_market)]
    origin = TransactionOrigin(OriginType.USER_ACTION, user, market_id, EVENT_WITHDRAW)
    return build_transaction(view, moves, changes, transfers, origin, now), amount


# ============================================================================
# BORROW
# ============================================================================

def compute_borrow(
    view: LendingView,
    market_id: str,
    user: str,
    amount: int,
    now: int,
    prices: PriceMap,
    config: ProtocolConfig,
) -> Tuple[PendingTransaction, int]:
    """
    Borrow `amount` against the user's collateral.

    Any existing position is re-based first: its owed amount at the current
    index becomes the new principal, plus `amount`, with a fresh snapshot.

    Raises:
        ZeroAmount: If amount is not positive.
        InvalidAmount: If amount is below config.min_borrow_amount.
        MarketPaused: If the market is paused.
        InsufficientLiquidity: If amount exceeds total_supplied - total_borrowed.
        HealthFactorTooLow: If the account would fall below 1.0 or exceed its LTV limit.
        StaleOracle: If a required price is unusable.
    """
    check_amount(amount)
    if amount < config.min_borrow_amount:
        raise InvalidAmount(f"Borrow of {amount} below minimum {config.min_borrow_amount}")
    stored, market = _load_accrued(view, market_id, now)
    if market.paused:
        raise MarketPaused(f"Market {market_id} is paused")
    if amount > market.available_liquidity:
        raise InsufficientLiquidity(
            f"Borrow of {amount} exceeds available liquidity {market.available_liquidity}"
        )

    position = view.get_borrow_position(user, market_id)
    owed = position_owed(position, market)
    new_position = BorrowPosition(
        user=user,
        market_id=market_id,
        principal=checked_add(owed, amount, U64_MAX),
        index_snapshot=market.borrow_index,
        created_at=position.created_at if position else now,
        last_updated=now,
    )
    new_market = replace(market, total_borrowed=checked_add(market.total_borrowed, amount, U64_MAX))

    snapshot = snapshot_account(
        view, user, now,
        market_overrides={market_id: new_market},
        position_overrides={market_id: new_position},
    )
    require_healthy(calculate_account_health(snapshot, prices, config), check_borrow_limit=True)

    transfers = [CustodyTransfer(amount, market.asset, reserve_account(market_id), user, f"borrow_{market_id}")]
    changes = [
        StateChange(market_key(market_id), stored, new_market),
        StateChange(borrow_key(user, market_id), position, new_position),
    ]
    origin = TransactionOrigin(OriginType.USER_ACTION, user, market_id, EVENT_BORROW)
    return build_transaction(view, [], changes, transfers, origin, now), amount


# ============================================================================
# REPAY
# ============================================================================

def compute_repay(
    view: LendingView,
    market_id: str,
    user: str,
    amount: int,
    now: int,
    config: ProtocolConfig,
) -> Tuple[PendingTransaction, int]:
    """
    Repay up to `amount` of the user's debt.

    Only min(amount, owed) is charged; a position repaid in full is closed.

    Raises:
        ZeroAmount: If amount is not positive.
        NoBorrowPosition: If the user has no debt in the market.
    """
    check_amount(amount)
    position = view.get_borrow_position(user, market_id)
    if position is None:
        raise NoBorrowPosition(f"{user} has no borrow position in {market_id}")
    stored, market = _load_accrued(view, market_id, now)

    new_position, new_market, applied = apply_repayment(position, market, amount, now)

    transfers = [CustodyTransfer(applied, market.asset, user, reserve_account(market_id), f"repay_{market_id}")]
    changes = [
        StateChange(market_key(market_id), stored, new_market),
        StateChange(borrow_key(user, market_id), position, new_position),
    ]
    origin = TransactionOrigin(OriginType.USER_ACTION, user, market_id, EVENT_REPAY)
    return build_transaction(view, [], changes, transfers, origin, now), applied


def current_debt(view: LendingView, market_id: str, user: str, now: int) -> int:
    """Amount the user owes in a market at `now`."""
    position = view.get_borrow_position(user, market_id)
    if position is None:
        return 0
    market = accrue(view.get_market(market_id), now)
    return owed_amount(position.principal, position.index_snapshot, market.borrow_index)
