"""
Core types and pure functions for the lending ledger.

This module provides the foundational data structures and protocols for the ledger:
1. Protocols: LendingView for read-only ledger access
2. Immutable data structures: Move, CustodyTransfer, StateChange,
   PendingTransaction, Transaction
3. Exceptions: LendingError and domain-specific error types
4. Type aliases: StateKey, ClaimBalances
5. Canonical serialization used for content-addressed transaction identity

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
import hashlib
from typing import (
    Dict, List, Set, Optional, Any, Protocol, Tuple, FrozenSet,
    runtime_checkable, TYPE_CHECKING,
)

if TYPE_CHECKING:
    from .market import Market, BorrowPosition


# ============================================================================
# CONSTANTS
# ============================================================================

# Issuer wallet for claim units. Minting moves claims out of it, burning moves
# them back, so the sum over all wallets of a claim unit is always zero.
SYSTEM_WALLET = "system"

# Event types recorded on every transaction origin.
EVENT_CREATE_MARKET = "CREATE_MARKET"
EVENT_SET_PAUSED = "SET_PAUSED"
EVENT_ACCRUE = "ACCRUE"
EVENT_SUPPLY = "SUPPLY"
EVENT_WITHDRAW = "WITHDRAW"
EVENT_BORROW = "BORROW"
EVENT_REPAY = "REPAY"
EVENT_LIQUIDATE = "LIQUIDATE"

# Record kinds used as the first element of a StateKey.
RECORD_MARKET = "market"
RECORD_BORROW = "borrow"


def reserve_account(market_id: str) -> str:
    """Name of the custody account holding a market's pooled asset."""
    return f"reserve:{market_id}"


def market_key(market_id: str) -> StateKey:
    return (RECORD_MARKET, market_id)


def borrow_key(user: str, market_id: str) -> StateKey:
    return (RECORD_BORROW, user, market_id)


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Identifies a persisted record: ("market", market_id) or ("borrow", user, market_id).
StateKey = Tuple[str, ...]

# Mapping from market ID to claim units held in a single wallet.
ClaimBalances = Dict[str, int]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """Base exception for all lending-related errors."""
    pass


class ArithmeticOverflow(LendingError):
    """Raised when a fixed-point operation exceeds its bound or divides by zero."""
    pass


class ArithmeticUnderflow(LendingError):
    """Raised when a checked subtraction would go below zero."""
    pass


class InvalidParameters(LendingError):
    """Raised for invalid market or operation parameters."""
    pass


class InvalidAmount(LendingError):
    """Raised when an amount is outside the accepted range."""
    pass


class ZeroAmount(InvalidAmount):
    """Raised when an operation amount (or its converted result) is zero."""
    pass


class InsufficientLiquidity(LendingError):
    """Raised when a borrow or withdrawal exceeds the pool's available funds."""
    pass


class InsufficientBalance(LendingError):
    """Raised when a user redeems more claim units than they hold."""
    pass


class InsufficientCollateral(LendingError):
    """Raised when a liquidation target has no collateral to seize."""
    pass


class HealthFactorTooLow(LendingError):
    """Raised when the post-operation account state would be unhealthy."""
    pass


class PositionHealthy(LendingError):
    """Raised when liquidating a position whose health factor is at least 1.0."""
    pass


class StaleOracle(LendingError):
    """Raised when a required price is missing, invalid, or older than allowed."""
    pass


class NoBorrowPosition(LendingError):
    """Raised when repaying or liquidating a position that does not exist."""
    pass


class MarketNotFound(LendingError):
    """Raised when an operation references an unknown market."""
    pass


class MarketAlreadyExists(LendingError):
    """Raised when creating a second market for the same asset."""
    pass


class MarketPaused(LendingError):
    """Raised when supplying to or borrowing from a paused market."""
    pass


class Unauthorized(LendingError):
    """Raised when a privileged operation is called by someone other than the authority."""
    pass


class SlippageExceeded(LendingError):
    """Raised when a liquidation would seize fewer claim units than the liquidator's minimum."""
    pass


class StaleState(LendingError):
    """Raised when a pending transaction was built against records that have since changed."""
    pass


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LendingView(Protocol):
    """
    Read-only interface to lending ledger state.

    Pure compute functions receive a LendingView and can query markets,
    borrow positions and claim balances without the ability to modify them.
    LendingLedger implements this protocol; tests use FakeView.
    """

    @property
    def current_time(self) -> int:
        """Return the latest timestamp (unix seconds) the ledger has seen."""
        ...

    def get_market(self, market_id: str) -> 'Market':
        """
        Return the stored market record.

        Raises MarketNotFound if the market was never created.
        """
        ...

    def get_borrow_position(self, user: str, market_id: str) -> Optional['BorrowPosition']:
        """Return the user's borrow position in a market, or None if closed."""
        ...

    def get_claim_balance(self, user: str, market_id: str) -> int:
        """Return the user's claim units in a market (0 if none)."""
        ...

    def list_markets(self) -> List[str]:
        """Return all market IDs, sorted."""
        ...

    def list_user_markets(self, user: str) -> Set[str]:
        """Return the markets where the user holds claim units or debt."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and committed.
    ALREADY_APPLIED: Transaction ID was previously processed (idempotent behavior).
    REJECTED: Transaction was built against stale records or would leave a
              wallet with negative claim units.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """
    Classification of where a transaction originated.

    Used for audit trails and reconciliation.
    """
    USER_ACTION = "user_action"     # Supplier or borrower acting on their own position
    LIQUIDATOR = "liquidator"       # Third party unwinding an unhealthy position
    AUTHORITY = "authority"         # Market creation and pausing
    SYSTEM = "system"               # Standalone interest accrual


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identity of the (already authenticated) caller
        market_id: Primary market the operation touched
        event_type: Operation name (SUPPLY, BORROW, LIQUIDATE, ...)
    """
    origin_type: OriginType
    source_id: str
    market_id: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.market_id:
            parts.append(f"market={self.market_id}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class StateChange:
    """
    Record of a single persisted-record change.

    The old value is the record the change was computed against. The ledger
    commits the change only if the stored record still equals it
    (compare-and-commit). A None old value means the record is being created;
    a None new value means it is being removed (a closed borrow position).

    Attributes:
        key: StateKey of the record
        old: Record before the change (Market, BorrowPosition or None)
        new: Record after the change (Market, BorrowPosition or None)
    """
    key: StateKey
    old: Any
    new: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """
        Compute fields that differ between old and new record.

        Returns:
            Dict mapping field name to (old_value, new_value) tuples.
        """
        old = _record_dict(self.old)
        new = _record_dict(self.new)
        changes = {}
        for name in sorted(set(old) | set(new)):
            if old.get(name) != new.get(name):
                changes[name] = (old.get(name), new.get(name))
        return changes


def _record_dict(record: Any) -> Dict[str, Any]:
    if record is None:
        return {}
    if is_dataclass(record):
        return {f.name: getattr(record, f.name) for f in fields(record)}
    if isinstance(record, dict):
        return dict(record)
    return {"value": record}


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A transfer of claim units between two wallets.

    Claim units are the only balances the ledger itself holds. Minting moves
    units from SYSTEM_WALLET to the supplier, burning moves them back, and a
    liquidation moves them from the borrower to the liquidator.

    Attributes:
        quantity: Claim units to transfer (positive integer).
        market_id: The market whose claim units are moved.
        source: Wallet debited.
        dest: Wallet credited.
        memo: Operation that produced the move.
    """
    quantity: int
    market_id: str
    source: str
    dest: str
    memo: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.market_id or not self.market_id.strip():
            raise ValueError("Move market_id cannot be empty")
        if not self.memo or not self.memo.strip():
            raise ValueError("Move memo cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.market_id}: {self.source}->{self.dest})"


@dataclass(frozen=True, slots=True)
class CustodyTransfer:
    """
    An instruction for the host to move the underlying asset.

    The ledger never holds tokens. A committed transaction lists the transfers
    the host must perform atomically with the commit.

    Attributes:
        quantity: Asset amount (positive integer, native units).
        asset: Asset identity.
        source: Account debited (a user wallet or reserve_account(market_id)).
        dest: Account credited.
        memo: Operation that produced the instruction.
    """
    quantity: int
    asset: str
    source: str
    dest: str
    memo: str

    def __post_init__(self):
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"CustodyTransfer quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"CustodyTransfer quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"CustodyTransfer({self.quantity} {self.asset}: {self.source}->{self.dest})"


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Dataclass records are serialized field by field and dicts are sorted by
    key, so semantically equal values always produce identical strings.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if is_dataclass(value):
        return f"{type(value).__name__}{_canonicalize(_record_dict(value))}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    transfers: Tuple[CustodyTransfer, ...],
    state_changes: Tuple[StateChange, ...],
    origin: TransactionOrigin,
    timestamp: int,
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Same inputs always produce the same intent_id. Because every state change
    carries the record it was computed against, an operation repeated after
    the first commit hashes differently, while resubmitting the same pending
    transaction is detected as a duplicate.
    """
    content_parts = [
        f"origin:{origin.origin_type.value}:{origin.source_id}",
        f"market:{origin.market_id}",
        f"event:{origin.event_type}",
        f"time:{timestamp}",
    ]
    for m in moves:
        content_parts.append(f"move:{m.quantity}|{m.market_id}|{m.source}|{m.dest}|{m.memo}")
    for t in transfers:
        content_parts.append(f"transfer:{t.quantity}|{t.asset}|{t.source}|{t.dest}|{t.memo}")
    for sc in sorted(state_changes, key=lambda s: s.key):
        content_parts.append(
            f"state_change:{_canonicalize(sc.key)}|{_canonicalize(sc.old)}|{_canonicalize(sc.new)}"
        )

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction before execution - represents INTENT.

    Created by the pure compute_* functions and submitted to the ledger for
    execution. Every validation (amounts, liquidity, health factor, oracle
    freshness) has already passed when one of these exists; the ledger only
    re-checks that the records it was built against are still current.

    Attributes:
        moves: Claim-unit transfers between wallets
        transfers: Custody instructions for the host
        state_changes: Market and borrow-position record changes
        origin: Who/what created this transaction and why
        timestamp: Logical time (unix seconds) the operation was computed at
        intent_id: Content-addressable hash of the transaction intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    transfers: Tuple[CustodyTransfer, ...]
    state_changes: Tuple[StateChange, ...]
    origin: TransactionOrigin
    timestamp: int
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.transfers, self.state_changes, self.origin, self.timestamp
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if there is nothing to commit."""
        return not self.moves and not self.transfers and not self.state_changes

    def __repr__(self) -> str:
        return (
            f"PendingTransaction({len(self.moves)} moves, {len(self.transfers)} transfers, "
            f"{len(self.state_changes)} changes, {self.origin})"
        )


def build_transaction(
    view: LendingView,
    moves: List[Move],
    state_changes: Optional[List[StateChange]] = None,
    transfers: Optional[List[CustodyTransfer]] = None,
    origin: Optional[TransactionOrigin] = None,
    timestamp: Optional[int] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves, custody transfers and state changes.

    This is the standard way to create transactions.

    Args:
        view: Read-only ledger view (provides current_time as the default timestamp)
        moves: Claim-unit moves
        state_changes: Record changes, each carrying the record it was computed against
        transfers: Custody instructions for the host
        origin: Transaction origin (defaults to a SYSTEM origin)
        timestamp: Logical time of the operation

    Returns:
        A PendingTransaction ready for execution
    """
    if origin is None:
        origin = TransactionOrigin(origin_type=OriginType.SYSTEM, source_id="system")

    return PendingTransaction(
        moves=tuple(moves),
        transfers=tuple(transfers or ()),
        state_changes=tuple(state_changes or ()),
        origin=origin,
        timestamp=view.current_time if timestamp is None else timestamp,
    )


def empty_pending_transaction(view: LendingView, timestamp: Optional[int] = None) -> PendingTransaction:
    """
    Create an empty PendingTransaction (nothing to commit).

    Args:
        view: Read-only ledger view (provides current_time)
        timestamp: Logical time, defaults to view.current_time

    Returns:
        An empty PendingTransaction
    """
    return PendingTransaction(
        moves=(),
        transfers=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.SYSTEM, "noop"),
        timestamp=view.current_time if timestamp is None else timestamp,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Created by the ledger when executing a PendingTransaction.

    Attributes:
        moves: Claim-unit transfers between wallets
        transfers: Custody instructions the host performed with this commit
        state_changes: Record changes (with old and new values)
        origin: Who/what created this transaction and why
        timestamp: Logical time of the operation
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: Ledger time when committed
        sequence_number: Monotonic sequence within the ledger (for ordering)
        market_ids: Markets touched by the transaction (auto-populated)
    """
    moves: Tuple[Move, ...]
    transfers: Tuple[CustodyTransfer, ...]
    state_changes: Tuple[StateChange, ...]
    origin: TransactionOrigin
    timestamp: int
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: int
    sequence_number: int
    market_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.transfers and not self.state_changes:
            raise ValueError("Transaction must have moves, transfers, or state_changes")
        if self.market_ids is None:
            touched = {m.market_id for m in self.moves}
            touched.update(sc.key[-1] for sc in self.state_changes)
            object.__setattr__(self, 'market_ids', frozenset(touched))

    def __repr__(self) -> str:
        w = 100
        bar = "-" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"+{bar}+",
            f"|{pad(' Transaction: ' + self.exec_id)}|",
            f"+{bar}+",
            f"|{pad('   intent_id      : ' + self.intent_id)}|",
            f"|{pad('   timestamp      : ' + str(self.timestamp))}|",
            f"|{pad('   ledger_name    : ' + self.ledger_name)}|",
            f"|{pad('   sequence       : ' + str(self.sequence_number))}|",
            f"|{pad('   origin         : ' + str(self.origin))}|",
            f"|{pad('   markets        : ' + str(sorted(self.market_ids)))}|",
        ]
        if self.moves:
            lines.append(f"+{bar}+")
            lines.append(f"|{pad(' Moves (' + str(len(self.moves)) + '):')}|")
            for i, move in enumerate(self.moves):
                lines.append(f"|{pad(f'   [{i}] {move!r}')}|")
        if self.transfers:
            lines.append(f"+{bar}+")
            lines.append(f"|{pad(' Custody (' + str(len(self.transfers)) + '):')}|")
            for i, transfer in enumerate(self.transfers):
                lines.append(f"|{pad(f'   [{i}] {transfer!r}')}|")
        if self.state_changes:
            lines.append(f"+{bar}+")
            lines.append(f"|{pad(' State Changes (' + str(len(self.state_changes)) + '):')}|")
            for sc in self.state_changes:
                lines.append(f"|{pad('   ' + '/'.join(sc.key))}|")
                for field_name, (old_val, new_val) in sc.changed_fields().items():
                    lines.append(f"|{pad(f'      {field_name}: {old_val!r} -> {new_val!r}')}|")
        lines.append(f"+{bar}+")
        return "\n".join(lines)
