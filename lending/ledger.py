"""
ledger.py - Stateful Lending Ledger

The LendingLedger is the central state manager for the lending system.
It is the only module that mutates state, ensuring controlled and auditable changes.

Key responsibilities:
    - Implements LendingView protocol for safe read-only access by pure functions
    - Executes transactions atomically with compare-and-commit on every record
    - Maintains markets, borrow positions and claim-unit balances
    - Tracks time and provides temporal operations (clone, clone_at)
    - Offers one-call operations (supply, borrow, liquidate, ...) that build a
      PendingTransaction with the pure compute_* functions and commit it
"""

from __future__ import annotations
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set, Tuple, Union
import threading

from .core import (
    # Types
    Transaction, PendingTransaction, ExecuteResult, StateKey, ClaimBalances,
    # Constants
    SYSTEM_WALLET, RECORD_MARKET, RECORD_BORROW,
    # Exceptions
    MarketNotFound, StaleState,
)
from .config import ProtocolConfig
from .market import Market, MarketParams, BorrowPosition, compute_create_market, compute_set_paused
from .accrual import compute_accrue, accrue, position_owed, claims_to_amount
from .positions import compute_supply, compute_withdraw, compute_borrow, compute_repay
from .liquidation import LiquidationReceipt, compute_liquidation
from .risk import PriceMap, AccountHealth, compute_account_health
from .pricing_source import PriceFeed


Prices = Union[PriceMap, PriceFeed]


class LendingLedger:
    """
    Lending ledger with full validation and audit trail.

    Implements the LendingView protocol, allowing the ledger to be passed to
    pure functions that access only read-only methods.

    Design Principles:
        - Always validates: every state change must have been computed against
          the record currently stored, and no wallet but SYSTEM_WALLET may hold
          negative claim units.
        - Always logs: every committed transaction is recorded in the audit
          trail, enabling clone_at() for historical state reconstruction.

    Thread Safety:
        execute() compares and commits under one lock, so concurrent callers
        that raced on the same market see ExecuteResult.REJECTED (StaleState
        from the one-call operations) instead of a lost update.

    Example:
        ledger = LendingLedger("main")
        ledger.create_market(MarketParams("USDC"), caller="authority")
        ledger.create_market(MarketParams("SOL"), caller="authority")
        ledger.supply("USDC", "alice", 1_000, now=100)
        ledger.supply("SOL", "bob", 150, now=100)
        ledger.borrow("USDC", "bob", 100, now=100, prices=prices)
    """

    def __init__(
        self,
        name: str,
        config: Optional[ProtocolConfig] = None,
        initial_time: int = 0,
        verbose: bool = True,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            config: Protocol configuration (default: ProtocolConfig())
            initial_time: Starting unix time of the ledger clock
            verbose: Print registrations and transaction results (default: True)
        """
        self.name = name
        self.config = config or ProtocolConfig()
        self.markets: Dict[str, Market] = {}
        self.borrow_positions: Dict[Tuple[str, str], BorrowPosition] = {}
        self.balances: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self._current_time: int = initial_time
        self.verbose = verbose
        self._next_sequence: int = 0
        self._lock = threading.RLock()

    # ========================================================================
    # LendingView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> int:
        """Latest unix time the ledger has seen."""
        return self._current_time

    def get_market(self, market_id: str) -> Market:
        """
        Raises:
            MarketNotFound: If the market was never created
        """
        try:
            return self.markets[market_id]
        except KeyError:
            raise MarketNotFound(f"Market {market_id} not found") from None

    def get_borrow_position(self, user: str, market_id: str) -> Optional[BorrowPosition]:
        return self.borrow_positions.get((user, market_id))

    def get_claim_balance(self, user: str, market_id: str) -> int:
        if market_id not in self.markets:
            raise MarketNotFound(f"Market {market_id} not found")
        if user not in self.balances:
            return 0
        return self.balances[user].get(market_id, 0)

    def list_markets(self) -> List[str]:
        return sorted(self.markets)

    def list_user_markets(self, user: str) -> Set[str]:
        markets = set()
        if user in self.balances:
            markets.update(m for m, q in self.balances[user].items() if q != 0)
        markets.update(m for (u, m) in self.borrow_positions if u == user)
        return markets

    def get_wallet_balances(self, user: str) -> ClaimBalances:
        """All non-zero claim balances of a wallet."""
        if user not in self.balances:
            return {}
        return {m: q for m, q in self.balances[user].items() if q != 0}

    def total_claims(self, market_id: str) -> int:
        """
        Sum of claim units held by users (SYSTEM_WALLET excluded).

        Wallets are sorted before summation to ensure deterministic order.
        """
        self.get_market(market_id)
        return sum(
            self.balances[w].get(market_id, 0)
            for w in sorted(self.balances) if w != SYSTEM_WALLET
        )

    def verify_invariants(self) -> Dict[str, Any]:
        """
        Check the ledger's conservation and solvency invariants.

        For every market:
        - 0 <= total_borrowed <= total_supplied
        - claim units held by users equal total_claim_units
        - claim units across all wallets (SYSTEM_WALLET included) sum to zero
        - every borrow position's snapshot is at most the market's borrow index

        Returns:
            Dict with keys:
            - 'valid': bool - True if every invariant holds
            - 'violations': List[Dict] - one entry per failed check

        Example:
            result = ledger.verify_invariants()
            assert result['valid'], result['violations']
        """
        violations = []
        for market_id in self.list_markets():
            market = self.markets[market_id]
            if market.total_borrowed < 0 or market.total_supplied < 0:
                violations.append({'market': market_id, 'check': 'non_negative_totals'})
            if market.total_borrowed > market.total_supplied:
                violations.append({
                    'market': market_id,
                    'check': 'borrowed_le_supplied',
                    'total_borrowed': market.total_borrowed,
                    'total_supplied': market.total_supplied,
                })
            held = self.total_claims(market_id)
            if held != market.total_claim_units:
                violations.append({
                    'market': market_id,
                    'check': 'claims_match_total',
                    'held': held,
                    'total_claim_units': market.total_claim_units,
                })
            system = self.balances[SYSTEM_WALLET].get(market_id, 0) if SYSTEM_WALLET in self.balances else 0
            if held + system != 0:
                violations.append({'market': market_id, 'check': 'claims_conserved', 'net': held + system})

        for (user, market_id), position in sorted(self.borrow_positions.items()):
            if position.index_snapshot > self.markets[market_id].borrow_index:
                violations.append({'market': market_id, 'user': user, 'check': 'snapshot_le_index'})
            if position.principal <= 0:
                violations.append({'market': market_id, 'user': user, 'check': 'open_position_positive'})

        return {'valid': not violations, 'violations': violations}

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: int) -> None:
        """
        Advance the ledger's logical clock. Time can only move forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    def _at(self, now: Optional[int]) -> int:
        """
        Resolve an operation's time without moving the clock.

        The clock only advances once the operation commits.

        Raises:
            ValueError: If now is before the current time
        """
        if now is None:
            return self._current_time
        if now < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {now} < {self._current_time}"
            )
        return now

    def _prices(self, prices: Optional[Prices], now: int) -> PriceMap:
        if prices is None:
            return {}
        if isinstance(prices, PriceFeed):
            return prices.get_quotes({m.oracle for m in self.markets.values()}, now)
        return prices

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{unix_time}
        """
        return f"exec:{self.name}:{sequence:012d}:{self._current_time}"

    def _get_record(self, key: StateKey) -> Any:
        if key[0] == RECORD_MARKET:
            return self.markets.get(key[1])
        if key[0] == RECORD_BORROW:
            return self.borrow_positions.get((key[1], key[2]))
        raise ValueError(f"Unknown record key {key!r}")

    def _set_record(self, key: StateKey, record: Any) -> None:
        if key[0] == RECORD_MARKET:
            self.markets[key[1]] = record
        elif record is None:
            self.borrow_positions.pop((key[1], key[2]), None)
        else:
            self.borrow_positions[(key[1], key[2])] = record

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All moves and state changes succeed together or all fail together.
        Execution is idempotent: a pending transaction with the same intent_id
        will not be applied twice.

        Args:
            pending: PendingTransaction to execute

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if transaction was already executed
            ExecuteResult.REJECTED if validation failed
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        with self._lock:
            if pending.intent_id in self.seen_intent_ids:
                if self.verbose:
                    print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
                return ExecuteResult.ALREADY_APPLIED

            valid, reason = self._validate_pending(pending)
            if not valid:
                if self.verbose:
                    print(f"✗ REJECTED: {reason}")
                return ExecuteResult.REJECTED

            sequence = self._next_sequence
            self._next_sequence += 1
            tx = Transaction(
                moves=pending.moves,
                transfers=pending.transfers,
                state_changes=pending.state_changes,
                origin=pending.origin,
                timestamp=pending.timestamp,
                intent_id=pending.intent_id,
                exec_id=self._generate_exec_id(sequence),
                ledger_name=self.name,
                execution_time=self._current_time,
                sequence_number=sequence,
            )

            for sc in tx.state_changes:
                self._set_record(sc.key, sc.new)
            self._execute_moves(tx.moves)

            self.transaction_log.append(tx)
            self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return ExecuteResult.APPLIED

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print the transaction box with a result line in place of its closing bar."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "-" * w
        text = f" {icon} {result}"
        lines[-1] = f"+{bar}+"
        lines.append(f"|{text[:w]:<{w}}|")
        lines.append(f"+{bar}+")
        print("\n".join(lines))

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate a pending transaction against current state.

        Checks performed:
        1. Timestamp validation (transaction must not be from the future)
        2. Compare-and-commit: each state change's old record is the stored one
        3. Moves reference existing (or same-transaction created) markets
        4. No wallet other than SYSTEM_WALLET ends with negative claim units
        5. New market records keep 0 <= total_borrowed <= total_supplied

        Returns:
            Tuple of (success: bool, reason: str)
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        created: Set[str] = set()
        for sc in pending.state_changes:
            current = self._get_record(sc.key)
            if current != sc.old:
                return False, f"stale state for {'/'.join(sc.key)}"
            if sc.key[0] == RECORD_MARKET:
                if sc.new is None:
                    return False, f"markets cannot be deleted: {sc.key[1]}"
                if sc.old is None:
                    created.add(sc.key[1])
                if not 0 <= sc.new.total_borrowed <= sc.new.total_supplied:
                    return False, f"{sc.key[1]}: total_borrowed exceeds total_supplied"

        net: Dict[Tuple[str, str], int] = {}
        for move in pending.moves:
            if move.market_id not in self.markets and move.market_id not in created:
                return False, f"market not found: {move.market_id}"
            key_src = (move.source, move.market_id)
            key_dst = (move.dest, move.market_id)
            net[key_src] = net.get(key_src, 0) - move.quantity
            net[key_dst] = net.get(key_dst, 0) + move.quantity

        # SYSTEM_WALLET issues claim units and may go negative
        for (wallet, market_id), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            proposed = self.balances[wallet].get(market_id, 0) + delta if wallet in self.balances else delta
            if proposed < 0:
                return False, f"{wallet} {market_id}: {proposed} < 0"

        return True, ""

    def _execute_moves(self, moves) -> None:
        for move in moves:
            self.balances[move.source][move.market_id] -= move.quantity
            self.balances[move.dest][move.market_id] += move.quantity

    def _commit(self, pending: PendingTransaction, now: int) -> ExecuteResult:
        """Move the clock to `now` and execute; the clock stays put if execution is rejected."""
        with self._lock:
            previous = self._current_time
            self.advance_time(now)
            result = self.execute(pending)
            if result == ExecuteResult.REJECTED:
                self._current_time = previous
                raise StaleState(f"Transaction {pending.intent_id} rejected; recompute against current state")
        return result

    # ========================================================================
    # OPERATIONS (compute + execute)
    # ========================================================================

    def create_market(self, params: MarketParams, caller: str, now: Optional[int] = None) -> str:
        """
        Create a market. Only the protocol authority may call this.

        Returns:
            The new market_id
        """
        now = self._at(now)
        pending, market = compute_create_market(self, params, caller, now, self.config)
        self._commit(pending, now)
        if self.verbose:
            print(f"📝 Market: {market.market_id} ({market.asset}) ltv={market.ltv_bps} "
                  f"threshold={market.liquidation_threshold_bps} bonus={market.liquidation_bonus_bps}")
        return market.market_id

    def set_market_paused(self, market_id: str, paused: bool, caller: str, now: Optional[int] = None) -> None:
        now = self._at(now)
        self._commit(compute_set_paused(self, market_id, paused, caller, now, self.config), now)

    def accrue(self, market_id: str, now: Optional[int] = None) -> Market:
        """Accrue one market to `now` and return the stored record."""
        now = self._at(now)
        self._commit(compute_accrue(self, market_id, now), now)
        return self.markets[market_id]

    def supply(self, market_id: str, user: str, amount: int, now: Optional[int] = None) -> int:
        """Deposit `amount`; returns claim units minted."""
        now = self._at(now)
        pending, claims = compute_supply(self, market_id, user, amount, now, self.config)
        self._commit(pending, now)
        return claims

    def withdraw(
        self,
        market_id: str,
        user: str,
        claim_units: int,
        now: Optional[int] = None,
        prices: Optional[Prices] = None,
    ) -> int:
        """Redeem claim units; returns the underlying amount paid out."""
        now = self._at(now)
        pending, amount = compute_withdraw(
            self, market_id, user, claim_units, now, self._prices(prices, now), self.config
        )
        self._commit(pending, now)
        return amount

    def borrow(
        self,
        market_id: str,
        user: str,
        amount: int,
        now: Optional[int] = None,
        prices: Optional[Prices] = None,
    ) -> int:
        now = self._at(now)
        pending, borrowed = compute_borrow(
            self, market_id, user, amount, now, self._prices(prices, now), self.config
        )
        self._commit(pending, now)
        return borrowed

    def repay(self, market_id: str, user: str, amount: int, now: Optional[int] = None) -> int:
        """Repay up to `amount`; returns the amount actually applied."""
        now = self._at(now)
        pending, applied = compute_repay(self, market_id, user, amount, now, self.config)
        self._commit(pending, now)
        return applied

    def liquidate(
        self,
        debt_market_id: str,
        collateral_market_id: str,
        borrower: str,
        liquidator: str,
        debt_to_repay: int,
        now: Optional[int] = None,
        prices: Optional[Prices] = None,
        min_claims_out: int = 0,
    ) -> LiquidationReceipt:
        now = self._at(now)
        pending, receipt = compute_liquidation(
            self, debt_market_id, collateral_market_id, borrower, liquidator,
            debt_to_repay, now, self._prices(prices, now), self.config, min_claims_out,
        )
        self._commit(pending, now)
        return receipt

    # ========================================================================
    # QUERIES (read-only, accrued to `now` without committing)
    # ========================================================================

    def account_health(self, user: str, prices: Prices, now: Optional[int] = None) -> AccountHealth:
        now = self._current_time if now is None else now
        return compute_account_health(self, user, now, self._prices(prices, now), self.config)

    def health_factor(self, user: str, prices: Prices, now: Optional[int] = None) -> int:
        """WAD-scaled health factor; INFINITE_HEALTH_FACTOR without debt."""
        return self.account_health(user, prices, now).health_factor

    def owed(self, user: str, market_id: str, now: Optional[int] = None) -> int:
        now = self._current_time if now is None else now
        market = accrue(self.get_market(market_id), now)
        return position_owed(self.get_borrow_position(user, market_id), market)

    def supplied_value(self, user: str, market_id: str, now: Optional[int] = None) -> int:
        """Underlying the user's claim units redeem for at `now`."""
        now = self._current_time if now is None else now
        market = accrue(self.get_market(market_id), now)
        return claims_to_amount(self.get_claim_balance(user, market_id), market)

    def transactions(self, event_type: Optional[str] = None) -> List[Transaction]:
        """Committed transactions, optionally filtered by origin event type."""
        if event_type is None:
            return list(self.transaction_log)
        return [tx for tx in self.transaction_log if tx.origin.event_type == event_type]

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> LendingLedger:
        """
        Create an independent copy of this ledger.

        Records are immutable, so maps are copied shallowly; balances are
        copied per wallet.
        """
        cloned = LendingLedger.__new__(LendingLedger)
        cloned.name = self.name
        cloned.config = self.config
        cloned._current_time = self._current_time
        cloned.verbose = self.verbose
        cloned.markets = dict(self.markets)
        cloned.borrow_positions = dict(self.borrow_positions)
        cloned.balances = defaultdict(lambda: defaultdict(int))
        for wallet, bals in self.balances.items():
            cloned.balances[wallet] = defaultdict(int, bals)
        cloned.seen_intent_ids = self.seen_intent_ids.copy()
        cloned.transaction_log = list(self.transaction_log)
        cloned._next_sequence = self._next_sequence
        cloned._lock = threading.RLock()
        return cloned

    def clone_at(self, target_time: int) -> LendingLedger:
        """
        Reconstruct the ledger as it was at `target_time`.

        Walks the log backward, undoing every transaction executed after
        target_time: moves are reversed and each state change's old record
        is restored.

        Raises:
            ValueError: If target_time is after the current time
        """
        if target_time > self._current_time:
            raise ValueError(f"Cannot clone into the future: {target_time} > {self._current_time}")
        cloned = self.clone()
        keep = 0
        for i, tx in enumerate(self.transaction_log):
            if tx.execution_time <= target_time:
                keep = i + 1
        for tx in reversed(self.transaction_log[keep:]):
            for move in tx.moves:
                cloned.balances[move.source][move.market_id] += move.quantity
                cloned.balances[move.dest][move.market_id] -= move.quantity
            for sc in reversed(tx.state_changes):
                if sc.key[0] == RECORD_MARKET and sc.old is None:
                    cloned.markets.pop(sc.key[1], None)
                else:
                    cloned._set_record(sc.key, sc.old)
            cloned.seen_intent_ids.discard(tx.intent_id)
        cloned.transaction_log = self.transaction_log[:keep]
        cloned._current_time = target_time
        return cloned
