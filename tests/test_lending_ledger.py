"""
Tests for LendingLedger execution and state management.

Covers execute() validation, idempotency, the audit log, invariant
checking, time handling, verbose output and clone/clone_at.
"""

import pytest
from dataclasses import replace

from lending import (
    WAD, LendingLedger, MarketParams, ExecuteResult, Move, StateChange,
    TransactionOrigin, OriginType, SYSTEM_WALLET,
    compute_supply, build_transaction, market_key,
    EVENT_CREATE_MARKET, EVENT_SUPPLY, EVENT_BORROW,
    MarketNotFound, StaleState, StaleOracle,
)

from tests.builders import quotes, T0, AUTHORITY


def manual(ledger, moves=(), changes=(), timestamp=None):
    origin = TransactionOrigin(OriginType.USER_ACTION, "tester")
    return build_transaction(ledger, list(moves), list(changes), origin=origin, timestamp=timestamp)


class TestExecute:
    """Tests for execute() validation."""

    def test_empty_transaction_applies_without_logging(self, ledger):
        log_length = len(ledger.transaction_log)
        assert ledger.execute(manual(ledger)) == ExecuteResult.APPLIED
        assert len(ledger.transaction_log) == log_length

    def test_idempotent(self, ledger):
        pending, _ = compute_supply(ledger, "USDC", "alice", 100, T0, ledger.config)
        assert ledger.execute(pending) == ExecuteResult.APPLIED
        assert ledger.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert ledger.get_claim_balance("alice", "USDC") == 100

    def test_stale_state_rejected(self, ledger):
        """Two supplies computed against the same market record race."""
        first, _ = compute_supply(ledger, "USDC", "alice", 100, T0, ledger.config)
        second, _ = compute_supply(ledger, "USDC", "carol", 100, T0, ledger.config)
        assert ledger.execute(first) == ExecuteResult.APPLIED
        assert ledger.execute(second) == ExecuteResult.REJECTED
        assert ledger.get_claim_balance("carol", "USDC") == 0
        assert ledger.get_market("USDC").total_supplied == 100

    def test_negative_balance_rejected(self, ledger):
        pending = manual(ledger, [Move(10, "USDC", "alice", "bob", "gift")])
        assert ledger.execute(pending) == ExecuteResult.REJECTED

    def test_system_wallet_may_go_negative(self, ledger):
        pending = manual(ledger, [Move(10, "USDC", SYSTEM_WALLET, "bob", "mint")])
        assert ledger.execute(pending) == ExecuteResult.APPLIED
        assert ledger.balances[SYSTEM_WALLET]["USDC"] == -10

    def test_unknown_market_rejected(self, ledger):
        pending = manual(ledger, [Move(10, "BTC", SYSTEM_WALLET, "bob", "mint")])
        assert ledger.execute(pending) == ExecuteResult.REJECTED

    def test_future_timestamp_rejected(self, ledger):
        pending = manual(ledger, [Move(10, "USDC", SYSTEM_WALLET, "bob", "mint")], timestamp=T0 + 1)
        assert ledger.execute(pending) == ExecuteResult.REJECTED

    def test_borrowed_above_supplied_rejected(self, ledger):
        market = ledger.get_market("USDC")
        bad = replace(market, total_borrowed=10)
        pending = manual(ledger, changes=[StateChange(market_key("USDC"), market, bad)])
        assert ledger.execute(pending) == ExecuteResult.REJECTED

    def test_market_deletion_rejected(self, ledger):
        market = ledger.get_market("USDC")
        pending = manual(ledger, changes=[StateChange(market_key("USDC"), market, None)])
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert "USDC" in ledger.list_markets()

    def test_rejected_operation_raises_stale_state(self, ledger, monkeypatch):
        monkeypatch.setattr(ledger, "execute", lambda pending: ExecuteResult.REJECTED)
        with pytest.raises(StaleState):
            ledger.supply("USDC", "alice", 100)


class TestAuditLog:
    """Tests for the transaction log."""

    def test_events_logged_in_order(self, borrowed_ledger):
        events = [tx.origin.event_type for tx in borrowed_ledger.transaction_log]
        assert events == [EVENT_CREATE_MARKET, EVENT_CREATE_MARKET, EVENT_SUPPLY, EVENT_SUPPLY, EVENT_BORROW]
        assert [tx.sequence_number for tx in borrowed_ledger.transaction_log] == list(range(5))

    def test_exec_id_format(self, ledger):
        tx = ledger.transaction_log[0]
        assert tx.exec_id == f"exec:test:{0:012d}:{T0}"
        assert tx.ledger_name == "test"

    def test_filter_by_event(self, borrowed_ledger):
        assert len(borrowed_ledger.transactions(EVENT_SUPPLY)) == 2
        assert len(borrowed_ledger.transactions()) == 5


class TestViews:

    def test_unknown_market(self, ledger):
        with pytest.raises(MarketNotFound):
            ledger.get_market("BTC")
        with pytest.raises(MarketNotFound):
            ledger.get_claim_balance("alice", "BTC")

    def test_list_user_markets(self, borrowed_ledger):
        assert borrowed_ledger.list_user_markets("bob") == {"SOL", "USDC"}
        assert borrowed_ledger.list_user_markets("alice") == {"USDC"}
        assert borrowed_ledger.list_user_markets("nobody") == set()

    def test_wallet_balances(self, funded_ledger):
        assert funded_ledger.get_wallet_balances("bob") == {"SOL": 150}
        assert funded_ledger.get_wallet_balances("nobody") == {}

    def test_total_claims_excludes_system(self, funded_ledger):
        assert funded_ledger.total_claims("USDC") == 1_000

    def test_supplied_value(self, funded_ledger):
        assert funded_ledger.supplied_value("alice", "USDC") == 1_000


class TestInvariants:
    """Tests for verify_invariants."""

    def test_valid_after_operations(self, borrowed_ledger):
        borrowed_ledger.repay("USDC", "bob", 30)
        borrowed_ledger.withdraw("USDC", "alice", 100)
        result = borrowed_ledger.verify_invariants()
        assert result['valid'], result['violations']

    def test_detects_tampered_balance(self, funded_ledger):
        funded_ledger.balances["alice"]["USDC"] += 1
        result = funded_ledger.verify_invariants()
        assert not result['valid']
        checks = {v['check'] for v in result['violations']}
        assert checks == {'claims_match_total', 'claims_conserved'}


class TestTime:

    def test_advance(self, ledger):
        ledger.advance_time(T0 + 10)
        assert ledger.current_time == T0 + 10

    def test_backwards_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.advance_time(T0 - 1)

    def test_operation_in_the_past_rejected(self, ledger):
        ledger.advance_time(T0 + 10)
        with pytest.raises(ValueError):
            ledger.supply("USDC", "alice", 100, now=T0)

    def test_refused_operation_keeps_clock(self, borrowed_ledger):
        stale = quotes(now=T0 - 301, USDC=WAD, SOL=WAD)
        with pytest.raises(StaleOracle):
            borrowed_ledger.borrow("USDC", "bob", 1, now=T0 + 10_000, prices=stale)
        assert borrowed_ledger.current_time == T0
        assert borrowed_ledger.supply("USDC", "carol", 10, now=T0 + 5) == 10
        assert borrowed_ledger.current_time == T0 + 5

    def test_rejected_commit_keeps_clock(self, ledger, monkeypatch):
        monkeypatch.setattr(ledger, "execute", lambda pending: ExecuteResult.REJECTED)
        with pytest.raises(StaleState):
            ledger.supply("USDC", "alice", 100, now=T0 + 60)
        assert ledger.current_time == T0

    def test_operation_moves_clock(self, ledger):
        ledger.supply("USDC", "alice", 100, now=T0 + 60)
        assert ledger.current_time == T0 + 60
        assert ledger.get_market("USDC").last_accrual_timestamp == T0 + 60


class TestAccrueOperation:

    def test_accrue_commits_interest(self, interest_ledger):
        interest_ledger.supply("USDC", "alice", 1_000_000)
        interest_ledger.supply("SOL", "bob", 1_000_000)
        interest_ledger.borrow("USDC", "bob", 500_000, prices=quotes(USDC=WAD, SOL=WAD))

        market = interest_ledger.accrue("USDC", now=T0 + 365 * 86400)
        assert market.last_accrual_timestamp == T0 + 365 * 86400
        assert market.total_borrowed > 500_000
        assert market.protocol_reserves > 0
        assert interest_ledger.owed("bob", "USDC") > 500_000
        assert interest_ledger.supplied_value("alice", "USDC") > 1_000_000

    def test_accrue_twice_at_same_time_is_noop(self, interest_ledger):
        interest_ledger.accrue("USDC", now=T0 + 100)
        log_length = len(interest_ledger.transaction_log)
        interest_ledger.accrue("USDC")
        assert len(interest_ledger.transaction_log) == log_length


class TestVerbose:

    def test_prints_registration_and_result(self, capsys):
        ledger = LendingLedger("loud", initial_time=T0)
        ledger.create_market(MarketParams("USDC"), caller=AUTHORITY)
        ledger.supply("USDC", "alice", 100)
        out = capsys.readouterr().out
        assert "📝 Market: USDC" in out
        assert "✓ APPLIED" in out

    def test_prints_rejection(self, capsys):
        ledger = LendingLedger("loud", initial_time=T0)
        ledger.create_market(MarketParams("USDC"), caller=AUTHORITY)
        capsys.readouterr()
        ledger.execute(manual(ledger, [Move(10, "USDC", "alice", "bob", "gift")]))
        assert "✗ REJECTED" in capsys.readouterr().out


class TestClone:
    """Tests for clone and clone_at."""

    def test_clone_is_independent(self, funded_ledger):
        cloned = funded_ledger.clone()
        cloned.supply("USDC", "carol", 50)
        assert cloned.get_claim_balance("carol", "USDC") == 50
        assert funded_ledger.get_claim_balance("carol", "USDC") == 0
        assert funded_ledger.get_market("USDC").total_supplied == 1_000

    def test_clone_at_undoes_later_transactions(self, funded_ledger, par_prices):
        funded_ledger.borrow("USDC", "bob", 100, now=T0 + 100, prices=quotes(now=T0 + 100, USDC=WAD, SOL=WAD))
        past = funded_ledger.clone_at(T0 + 50)

        assert past.current_time == T0 + 50
        assert past.get_borrow_position("bob", "USDC") is None
        assert past.get_market("USDC").total_borrowed == 0
        assert past.get_market("USDC").last_accrual_timestamp == T0
        assert len(past.transaction_log) == 4
        assert funded_ledger.get_borrow_position("bob", "USDC") is not None

    def test_clone_at_restores_balances(self, funded_ledger):
        funded_ledger.withdraw("USDC", "alice", 300, now=T0 + 10)
        past = funded_ledger.clone_at(T0)
        assert past.get_claim_balance("alice", "USDC") == 1_000
        assert past.verify_invariants()['valid']

    def test_clone_at_before_markets_existed(self, funded_ledger):
        assert funded_ledger.clone_at(T0 - 1).list_markets() == []

    def test_clone_at_future_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.clone_at(T0 + 1)

    def test_replayed_intent_applies_after_clone_at(self, funded_ledger):
        pending, _ = compute_supply(funded_ledger, "USDC", "carol", 10, T0 + 10, funded_ledger.config)
        funded_ledger.advance_time(T0 + 10)
        assert funded_ledger.execute(pending) == ExecuteResult.APPLIED
        past = funded_ledger.clone_at(T0)
        past.advance_time(T0 + 10)
        assert past.execute(pending) == ExecuteResult.APPLIED
