"""
test_accrual.py - Unit tests for index-based interest accrual

Tests:
- accrue: no-op, idempotency, exact growth of totals and indices
- Protocol fee split into reserves
- Solvency at full utilization
- Index conversions (owed, claims <-> amount)
- compute_accrue transaction building
"""

import pytest

from lending import (
    WAD, RateModelParams, calculate_accrual, accrue, compute_accrue,
    owed_amount, claims_to_amount, amount_to_claims, current_rates,
    EVENT_ACCRUE, market_key,
)

from tests.builders import make_market, T0
from tests.fake_view import FakeView


FLAT = RateModelParams(base_rate=10 ** 9, slope1=0, slope2=0)


def flat_market(**fields):
    return make_market("USDC", rate_model=FLAT, **fields)


class TestAccrue:
    """Tests for accrue and calculate_accrual."""

    def test_no_elapsed_time_returns_same_record(self):
        market = flat_market(total_supplied=1000, total_borrowed=500)
        assert accrue(market, T0) is market

    def test_earlier_time_is_noop(self):
        market = flat_market(total_supplied=1000, total_borrowed=500)
        assert accrue(market, T0 - 10) is market

    def test_idempotent_within_timestamp(self):
        market = flat_market(total_supplied=10 ** 12, total_borrowed=5 * 10 ** 11)
        once = accrue(market, T0 + 1000)
        assert accrue(once, T0 + 1000) == once

    def test_exact_growth(self):
        """
        br = 1e-9/s, u = 0.5, fee 5%: sr = 4.75e-10/s.
        After 1000s: B grows by 1e-6, S by 4.75e-7.
        """
        market = flat_market(total_supplied=2 * 10 ** 12, total_borrowed=10 ** 12)
        result = calculate_accrual(market, T0 + 1000)

        assert result.elapsed == 1000
        assert result.utilization == WAD // 2
        assert result.borrow_rate == 10 ** 9
        assert result.supply_rate == 475_000_000
        assert result.interest == 1_000_000
        assert result.supplier_growth == 950_000
        assert result.protocol_fee == 50_000

        accrued = result.market
        assert accrued.total_borrowed == 10 ** 12 + 1_000_000
        assert accrued.total_supplied == 2 * 10 ** 12 + 950_000
        assert accrued.protocol_reserves == 50_000
        assert accrued.borrow_index == WAD + 10 ** 12
        assert accrued.supply_index == WAD + 475 * 10 ** 9
        assert accrued.last_accrual_timestamp == T0 + 1000

    def test_empty_pool_only_moves_timestamp(self):
        market = flat_market()
        accrued = accrue(market, T0 + 500)
        assert accrued.total_supplied == 0
        assert accrued.total_borrowed == 0
        assert accrued.borrow_index == WAD + 500 * 10 ** 9
        assert accrued.last_accrual_timestamp == T0 + 500

    def test_full_utilization_keeps_borrowed_within_supplied(self):
        market = make_market("USDC", total_supplied=10 ** 12, total_borrowed=10 ** 12)
        accrued = accrue(market, T0 + 365 * 86400)
        assert accrued.total_borrowed > 10 ** 12
        assert accrued.total_borrowed <= accrued.total_supplied

    def test_indices_never_decrease(self):
        market = make_market("USDC", total_supplied=10 ** 12, total_borrowed=7 * 10 ** 11)
        previous = market
        for t in (T0 + 1, T0 + 60, T0 + 3600, T0 + 86400):
            current = accrue(previous, t)
            assert current.borrow_index >= previous.borrow_index
            assert current.supply_index >= previous.supply_index
            previous = current

    def test_current_rates(self):
        market = flat_market(total_supplied=2 * 10 ** 12, total_borrowed=10 ** 12)
        assert current_rates(market) == (10 ** 9, 475_000_000)


class TestComputeAccrue:

    def test_empty_when_nothing_elapsed(self):
        view = FakeView({'USDC': flat_market()}, time=T0)
        pending = compute_accrue(view, 'USDC', T0)
        assert pending.is_empty()
        assert pending.timestamp == T0

    def test_builds_market_change(self):
        market = flat_market(total_supplied=2 * 10 ** 12, total_borrowed=10 ** 12)
        view = FakeView({'USDC': market}, time=T0 + 1000)
        pending = compute_accrue(view, 'USDC', T0 + 1000)

        assert pending.origin.event_type == EVENT_ACCRUE
        (change,) = pending.state_changes
        assert change.key == market_key('USDC')
        assert change.old is market
        assert change.new == accrue(market, T0 + 1000)


class TestConversions:
    """Tests for owed_amount, claims_to_amount and amount_to_claims."""

    def test_owed_grows_with_index(self):
        assert owed_amount(100, WAD, 2 * WAD) == 200
        assert owed_amount(100, 2 * WAD, 2 * WAD) == 100

    def test_owed_zero_principal(self):
        assert owed_amount(0, WAD, 3 * WAD) == 0

    def test_owed_floors(self):
        assert owed_amount(3, 2 * WAD, 3 * WAD) == 4

    def test_first_deposit_mints_one_to_one(self):
        assert amount_to_claims(1234, flat_market()) == 1234

    def test_claims_price_in_growth(self):
        market = flat_market(total_supplied=2000, total_claim_units=1000)
        assert amount_to_claims(100, market) == 50
        assert claims_to_amount(50, market) == 100

    def test_claims_floor_both_ways(self):
        market = flat_market(total_supplied=3000, total_claim_units=1000)
        assert amount_to_claims(100, market) == 33
        assert claims_to_amount(33, market) == 99

    def test_no_claims_redeem_nothing(self):
        assert claims_to_amount(10, flat_market()) == 0
