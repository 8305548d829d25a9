"""
test_analytics.py - Unit tests for reporting analytics

Tests:
- annualize
- rate_curve agrees with the integer rate model
- Linear compounding error and the longest safe accrual interval
"""

import numpy as np
import pytest

from lending import (
    WAD, SECONDS_PER_YEAR, RateModelParams, borrow_rate, supply_rate,
    annualize, rate_curve, market_rate_table, linear_compounding_error, max_accrual_interval,
)
from lending.analytics import linear_growth, exact_growth


PARAMS = RateModelParams()


class TestAnnualize:

    def test_scalar(self):
        assert annualize(10 ** 9) == pytest.approx(10 ** 9 / WAD * SECONDS_PER_YEAR)

    def test_array(self):
        np.testing.assert_allclose(annualize(np.array([0, WAD])), [0.0, SECONDS_PER_YEAR])


class TestRateCurve:
    """rate_curve is a float view of borrow_rate and supply_rate."""

    def test_matches_integer_model(self):
        for fraction in (0.0, 0.25, 0.8, 0.9, 1.0):
            u = int(fraction * 100) * WAD // 100
            br = borrow_rate(u, PARAMS)
            sr = supply_rate(u, br, 500)
            borrow_apr, supply_apr = rate_curve(fraction, PARAMS, 500)
            assert float(borrow_apr) == pytest.approx(annualize(br), rel=1e-6)
            assert float(supply_apr) == pytest.approx(annualize(sr), rel=1e-6)

    def test_monotonic(self):
        table = market_rate_table(PARAMS, points=51)
        assert np.all(np.diff(table['borrow_apr']) >= 0)
        assert np.all(np.diff(table['supply_apr']) >= 0)
        assert table['utilization'][0] == 0.0
        assert table['utilization'][-1] == 1.0

    @pytest.mark.parametrize("u", [-0.1, 1.1])
    def test_out_of_range(self, u):
        with pytest.raises(ValueError):
            rate_curve(u, PARAMS)


class TestCompounding:
    """Tests for linear vs exact growth."""

    def test_linear_never_exceeds_exact(self):
        t = np.linspace(0, 10 * SECONDS_PER_YEAR, 50)
        r = 3e-9
        assert np.all(linear_growth(r, t) <= exact_growth(r, t) + 1e-12)

    def test_error_zero_at_origin(self):
        assert float(linear_compounding_error(1e-9, 0)) == 0.0
        assert float(linear_compounding_error(0.0, 1e6)) == 0.0

    def test_error_increases_with_time(self):
        t = np.linspace(0, SECONDS_PER_YEAR, 100)
        error = linear_compounding_error(3e-9, t)
        assert np.all(np.diff(error) >= 0)

    def test_error_matches_definition(self):
        x = 0.5
        expected = 1 - (1 + x) * np.exp(-x)
        assert float(linear_compounding_error(x, 1)) == pytest.approx(expected)

    def test_negative_input_rejected(self):
        with pytest.raises(ValueError):
            linear_compounding_error(-1e-9, 10)


class TestMaxAccrualInterval:
    """Tests for max_accrual_interval."""

    def test_error_at_interval_equals_tolerance(self):
        rates = np.array([1e-9, 3e-9, 1e-8])
        interval = max_accrual_interval(rates, 1e-4)
        np.testing.assert_allclose(linear_compounding_error(rates, interval), 1e-4, rtol=1e-6)

    def test_faster_rates_need_shorter_intervals(self):
        slow, fast = max_accrual_interval(np.array([1e-9, 1e-8]), 1e-4)
        assert fast < slow

    def test_zero_rate_is_unbounded(self):
        assert np.isinf(max_accrual_interval(0.0, 1e-4))

    @pytest.mark.parametrize("tolerance", [0.0, 1.0, -0.5])
    def test_bad_tolerance(self, tolerance):
        with pytest.raises(ValueError):
            max_accrual_interval(1e-9, tolerance)
