"""Tests for returns, volatility, drawdown and beta."""

import math

import pandas as pd
import pytest

from risk_metrics import (
    align_return_series_by_date,
    annualized_volatility,
    beta_from_return_series,
    compute_drawdown_series,
    daily_returns,
    max_drawdown,
)


def _series(values, start="2024-01-01"):
    dates = pd.date_range(start, periods=len(values), freq="D")
    return [{"date": d.strftime("%Y-%m-%d"), "value": v} for d, v in zip(dates, values)]


def _returns(rs, start="2024-01-01"):
    dates = pd.date_range(start, periods=len(rs), freq="D")
    return [{"date": d.strftime("%Y-%m-%d"), "r": r} for d, r in zip(dates, rs)]


class TestDailyReturns:

    def test_simple_returns(self):
        out = daily_returns(_series([100, 110, 99]))
        assert [o["date"] for o in out] == ["2024-01-02", "2024-01-03"]
        assert out[0]["r"] == pytest.approx(0.10)
        assert out[1]["r"] == pytest.approx(-0.10)

    def test_skips_steps_from_zero(self):
        out = daily_returns(_series([0, 100, 110]))
        assert len(out) == 1


class TestVolatility:

    def test_needs_ten_samples(self):
        assert annualized_volatility([0.01] * 9) is None
        assert annualized_volatility([0.01, -0.01] * 5) is not None

    def test_constant_returns_have_zero_volatility(self):
        assert annualized_volatility([0.01] * 12) == pytest.approx(0.0)

    def test_annualized_with_sample_stdev(self):
        rs = [0.01, -0.01] * 5
        mean = sum(rs) / len(rs)
        stdev = math.sqrt(sum((r - mean) ** 2 for r in rs) / (len(rs) - 1))
        assert annualized_volatility(_returns(rs)) == pytest.approx(stdev * math.sqrt(252))


class TestDrawdown:

    def test_max_drawdown(self):
        assert max_drawdown(_series([100, 120, 90, 130, 104])) == pytest.approx(-0.25)

    def test_monotonic_series_has_no_drawdown(self):
        assert max_drawdown(_series([100, 101, 102])) == 0.0

    def test_needs_two_values(self):
        assert max_drawdown(_series([100])) is None

    def test_drawdown_series_and_recovery(self):
        idx = pd.to_datetime(["2024-01-01", "2024-01-02", "2024-01-05", "2024-01-10"])
        values = pd.Series([100.0, 80.0, 90.0, 101.0], index=idx)
        dd, max_dd, recovery = compute_drawdown_series(values)

        assert max_dd == pytest.approx(-20.0)
        assert dd.iloc[0] == 0.0
        assert recovery == 8

    def test_drawdown_series_empty(self):
        dd, max_dd, recovery = compute_drawdown_series(pd.Series(dtype=float))
        assert dd.empty
        assert (max_dd, recovery) == (0.0, 0)


class TestBeta:

    def test_alignment_is_exact_date_inner_join(self):
        port = [{"date": "2024-01-02", "r": 0.1}, {"date": "2024-01-03", "r": 0.2}]
        bench = [{"date": "2024-01-03", "r": 0.05}, {"date": "2024-01-04", "r": 0.07}]
        assert align_return_series_by_date(port, bench) == ([0.2], [0.05])

    def test_beta_of_scaled_series(self):
        bench = [0.01 * ((i % 5) - 2) for i in range(30)]
        port = [2 * r for r in bench]
        beta, n = beta_from_return_series(_returns(port), _returns(bench))
        assert n == 30
        assert beta == pytest.approx(2.0)

    def test_too_few_samples(self):
        bench = [0.01 * ((i % 5) - 2) for i in range(19)]
        beta, n = beta_from_return_series(_returns(bench), _returns(bench))
        assert beta is None
        assert n == 19

    def test_zero_variance_benchmark(self):
        beta, n = beta_from_return_series(_returns([0.01 * i for i in range(25)]), _returns([0.005] * 25))
        assert beta is None
        assert n == 25
