"""Tests for the combined metrics pipeline."""

from datetime import date

import pandas as pd
import pytest

from portfolio_engine import period_change, risk_alignment, run_engine, series_to_frame, since_start


def _series(values, start="2024-01-01"):
    dates = pd.bdate_range(start, periods=len(values))
    return [{"date": d.strftime("%Y-%m-%d"), "value": v} for d, v in zip(dates, values)]


class TestRunEngine:

    def test_no_history_leaves_metrics_uncomputed(self, sample_state):
        m = run_engine(sample_state, today=date(2024, 6, 1))

        assert m["totals"]["total"] == pytest.approx(4500)
        assert m["twr"] is None
        assert m["xirr"] is None
        assert m["volatility"] is None
        assert m["maxDrawdown"] is None
        assert m["beta"] is None
        assert m["betaSamples"] == 0
        assert m["sinceStartPct"] is None
        assert m["drawdownSeries"].empty

    def test_empty_state(self):
        m = run_engine({})
        assert m["totals"]["total"] == 0
        assert m["diversificationScore"] == 0
        assert m["riskAlignment"] == "No positions yet"

    def test_returns_and_risk_from_series(self, sample_state):
        values = [4000 + 10 * i for i in range(25)]
        m = run_engine(sample_state, series=_series(values))

        assert m["twr"] == pytest.approx(values[-1] / values[0] - 1)
        assert m["sinceStartPct"] == pytest.approx(values[-1] / values[0] - 1)
        assert m["sinceStartDollar"] == pytest.approx(240)
        assert m["volatility"] is not None
        assert m["maxDrawdown"] == 0.0

    def test_xirr_uses_terminal_value(self, sample_state):
        state = {
            **sample_state,
            "transactions": [{"type": "CASH_DEPOSIT", "date": "2023-06-01", "amount": 4000}],
        }
        m = run_engine(state, today=date(2024, 6, 1))

        assert m["cashFlows"] == [{"date": "2023-06-01", "amount": -4000.0}]
        assert m["xirr"] is not None
        assert m["xirr"] > 0

    def test_beta_against_benchmark(self, sample_state):
        bench_values = [100 * (1 + 0.01 * ((i % 5) - 2)) for i in range(30)]
        port_values = [2 * v for v in bench_values]
        m = run_engine(sample_state, series=_series(port_values), benchmark_series=_series(bench_values))

        assert m["betaSamples"] == 29
        assert m["beta"] == pytest.approx(1.0)

    def test_goal_uses_profile(self, sample_state):
        m = run_engine(sample_state, goal_return=0.0)
        assert m["goal"]["expected"] == pytest.approx(4500 + 100 * 12 * 10)

    def test_accepts_pandas_series(self, sample_state):
        s = pd.Series([100.0, 90.0, 110.0], index=pd.to_datetime(["2024-01-01", "2024-01-02", "2024-01-03"]))
        m = run_engine(sample_state, series=s)
        assert m["maxDrawdown"] == pytest.approx(-0.10)
        assert m["twr"] == pytest.approx(0.10)


class TestHelpers:

    def test_series_to_frame_sorts_and_dedupes(self):
        s = series_to_frame([
            {"date": "2024-01-02", "value": 2},
            {"date": "2024-01-01", "value": 1},
            {"date": "2024-01-02", "value": 3},
        ])
        assert list(s.values) == [1.0, 3.0]

    def test_since_start_needs_positive_base(self):
        assert since_start(pd.Series([0.0, 10.0])) == (None, None)

    def test_period_change(self):
        assert period_change(pd.Series([100.0, 110.0])) == pytest.approx(0.10)
        assert period_change(pd.Series([5.0])) is None

    @pytest.mark.parametrize("equity, expected", [
        (0.90, "More aggressive than target"),
        (0.45, "More conservative than target"),
        (0.62, "Roughly aligned with target"),
    ])
    def test_risk_alignment(self, equity, expected):
        assert risk_alignment({"equity": equity}, {"equity": 0.60}, 1000) == expected
