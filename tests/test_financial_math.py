"""Tests for cash flows, TWR, XIRR and goal projection."""

import pandas as pd
import pytest

import financial_math
from financial_math import (
    cash_flows_from_transactions,
    days_between,
    fv_contrib,
    project_goal,
    sum_by_date,
    twr,
    xirr,
    xirr_cash_flows_with_terminal_value,
)


class TestCashFlows:

    def test_investor_perspective_signs(self):
        txs = [
            {"type": "CASH_DEPOSIT", "date": "2024-01-01", "amount": 1000},
            {"type": "CASH_WITHDRAWAL", "date": "2024-02-01", "amount": 200},
        ]
        assert cash_flows_from_transactions(txs) == [
            {"date": "2024-01-01", "amount": -1000.0},
            {"date": "2024-02-01", "amount": 200.0},
        ]

    def test_trades_excluded_by_default(self):
        txs = [{"type": "BUY", "date": "2024-01-01", "ticker": "A", "quantity": 2, "price": 10}]
        assert cash_flows_from_transactions(txs) == []

    def test_trades_included_on_request(self):
        txs = [
            {"type": "BUY", "date": "2024-01-01", "ticker": "A", "quantity": 2, "price": 10},
            {"type": "SELL", "date": "2024-01-03", "ticker": "A", "quantity": 1, "price": 15},
            {"type": "BUY", "date": "2024-01-04", "ticker": "A", "quantity": 1},
        ]
        assert cash_flows_from_transactions(txs, include_trades=True) == [
            {"date": "2024-01-01", "amount": -20.0},
            {"date": "2024-01-03", "amount": 15.0},
        ]

    def test_same_day_flows_merge_and_zero_drops(self):
        flows = [
            {"date": "2024-01-02", "amount": -100},
            {"date": "2024-01-01", "amount": 50},
            {"date": "2024-01-02", "amount": -25},
            {"date": "2024-01-03", "amount": 0},
            {"date": "bad", "amount": 10},
        ]
        assert sum_by_date(flows) == [
            {"date": "2024-01-01", "amount": 50.0},
            {"date": "2024-01-02", "amount": -125.0},
        ]

    def test_terminal_value_is_appended(self):
        flows = xirr_cash_flows_with_terminal_value([{"date": "2024-01-01", "amount": -100}], "2024-12-31", 110)
        assert flows[-1] == {"date": "2024-12-31", "amount": 110.0}


class TestTwr:

    def test_deposit_does_not_count_as_return(self):
        series = [
            {"date": "2024-01-01", "value": 1000},
            {"date": "2024-01-02", "value": 1010},
            {"date": "2024-01-03", "value": 1010},
            {"date": "2024-01-04", "value": 1010},
            {"date": "2024-01-05", "value": 1510},
        ]
        flows = [{"date": "2024-01-05", "amount": -500}]
        assert twr(series, flows) == pytest.approx(0.01)

    def test_matches_simple_return_without_flows(self):
        series = [{"date": "2024-01-01", "value": 100}, {"date": "2024-03-01", "value": 125}]
        assert twr(series, []) == pytest.approx(0.25)

    def test_accepts_pandas_series(self):
        s = pd.Series([100.0, 110.0], index=pd.to_datetime(["2024-01-01", "2024-01-02"]))
        assert twr(s, []) == pytest.approx(0.10)

    def test_needs_two_points(self):
        assert twr([{"date": "2024-01-01", "value": 100}], []) is None
        assert twr([], []) is None

    def test_all_steps_from_zero_is_none(self):
        series = [{"date": "2024-01-01", "value": 0}, {"date": "2024-01-02", "value": 100}]
        assert twr(series, []) is None


class TestXirr:

    def test_ten_percent_over_one_year(self):
        flows = [{"date": "2023-01-01", "amount": -1000}, {"date": "2024-01-01", "amount": 1100}]
        assert xirr(flows) == pytest.approx(0.10, abs=1e-4)

    def test_negative_return(self):
        flows = [{"date": "2023-01-01", "amount": -1000}, {"date": "2024-01-01", "amount": 900}]
        assert xirr(flows) == pytest.approx(-0.10, abs=1e-4)

    def test_deposits_only_is_none(self):
        flows = [{"date": "2023-01-01", "amount": -1000}, {"date": "2023-06-01", "amount": -500}]
        assert xirr(flows) is None

    def test_single_flow_is_none(self):
        assert xirr([{"date": "2023-01-01", "amount": -1000}]) is None

    def test_multiple_flows_solve_npv(self):
        flows = [
            {"date": "2023-01-01", "amount": -1000},
            {"date": "2023-07-01", "amount": -500},
            {"date": "2024-01-01", "amount": 1650},
        ]
        r = xirr(flows)
        assert r is not None
        npv = sum(f["amount"] / (1 + r) ** (days_between("2023-01-01", f["date"]) / 365.0) for f in flows)
        assert npv == pytest.approx(0.0, abs=1e-4)

    def test_bisection_finds_root_when_newton_gives_up(self, monkeypatch):
        monkeypatch.setattr(financial_math, "XIRR_NEWTON_ITERATIONS", 0)
        flows = [{"date": "2023-01-01", "amount": -1000}, {"date": "2024-01-01", "amount": 1100}]
        assert xirr(flows) == pytest.approx(0.10, abs=1e-4)

    def test_bisection_widens_past_rate_cap(self, monkeypatch):
        monkeypatch.setattr(financial_math, "XIRR_NEWTON_ITERATIONS", 0)
        flows = [{"date": "2023-01-01", "amount": -1}, {"date": "2024-01-01", "amount": 20}]
        r = xirr(flows)

        assert r == pytest.approx(19.0, abs=1e-4)
        npv = sum(f["amount"] / (1 + r) ** (days_between("2023-01-01", f["date"]) / 365.0) for f in flows)
        assert npv == pytest.approx(0.0, abs=1e-6)

    def test_zero_derivative_without_root_is_none(self):
        # same-day flows give a flat NPV, so Newton stops and nothing brackets
        flows = [{"date": "2023-01-01", "amount": -100}, {"date": "2023-01-01", "amount": 50}]
        assert xirr(flows) is None

    def test_no_sign_change_up_to_wide_cap_is_none(self):
        flows = [{"date": "2023-01-01", "amount": -1}, {"date": "2024-01-01", "amount": 1_000_000}]
        assert xirr(flows) is None


class TestGoalProjection:

    def test_zero_rate_contributions(self):
        assert fv_contrib(100, 0.0, 2) == 2400

    def test_scenarios_bracket_expected(self):
        goal = project_goal(10000, 100, 0.06, 10)
        assert goal["pessimistic"] < goal["expected"] < goal["optimistic"]
        assert goal["pessimisticRate"] == pytest.approx(0.03)
        assert goal["optimisticRate"] == pytest.approx(0.09)
        assert goal["contributed"] == pytest.approx(10000 + 100 * 12 * 10)
        assert list(goal["path"]["year"]) == list(range(11))
        assert goal["path"]["value"].iloc[0] == pytest.approx(10000)

    def test_pessimistic_rate_floored_at_zero(self):
        goal = project_goal(1000, 0, 0.01, 5)
        assert goal["pessimisticRate"] == 0.0
        assert goal["pessimistic"] == pytest.approx(1000)
