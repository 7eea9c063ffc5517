"""Tests for the historical valuation series."""

from datetime import date

import pandas as pd
import pytest

from conftest import make_closes
from portfolio_history import (
    build_portfolio_series,
    downsample,
    fetch_benchmark_series,
    fetch_portfolio_series,
    normalize_ticker_for_history,
    resolve_start_date,
)

TODAY = date(2024, 2, 15)


class TestTickerNormalization:

    @pytest.mark.parametrize("raw, expected", [
        ("BTC/USD", "BTC-USD"),
        ("btcusd", "BTC-USD"),
        ("ETH-USD", "ETH-USD"),
        (" vti ", "VTI"),
        ("BRK/B", "BRK-B"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_ticker_for_history(raw) == expected


class TestDownsample:

    def test_monthly_keeps_last_point(self):
        pts = [{"date": d, "value": i} for i, d in enumerate(["2024-01-03", "2024-01-31", "2024-02-01", "2024-02-20"])]
        assert [p["date"] for p in downsample(pts, "1mo")] == ["2024-01-31", "2024-02-20"]

    def test_daily_is_untouched(self):
        pts = [{"date": "2024-01-03", "value": 1}]
        assert downsample(pts, "1d") is pts


class TestResolveStartDate:

    def test_earliest_purchase_date(self):
        positions = [{"purchaseDate": "2023-05-01"}, {"purchaseDate": "2022-03-04"}]
        assert resolve_start_date(positions, today=TODAY) == ("2022-03-04", "2024-02-15")

    def test_profile_start_counts(self):
        start, _ = resolve_start_date([], {"portfolioStartDate": "2021-01-01"}, today=TODAY)
        assert start == "2021-01-01"

    def test_defaults_to_one_year_back(self):
        assert resolve_start_date([], today=TODAY)[0] == "2023-02-15"

    def test_future_start_falls_back(self):
        start, _ = resolve_start_date([{"purchaseDate": "2030-01-01"}], today=TODAY)
        assert start == "2024-01-16"


class TestBuildSeries:

    def test_values_cash_plus_holdings(self):
        closes = make_closes(["VTI"], start="2024-01-02", periods=3)
        positions = [
            {"ticker": "VTI", "assetClass": "ETF", "quantity": 2},
            {"ticker": "CASH", "assetClass": "Cash", "quantity": 1, "costBasisPerUnit": 50},
        ]
        pts = build_portfolio_series(positions, closes, "2024-01-01", "2024-01-31")

        assert [p["value"] for p in pts] == [250.0, 252.0, 254.0]
        assert pts[0]["breakdown"] == {"Cash": 50.0, "VTI": 200.0}

    def test_position_masked_before_purchase(self):
        closes = make_closes(["VTI"], start="2024-01-02", periods=3)
        positions = [{"ticker": "VTI", "assetClass": "ETF", "quantity": 1, "purchaseDate": "2024-01-03"}]
        pts = build_portfolio_series(positions, closes, "2024-01-01", "2024-01-31")
        assert [p["value"] for p in pts] == [0.0, 101.0, 102.0]

    def test_missing_closes_are_forward_filled(self):
        closes = make_closes(["A"], start="2024-01-02", periods=3)
        closes.iloc[1, 0] = float("nan")
        closes["B"] = [10.0, 11.0, 12.0]
        positions = [{"ticker": "A", "assetClass": "ETF", "quantity": 1}]
        pts = build_portfolio_series(positions, closes, "2024-01-01", "2024-01-31")
        assert [p["value"] for p in pts] == [100.0, 100.0, 102.0]

    def test_single_row_is_padded_to_end(self):
        closes = make_closes(["A"], start="2024-01-02", periods=1)
        pts = build_portfolio_series([{"ticker": "A", "assetClass": "ETF", "quantity": 1}], closes,
                                     "2024-01-01", "2024-01-10")
        assert [p["date"] for p in pts] == ["2024-01-02", "2024-01-10"]

    def test_empty_closes(self):
        assert build_portfolio_series([], pd.DataFrame(), "2024-01-01", "2024-01-10") == []


class TestFetchPortfolioSeries:

    def test_uses_provider(self, sample_positions, fake_provider):
        pts, errors = fetch_portfolio_series(sample_positions, provider=fake_provider, today=TODAY)

        assert errors == []
        assert len(pts) == 30
        assert fake_provider.calls[0] == (["BND", "VTI"], "2024-01-02", "2024-02-15")
        # 10 VTI + 20 BND at 100 plus 550 cash
        assert pts[0]["value"] == pytest.approx(3550)

    def test_provider_failure_gives_flat_series(self, sample_positions, failing_provider):
        pts, errors = fetch_portfolio_series(sample_positions, provider=failing_provider, today=TODAY)

        assert len(pts) == 2
        assert pts[0]["value"] == pts[1]["value"] == pytest.approx(2500 + 1450 + 550)
        assert errors and "network down" in errors[0]

    def test_empty_history_gives_flat_series(self, sample_positions):
        def empty(tickers, start, end):
            df = pd.DataFrame()
            df.attrs["errors"] = ["History provider returned no data"]
            return df

        pts, errors = fetch_portfolio_series(sample_positions, provider=empty, today=TODAY)
        assert len(pts) == 2
        assert len(errors) == 2

    def test_cash_only_never_calls_provider(self, failing_provider):
        positions = [{"ticker": "CASH", "assetClass": "Cash", "quantity": 1, "costBasisPerUnit": 100}]
        pts, errors = fetch_portfolio_series(positions, provider=failing_provider, today=TODAY)
        assert [p["value"] for p in pts] == [100, 100]
        assert errors == []

    def test_no_positions(self, fake_provider):
        assert fetch_portfolio_series([], provider=fake_provider) == ([], [])
        assert fake_provider.calls == []


class TestBenchmark:

    def test_benchmark_points(self, fake_provider):
        pts = fetch_benchmark_series("spy", "2024-01-01", "2024-02-15", provider=fake_provider)
        assert len(pts) == 30
        assert pts[0] == {"date": "2024-01-02", "value": 100.0}

    def test_benchmark_failure_is_empty(self, failing_provider):
        assert fetch_benchmark_series("SPY", "2024-01-01", "2024-02-15", provider=failing_provider) == []
