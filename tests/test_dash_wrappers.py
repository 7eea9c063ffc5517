"""Tests for the server-side cache, table rows and chart builders."""

import plotly.graph_objects as go
import pytest

import dash_wrappers as dw

SERIES = [{"date": f"2024-01-{d:02d}", "value": 1000.0 + d} for d in range(1, 26)]


@pytest.fixture
def wired(monkeypatch, sample_state):
    """dash_wrappers with storage and history replaced by in-memory fakes."""
    saved = []
    calls = {"series": 0}

    def fake_series(positions, profile=None, interval="1d"):
        calls["series"] += 1
        return list(SERIES), []

    monkeypatch.setattr(dw, "_STATE_CACHE", sample_state)
    monkeypatch.setattr(dw, "_DATA_CACHE", {})
    monkeypatch.setattr(dw.data_loader, "save_state", lambda state, path: saved.append(state))
    monkeypatch.setattr(dw, "fetch_portfolio_series", fake_series)
    monkeypatch.setattr(dw, "fetch_benchmark_series", lambda ticker, start, end: [])
    return {"saved": saved, "calls": calls}


class TestCache:

    def test_get_data_is_cached_per_key(self, wired):
        first = dw.get_data("1d", False)
        second = dw.get_data("1d", False)

        assert first is second
        assert wired["calls"]["series"] == 1
        dw.get_data("1d", True)
        assert wired["calls"]["series"] == 2

    def test_save_state_persists_and_invalidates(self, wired, sample_state):
        dw.get_data()
        dw.save_state({**sample_state, "positions": []})

        assert len(wired["saved"]) == 1
        assert dw.get_state()["positions"] == []
        dw.get_data()
        assert wired["calls"]["series"] == 2

    def test_missing_benchmark_is_reported(self, wired):
        data = dw.get_data()
        assert any("Benchmark" in e for e in data["errors"])
        assert data["metrics"]["beta"] is None
        assert data["metrics"]["twr"] == pytest.approx(1025 / 1001 - 1)

    def test_refresh_quotes_skips_priced_portfolio(self, wired, monkeypatch):
        def no_network(tickers):
            raise AssertionError("quotes should not be fetched")

        monkeypatch.setattr(dw.data_loader, "fetch_quotes", no_network)
        dw.refresh_quotes()
        assert wired["saved"] == []

    def test_record_transaction_prices_new_ticker(self, wired, monkeypatch):
        requested = []

        def fake_quotes(tickers):
            requested.extend(tickers)
            return {"QQQ": {"price": 401.0}}

        monkeypatch.setattr(dw.data_loader, "fetch_quotes", fake_quotes)
        dw.record_transaction({"type": "BUY", "date": "2024-03-01", "ticker": "QQQ",
                               "quantity": 1, "price": 400, "accountType": "Taxable"})

        qqq = next(p for p in dw.get_state()["positions"] if p["ticker"] == "QQQ")
        assert "QQQ" in requested
        assert qqq["currentPrice"] == 401.0
        assert len(wired["saved"]) == 2

    def test_record_transaction_survives_quote_failure(self, wired, monkeypatch):
        def broken(tickers):
            raise ConnectionError("offline")

        monkeypatch.setattr(dw.data_loader, "fetch_quotes", broken)
        state = dw.record_transaction({"type": "BUY", "date": "2024-03-01", "ticker": "QQQ",
                                       "quantity": 1, "price": 400, "accountType": "Taxable"})

        assert any(p["ticker"] == "QQQ" for p in state["positions"])
        assert len(wired["saved"]) == 1

    def test_refresh_data_drops_market_data_caches(self, wired, monkeypatch):
        monkeypatch.setattr(dw.data_loader, "_PRICE_CACHE", {("AAA",): "stale"})
        monkeypatch.setattr(dw.data_loader, "_METADATA_CACHE", {"AAA": {"name": "A"}})
        dw.refresh_data()
        assert dw.data_loader._PRICE_CACHE == {}
        assert dw.data_loader._METADATA_CACHE == {}


class TestTablesAndCharts:

    def test_metric_tiles_placeholders(self, wired):
        tiles = dw.get_metric_tiles(dw.get_data()["metrics"])
        assert tiles["beta"] == "needs more history"
        assert tiles["totalValue"] == "$4,500.00"

    def test_positions_rows(self, sample_positions):
        rows = dw.get_positions_table_data(sample_positions)
        assert [r["ticker"] for r in rows] == ["BND", "SPAXX", "VTI"]
        assert rows[0]["weight"] == "32.22%"

    def test_transaction_rows_newest_first(self):
        rows = dw.get_transactions_table_data([
            {"id": "a", "type": "CASH_DEPOSIT", "date": "2024-01-01", "amount": 10},
            {"id": "b", "type": "BUY", "date": "2024-02-01", "ticker": "VTI", "quantity": 1, "price": 5},
        ])
        assert [r["id"] for r in rows] == ["b", "a"]
        assert rows[0]["type"] == "Buy"
        assert rows[1]["ticker"] == ""

    def test_charts_are_figures(self, wired):
        data = dw.get_data()
        for fig in (
            dw.get_value_chart(data, "dark"),
            dw.get_mix_chart(data),
            dw.get_target_mix_chart(data),
            dw.get_drawdown_chart(data),
            dw.get_projections_chart(data["metrics"]["goal"]),
        ):
            assert isinstance(fig, go.Figure)
        assert dw.get_value_chart(data, "dark").layout.template.layout.paper_bgcolor is not None

    def test_value_chart_needs_two_points(self):
        assert len(dw.get_value_chart({"series": SERIES[:1]}).data) == 0
