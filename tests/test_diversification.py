"""Tests for the diversification score."""

import diversification


def _pos(ticker, value, asset_class="ETF"):
    return {"ticker": ticker, "assetClass": asset_class, "quantity": 1, "currentPrice": value}


class TestScore:

    def test_empty_portfolio(self):
        value, details = diversification.score([])
        assert value == 0
        assert details["topHoldingTicker"] is None
        assert details["tier"] == "Poor"

    def test_zero_value_portfolio(self):
        value, _ = diversification.score([_pos("A", 0)])
        assert value == 0

    def test_single_holding(self):
        value, details = diversification.score([_pos("A", 1000)])
        # 0.4 * 1/12 + 0.4 * 0 + 0.2 * 1/5
        assert value == 7
        assert details["topHoldingTicker"] == "A"
        assert details["warnings"] == {"topHolding": True, "top3": True}

    def test_score_in_range_and_tiers(self):
        positions = [
            _pos(f"T{i}", 100, cls)
            for i, cls in enumerate(["ETF", "Bond", "Cash", "Equity", "Other", "Crypto"] * 2)
        ]
        value, details = diversification.score(positions)
        assert 0 <= value <= 100
        assert value >= 85
        assert details["tier"] == "Excellent"
        assert details["warnings"] == {"topHolding": False, "top3": False}

    def test_more_equal_holdings_never_score_lower(self):
        scores = [diversification.score([_pos(f"T{i}", 100) for i in range(n)])[0] for n in range(1, 15)]
        assert scores == sorted(scores)

    def test_splitting_a_position_never_lowers_score(self):
        whole = [_pos("VTI", 800), _pos("BND", 200, "Bond")]
        split = [
            {**_pos("VTI", 400), "accountType": "Taxable"},
            {**_pos("VTI", 400), "accountType": "Roth IRA"},
            _pos("BND", 200, "Bond"),
        ]
        before, _ = diversification.score(whole)
        after, details = diversification.score(split)

        assert after >= before
        assert after == before
        assert details["topHoldingPct"] == 0.8

    def test_same_ticker_across_accounts_is_one_holding(self):
        a = [_pos("VTI", 500), {**_pos("VTI", 500), "accountType": "Roth IRA"}]
        _, details = diversification.score(a)
        assert details["topHoldingPct"] == 1.0
        assert len(details["topConcentrations"]) == 1

    def test_why_mentions_cash_and_bonds(self):
        positions = [_pos("VTI", 600), _pos("CASH", 400, "Cash")]
        _, details = diversification.score(positions, risk_level=1)
        text = " ".join(details["why"])
        assert "Cash/MM is 40%" in text
        assert "Bonds are 0%" in text
