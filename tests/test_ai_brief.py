"""Tests for the markdown portfolio brief."""

from components.ai_brief import (
    build_insights_markdown,
    concentration_warnings,
    drift_summary,
    portfolio_label,
    top_holdings,
)
import diversification


class TestBriefHelpers:

    def test_top_holdings_merge_accounts(self, sample_positions):
        extra = {**sample_positions[0], "id": "p2", "accountType": "Roth IRA"}
        top = top_holdings(sample_positions + [extra], n=2)
        assert [r["ticker"] for r in top] == ["VTI", "BND"]
        assert top[0]["value"] == 5000

    def test_concentration_flags(self):
        top = [{"ticker": "A", "weight": 0.5}, {"ticker": "B", "weight": 0.3}, {"ticker": "C", "weight": 0.1}]
        warnings = concentration_warnings(top)
        assert any("**A** is 50%" in w for w in warnings)
        assert any("Top 3 holdings are 90%" in w for w in warnings)

    def test_labels(self):
        assert portfolio_label({"cash": 0.4, "equity": 0.6}, 50, 0.1) == "Cash-Heavy Builder"
        assert portfolio_label({"cash": 0.0, "equity": 0.9}, 50, 0.3) == "Concentration Tilt"
        assert portfolio_label({"cash": 0.0, "equity": 0.9}, 50, 0.1) == "High-Equity Accelerator"

    def test_drift_summary_picks_largest_gap(self):
        mix = {"equity": 0.685, "bonds": 0.2, "cash": 0.115}
        target = {"equity": 0.6, "bonds": 0.3, "cash": 0.1}
        assert drift_summary(mix, target) == ("Bonds", "under by 10%")


class TestBuildInsights:

    def test_sections_present(self, sample_state):
        score, details = diversification.score(sample_state["positions"], 3)
        md = build_insights_markdown(sample_state["profile"], sample_state["positions"], score=score, details=details)

        for heading in (
            "# Portfolio Insights",
            "## Snapshot",
            "## Signals (what stands out)",
            "## Next best actions (3 moves)",
            "## Rebalance Table (bucket-level)",
            "## Implementation",
        ):
            assert heading in md
        assert "Roth IRA" in md
        assert "| Equity |" in md
        assert md.rstrip().endswith("Educational and informational purposes only.")

    def test_metrics_line(self, sample_state):
        md = build_insights_markdown(
            sample_state["profile"], sample_state["positions"], metrics={"twr": 0.1234, "xirr": None}
        )
        assert "TWR **12.34%** | XIRR **—**" in md

    def test_empty_portfolio(self):
        md = build_insights_markdown(None, [])
        assert "Value: **$0**" in md
        assert "Concentration:" not in md
