from portfolio_types import normalize_ticker, target_mix_for_risk
from rebalance import bucket_rebalance_plan
from report_formatting import fmt_pct_clean, money0, pct0, signed_money0, signed_pct0
from valuation import compute_totals, value_for_position

BUCKET_LABELS = {"equity": "Equity", "bonds": "Bonds", "cash": "Cash/MM"}


def top_holdings(positions, n=5):
    by_ticker = {}
    total = 0.0
    for p in positions or []:
        t = normalize_ticker(p.get("ticker"))
        if not t:
            continue
        v = value_for_position(p)
        by_ticker[t] = by_ticker.get(t, 0.0) + v
        total += v

    if total <= 0:
        return []

    rows = [{"ticker": t, "value": v, "weight": v / total} for t, v in by_ticker.items()]
    rows.sort(key=lambda r: r["weight"], reverse=True)
    return rows[:n]


def concentration_warnings(top):
    out = []
    if not top:
        return out

    top1 = top[0]
    top3 = sum(r["weight"] for r in top[:3])

    if top1["weight"] > 0.2:
        out.append(f"Concentration flag: **{top1['ticker']}** is {pct0(top1['weight'])} (common target < 20%).")
    if top3 > 0.6:
        out.append(f"Concentration flag: Top 3 holdings are {pct0(top3)} (common target < 60%).")
    if 0.1 < top1["weight"] <= 0.2:
        out.append(f"Note: Top holding is {pct0(top1['weight'])}. Consider keeping single names under 10-20%.")
    return out


def portfolio_label(mix, score, top1):
    if mix["cash"] >= 0.35:
        return "Cash-Heavy Builder"
    if top1 >= 0.2:
        return "Concentration Tilt"
    if score >= 85:
        return "Balanced Operator"
    if mix["equity"] >= 0.8:
        return "High-Equity Accelerator"
    return "Steady Builder"


def drift_summary(mix, target):
    deltas = [(k, mix[k] - target[k]) for k in ("equity", "bonds", "cash")]
    bucket, d = max(deltas, key=lambda x: abs(x[1]))
    side = "over" if d >= 0 else "under"
    return BUCKET_LABELS[bucket], f"{side} by {pct0(abs(d))}"


def _move_lines(plan):
    """Render the structured bucket moves as the '2)' action."""
    lines = []
    for m in plan["moves"]:
        kind = m["kind"]
        if kind == "move":
            lines.append(
                f"- 2) Move **{money0(m['amount'])}** from **Cash/MM** to **{BUCKET_LABELS[m['to']]}** "
                "(broad, diversified funds)."
            )
        elif kind == "deploy":
            lines.append(
                f"- 2) You're overweight Cash/MM. Consider deploying **~{money0(m['amount'])}** toward your target mix."
            )
        elif kind == "sell":
            if not lines:
                lines.append(
                    f"- 2) You're under target Cash/MM by **{money0(m['cashNeeded'])}**. "
                    "Prefer new contributions, or sell small amounts of overweights:"
                )
            lines.append(f"  - Sell up to **{money0(m['amount'])}** from **{BUCKET_LABELS[m['from']]}** to **Cash/MM**")
        elif kind == "contribute":
            lines.append(f"- 2) Increase Cash/MM by **{money0(m['amount'])}** using new contributions (simplest).")
    return lines


def build_insights_markdown(profile, positions, snapshot=None, score=0, details=None, metrics=None):
    """
    Template-based portfolio brief in markdown. Reads computed metrics only;
    nothing here feeds back into portfolio state.
    """
    profile = profile or {}
    details = details or {}
    positions = positions or []

    totals = compute_totals(positions)
    mix = totals["mix_pct"]
    target = target_mix_for_risk(profile.get("riskLevel"))
    plan = bucket_rebalance_plan(totals["total"], totals["mix_dollar"], target)

    top = top_holdings(positions, 5)
    warnings = concentration_warnings(top)
    has_roth = any(p.get("accountType") == "Roth IRA" for p in positions)

    horizon = profile.get("investmentHorizonYears") or 20
    goal = profile.get("primaryGoal") or "Wealth Building"
    risk = profile.get("riskLevel") or 3

    top1_pct = details.get("topHoldingPct")
    if top1_pct is None:
        top1_pct = top[0]["weight"] if top else 0.0
    top3_pct = details.get("top3Pct")
    if top3_pct is None:
        top3_pct = sum(r["weight"] for r in top[:3])

    lines = ["# Portfolio Insights", "> Educational only. Not financial advice.", ""]

    # Snapshot
    lines.append("## Snapshot")
    lines.append(
        f"- Portfolio DNA: **{portfolio_label(mix, score, top1_pct)}** | Risk **{risk}/5** | "
        f"Horizon **{horizon}y** | Goal **{goal}**"
    )
    lines.append(f"- Mix now: **Equity {pct0(mix['equity'])} / Bonds {pct0(mix['bonds'])} / Cash-MM {pct0(mix['cash'])}**")
    lines.append(
        f"- Target mix: **Equity {pct0(target['equity'])} / Bonds {pct0(target['bonds'])} / Cash-MM {pct0(target['cash'])}**"
    )
    if snapshot:
        pl_pct = snapshot.get("totalGainLossPercent") or 0.0
        lines.append(
            f"- Value: **{money0(snapshot.get('totalValue'))}** | P/L: **{money0(snapshot.get('totalGainLossDollar'))}** "
            f"({pl_pct:.2f}%)"
        )
    else:
        lines.append(f"- Value: **{money0(totals['total'])}**")

    if metrics:
        twr_txt = fmt_pct_clean(metrics.get("twr"))
        xirr_txt = fmt_pct_clean(metrics.get("xirr"))
        lines.append(f"- Returns: TWR **{twr_txt}** | XIRR **{xirr_txt}**")
    lines.append("")

    # Signals
    lines.append("## Signals (what stands out)")
    lines.append(f"- Diversification: **{score}/100** ({details.get('tier') or '—'})")
    if top:
        lines.append(
            f"- Concentration: top holding **{top[0]['ticker']}** at **{pct0(top1_pct)}** | top 3 at **{pct0(top3_pct)}**"
        )
    bucket, summary = drift_summary(mix, target)
    lines.append(f"- Biggest drift: **{bucket}** ({summary})")
    for w in warnings[:2]:
        lines.append(f"- {w}")
    lines.append("")

    # Actions
    lines.append("## Next best actions (3 moves)")
    if has_roth:
        lines.append("- 1) Rebalance inside your **Roth IRA** first (often avoids taxes), then adjust taxable if needed.")
    else:
        lines.append(
            "- 1) Rebalance in the lowest-tax-impact accounts first (retirement if applicable), then taxable if needed."
        )
    move_lines = _move_lines(plan)
    if move_lines:
        lines.extend(move_lines)
    else:
        lines.append("- 2) Use new contributions to close the largest gap first (usually simplest and tax-friendly).")
    lines.append(
        "- 3) Set a rule: rebalance when a bucket drifts **~5-10%** from target (or quarterly), "
        "and keep single-name exposure intentional."
    )
    lines.append("")

    # Bucket table
    lines.append("## Rebalance Table (bucket-level)")
    lines.append("| Bucket | Current % | Target % | Delta % | $ to move |")
    lines.append("|---|---:|---:|---:|---:|")
    for row in plan["rows"]:
        lines.append(
            f"| {row['bucket']} | {pct0(row['currentPct'])} | {pct0(row['targetPct'])} | "
            f"{signed_pct0(row['deltaPct'])} | {signed_money0(row['deltaDollar'])} |"
        )
    lines.append("")

    # Implementation
    lines.append("## Implementation")
    source = plan["primaryFundingSource"]
    if source == "cash":
        lines.append("- You're funding from **Cash/MM**: deploy gradually (e.g. monthly) into underweight buckets.")
    elif source == "sell-overweights":
        lines.append("- Cash/MM is under target: prioritize **new contributions** first; only sell overweights if you must.")
    else:
        lines.append("- Best default: use **new money** to close gaps (simpler and often more tax-friendly).")
    lines.append("- Examples (not recommendations): equity index funds, broad bond funds, and money market for cash needs.")
    lines.append("")
    lines.append("> Disclaimer: No specific securities are recommended. Educational and informational purposes only.")

    return "\n".join(lines)
