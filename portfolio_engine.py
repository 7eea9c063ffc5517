import logging
from datetime import date

import pandas as pd

import diversification
from config import BETA_MIN_SAMPLES, DEFAULT_GOAL_RETURN
from financial_math import (
    cash_flows_from_transactions,
    project_goal,
    twr,
    xirr,
    xirr_cash_flows_with_terminal_value,
)
from portfolio_types import target_mix_for_risk, to_number
from risk_metrics import (
    annualized_volatility,
    beta_from_return_series,
    compute_drawdown_series,
    daily_returns,
    max_drawdown,
)
from valuation import compute_snapshot, compute_totals, cost_basis_total

logger = logging.getLogger(__name__)

DEFAULT_GOAL_YEARS = 10

# Equity drift (in points) before the mix reads as off-target
ALIGNMENT_BAND = 10


def series_to_frame(series):
    """[{"date", "value"}] -> pd.Series of values indexed by Timestamp."""
    if series is None:
        return pd.Series(dtype=float)
    if isinstance(series, pd.Series):
        return series.sort_index()

    rows = [(p.get("date"), p.get("value")) for p in series if isinstance(p, dict)]
    if not rows:
        return pd.Series(dtype=float)

    s = pd.Series(
        [to_number(v) for _, v in rows],
        index=pd.to_datetime([d for d, _ in rows], errors="coerce"),
        dtype=float,
    )
    s = s[s.index.notna()]
    return s[~s.index.duplicated(keep="last")].sort_index()


def risk_alignment(mix, target, total):
    if total <= 0:
        return "No positions yet"

    delta_equity = round((mix["equity"] - target["equity"]) * 100)
    if delta_equity > ALIGNMENT_BAND:
        return "More aggressive than target"
    if delta_equity < -ALIGNMENT_BAND:
        return "More conservative than target"
    return "Roughly aligned with target"


def since_start(values):
    """Dollar and percent change from the first to the last point of the series."""
    if values.empty or len(values) < 2:
        return None, None

    base = float(values.iloc[0])
    last = float(values.iloc[-1])
    if base <= 0:
        return None, None

    return last - base, (last - base) / base


def period_change(values):
    if len(values) < 2:
        return None

    prev = float(values.iloc[-2])
    return (float(values.iloc[-1]) - prev) / max(prev, 1.0)


def run_engine(state, series=None, benchmark_series=None, include_trades=False, today=None, goal_return=None):
    """
    Runs the full calculation pipeline over a portfolio state and returns one
    metrics dict. Any metric that cannot be computed (not enough history, no
    sign change for XIRR, too few aligned benchmark samples) stays None.

    `series` and `benchmark_series` are [{"date", "value"}] valuation points,
    typically from portfolio_history.fetch_portfolio_series /
    fetch_benchmark_series. Neither is fetched here.
    """
    state = state or {}
    positions = state.get("positions") or []
    profile = state.get("profile") or {}
    transactions = state.get("transactions") or []
    if series is None:
        series = []
    today = today or date.today()

    totals = compute_totals(positions)
    snapshot = compute_snapshot(state)
    total_cost = sum(cost_basis_total(p) for p in positions)

    # =============================================================
    # MIX / DIVERSIFICATION
    # =============================================================
    risk_level = profile.get("riskLevel")
    target = target_mix_for_risk(risk_level)
    div_score, div_details = diversification.score(positions, risk_level)

    # =============================================================
    # RETURNS
    # =============================================================
    values = series_to_frame(series)
    flows = cash_flows_from_transactions(transactions, include_trades=include_trades)
    twr_value = twr(series, flows)

    xirr_value = None
    if flows:
        terminal_date = values.index[-1].strftime("%Y-%m-%d") if not values.empty else today.isoformat()
        xirr_flows = xirr_cash_flows_with_terminal_value(flows, terminal_date, totals["total"])
        xirr_value = xirr(xirr_flows)
        if xirr_value is None:
            logger.debug("XIRR did not converge for %d flows", len(xirr_flows))

    # =============================================================
    # RISK
    # =============================================================
    port_returns = daily_returns(series)
    volatility = annualized_volatility(port_returns)
    mdd = max_drawdown(series)

    beta, beta_samples = None, 0
    if benchmark_series is not None and len(benchmark_series):
        beta, beta_samples = beta_from_return_series(
            port_returns, daily_returns(benchmark_series), min_samples=BETA_MIN_SAMPLES
        )

    dd_series, _, recovery_days = compute_drawdown_series(values)
    start_dollar, start_pct = since_start(values)

    # =============================================================
    # GOAL PROJECTION
    # =============================================================
    years = profile.get("investmentHorizonYears") or DEFAULT_GOAL_YEARS
    goal = project_goal(
        totals["total"],
        profile.get("monthlyContribution") or 0,
        DEFAULT_GOAL_RETURN if goal_return is None else goal_return,
        years,
    )

    return {
        "totals": totals,
        "snapshot": snapshot,
        "totalCost": total_cost,
        "unrealized": totals["total"] - total_cost,
        "targetMix": target,
        "riskAlignment": risk_alignment(totals["mix_pct"], target, totals["total"]),
        "diversificationScore": div_score,
        "diversification": div_details,
        "cashFlows": flows,
        "twr": twr_value,
        "xirr": xirr_value,
        "volatility": volatility,
        "maxDrawdown": mdd,
        "beta": beta,
        "betaSamples": beta_samples,
        "drawdownSeries": dd_series,
        "recoveryDays": recovery_days,
        "sinceStartDollar": start_dollar,
        "sinceStartPct": start_pct,
        "periodChange": period_change(values),
        "goal": goal,
    }
