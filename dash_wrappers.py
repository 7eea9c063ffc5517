import logging

import pandas as pd
import plotly.graph_objects as go

import config
import data_loader
import portfolio_state
from config import BENCHMARK_TICKER, GLOBAL_PALETTE
from portfolio_engine import run_engine
from portfolio_history import fetch_benchmark_series, fetch_portfolio_series, resolve_start_date
from portfolio_types import TX_TYPE_LABELS, is_trade
from report_formatting import fmt_dollar_clean, fmt_metric, fmt_pct_clean, fmt_shares
from valuation import value_for_position

logger = logging.getLogger(__name__)

# ============================================================
# GLOBAL STATE / DATA CACHE (Server-Side)
# ============================================================
_STATE_CACHE = None
_DATA_CACHE = {}

HISTORY_REQUESTS = data_loader.RequestTracker()


def get_state():
    """Current portfolio state, loading it from disk on first use."""
    global _STATE_CACHE
    if _STATE_CACHE is None:
        _STATE_CACHE = data_loader.load_state(config.PORTFOLIO_DATA_FILE) or portfolio_state.get_initial_state()
    return _STATE_CACHE


def save_state(state):
    """Replace the whole state, persist it and drop cached analytics."""
    global _STATE_CACHE
    _STATE_CACHE = state
    _DATA_CACHE.clear()
    try:
        data_loader.save_state(state, config.PORTFOLIO_DATA_FILE)
    except OSError as e:
        logger.warning("Could not save portfolio state: %s", e)
    return state


def refresh_quotes():
    """Fetch quotes for positions missing a price and merge them in."""
    state = get_state()
    tickers = portfolio_state.tickers_needing_quotes(state)
    if not tickers:
        return state

    quotes = data_loader.fetch_quotes(tickers)
    return save_state(portfolio_state.apply_quotes(state, quotes))


def record_transaction(tx):
    """Append a transaction, replay positions and price any newly held tickers."""
    state = save_state(portfolio_state.add_transaction(get_state(), tx))
    try:
        return refresh_quotes()
    except Exception as e:
        logger.warning("Quote refresh after transaction failed: %s", e)
        return state


# ============================================================
# CORE: Run Engine Wrapper
# ============================================================

def run_analytics_engine(state, interval="1d", include_trades=False):
    """
    Fetches the valuation and benchmark series for `state` and runs the
    engine over them. History failures only add to "errors".
    """
    positions = state.get("positions") or []
    series, errors = fetch_portfolio_series(positions, state.get("profile"), interval=interval)

    benchmark = []
    if series:
        start, end = resolve_start_date(positions, state.get("profile"))
        benchmark = fetch_benchmark_series(BENCHMARK_TICKER, start, end)
        if not benchmark:
            errors.append(f"Benchmark {BENCHMARK_TICKER} unavailable; beta not computed.")

    # Beta needs matching daily dates, so only daily series are compared
    metrics = run_engine(
        state,
        series=series,
        benchmark_series=benchmark if interval == "1d" else None,
        include_trades=include_trades,
    )

    return {
        "state": state,
        "interval": interval,
        "series": series,
        "benchmark": benchmark,
        "errors": errors,
        "metrics": metrics,
    }


def get_data(interval="1d", include_trades=False):
    """Cached analytics for the current state; a superseded run is not cached."""
    key = (interval, include_trades)
    if key in _DATA_CACHE:
        return _DATA_CACHE[key]

    request_id = HISTORY_REQUESTS.issue()
    data = run_analytics_engine(get_state(), interval=interval, include_trades=include_trades)

    if HISTORY_REQUESTS.is_current(request_id):
        _DATA_CACHE[key] = data
    else:
        logger.debug("Dropping superseded analytics run %s", request_id)
    return data


def refresh_data(interval="1d", include_trades=False):
    """Force refresh of the analytics cache and the market data caches."""
    _DATA_CACHE.clear()
    data_loader.clear_caches()
    return get_data(interval=interval, include_trades=include_trades)


# ============================================================
# TILES / TABLES
# ============================================================

def get_metric_tiles(metrics):
    """Display strings for the headline metrics; None renders as a placeholder."""
    needs_history = "needs more history"
    beta_txt = fmt_metric(metrics.get("beta"), kind="ratio", empty=needs_history)

    return {
        "totalValue": fmt_dollar_clean(metrics["totals"]["total"]),
        "unrealized": fmt_dollar_clean(metrics.get("unrealized")),
        "sinceStart": fmt_metric(metrics.get("sinceStartPct")),
        "periodChange": fmt_metric(metrics.get("periodChange")),
        "twr": fmt_metric(metrics.get("twr"), empty=needs_history),
        "xirr": fmt_metric(metrics.get("xirr")),
        "volatility": fmt_metric(metrics.get("volatility"), empty=needs_history),
        "maxDrawdown": fmt_metric(metrics.get("maxDrawdown"), empty=needs_history),
        "beta": beta_txt,
        "diversification": f"{metrics.get('diversificationScore', 0)}/100",
    }


def get_positions_table_data(positions):
    rows = []
    total = sum(value_for_position(p) for p in positions or [])
    for p in positions or []:
        v = value_for_position(p)
        rows.append({
            "id": p.get("id"),
            "ticker": p.get("ticker"),
            "name": p.get("name"),
            "assetClass": p.get("assetClass"),
            "accountType": p.get("accountType"),
            "quantity": fmt_shares(p.get("quantity")),
            "costBasisPerUnit": fmt_dollar_clean(p.get("costBasisPerUnit")),
            "currentPrice": fmt_dollar_clean(p.get("currentPrice")),
            "value": fmt_dollar_clean(v),
            "weight": fmt_pct_clean(v / total) if total > 0 else fmt_pct_clean(None),
        })
    rows.sort(key=lambda r: (r["accountType"] or "", r["ticker"] or ""))
    return rows


def get_transactions_table_data(transactions):
    rows = []
    for t in sorted(transactions or [], key=lambda t: t.get("date") or "", reverse=True):
        trade = is_trade(t.get("type"))
        rows.append({
            "id": t.get("id"),
            "date": t.get("date"),
            "type": TX_TYPE_LABELS.get(t.get("type"), t.get("type")),
            "accountType": t.get("accountType"),
            "ticker": t.get("ticker") if trade else "",
            "quantity": fmt_shares(t.get("quantity")) if trade else "",
            "price": fmt_dollar_clean(t.get("price")) if trade else "",
            "amount": "" if trade else fmt_dollar_clean(t.get("amount")),
        })
    return rows


def get_rebalance_table_data(result):
    return [
        {
            "ticker": r["ticker"],
            "currentWeight": fmt_pct_clean(r["currentWeight"]),
            "targetWeight": fmt_pct_clean(r["targetWeight"]),
            "buyDollars": fmt_dollar_clean(r["buyDollars"]),
            "buyShares": fmt_shares(r["buyShares"]),
            "postWeight": fmt_pct_clean(r["postWeight"]),
            "gapToTarget": fmt_pct_clean(r["gapToTarget"]),
        }
        for r in result["rows"]
    ]


# ============================================================
# CHART GENERATORS (PLOTLY)
# ============================================================

def _hex_to_rgba(hex_code, alpha=0.2):
    """Helper to convert hex to rgba string."""
    hex_code = hex_code.lstrip('#')
    return f"rgba({int(hex_code[0:2], 16)}, {int(hex_code[2:4], 16)}, {int(hex_code[4:6], 16)}, {alpha})"


def _template(theme):
    return "plotly_white" if theme == "light" else "plotly_dark"


def get_value_chart(data, theme="light"):
    """Portfolio value over time as a filled line."""
    series = data.get("series") or []
    if len(series) < 2:
        return go.Figure()

    dates = pd.to_datetime([p["date"] for p in series])
    values = [p["value"] for p in series]

    fig = go.Figure()
    fig.add_trace(go.Scatter(
        x=dates,
        y=values,
        mode='lines',
        fill='tozeroy',
        name='Portfolio Value',
        line=dict(color=GLOBAL_PALETTE[0], width=2),
        fillcolor=_hex_to_rgba(GLOBAL_PALETTE[0], 0.2),
        hovertemplate="<b>Value</b>: %{y:$,.2f}<extra></extra>"
    ))

    fig.update_layout(
        yaxis_title="Value ($)",
        template=_template(theme),
        margin=dict(l=40, r=20, t=40, b=40),
        hovermode="x unified"
    )
    return fig


def get_mix_chart(data, theme="light"):
    """Donut of current value by asset class."""
    snapshot = data["metrics"]["snapshot"]
    by_class = {k: v for k, v in snapshot["byAssetClass"].items() if v > 0}
    if not by_class:
        return go.Figure()

    labels = sorted(by_class, key=by_class.get, reverse=True)
    values = [by_class[k] for k in labels]
    total = sum(values)

    # Hide labels under 5%
    display_text = [f"{k}<br>{v / total * 100:.1f}%" if v / total >= 0.05 else "" for k, v in zip(labels, values)]

    fig = go.Figure(go.Pie(
        labels=labels,
        values=values,
        text=display_text,
        hole=0.4,
        textinfo='text',
        marker=dict(colors=GLOBAL_PALETTE),
        sort=False,
        direction='clockwise',
        rotation=-90,
        textfont=dict(color='black' if theme == 'light' else 'white'),
        hovertemplate="<b>%{label}</b><br>Value: $%{value:,.2f}<br>Share: %{percent:.2%}<extra></extra>"
    ))
    fig.update_layout(
        template=_template(theme),
        margin=dict(l=20, r=20, t=40, b=20),
    )
    return fig


def get_target_mix_chart(data, theme="light"):
    """Actual vs target bucket mix (equity / bonds / cash)."""
    metrics = data["metrics"]
    mix = metrics["totals"]["mix_pct"]
    target = metrics["targetMix"]
    buckets = ["equity", "bonds", "cash"]
    labels = ["Equity", "Bonds", "Cash/MM"]

    fig = go.Figure()
    fig.add_trace(go.Bar(
        x=labels,
        y=[mix[b] * 100 for b in buckets],
        name="Actual %",
        marker_color=GLOBAL_PALETTE[0],
        hovertemplate="<b>Actual</b>: %{y:.2f}%<extra></extra>"
    ))
    fig.add_trace(go.Bar(
        x=labels,
        y=[target[b] * 100 for b in buckets],
        name="Target %",
        marker_color=GLOBAL_PALETTE[1],
        hovertemplate="<b>Target</b>: %{y:.2f}%<extra></extra>"
    ))
    fig.update_layout(
        barmode='group',
        yaxis_title="Percentage (%)",
        template=_template(theme),
        margin=dict(l=40, r=20, t=40, b=40)
    )
    return fig


def get_drawdown_chart(data, theme="light"):
    """
    Underwater chart (drawdown from the running high) of the value series.
    """
    drawdown_series = data["metrics"]["drawdownSeries"]
    if drawdown_series.empty:
        return go.Figure()

    max_dd = float(drawdown_series.min())

    fig = go.Figure()
    fig.add_trace(go.Scatter(
        x=drawdown_series.index,
        y=drawdown_series.values,
        mode='lines',
        fill='tozeroy',
        name='Drawdown',
        line=dict(color=GLOBAL_PALETTE[2], width=1),
        fillcolor=_hex_to_rgba(GLOBAL_PALETTE[2], 0.3),
        hovertemplate="<b>Drawdown</b>: %{y:.2f}%<extra></extra>"
    ))

    if max_dd < 0:
        fig.add_annotation(
            x=drawdown_series.idxmin(), y=max_dd,
            text=f"Max Drawdown: {max_dd:.2f}%",
            showarrow=True,
            arrowhead=1,
            yshift=-10
        )

    fig.update_layout(
        yaxis_title="Drawdown (%)",
        template=_template(theme),
        margin=dict(l=40, r=40, t=40, b=40),
        hovermode="x unified",
    )
    return fig


def get_projections_chart(goal, theme="light"):
    """Expected path of the goal projection, with the scenario endpoints marked."""
    path = goal["path"]
    if path.empty:
        return go.Figure()

    fig = go.Figure()
    fig.add_trace(go.Scatter(
        x=path["year"], y=path["value"],
        mode='lines',
        fill='tozeroy',
        name="Expected",
        line=dict(color=GLOBAL_PALETTE[0], width=2),
        fillcolor=_hex_to_rgba(GLOBAL_PALETTE[0], 0.15),
        hovertemplate="<b>Year %{x}</b>: %{y:$,.2f}<extra></extra>"
    ))

    last_year = int(path["year"].iloc[-1])
    for i, key in enumerate(("pessimistic", "optimistic"), start=1):
        fig.add_trace(go.Scatter(
            x=[last_year], y=[goal[key]],
            mode='markers',
            name=key.capitalize(),
            marker=dict(color=GLOBAL_PALETTE[i], size=10),
            hovertemplate=f"<b>{key.capitalize()}</b>: %{{y:$,.2f}}<extra></extra>"
        ))

    fig.update_layout(
        xaxis_title="Years",
        yaxis_title="Portfolio Value ($)",
        template=_template(theme),
        hovermode="x unified"
    )
    return fig


def get_rebalance_chart(result, theme="light"):
    """Current vs post-trade weight per ticker."""
    rows = result.get("rows") or []
    if not rows:
        return go.Figure()

    tickers = [r["ticker"] for r in rows]
    fig = go.Figure()
    fig.add_trace(go.Bar(
        x=tickers, y=[r["currentWeight"] * 100 for r in rows],
        name="Current %", marker_color=GLOBAL_PALETTE[0],
    ))
    fig.add_trace(go.Bar(
        x=tickers, y=[r["postWeight"] * 100 for r in rows],
        name="After %", marker_color=GLOBAL_PALETTE[1],
    ))
    fig.add_trace(go.Scatter(
        x=tickers, y=[r["targetWeight"] * 100 for r in rows],
        mode='markers', name="Target %",
        marker=dict(color=GLOBAL_PALETTE[2], size=10, symbol="diamond"),
    ))
    fig.update_layout(
        barmode='group',
        yaxis_title="Weight (%)",
        template=_template(theme),
        margin=dict(l=40, r=20, t=40, b=40)
    )
    return fig
