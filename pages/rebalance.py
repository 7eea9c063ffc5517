import dash
from dash import dcc, html, callback, Input, Output, State
import dash_bootstrap_components as dbc
import dash_ag_grid as dag

import dash_wrappers as dw
from portfolio_types import bucket_for, finite_or_none, target_mix_for_risk
from rebalance import asset_class_targets, current_weight_targets, equal_weight_targets, rebalance
from report_formatting import fmt_dollar_clean
from valuation import value_for_position

BUCKET_LABELS = {"equity": "Equity", "bonds": "Bonds", "cash": "Cash/MM", "other": "Other"}

RESULT_COLUMNS = [
    ("ticker", "Ticker"),
    ("currentWeight", "Current %"),
    ("targetWeight", "Target %"),
    ("buyDollars", "Buy $"),
    ("buyShares", "Buy Shares"),
    ("postWeight", "After %"),
    ("gapToTarget", "Gap to Target"),
]

layout = html.Div([
    dbc.Row([
        dbc.Col([
            html.H3("Invest-Only Rebalance", className="mb-2"),
            html.P(
                "Allocate new money toward target weights without selling anything.",
                className="text-muted",
            ),
        ], width=12)
    ], className="mb-3"),

    dbc.Row([
        dbc.Col(dbc.Card([
            dbc.CardHeader("Inputs"),
            dbc.CardBody([
                dbc.Label("New Money ($)"),
                dbc.Input(id="rebal-new-money", type="number", min=0, value=1000, className="mb-3",
                          persistence=True, persistence_type='local'),

                dbc.Label("Target Mode"),
                dbc.RadioItems(
                    id="rebal-mode",
                    options=[
                        {"label": "By ticker", "value": "ticker"},
                        {"label": "By asset class", "value": "class"},
                    ],
                    value="ticker",
                    className="mb-3",
                ),

                dbc.Label("Presets"),
                html.Div([
                    dbc.Button("Equal", id="rebal-preset-equal", color="secondary", size="sm", className="me-2"),
                    dbc.Button("Current", id="rebal-preset-current", color="secondary", size="sm", className="me-2"),
                    dbc.Button("Risk Profile", id="rebal-preset-risk", color="secondary", size="sm"),
                ], className="mb-3"),

                html.Small("Targets are in percent and auto-normalize to 100%.", className="text-muted d-block mb-2"),
                dag.AgGrid(
                    id="rebal-targets-grid",
                    rowData=[],
                    columnDefs=[
                        {"field": "key", "headerName": "Target", "editable": False},
                        {"field": "targetPct", "headerName": "Weight %", "editable": True, "type": "numericColumn"},
                    ],
                    defaultColDef={"flex": 1, "resizable": True},
                    className="ag-theme-alpine-dark",
                    dashGridOptions={"domLayout": "autoHeight", "singleClickEdit": True},
                ),
            ])
        ]), width=4),

        dbc.Col(dbc.Card([
            dbc.CardHeader("Suggested Buys"),
            dbc.CardBody([
                html.Div(id="rebal-warnings"),
                html.Div(id="rebal-totals", className="small mb-2"),
                dcc.Loading(html.Div(id="rebal-results-container")),
                dcc.Graph(id="rebal-chart"),
            ])
        ]), width=8),
    ], className="mb-4"),
])


def _bucket_keys_present(positions):
    keys = []
    for p in positions:
        k = bucket_for(p.get("assetClass"))
        if k not in keys:
            keys.append(k)
    return keys


def _class_keys_present(positions):
    keys = []
    for p in positions:
        k = p.get("assetClass") or "Other"
        if k not in keys:
            keys.append(k)
    return keys


def _class_value_weights(positions):
    values = {}
    for p in positions:
        k = p.get("assetClass") or "Other"
        values[k] = values.get(k, 0.0) + value_for_position(p)
    total = sum(values.values())
    return {k: (v / total if total > 0 else 0.0) for k, v in values.items()}


@callback(
    Output("rebal-targets-grid", "rowData"),
    [Input("data-signal", "data"),
     Input("rebal-mode", "value"),
     Input("rebal-preset-equal", "n_clicks"),
     Input("rebal-preset-current", "n_clicks"),
     Input("rebal-preset-risk", "n_clicks")]
)
def build_targets(signal, mode, n_equal, n_current, n_risk):
    state = dw.get_state()
    positions = state.get("positions") or []
    trigger = dash.callback_context.triggered_id

    if mode == "class":
        if trigger == "rebal-preset-risk":
            mix = target_mix_for_risk((state.get("profile") or {}).get("riskLevel"))
            keys = _bucket_keys_present(positions)
            return [{"key": BUCKET_LABELS[k], "bucket": k, "targetPct": round(mix.get(k, 0.0) * 100, 2)} for k in keys]

        keys = _class_keys_present(positions)
        if trigger == "rebal-preset-current":
            weights = _class_value_weights(positions)
        else:
            weights = {k: 1.0 / len(keys) for k in keys} if keys else {}
        return [{"key": k, "targetPct": round(weights.get(k, 0.0) * 100, 2)} for k in keys]

    if trigger == "rebal-preset-current":
        weights = current_weight_targets(positions)
    elif trigger == "rebal-preset-risk":
        mix = target_mix_for_risk((state.get("profile") or {}).get("riskLevel"))
        weights = asset_class_targets(positions, mix)
    else:
        weights = equal_weight_targets(positions)

    return [{"key": t, "targetPct": round(w * 100, 2)} for t, w in weights.items()]


def _targets_from_rows(rows):
    """Rows use an asset class, a bucket or a ticker as key depending on mode."""
    weights = {}
    for r in rows or []:
        pct = finite_or_none(r.get("targetPct"))
        if pct is None:
            try:
                pct = float(str(r.get("targetPct")).replace("%", "").strip())
            except ValueError:
                pct = 0.0
        key = r.get("bucket") or r.get("key")
        weights[key] = weights.get(key, 0.0) + pct / 100.0
    return weights


@callback(
    [Output("rebal-warnings", "children"),
     Output("rebal-totals", "children"),
     Output("rebal-results-container", "children"),
     Output("rebal-chart", "figure")],
    [Input("rebal-new-money", "value"),
     Input("rebal-targets-grid", "rowData"),
     Input("rebal-targets-grid", "cellValueChanged"),
     Input("theme-store", "data")],
    [State("rebal-mode", "value")]
)
def update_rebalance(new_money, rows, _changed, theme, mode):
    positions = dw.get_state().get("positions") or []
    weights = _targets_from_rows(rows)

    if mode == "class":
        weights = asset_class_targets(positions, weights)

    result = rebalance(positions, weights, finite_or_none(new_money) or 0.0)

    warnings = [dbc.Alert(w, color="warning", className="py-1 px-2 mb-1 small") for w in result["warnings"]]

    t = result["totals"]
    totals = html.Div([
        html.Span(f"Current: {fmt_dollar_clean(t['curTotal'])}", className="me-3"),
        html.Span(f"After: {fmt_dollar_clean(t['postTotal'])}", className="me-3"),
        html.Span(f"Allocated: {fmt_dollar_clean(t['buySum'])}", className="me-3"),
        html.Span(f"Unallocated: {fmt_dollar_clean(t['remainder'])}"),
    ])

    if not result["rows"]:
        return warnings, totals, html.P("No positions to rebalance.", className="text-muted"), {}

    grid = dag.AgGrid(
        id="rebal-results-grid",
        rowData=dw.get_rebalance_table_data(result),
        columnDefs=[{"field": f, "headerName": h} for f, h in RESULT_COLUMNS],
        defaultColDef={"flex": 1, "minWidth": 90, "sortable": True, "resizable": True},
        className="ag-theme-alpine-dark" if theme != "light" else "ag-theme-alpine",
        dashGridOptions={"domLayout": "autoHeight"},
    )
    return warnings, totals, grid, dw.get_rebalance_chart(result, theme)
