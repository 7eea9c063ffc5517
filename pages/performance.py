from dash import dcc, html, callback, Input, Output
import dash_bootstrap_components as dbc
import dash_ag_grid as dag

import dash_wrappers as dw
from components.kpi_card import create_kpi_card, data_status_alert, sign_of
from config import BENCHMARK_TICKER, BETA_MIN_SAMPLES
from report_formatting import fmt_dollar_clean, fmt_metric

layout = html.Div([
    html.Div(id='perf-status-container', className="mb-2"),

    # Returns & Risk tiles
    dbc.Row([
        dbc.Col(html.Div(id='perf-twr-card', style={'height': '100%'}), width=2),
        dbc.Col(html.Div(id='perf-xirr-card', style={'height': '100%'}), width=2),
        dbc.Col(html.Div(id='perf-vol-card', style={'height': '100%'}), width=3),
        dbc.Col(html.Div(id='perf-mdd-card', style={'height': '100%'}), width=2),
        dbc.Col(html.Div(id='perf-beta-card', style={'height': '100%'}), width=3),
    ], className="mb-4 g-2"),

    dbc.Row([
        dbc.Col(dbc.Card([
            html.H5("Portfolio Value", className="card-title p-2"),
            dcc.Loading(dcc.Graph(id='perf-value-chart'))
        ]), width=12, className="mb-4"),
    ]),

    dbc.Row([
        dbc.Col(dbc.Card([
            html.H5("Drawdown (Underwater)", className="card-title p-2"),
            dcc.Graph(id='perf-drawdown-chart')
        ]), width=7, className="mb-4"),
        dbc.Col(dbc.Card([
            html.H5("External Cash Flows", className="card-title p-2"),
            html.Small("Investor perspective: deposits negative, withdrawals positive.", className="text-muted px-2"),
            html.Div(id='perf-flows-container', className="p-2")
        ]), width=5, className="mb-4"),
    ]),

    dbc.Row([
        dbc.Col(dbc.Card([
            html.H5("Goal Projection", className="card-title p-2"),
            html.Div(id='perf-goal-summary', className="px-2"),
            dcc.Graph(id='perf-goal-chart')
        ]), width=12, className="mb-4"),
    ]),
])


@callback(
    [Output('perf-status-container', 'children'),
     Output('perf-twr-card', 'children'),
     Output('perf-xirr-card', 'children'),
     Output('perf-vol-card', 'children'),
     Output('perf-mdd-card', 'children'),
     Output('perf-beta-card', 'children'),
     Output('perf-value-chart', 'figure'),
     Output('perf-drawdown-chart', 'figure'),
     Output('perf-flows-container', 'children'),
     Output('perf-goal-summary', 'children'),
     Output('perf-goal-chart', 'figure')],
    [Input('data-signal', 'data'),
     Input('theme-store', 'data'),
     Input('interval-store', 'data'),
     Input('include-trades-store', 'data')]
)
def update_performance(signal, theme, interval, include_trades):
    data = dw.get_data(interval=interval or "1d", include_trades=bool(include_trades))
    metrics = data["metrics"]
    tiles = dw.get_metric_tiles(metrics)

    twr_card = create_kpi_card("TWR (Cumulative)", tiles["twr"], is_positive=sign_of(metrics["twr"]))
    xirr_card = create_kpi_card(
        "XIRR (Annualized)",
        tiles["xirr"],
        subtext="incl. trades" if include_trades else "cash flows only",
        is_positive=sign_of(metrics["xirr"]),
    )
    vol_card = create_kpi_card("Volatility (Ann.)", tiles["volatility"])

    recovery = metrics["recoveryDays"]
    mdd_card = create_kpi_card(
        "Max Drawdown",
        tiles["maxDrawdown"],
        subtext=f"{recovery} days to recover" if metrics["maxDrawdown"] else None,
    )

    if interval and interval != "1d":
        beta_sub = "daily resolution only"
    else:
        beta_sub = f"vs {BENCHMARK_TICKER}, {metrics['betaSamples']}/{BETA_MIN_SAMPLES} samples"
    beta_card = create_kpi_card("Beta", tiles["beta"], subtext=beta_sub)

    flows = metrics["cashFlows"]
    if flows:
        flows_table = dag.AgGrid(
            id="perf-flows-grid",
            rowData=[{"Date": f["date"], "Amount": fmt_dollar_clean(f["amount"])} for f in flows],
            columnDefs=[{"field": "Date"}, {"field": "Amount"}],
            defaultColDef={"flex": 1, "sortable": True, "resizable": True},
            className="ag-theme-alpine-dark",
            dashGridOptions={"domLayout": "autoHeight"},
        )
    else:
        flows_table = html.P("No deposits or withdrawals recorded.", className="text-muted")

    goal = metrics["goal"]
    goal_summary = html.Div([
        html.Span(f"Expected: {fmt_dollar_clean(goal['expected'], 0)}", className="me-4"),
        html.Span(
            f"Pessimistic ({fmt_metric(goal['pessimisticRate'])}): {fmt_dollar_clean(goal['pessimistic'], 0)}",
            className="me-4",
        ),
        html.Span(f"Optimistic ({fmt_metric(goal['optimisticRate'])}): {fmt_dollar_clean(goal['optimistic'], 0)}"),
    ], className="small")

    return (
        data_status_alert(data["errors"]),
        twr_card,
        xirr_card,
        vol_card,
        mdd_card,
        beta_card,
        dw.get_value_chart(data, theme),
        dw.get_drawdown_chart(data, theme),
        flows_table,
        goal_summary,
        dw.get_projections_chart(goal, theme),
    )
