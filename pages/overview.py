from dash import dcc, html, callback, Input, Output
import dash_bootstrap_components as dbc

import dash_wrappers as dw
from components.ai_brief import build_insights_markdown
from components.kpi_card import create_kpi_card, data_status_alert, sign_of
from report_formatting import fmt_dollar_clean, fmt_metric

layout = html.Div([
    html.Div(id='overview-status-container', className="mb-2"),

    # KPI Row
    dbc.Row([
        dbc.Col(html.Div(id='kpi-val-card', style={'height': '100%'}), width=3),
        dbc.Col(html.Div(id='kpi-unrealized-card', style={'height': '100%'}), width=3),
        dbc.Col(html.Div(id='kpi-since-start-card', style={'height': '100%'}), width=3),
        dbc.Col(html.Div(id='kpi-period-card', style={'height': '100%'}), width=3),
    ], className="mb-4 g-2"),

    # Chart Row
    dbc.Row([
        dbc.Col(dbc.Card([
            html.H5("Portfolio Value", className="card-title p-2"),
            dcc.Loading(dcc.Graph(id='overview-value-chart', style={'height': '360px'}))
        ]), width=8),
        dbc.Col(dbc.Card([
            html.H5("Mix by Asset Class", className="card-title p-2"),
            dcc.Graph(id='overview-mix-chart', style={'height': '360px'})
        ]), width=4),
    ], className="mb-4"),

    # Diversification & Target Row
    dbc.Row([
        dbc.Col(dbc.Card([
            html.H5("Diversification", className="card-title p-2"),
            html.Div(id='diversification-container', className="p-2")
        ]), width=5),
        dbc.Col(dbc.Card([
            html.H5("Actual vs Target Mix", className="card-title p-2"),
            dcc.Graph(id='overview-target-chart', style={'height': '300px'})
        ]), width=7),
    ], className="mb-4"),

    # Insights
    dbc.Row([
        dbc.Col(dbc.Card([
            dbc.CardHeader([html.I(className="bi bi-robot me-2"), "Portfolio Insights"]),
            dbc.CardBody(dcc.Loading(dcc.Markdown(id='insights-content', children="Generating summary...")))
        ], className="mb-4 shadow-sm border-primary"), width=12)
    ]),
])


def _diversification_panel(score, details):
    if not details.get("topHoldingTicker"):
        return html.P("Add positions to see a diversification score.", className="text-muted")

    items = [
        html.H3(f"{score}/100", className="mb-0"),
        html.Div(f"{details['tier']}: {details['tierHint']}", className="text-muted mb-2"),
        html.Div(f"Top holding: {details['topHoldingTicker']} ({fmt_metric(details['topHoldingPct'])})"),
        html.Div(f"Top 3: {fmt_metric(details['top3Pct'])}", className="mb-2"),
    ]

    if details["warnings"]["topHolding"] or details["warnings"]["top3"]:
        items.append(dbc.Badge("Concentration flag", color="warning", className="mb-2"))

    items.append(html.Ul([html.Li(w, className="small") for w in details.get("why") or []]))
    return html.Div(items)


@callback(
    [Output('overview-status-container', 'children'),
     Output('kpi-val-card', 'children'),
     Output('kpi-unrealized-card', 'children'),
     Output('kpi-since-start-card', 'children'),
     Output('kpi-period-card', 'children'),
     Output('overview-value-chart', 'figure'),
     Output('overview-mix-chart', 'figure'),
     Output('overview-target-chart', 'figure'),
     Output('diversification-container', 'children'),
     Output('insights-content', 'children')],
    [Input('data-signal', 'data'),
     Input('theme-store', 'data'),
     Input('interval-store', 'data'),
     Input('include-trades-store', 'data')]
)
def update_overview(signal, theme, interval, include_trades):
    data = dw.get_data(interval=interval or "1d", include_trades=bool(include_trades))
    metrics = data["metrics"]
    state = data["state"]
    tiles = dw.get_metric_tiles(metrics)

    val_card = create_kpi_card("Total Portfolio Value", tiles["totalValue"])
    unrealized_card = create_kpi_card("Unrealized Gain/Loss", tiles["unrealized"], is_positive=sign_of(metrics["unrealized"]))

    since_dollar = metrics["sinceStartDollar"]
    since_card = create_kpi_card(
        "Since Start",
        tiles["sinceStart"],
        subtext=fmt_dollar_clean(since_dollar) if since_dollar is not None else None,
        is_positive=sign_of(since_dollar),
    )
    period_card = create_kpi_card(
        "1-Period Change",
        tiles["periodChange"],
        subtext=metrics["riskAlignment"],
        is_positive=sign_of(metrics["periodChange"]),
    )

    insights = build_insights_markdown(
        state.get("profile"),
        state.get("positions"),
        snapshot=metrics["snapshot"],
        score=metrics["diversificationScore"],
        details=metrics["diversification"],
        metrics=metrics,
    )

    return (
        data_status_alert(data["errors"]),
        val_card,
        unrealized_card,
        since_card,
        period_card,
        dw.get_value_chart(data, theme),
        dw.get_mix_chart(data, theme),
        dw.get_target_mix_chart(data, theme),
        _diversification_panel(metrics["diversificationScore"], metrics["diversification"]),
        insights,
    )
