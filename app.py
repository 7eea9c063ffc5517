import logging
from datetime import datetime

import dash
from dash import dcc, html, Input, Output, State
import dash_bootstrap_components as dbc

import config
import dash_wrappers as dw

# Import Pages
from pages import overview, performance, holdings, rebalance, transactions, settings

config.configure_logging()
logger = logging.getLogger(__name__)

# Initialize App
app = dash.Dash(
    __name__,
    external_stylesheets=[dbc.themes.CYBORG],
    suppress_callback_exceptions=True,
    title="Portfolio Tracker"
)

# Initialize State
try:
    dw.get_state()
    logger.info("Portfolio state loaded from %s", config.PORTFOLIO_DATA_FILE)
except Exception as e:
    logger.warning("Initial state load failed: %s", e)

# Sidebar Component
sidebar = html.Div(
    [
        html.H3("Portfolio", className="display-6"),
        html.P("Tracker & Rebalancer", className="lead"),
        html.Hr(),

        dbc.Nav(
            [
                dbc.NavLink("Overview", href="/", active="exact"),
                dbc.NavLink("Performance", href="/performance", active="exact"),
                dbc.NavLink("Holdings", href="/holdings", active="exact"),
                dbc.NavLink("Transactions", href="/transactions", active="exact"),
                dbc.NavLink("Rebalance", href="/rebalance", active="exact"),
                dbc.NavLink("Settings", href="/settings", active="exact"),
            ],
            vertical=True,
            pills=True,
        ),

        html.Hr(),

        # Controls
        html.Div([
            dbc.Label("Theme"),
            dbc.Switch(id="theme-switch", label="Dark Mode", value=True, className="mb-2"),

            dbc.Label("History Resolution"),
            dbc.RadioItems(
                id="interval-radio",
                options=[
                    {"label": "Daily", "value": "1d"},
                    {"label": "Weekly", "value": "1wk"},
                    {"label": "Monthly", "value": "1mo"},
                ],
                value="1d",
                inline=True,
                className="mb-2"
            ),

            dbc.Label("Money-Weighted Return", className="mt-2"),
            dbc.Switch(id="include-trades-switch", label="Count trades as flows", value=False, className="mb-2"),

            html.Hr(),
            dbc.Button("Reload Prices & History", id="btn-reload", color="secondary", className="w-100"),
        ]),
    ],
    id="sidebar",
    className="sidebar",
)

# Content Container
content = html.Div(id="page-content", className="content")

# Main Layout
app.layout = html.Div(
    [
        dcc.Location(id="url"),

        # Stores for Global State
        dcc.Store(id="data-signal", data=datetime.now().isoformat()),
        dcc.Store(id="theme-store", data="dark"),
        dcc.Store(id="interval-store", data="1d"),
        dcc.Store(id="include-trades-store", data=False),

        sidebar,
        content,
    ],
    id="main-container",
    **{"data-theme": "dark"}
)

# Validation Layout (Required for multi-page apps with global callbacks)
app.validation_layout = html.Div([
    app.layout,
    overview.layout,
    performance.layout,
    holdings.layout,
    transactions.layout,
    rebalance.layout,
    settings.layout,
])

# ============================================================
# CALLBACKS
# ============================================================

ROUTES = {
    "/": overview.layout,
    "/performance": performance.layout,
    "/holdings": holdings.layout,
    "/transactions": transactions.layout,
    "/rebalance": rebalance.layout,
    "/settings": settings.layout,
}


# 1. Router
@app.callback(Output("page-content", "children"), [Input("url", "pathname")])
def render_page_content(pathname):
    if pathname in ROUTES:
        return ROUTES[pathname]
    return dbc.Container(
        [
            html.H1("404: Not found", className="text-danger"),
            html.Hr(),
            html.P(f"The pathname {pathname} was not recognised..."),
        ],
        className="py-3"
    )


# 2. Global State Updates
@app.callback(
    [Output("theme-store", "data"),
     Output("main-container", "data-theme"),
     Output("interval-store", "data"),
     Output("include-trades-store", "data"),
     Output("data-signal", "data")],
    [Input("theme-switch", "value"),
     Input("interval-radio", "value"),
     Input("include-trades-switch", "value"),
     Input("btn-reload", "n_clicks")],
    [State("interval-radio", "value")]
)
def update_global_state(is_dark, interval, include_trades, reload_clicks, current_interval):
    theme = "dark" if is_dark else "light"

    if dash.callback_context.triggered_id == "btn-reload":
        try:
            dw.refresh_quotes()
        except Exception as e:
            logger.warning("Quote refresh failed: %s", e)
        dw.refresh_data(interval=current_interval or "1d", include_trades=bool(include_trades))

    return theme, theme, interval or "1d", bool(include_trades), datetime.now().isoformat()


if __name__ == "__main__":
    app.run(debug=True)
