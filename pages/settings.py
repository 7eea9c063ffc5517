import base64
import json
from datetime import datetime

import dash
from dash import dcc, html, callback, Input, Output, State
import dash_bootstrap_components as dbc

import dash_wrappers as dw
import data_loader
import portfolio_state
from portfolio_types import PRIMARY_GOALS, coerce_iso_date, finite_or_none

layout = html.Div([
    dbc.Row([
        dbc.Col(dbc.Card([
            html.H5("Investor Profile", className="card-title p-2"),
            html.Div([
                dbc.Row([
                    dbc.Col([dbc.Label("Name"), dbc.Input(id="profile-name", type="text")], width=8),
                    dbc.Col([dbc.Label("Age"), dbc.Input(id="profile-age", type="number", min=0)], width=4),
                ], className="mb-2"),

                dbc.Label("Risk Level (1 = conservative, 5 = aggressive)"),
                dcc.Slider(id="profile-risk", min=1, max=5, step=1, value=3, marks={i: str(i) for i in range(1, 6)}),

                dbc.Row([
                    dbc.Col([dbc.Label("Horizon (years)"), dbc.Input(id="profile-horizon", type="number", min=1, value=20)], width=4),
                    dbc.Col([dbc.Label("Monthly Contribution ($)"), dbc.Input(id="profile-monthly", type="number", min=0, value=0)], width=4),
                    dbc.Col([dbc.Label("Portfolio Start"), dbc.Input(id="profile-start", type="date")], width=4),
                ], className="mb-2 mt-3"),

                dbc.Label("Primary Goal"),
                dcc.Dropdown(id="profile-goal", options=PRIMARY_GOALS, value="Wealth Building", clearable=False, className="text-dark mb-2"),
                dbc.Label("Goal Description"),
                dbc.Textarea(id="profile-goal-desc", className="mb-3"),

                dbc.Button("Save Profile", id="btn-save-profile", color="primary", className="w-100"),
                html.Div(id="profile-status", className="mt-2 small"),
            ], className="p-3")
        ]), width=6),

        dbc.Col(dbc.Card([
            html.H5("Data Management", className="card-title p-2"),
            html.Div([
                html.P("Back up or restore everything (profile, positions, transactions)."),
                dbc.Button("Export JSON Backup", id="btn-export-json", color="secondary", className="mb-3"),
                dcc.Download(id="download-state-json"),

                html.Label("Restore from JSON"),
                dcc.Upload(
                    id='upload-state-json',
                    children=html.Div(['Drag and Drop or ', html.A('Select File')]),
                    style={
                        'width': '100%', 'height': '60px', 'lineHeight': '60px',
                        'borderWidth': '1px', 'borderStyle': 'dashed',
                        'borderRadius': '5px', 'textAlign': 'center', 'marginBottom': '20px'
                    },
                    multiple=False
                ),
                html.Div(id='upload-json-status', className="text-muted"),

                html.Hr(),
                dbc.Button("Reset All Data", id="btn-reset-all", color="danger", outline=True),
                html.Small(" Clears profile, positions, transactions and history.", className="text-muted"),
            ], className="p-3")
        ]), width=6),
    ]),
])


@callback(
    [Output("profile-name", "value"),
     Output("profile-age", "value"),
     Output("profile-risk", "value"),
     Output("profile-horizon", "value"),
     Output("profile-monthly", "value"),
     Output("profile-start", "value"),
     Output("profile-goal", "value"),
     Output("profile-goal-desc", "value")],
    Input("data-signal", "data")
)
def load_profile(signal):
    p = dw.get_state().get("profile") or {}
    return (
        p.get("name"),
        p.get("age"),
        p.get("riskLevel") or 3,
        p.get("investmentHorizonYears") or 20,
        p.get("monthlyContribution") or 0,
        p.get("portfolioStartDate"),
        p.get("primaryGoal") or "Wealth Building",
        p.get("goalDescription"),
    )


@callback(
    [Output("data-signal", "data", allow_duplicate=True),
     Output("profile-status", "children")],
    Input("btn-save-profile", "n_clicks"),
    [State("profile-name", "value"),
     State("profile-age", "value"),
     State("profile-risk", "value"),
     State("profile-horizon", "value"),
     State("profile-monthly", "value"),
     State("profile-start", "value"),
     State("profile-goal", "value"),
     State("profile-goal-desc", "value")],
    prevent_initial_call=True
)
def save_profile(n_clicks, name, age, risk, horizon, monthly, start, goal, goal_desc):
    profile = {
        "name": (name or "").strip(),
        "age": int(age) if finite_or_none(age) is not None else None,
        "riskLevel": int(risk or 3),
        "investmentHorizonYears": int(horizon) if finite_or_none(horizon) else 20,
        "portfolioStartDate": coerce_iso_date(start),
        "primaryGoal": goal,
        "goalDescription": goal_desc or "",
        "monthlyContribution": float(monthly) if finite_or_none(monthly) is not None else 0.0,
    }
    dw.save_state(portfolio_state.set_profile(dw.get_state(), profile))
    return datetime.now().isoformat(), html.Span("Profile saved.", className="text-success")


@callback(
    Output("download-state-json", "data"),
    Input("btn-export-json", "n_clicks"),
    prevent_initial_call=True
)
def export_state(n_clicks):
    text = data_loader.export_state_json(dw.get_state())
    return dict(content=text, filename=f"portfolio-backup-{datetime.now():%Y%m%d}.json")


@callback(
    [Output("data-signal", "data", allow_duplicate=True),
     Output("upload-json-status", "children")],
    Input("upload-state-json", "contents"),
    State("upload-state-json", "filename"),
    prevent_initial_call=True
)
def import_state(contents, filename):
    if not contents:
        return dash.no_update, ""

    try:
        _, content_string = contents.split(',', 1)
        text = base64.b64decode(content_string).decode("utf-8-sig")
        state = data_loader.import_state_json(text, dw.get_state())
    except (ValueError, json.JSONDecodeError, UnicodeDecodeError) as e:
        return dash.no_update, html.Span(f"Could not import {filename}: {e}", className="text-danger")

    dw.save_state(state)
    return datetime.now().isoformat(), html.Span(f"Restored from {filename}.", className="text-success")


@callback(
    Output("data-signal", "data", allow_duplicate=True),
    Input("btn-reset-all", "n_clicks"),
    prevent_initial_call=True
)
def reset_all(n_clicks):
    dw.save_state(portfolio_state.get_initial_state())
    return datetime.now().isoformat()
