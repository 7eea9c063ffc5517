import base64
from datetime import datetime

import dash
from dash import dcc, html, callback, Input, Output, State
import dash_bootstrap_components as dbc
import dash_ag_grid as dag

import dash_wrappers as dw
import data_loader
import portfolio_state
from portfolio_types import ACCOUNT_TYPES, ASSET_CLASSES, DEFAULT_ACCOUNT, coerce_iso_date, finite_or_none, is_cash_like

POSITION_COLUMNS = [
    ("ticker", "Ticker"),
    ("name", "Name"),
    ("assetClass", "Asset Class"),
    ("accountType", "Account"),
    ("quantity", "Quantity"),
    ("costBasisPerUnit", "Cost / Unit"),
    ("currentPrice", "Price"),
    ("value", "Value"),
    ("weight", "Weight"),
]

POSITION_COLUMN_DEFS = [{"field": f, "headerName": h} for f, h in POSITION_COLUMNS]
POSITION_COLUMN_DEFS[0]["checkboxSelection"] = True

layout = html.Div([
    dbc.Row([
        dbc.Col(dbc.Card([
            html.H5("Current Holdings", className="card-title p-2"),
            html.Div(id='holdings-ledger-note', className="px-2 small text-muted"),
            dag.AgGrid(
                id="holdings-grid",
                rowData=[],
                columnDefs=POSITION_COLUMN_DEFS,
                getRowId="params.data.id",
                defaultColDef={"flex": 1, "minWidth": 100, "sortable": True, "filter": True, "resizable": True},
                className="ag-theme-alpine-dark",
                dashGridOptions={
                    "domLayout": "autoHeight",
                    "rowSelection": "single",
                    "overlayNoRowsTemplate": "No positions yet. Add one below or import a CSV.",
                },
            ),
            html.Div([
                dbc.Button("Delete Selected", id="btn-delete-position", color="danger", size="sm", className="me-2"),
                dbc.Button("Clear All Positions", id="btn-clear-positions", color="secondary", size="sm", className="me-2"),
                dbc.Button("Export CSV", id="btn-export-positions", color="secondary", size="sm"),
                dcc.Download(id="download-positions-csv"),
            ], className="p-2"),
        ]), width=12, className="mb-4"),
    ]),

    dbc.Row([
        dbc.Col(dbc.Card([
            dbc.CardHeader("Add / Update Position"),
            dbc.CardBody([
                dbc.Row([
                    dbc.Col([dbc.Label("Ticker"), dbc.Input(id="pos-ticker", type="text", placeholder="e.g. VTI")], width=3),
                    dbc.Col([dbc.Label("Name"), dbc.Input(id="pos-name", type="text")], width=5),
                    dbc.Col([dbc.Label("Purchase Date"), dbc.Input(id="pos-date", type="date")], width=4),
                ], className="mb-2"),
                dbc.Row([
                    dbc.Col([
                        dbc.Label("Asset Class"),
                        dcc.Dropdown(id="pos-class", options=ASSET_CLASSES, value="ETF", clearable=False, className="text-dark"),
                    ], width=6),
                    dbc.Col([
                        dbc.Label("Account"),
                        dcc.Dropdown(id="pos-account", options=ACCOUNT_TYPES, value=DEFAULT_ACCOUNT, clearable=False, className="text-dark"),
                    ], width=6),
                ], className="mb-2"),
                dbc.Row([
                    dbc.Col([dbc.Label("Quantity"), dbc.Input(id="pos-qty", type="number", min=0)], width=4),
                    dbc.Col([dbc.Label("Cost / Unit ($)"), dbc.Input(id="pos-cost", type="number", min=0)], width=4),
                    dbc.Col([dbc.Label("Current Price ($)"), dbc.Input(id="pos-price", type="number", min=0)], width=4),
                ], className="mb-3"),
                html.Small("Cash / Money Market: quantity 1 and cost = balance.", className="text-muted d-block mb-2"),
                dbc.Button("Save Position", id="btn-save-position", color="primary", className="w-100"),
                html.Div(id="position-form-status", className="mt-2 small"),
            ])
        ]), width=6),

        dbc.Col(dbc.Card([
            dbc.CardHeader("Import Positions (CSV)"),
            dbc.CardBody([
                html.P(
                    "Columns: ticker, name, assetClass, accountType, quantity, costBasisPerUnit, "
                    "purchaseDate (optional), currentPrice (optional).",
                    className="small text-muted",
                ),
                dcc.Upload(
                    id='upload-positions',
                    children=html.Div(['Drag and Drop or ', html.A('Select File')]),
                    style={
                        'width': '100%', 'height': '60px', 'lineHeight': '60px',
                        'borderWidth': '1px', 'borderStyle': 'dashed',
                        'borderRadius': '5px', 'textAlign': 'center', 'marginBottom': '20px'
                    },
                    multiple=False
                ),
                html.Div(id='upload-positions-status', className="small"),
            ])
        ]), width=6),
    ], className="mb-4"),
])


def _decode_upload(contents):
    _, content_string = contents.split(',', 1)
    return base64.b64decode(content_string).decode("utf-8-sig")


def _signal():
    return datetime.now().isoformat()


@callback(
    [Output('holdings-grid', 'rowData'),
     Output('holdings-grid', 'className'),
     Output('holdings-ledger-note', 'children')],
    [Input('data-signal', 'data'),
     Input('theme-store', 'data')]
)
def update_holdings(signal, theme):
    state = dw.get_state()
    rows = dw.get_positions_table_data(state.get("positions"))

    note = ""
    if state.get("transactions"):
        note = (
            f"Positions are derived from your baseline plus {len(state['transactions'])} transaction(s). "
            "Editing positions here changes the current view; the baseline is only reset when the log is cleared."
        )

    grid_class = "ag-theme-alpine-dark" if theme != "light" else "ag-theme-alpine"
    return rows, grid_class, note


@callback(
    [Output('data-signal', 'data', allow_duplicate=True),
     Output('position-form-status', 'children')],
    [Input('btn-save-position', 'n_clicks')],
    [State('pos-ticker', 'value'),
     State('pos-name', 'value'),
     State('pos-class', 'value'),
     State('pos-account', 'value'),
     State('pos-qty', 'value'),
     State('pos-cost', 'value'),
     State('pos-price', 'value'),
     State('pos-date', 'value')],
    prevent_initial_call=True
)
def save_position(n_clicks, ticker, name, asset_class, account, qty, cost, price, purchase_date):
    ticker = (ticker or "").strip().upper()
    qty = finite_or_none(qty)
    cost = finite_or_none(cost)
    if not ticker or qty is None or cost is None or qty < 0 or cost < 0:
        return dash.no_update, html.Span("Ticker, quantity and cost are required (non-negative).", className="text-danger")

    state = dw.get_state()
    existing = next(
        (p for p in state.get("positions") or [] if p.get("ticker") == ticker and p.get("accountType") == account),
        None,
    )

    price = finite_or_none(price)
    if price is None and is_cash_like(asset_class):
        price = 1

    position = {
        **(existing or {}),
        "ticker": ticker,
        "name": name or (existing or {}).get("name") or ticker,
        "assetClass": asset_class,
        "accountType": account,
        "quantity": qty,
        "costBasisPerUnit": cost,
        "currentPrice": price,
        "purchaseDate": coerce_iso_date(purchase_date) or (existing or {}).get("purchaseDate"),
    }

    dw.save_state(portfolio_state.upsert_position(state, position))
    verb = "Updated" if existing else "Added"
    return _signal(), html.Span(f"{verb} {ticker}.", className="text-success")


@callback(
    Output('data-signal', 'data', allow_duplicate=True),
    [Input('btn-delete-position', 'n_clicks')],
    [State('holdings-grid', 'selectedRows')],
    prevent_initial_call=True
)
def delete_selected_position(n_clicks, selected):
    if not selected:
        return dash.no_update
    state = dw.get_state()
    for row in selected:
        state = portfolio_state.delete_position(state, row.get("id"))
    dw.save_state(state)
    return _signal()


@callback(
    Output('data-signal', 'data', allow_duplicate=True),
    [Input('btn-clear-positions', 'n_clicks')],
    prevent_initial_call=True
)
def clear_all_positions(n_clicks):
    dw.save_state(portfolio_state.clear_positions(dw.get_state()))
    return _signal()


@callback(
    Output('download-positions-csv', 'data'),
    [Input('btn-export-positions', 'n_clicks')],
    prevent_initial_call=True
)
def export_positions(n_clicks):
    text = data_loader.export_positions_csv(dw.get_state().get("positions"))
    return dict(content=text, filename="positions.csv")


@callback(
    [Output('data-signal', 'data', allow_duplicate=True),
     Output('upload-positions-status', 'children')],
    [Input('upload-positions', 'contents')],
    [State('upload-positions', 'filename')],
    prevent_initial_call=True
)
def import_positions(contents, filename):
    if not contents:
        return dash.no_update, ""

    try:
        text = _decode_upload(contents)
    except (ValueError, UnicodeDecodeError) as e:
        return dash.no_update, html.Span(f"Could not read {filename}: {e}", className="text-danger")

    positions, errors = data_loader.import_positions_csv(text)
    if not positions:
        msg = errors[0] if errors else "No valid rows found."
        return dash.no_update, html.Span(msg, className="text-danger")

    state = dw.get_state()
    dw.save_state(portfolio_state.set_positions(state, list(state.get("positions") or []) + positions))
    dw.refresh_quotes()

    status = [html.Div(f"Imported {len(positions)} position(s) from {filename}.", className="text-success")]
    status += [html.Div(e, className="text-warning") for e in errors[:10]]
    return _signal(), status
