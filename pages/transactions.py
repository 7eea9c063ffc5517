from datetime import date, datetime

import dash
from dash import dcc, html, callback, Input, Output, State
import dash_bootstrap_components as dbc
import dash_ag_grid as dag

import dash_wrappers as dw
import portfolio_state
from ledger import transaction_summary, validate_transaction
from portfolio_types import ACCOUNT_TYPES, DEFAULT_ACCOUNT, TX_TYPE_LABELS, TX_TYPES, is_trade
from report_formatting import fmt_dollar_clean

TX_COLUMNS = [
    ("date", "Date"),
    ("type", "Type"),
    ("accountType", "Account"),
    ("ticker", "Ticker"),
    ("quantity", "Quantity"),
    ("price", "Price"),
    ("amount", "Amount"),
]

TX_COLUMN_DEFS = [{"field": f, "headerName": h} for f, h in TX_COLUMNS]
TX_COLUMN_DEFS[0]["checkboxSelection"] = True

layout = html.Div([
    dbc.Row([
        dbc.Col(dbc.Card([
            dbc.CardHeader("Record Transaction"),
            dbc.CardBody([
                dbc.Row([
                    dbc.Col([
                        dbc.Label("Type"),
                        dcc.Dropdown(
                            id="tx-type",
                            options=[{"label": TX_TYPE_LABELS[t], "value": t} for t in TX_TYPES],
                            value="CASH_DEPOSIT",
                            clearable=False,
                            className="text-dark",
                        ),
                    ], width=6),
                    dbc.Col([dbc.Label("Date"), dbc.Input(id="tx-date", type="date", value=date.today().isoformat())], width=6),
                ], className="mb-2"),
                dbc.Label("Account"),
                dcc.Dropdown(id="tx-account", options=ACCOUNT_TYPES, value=DEFAULT_ACCOUNT, clearable=False, className="text-dark mb-2"),

                dbc.Collapse([
                    dbc.Row([
                        dbc.Col([dbc.Label("Ticker"), dbc.Input(id="tx-ticker", type="text", placeholder="e.g. VTI")], width=4),
                        dbc.Col([dbc.Label("Quantity"), dbc.Input(id="tx-qty", type="number", min=0)], width=4),
                        dbc.Col([dbc.Label("Price ($, optional)"), dbc.Input(id="tx-price", type="number", min=0)], width=4),
                    ], className="mb-2"),
                    html.Small(
                        "Without a price the holding's current price (or cost) is used; "
                        "a buy with no usable price is skipped.",
                        className="text-muted d-block mb-2",
                    ),
                ], id="tx-trade-fields", is_open=False),

                dbc.Collapse([
                    dbc.Label("Amount ($)"),
                    dbc.Input(id="tx-amount", type="number", min=0, className="mb-2"),
                ], id="tx-cash-fields", is_open=True),

                dbc.Button("Add Transaction", id="btn-add-tx", color="primary", className="w-100 mt-2"),
                html.Div(id="tx-form-status", className="mt-2 small"),
            ])
        ]), width=4),

        dbc.Col(dbc.Card([
            html.H5("Transaction Log", className="card-title p-2"),
            html.Div(id="tx-summary", className="px-2 small"),
            dag.AgGrid(
                id="tx-grid",
                rowData=[],
                columnDefs=TX_COLUMN_DEFS,
                getRowId="params.data.id",
                defaultColDef={"flex": 1, "minWidth": 90, "sortable": True, "filter": True, "resizable": True},
                className="ag-theme-alpine-dark",
                dashGridOptions={
                    "domLayout": "autoHeight",
                    "rowSelection": "multiple",
                    "overlayNoRowsTemplate": "No transactions yet.",
                },
            ),
            html.Div([
                dbc.Button("Delete Selected", id="btn-delete-tx", color="danger", size="sm", className="me-2"),
                dbc.Button("Clear Log", id="btn-clear-tx", color="secondary", size="sm"),
            ], className="p-2"),
            html.Small(
                "Positions are rebuilt from the baseline captured at your first transaction. "
                "Clearing the log restores that baseline.",
                className="text-muted px-2 pb-2 d-block",
            ),
        ]), width=8),
    ], className="mb-4"),
])


@callback(
    [Output("tx-trade-fields", "is_open"),
     Output("tx-cash-fields", "is_open")],
    Input("tx-type", "value")
)
def toggle_tx_fields(tx_type):
    trade = is_trade(tx_type)
    return trade, not trade


@callback(
    [Output("tx-grid", "rowData"),
     Output("tx-grid", "className"),
     Output("tx-summary", "children")],
    [Input("data-signal", "data"),
     Input("theme-store", "data")]
)
def update_transactions(signal, theme):
    txs = dw.get_state().get("transactions") or []
    grid_class = "ag-theme-alpine-dark" if theme != "light" else "ag-theme-alpine"
    if not txs:
        return [], grid_class, ""

    s = transaction_summary(txs)
    summary = html.Div([
        html.Span(f"Deposits: {fmt_dollar_clean(s['deposits'])}", className="me-3"),
        html.Span(f"Withdrawals: {fmt_dollar_clean(s['withdrawals'])}", className="me-3"),
        html.Span(f"Net: {fmt_dollar_clean(s['net'])}", className="me-3"),
        html.Span(f"Bought: {fmt_dollar_clean(s['buyNotional'])}", className="me-3"),
        html.Span(f"Sold: {fmt_dollar_clean(s['sellNotional'])}"),
    ])
    return dw.get_transactions_table_data(txs), grid_class, summary


@callback(
    [Output("data-signal", "data", allow_duplicate=True),
     Output("tx-form-status", "children")],
    [Input("btn-add-tx", "n_clicks")],
    [State("tx-type", "value"),
     State("tx-date", "value"),
     State("tx-account", "value"),
     State("tx-ticker", "value"),
     State("tx-qty", "value"),
     State("tx-price", "value"),
     State("tx-amount", "value")],
    prevent_initial_call=True
)
def add_transaction(n_clicks, tx_type, tx_date, account, ticker, qty, price, amount):
    tx = {"type": tx_type, "date": tx_date, "accountType": account}
    if is_trade(tx_type):
        tx.update({"ticker": (ticker or "").strip().upper(), "quantity": qty})
        if price not in (None, ""):
            tx["price"] = price
    else:
        tx["amount"] = amount

    problems = validate_transaction(tx)
    if problems:
        return dash.no_update, html.Span("; ".join(problems), className="text-danger")

    dw.record_transaction(tx)
    return datetime.now().isoformat(), html.Span(f"Recorded {TX_TYPE_LABELS[tx_type].lower()}.", className="text-success")


@callback(
    Output("data-signal", "data", allow_duplicate=True),
    [Input("btn-delete-tx", "n_clicks")],
    [State("tx-grid", "selectedRows")],
    prevent_initial_call=True
)
def delete_selected_transactions(n_clicks, selected):
    if not selected:
        return dash.no_update

    state = dw.get_state()
    drop = {row.get("id") for row in selected}
    remaining = [t for t in state.get("transactions") or [] if t.get("id") not in drop]
    dw.save_state(portfolio_state.set_transactions(state, remaining))
    return datetime.now().isoformat()


@callback(
    Output("data-signal", "data", allow_duplicate=True),
    [Input("btn-clear-tx", "n_clicks")],
    prevent_initial_call=True
)
def clear_transactions(n_clicks):
    dw.save_state(portfolio_state.set_transactions(dw.get_state(), []))
    return datetime.now().isoformat()
