from dash import html
import dash_bootstrap_components as dbc

POSITIVE_COLOR = "#28a745"
NEGATIVE_COLOR = "#dc3545"
NEUTRAL_COLOR = "#6c757d"
ACCENT_COLOR = "#4C6A92"


def create_kpi_card(title, value, subtext=None, is_positive=None):
    """
    Compact KPI card. `is_positive` adds a green/red arrow; None keeps it
    neutral (used for metrics that could not be computed).
    """
    subtext_color = NEUTRAL_COLOR
    arrow = None

    if is_positive is not None:
        subtext_color = POSITIVE_COLOR if is_positive else NEGATIVE_COLOR
        symbol = "▲" if is_positive else "▼"
        arrow = html.Span(
            f"{symbol} ",
            style={'color': subtext_color, 'fontSize': '1.2rem', 'marginRight': '4px', 'verticalAlign': 'middle'}
        )

    card_content = [
        html.Div(title, className="text-muted small mb-1", style={'fontSize': '0.75rem', 'fontWeight': '500'}),
        html.H4([arrow, value] if arrow else value, className="mb-1", style={'fontWeight': '600', 'fontSize': '1.4rem'}),
        # Placeholder keeps card heights aligned
        html.Div(
            subtext or " ",
            style={'fontSize': '0.8rem', 'fontWeight': '500', 'color': subtext_color if subtext else 'transparent'}
        ),
    ]

    return dbc.Card(
        dbc.CardBody(card_content, className="p-2"),
        className="shadow-sm",
        style={
            'borderLeft': f'4px solid {subtext_color if is_positive is not None else ACCENT_COLOR}',
            'height': '100%'
        }
    )


def sign_of(x):
    if x is None:
        return None
    return x >= 0


def data_status_alert(errors):
    if not errors:
        return None

    return dbc.Alert(
        [
            html.Div([
                html.I(className="bi bi-exclamation-triangle-fill me-2"),
                html.Span("Data Quality Warning", className="fw-bold")
            ], className="d-flex align-items-center mb-1"),
            html.Hr(className="my-1"),
        ]
        + [html.Div(e, className="small mb-2", style={'whiteSpace': 'pre-wrap', 'wordBreak': 'break-word'}) for e in errors],
        color="warning",
        dismissable=True,
        className="py-2 px-3 shadow-sm",
        style={'maxHeight': '40vh', 'overflowY': 'auto', 'fontSize': '0.85rem'}
    )
