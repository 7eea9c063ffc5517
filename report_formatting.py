import math

import pandas as pd

PLACEHOLDER = "—"


def _is_missing(x):
    if x is None:
        return True
    try:
        return bool(pd.isna(x))
    except (TypeError, ValueError):
        return False


def _round_half_up(x):
    return int(math.floor(x + 0.5))


def fmt_pct_clean(x, decimals=2):
    """Fraction -> percent string (0.1234 -> '12.34%'). Missing -> placeholder."""
    if _is_missing(x):
        return PLACEHOLDER
    try:
        return f"{float(x) * 100:.{decimals}f}%"
    except (TypeError, ValueError):
        return PLACEHOLDER


def fmt_dollar_clean(x, decimals=2):
    if _is_missing(x):
        return PLACEHOLDER
    try:
        v = float(x)
    except (TypeError, ValueError):
        return PLACEHOLDER
    sign = "-" if v < 0 else ""
    return f"{sign}${abs(v):,.{decimals}f}"


# ------------------------------------------------------------
# Whole-number variants used in narrative text
# ------------------------------------------------------------

def pct0(x):
    return f"{_round_half_up((x or 0) * 100)}%"


def signed_pct0(x):
    p = _round_half_up((x or 0) * 100)
    return f"{'+' if p > 0 else ''}{p}%"


def money0(x):
    v = float(x or 0)
    return f"{'-' if v < 0 else ''}${abs(v):,.0f}"


def signed_money0(x):
    v = float(x or 0)
    sign = "+" if v > 0 else "-" if v < 0 else ""
    return f"{sign}${abs(v):,.0f}"


def fmt_shares(x):
    if _is_missing(x):
        return PLACEHOLDER
    return f"{float(x):,.4f}"


def fmt_metric(x, kind="pct", empty=PLACEHOLDER):
    """Render a possibly-uncomputable metric; None never renders as zero."""
    if _is_missing(x):
        return empty
    if kind == "pct":
        return fmt_pct_clean(x)
    if kind == "dollar":
        return fmt_dollar_clean(x)
    return f"{float(x):.2f}"
