import math
import numbers
import re

# ============================================================
# ENUMERATIONS
# ============================================================
ASSET_CLASSES = [
    "Equity",
    "ETF",
    "Mutual Fund",
    "Crypto",
    "Bond",
    "Money Market",
    "Cash",
    "Other",
]

ACCOUNT_TYPES = [
    "Taxable",
    "Roth IRA",
    "Traditional IRA",
    "401k/403b",
    "HSA",
    "Other",
]

DEFAULT_ACCOUNT = "Taxable"

TX_TYPES = ["BUY", "SELL", "CASH_DEPOSIT", "CASH_WITHDRAWAL"]

TX_TYPE_LABELS = {
    "BUY": "Buy",
    "SELL": "Sell",
    "CASH_DEPOSIT": "Cash deposit",
    "CASH_WITHDRAWAL": "Cash withdrawal",
}

PRIMARY_GOALS = [
    "Retirement",
    "House",
    "Wealth Building",
    "Education",
    "Short-Term Savings",
    "Other",
]

# Risk level (1 = very conservative, 5 = very aggressive) -> target bucket mix
RISK_TARGET_MIX = {
    1: {"equity": 0.2, "bonds": 0.6, "cash": 0.2},
    2: {"equity": 0.4, "bonds": 0.5, "cash": 0.1},
    3: {"equity": 0.6, "bonds": 0.3, "cash": 0.1},
    4: {"equity": 0.75, "bonds": 0.2, "cash": 0.05},
    5: {"equity": 0.9, "bonds": 0.1, "cash": 0.0},
}

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def target_mix_for_risk(risk_level):
    try:
        level = int(risk_level)
    except (TypeError, ValueError):
        level = 3
    return dict(RISK_TARGET_MIX.get(level, RISK_TARGET_MIX[3]))


# ------------------------------------------------------------
# Asset class buckets
# ------------------------------------------------------------

def is_equity_like(asset_class):
    return asset_class in ("Equity", "ETF", "Mutual Fund", "Crypto")


def is_bond_like(asset_class):
    return asset_class == "Bond"


def is_cash_like(asset_class):
    return asset_class in ("Cash", "Money Market")


def bucket_for(asset_class):
    if is_equity_like(asset_class):
        return "equity"
    if is_bond_like(asset_class):
        return "bonds"
    if is_cash_like(asset_class):
        return "cash"
    return "other"


def is_trade(tx_type):
    return tx_type in ("BUY", "SELL")


# ------------------------------------------------------------
# Coercion helpers (invalid input never raises)
# ------------------------------------------------------------

def to_number(value, default=0.0):
    """Coerce anything to a finite float, falling back to `default`."""
    if isinstance(value, bool):
        return default
    try:
        n = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(n):
        return default
    return n


def finite_or_none(value):
    """Finite float or None. Strings are not accepted as prices."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return None
    n = float(value)
    return n if math.isfinite(n) else None


def is_iso_date(value):
    return isinstance(value, str) and bool(_ISO_DATE.match(value))


def coerce_iso_date(raw):
    """
    Accepts YYYY-MM-DD (returned as-is) or M/D/YYYY (converted).
    Anything else returns None.
    """
    if raw is None:
        return None
    s = str(raw).strip()
    if not s:
        return None
    if _ISO_DATE.match(s):
        return s
    m = _US_DATE.match(s)
    if not m:
        return None
    return f"{m.group(3)}-{int(m.group(1)):02d}-{int(m.group(2)):02d}"


def normalize_ticker(ticker):
    return str(ticker or "").strip().upper()


def account_of(record):
    return record.get("accountType") or DEFAULT_ACCOUNT
