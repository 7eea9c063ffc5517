import logging
import os
import sys

from dotenv import load_dotenv

# ============================================================
# ENVIRONMENT
# ============================================================

load_dotenv()


def _env_float(name, default):
    raw = os.environ.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name, default):
    return int(_env_float(name, default))


# ============================================================
# STORAGE
# ============================================================
PORTFOLIO_DATA_FILE = os.environ.get("PORTFOLIO_DATA_FILE", "portfolio_state.json")

# ============================================================
# MARKET DATA
# ============================================================
HISTORY_TIMEOUT_SECONDS = _env_float("HISTORY_TIMEOUT_SECONDS", 12.0)
HISTORY_MAX_YEARS = 10
QUOTE_TIMEOUT_SECONDS = _env_float("QUOTE_TIMEOUT_SECONDS", 5.0)

# Financial Modeling Prep, used for instrument names/sectors when present
FMP_API_KEY = os.environ.get("FMP_API_KEY") or None
BENCHMARK_TICKER = os.environ.get("BENCHMARK_TICKER", "SPY").upper()

# ============================================================
# RISK PARAMETERS
# ============================================================
TRADING_DAYS_PER_YEAR = _env_int("TRADING_DAYS_PER_YEAR", 252)
BETA_MIN_SAMPLES = _env_int("BETA_MIN_SAMPLES", 20)
DEFAULT_GOAL_RETURN = _env_float("DEFAULT_GOAL_RETURN", 0.06)

# ============================================================
# LOGGING
# ============================================================
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


def configure_logging(level=None):
    """Configure the root logger once for the dashboard process."""
    level_name = (level or LOG_LEVEL).upper()
    resolved = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(resolved)
    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    root.addHandler(handler)

    # yfinance is chatty on missing symbols
    logging.getLogger("yfinance").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


# ============================================================
# GLOBAL COLOR PALETTE
# ============================================================
GLOBAL_PALETTE = [
    "#4C6A92",  # steel blue
    "#8C9CB1",  # soft gray-blue
    "#C0504D",  # muted red
    "#D79E9C",  # soft red-gray
    "#9BBB59",  # olive green
    "#C5D6A4",  # light olive
    "#8064A2",  # muted purple
    "#B1A0C7",  # lavender gray
    "#4F81BD",  # corporate blue
    "#A5B5CF",  # cool gray-blue
    "#F2C200",  # muted gold (accent)
    "#D6B656",  # soft gold-gray
]
