import io
import itertools
import json
import logging
import math
import os
import tempfile
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import date, datetime, timezone

import pandas as pd
import requests
import yfinance as yf

from config import (
    FMP_API_KEY,
    HISTORY_MAX_YEARS,
    HISTORY_TIMEOUT_SECONDS,
    PORTFOLIO_DATA_FILE,
    QUOTE_TIMEOUT_SECONDS,
)
from portfolio_state import normalize_loaded_state
from portfolio_types import ASSET_CLASSES, coerce_iso_date, finite_or_none, is_cash_like
from valuation import cash_balance, with_snapshot

logger = logging.getLogger(__name__)

# ============================================================
# CONFIG
# ============================================================
CSV_COLUMNS = [
    "ticker",
    "name",
    "assetClass",
    "accountType",
    "quantity",
    "costBasisPerUnit",
    "purchaseDate",
    "currentPrice",
]
CSV_REQUIRED = ["ticker", "name", "assetclass", "accounttype", "quantity", "costbasisperunit"]

# Symbols that never need a live quote
FIXED_QUOTES = {
    "CASH": {"price": 1.0, "name": "Cash"},
    "SPAXX": {"price": 1.0, "name": "Fidelity Government Money Market"},
}
YAHOO_ALIASES = {
    "BTCUSD": "BTC-USD",
    "ETHUSD": "ETH-USD",
}

# Simple in-memory caches
_PRICE_CACHE = {}
_METADATA_CACHE = {}
PRICE_CACHE_MAX_ENTRIES = 32


def clear_caches():
    """Drop cached price history and instrument metadata."""
    _PRICE_CACHE.clear()
    _METADATA_CACHE.clear()


# ============================================================
# REQUEST TRACKING
# ============================================================

class RequestTracker:
    """
    Monotonic request ids for superseding fetches. Only the response whose id
    matches the most recently issued one should be applied.
    """

    def __init__(self):
        self._counter = itertools.count(1)
        self._latest = 0

    def issue(self):
        self._latest = next(self._counter)
        return self._latest

    @property
    def latest(self):
        return self._latest

    def is_current(self, request_id):
        return request_id == self._latest


# ------------------------------------------------------------
# Metadata (name / sector): FMP -> yfinance
# ------------------------------------------------------------

def fetch_fmp_profile(ticker):
    """Company name and sector from Financial Modeling Prep."""
    if not FMP_API_KEY:
        return {}

    try:
        url = f"https://financialmodelingprep.com/api/v3/profile/{ticker}?apikey={FMP_API_KEY}"
        resp = requests.get(url, timeout=QUOTE_TIMEOUT_SECONDS)
        if resp.status_code != 200:
            return {}
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("FMP profile fetch failed for %s: %s", ticker, e)
        return {}

    if not isinstance(data, list) or not data:
        return {}
    item = data[0]
    return {k: v for k, v in (("name", item.get("companyName")), ("sector", item.get("sector"))) if v}


def fetch_yf_profile(ticker):
    try:
        info = yf.Ticker(ticker).info or {}
    except Exception as e:
        logger.debug("yfinance info failed for %s: %s", ticker, e)
        return {}
    name = info.get("longName") or info.get("shortName")
    sector = info.get("sector")
    return {k: v for k, v in (("name", name), ("sector", sector)) if v}


def get_instrument_metadata(ticker):
    ticker = ticker.upper()
    if ticker in _METADATA_CACHE:
        return _METADATA_CACHE[ticker]

    meta = fetch_fmp_profile(ticker) or fetch_yf_profile(ticker)
    _METADATA_CACHE[ticker] = meta
    return meta


# ============================================================
# QUOTE PROVIDER
# ============================================================

def _normalize_key(t):
    return "".join(str(t).split()).upper()


def to_yahoo_symbol(ticker):
    k = _normalize_key(ticker)
    return YAHOO_ALIASES.get(k, k)


def _last_price(symbol):
    price = getattr(yf.Ticker(symbol).fast_info, "last_price", None)
    return finite_or_none(price)


def fetch_quotes(tickers, with_metadata=True):
    """
    {ticker: {"price", "name"?, "sector"?}} for each symbol a price was found.
    Unknown or failing symbols are omitted, never raised.
    """
    out = {}
    for raw in tickers or []:
        key = _normalize_key(raw)
        if not key:
            continue

        if key in FIXED_QUOTES:
            out[key] = dict(FIXED_QUOTES[key])
            continue

        symbol = to_yahoo_symbol(key)
        try:
            price = _last_price(symbol)
        except Exception as e:
            logger.warning("Quote fetch failed for %s (%s): %s", key, symbol, e)
            continue

        if price is None:
            logger.info("No quote for %s", key)
            continue

        quote = {"price": round(price, 2)}
        if with_metadata:
            quote.update(get_instrument_metadata(symbol))
        out[key] = quote

    return out


# ============================================================
# HISTORICAL PRICE PROVIDER
# ============================================================

def _clamp_history_start(start):
    today = date.today()
    try:
        floor = today.replace(year=today.year - HISTORY_MAX_YEARS)
    except ValueError:
        floor = today.replace(year=today.year - HISTORY_MAX_YEARS, day=28)
    floor = floor.isoformat()
    return floor if start < floor else start


def _extract_closes(raw, tickers):
    """Pull a wide close frame out of a yf.download result."""
    if isinstance(raw.columns, pd.MultiIndex):
        level0 = raw.columns.get_level_values(0)
        if "Close" in level0:
            prices = raw.xs("Close", axis=1, level=0)
        elif "Adj Close" in level0:
            prices = raw.xs("Adj Close", axis=1, level=0)
        else:
            prices = raw.xs(level0[0], axis=1, level=0)
    else:
        cols = list(raw.columns)
        if "Close" in cols:
            prices = raw["Close"]
        elif "Adj Close" in cols:
            prices = raw["Adj Close"]
        else:
            prices = raw

    if isinstance(prices, pd.Series):
        prices = prices.to_frame()

    if len(tickers) == 1:
        prices.columns = [tickers[0]]
    else:
        prices.columns = [str(c).upper() for c in prices.columns]

    if not isinstance(prices.index, pd.DatetimeIndex):
        prices.index = pd.to_datetime(prices.index)
    if prices.index.tz is not None:
        prices.index = prices.index.tz_localize(None)

    return prices.sort_index()


def downsample_weekly_friday(prices):
    """One row per ISO week: the Friday close, else the last trading day that week."""
    if prices.empty:
        return prices

    iso = prices.index.isocalendar()
    week_key = iso["year"].astype(str) + "-" + iso["week"].astype(str).str.zfill(2)

    keep = []
    for _, idx in prices.index.to_series().groupby(week_key.values):
        fridays = idx[idx.dt.weekday == 4]
        keep.append(fridays.iloc[-1] if not fridays.empty else idx.iloc[-1])
    return prices.loc[sorted(keep)]


def _empty_history(errors):
    df = pd.DataFrame()
    df.attrs["errors"] = errors
    return df


def fetch_history(tickers, start, end=None, interval="1d", timeout=HISTORY_TIMEOUT_SECONDS):
    """
    Daily closes for `tickers` between start and end (ISO dates), as a wide
    frame indexed by date. Downloads run on a worker thread bounded by
    `timeout`; on timeout or failure an empty frame is returned with the
    reason in `attrs["errors"]`.
    """
    unique_tickers = sorted({str(t).upper() for t in tickers or [] if str(t).strip()})
    if not unique_tickers:
        return _empty_history([])

    start = _clamp_history_start(start)
    end = end or date.today().isoformat()
    key = (tuple(unique_tickers), start, end, interval)

    if key in _PRICE_CACHE:
        cached = _PRICE_CACHE[key]
        res = cached.copy()
        res.attrs = dict(cached.attrs)
        return res

    # yfinance treats `end` as exclusive
    end_exclusive = (pd.Timestamp(end) + pd.Timedelta(days=1)).strftime("%Y-%m-%d")

    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(
        yf.download,
        unique_tickers,
        start=start,
        end=end_exclusive,
        interval="1d",
        progress=False,
        auto_adjust=False,
        group_by="column",
    )
    try:
        raw = future.result(timeout=timeout)
    except FutureTimeout:
        logger.warning("History download timed out after %.0fs for %s", timeout, ",".join(unique_tickers))
        return _empty_history([f"History request timed out after {timeout:.0f}s"])
    except Exception as e:
        logger.warning("History download failed for %s: %s", ",".join(unique_tickers), e)
        return _empty_history([f"History request failed: {e}"])
    finally:
        executor.shutdown(wait=False)

    if raw is None or raw.empty:
        return _empty_history(["History provider returned no data"])

    prices = _extract_closes(raw, unique_tickers)

    errors = []
    missing = [t for t in unique_tickers if t not in prices.columns or prices[t].dropna().empty]
    if missing:
        msg = f"Tickers with NO data: {', '.join(missing)}"
        logger.warning(msg)
        errors.append(msg)

    if interval == "1wk":
        prices = downsample_weekly_friday(prices)
    elif interval == "1mo":
        prices = prices.groupby(prices.index.to_period("M")).tail(1)

    prices.attrs["errors"] = errors
    while len(_PRICE_CACHE) >= PRICE_CACHE_MAX_ENTRIES:
        _PRICE_CACHE.pop(next(iter(_PRICE_CACHE)))
    _PRICE_CACHE[key] = prices

    res = prices.copy()
    res.attrs = dict(prices.attrs)
    return res


# ============================================================
# PERSISTENT STORE (single JSON blob)
# ============================================================

def load_state(path=PORTFOLIO_DATA_FILE):
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Could not read portfolio state from %s: %s", path, e)
        return None
    return normalize_loaded_state(raw)


def save_state(state, path=PORTFOLIO_DATA_FILE):
    """Write the whole state blob, replacing the previous file in one step."""
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp = tempfile.mkstemp(prefix=".portfolio-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


# ============================================================
# CSV IMPORT / EXPORT (positions)
# ============================================================

def export_positions_csv(positions):
    rows = []
    for p in positions or []:
        price = finite_or_none(p.get("currentPrice"))
        rows.append({
            "ticker": p.get("ticker", ""),
            "name": p.get("name") or "",
            "assetClass": p.get("assetClass", ""),
            "accountType": p.get("accountType", ""),
            "quantity": p.get("quantity", 0),
            "costBasisPerUnit": p.get("costBasisPerUnit", 0),
            "purchaseDate": p.get("purchaseDate") or "",
            "currentPrice": price if price is not None else "",
        })
    df = pd.DataFrame(rows, columns=CSV_COLUMNS)
    return df.to_csv(index=False, lineterminator="\n").rstrip("\n")


def _parse_number(raw, default=0.0):
    s = str(raw).strip()
    if not s:
        return default
    n = float(s)
    if not math.isfinite(n):
        raise ValueError(f"non-finite number: {raw!r}")
    return n


def _parse_csv_row(obj, has_price, has_date):
    asset_class = str(obj.get("assetclass") or "").strip() or "Other"
    if asset_class not in ASSET_CLASSES:
        asset_class = "Other"

    current_price = None
    if has_price and str(obj.get("currentprice") or "").strip():
        current_price = _parse_number(obj["currentprice"])
    if current_price is None and is_cash_like(asset_class):
        current_price = 1.0

    pos = {
        "id": None,
        "ticker": str(obj.get("ticker") or "").strip().upper(),
        "name": str(obj.get("name") or "").strip(),
        "assetClass": asset_class,
        "accountType": str(obj.get("accounttype") or "").strip() or "Other",
        "quantity": _parse_number(obj.get("quantity")),
        "costBasisPerUnit": _parse_number(obj.get("costbasisperunit")),
        "currentPrice": current_price,
        "currency": "USD",
        "purchaseDate": coerce_iso_date(obj.get("purchasedate")) if has_date else None,
    }

    if not pos["ticker"] or pos["quantity"] < 0 or pos["costBasisPerUnit"] < 0:
        raise ValueError("invalid data")
    return pos


def _merge_positions(parsed):
    """
    Merge rows for the same ticker+account: weighted-average cost, earliest
    date. Cash-like rows are summed as balances and kept in the (1, balance, 1)
    encoding.
    """
    merged = {}
    for p in parsed:
        if p["quantity"] == 0:
            continue
        key = f"{p['ticker']}|{p['accountType']}"
        cur = merged.get(key)
        if cur is None:
            merged[key] = dict(p)
            continue

        dates = [d for d in (cur.get("purchaseDate"), p.get("purchaseDate")) if d]
        cur["purchaseDate"] = min(dates) if dates else None

        if is_cash_like(cur["assetClass"]):
            balance = cash_balance(cur) + cash_balance(p)
            cur["quantity"] = 1
            cur["costBasisPerUnit"] = balance
            cur["currentPrice"] = 1.0
            continue

        total_qty = cur["quantity"] + p["quantity"]
        total_cost = cur["costBasisPerUnit"] * cur["quantity"] + p["costBasisPerUnit"] * p["quantity"]

        cur["quantity"] = total_qty
        cur["costBasisPerUnit"] = total_cost / total_qty if total_qty > 0 else 0.0
        if p.get("currentPrice") is not None:
            cur["currentPrice"] = p["currentPrice"]

    return list(merged.values())


def import_positions_csv(text, now=None):
    """
    Parse a positions CSV.

    Returns (positions, errors). Missing required columns or an empty file
    yield ([], [reason]); bad rows are reported as "Row N: invalid" and
    skipped while the rest are still imported.
    """
    try:
        df = pd.read_csv(io.StringIO(text or ""), dtype=str, keep_default_na=False, skip_blank_lines=True)
    except pd.errors.EmptyDataError:
        return [], ["CSV appears empty"]
    except pd.errors.ParserError as e:
        return [], [f"Could not parse CSV: {e}"]

    if df.empty:
        return [], ["CSV appears empty"]

    df.columns = [str(c).strip().lower() for c in df.columns]
    for col in CSV_REQUIRED:
        if col not in df.columns:
            return [], [f"Missing column: {col}"]

    has_price = "currentprice" in df.columns
    has_date = "purchasedate" in df.columns
    created = (now or datetime.now(timezone.utc)).isoformat()

    parsed = []
    errors = []
    for i, obj in enumerate(df.to_dict(orient="records")):
        try:
            pos = _parse_csv_row(obj, has_price, has_date)
        except (TypeError, ValueError):
            errors.append(f"Row {i + 2}: invalid")
            continue
        pos["createdAt"] = created
        parsed.append(pos)

    positions = _merge_positions(parsed)
    for p in positions:
        p["id"] = str(uuid.uuid4())
        if p["currentPrice"] is None:
            del p["currentPrice"]
        if p["purchaseDate"] is None:
            del p["purchaseDate"]

    return positions, errors


# ============================================================
# JSON IMPORT / EXPORT (whole state)
# ============================================================

def export_state_json(state):
    """Everything except snapshot history."""
    payload = {k: v for k, v in state.items() if k != "snapshots"}
    return json.dumps(payload, indent=2)


def import_state_json(text, current_state):
    """
    Replace profile/positions/transactions from an exported blob while
    keeping the current snapshot history. Raises ValueError for anything
    that is not a JSON object.
    """
    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError("Imported JSON must be an object")

    imported = normalize_loaded_state(parsed)
    nxt = {
        **imported,
        "snapshots": list(current_state.get("snapshots") or []),
        "lastUpdated": datetime.now(timezone.utc).isoformat(),
    }
    return with_snapshot(nxt)
