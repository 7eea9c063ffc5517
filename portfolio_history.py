import logging
import re
from datetime import date, timedelta

import pandas as pd

import data_loader
from portfolio_types import coerce_iso_date, is_cash_like, to_number
from valuation import value_for_position

logger = logging.getLogger(__name__)

INTERVALS = ("1d", "1wk", "1mo")
FUTURE_START_FALLBACK_DAYS = 30

_USD_PAIR = re.compile(r"^[A-Z]{3,6}USD$")


# ------------------------------------------------------------
# Ticker normalization for history lookups
# ------------------------------------------------------------

def normalize_ticker_for_history(ticker):
    """BTC/USD -> BTC-USD, BTCUSD -> BTC-USD; everything else upper-cased."""
    t = str(ticker or "").strip().upper()

    if "/" in t:
        parts = t.split("/")
        if len(parts) == 2 and parts[1] == "USD":
            return f"{parts[0]}-USD"
        return t.replace("/", "-", 1)

    if _USD_PAIR.match(t) and "-" not in t:
        return f"{t[:-3]}-USD"

    return t


# ------------------------------------------------------------
# Downsampling
# ------------------------------------------------------------

def downsample(points, interval):
    """Keep the last point per week ("1wk") or per month ("1mo")."""
    if interval not in ("1wk", "1mo") or not points:
        return points

    freq = "W-SAT" if interval == "1wk" else "M"
    keep = {}
    for p in points:
        key = pd.Timestamp(p["date"]).to_period(freq)
        keep[key] = p
    return [keep[k] for k in sorted(keep)]


# ------------------------------------------------------------
# Series builders
# ------------------------------------------------------------

def _cash_constant(positions):
    return sum(value_for_position(p) for p in positions if is_cash_like(p.get("assetClass")))


def approximate_flat_series(positions, start, end, interval="1d"):
    """Two-point flat line at today's total value, used when history is unavailable."""
    v = round(sum(value_for_position(p) for p in positions or []), 2)
    flat = [
        {"date": start, "value": v, "breakdown": {}},
        {"date": end, "value": v, "breakdown": {}},
    ]
    return downsample(flat, interval)


def build_portfolio_series(positions, closes, start, end, interval="1d"):
    """
    Value each date in `closes` (wide frame: DatetimeIndex x ticker) as

        constant cash balance + sum(quantity * forward-filled close)

    A position only contributes from its purchase date on. Returns a list of
    {"date", "value", "breakdown"} points (at least two), or [] when `closes`
    carries no dates at all.
    """
    positions = positions or []
    cash_constant = _cash_constant(positions)

    market = {}
    for p in positions:
        if is_cash_like(p.get("assetClass")):
            continue
        t = normalize_ticker_for_history(p.get("ticker"))
        if t:
            market.setdefault(t, []).append(p)

    if closes is None or closes.empty:
        return []

    closes = closes.sort_index()
    closes = closes[(closes.index >= pd.Timestamp(start)) & (closes.index <= pd.Timestamp(end))]
    closes = closes.dropna(how="all")
    if closes.empty:
        return []
    closes = closes.ffill()

    values = pd.DataFrame(index=closes.index)
    for t, plist in market.items():
        if t not in closes.columns:
            continue
        col = pd.Series(0.0, index=closes.index)
        for p in plist:
            held = closes[t] * to_number(p.get("quantity"))
            bought = coerce_iso_date(p.get("purchaseDate"))
            if bought:
                held = held.where(closes.index >= pd.Timestamp(bought), 0.0)
            col = col.add(held.fillna(0.0), fill_value=0.0)
        values[t] = col

    out = []
    for ts, row in values.iterrows():
        breakdown = {}
        total = 0.0
        if cash_constant != 0:
            breakdown["Cash"] = round(cash_constant, 2)
            total += cash_constant
        for t, v in row.items():
            if v != 0:
                breakdown[t] = round(float(v), 2)
                total += float(v)
        out.append({"date": ts.strftime("%Y-%m-%d"), "value": round(total, 2), "breakdown": breakdown})

    if len(out) == 1:
        out.append({**out[0], "date": end})

    return downsample(out, interval)


def resolve_start_date(positions, profile=None, today=None):
    """Earliest purchase date / profile start / one year back; never in the future."""
    today = today or date.today()
    end = today.isoformat()

    candidates = [coerce_iso_date(p.get("purchaseDate")) for p in positions or []]
    if profile:
        candidates.append(coerce_iso_date(profile.get("portfolioStartDate")))
    candidates = [c for c in candidates if c]

    if candidates:
        start = min(candidates)
    else:
        try:
            start = today.replace(year=today.year - 1).isoformat()
        except ValueError:
            start = (today - timedelta(days=365)).isoformat()

    if start > end:
        start = (today - timedelta(days=FUTURE_START_FALLBACK_DAYS)).isoformat()
    return start, end


def fetch_portfolio_series(positions, profile=None, interval="1d", provider=None, today=None):
    """
    Historical valuation series for the current holdings.

    Always returns (points, errors) and never raises: any provider failure
    or an empty response degrades to a flat series at today's value.
    """
    positions = positions or []
    if not positions:
        return [], []
    if interval not in INTERVALS:
        interval = "1d"

    start, end = resolve_start_date(positions, profile, today)

    tickers = sorted({
        normalize_ticker_for_history(p.get("ticker"))
        for p in positions
        if not is_cash_like(p.get("assetClass")) and str(p.get("ticker") or "").strip()
    })

    if not tickers:
        v = round(_cash_constant(positions), 2)
        bd = {"Cash": v} if v else {}
        flat = [
            {"date": start, "value": v, "breakdown": bd},
            {"date": end, "value": v, "breakdown": dict(bd)},
        ]
        return downsample(flat, interval), []

    if provider is None:
        provider = data_loader.fetch_history

    errors = []
    try:
        closes = provider(tickers, start, end)
        errors.extend(getattr(closes, "attrs", {}).get("errors", []))
    except Exception as e:
        logger.warning("History provider failed for %s: %s", ",".join(tickers), e)
        errors.append(f"History unavailable: {e}")
        return approximate_flat_series(positions, start, end, interval), errors

    points = build_portfolio_series(positions, closes, start, end, interval)
    if not points:
        errors.append("History returned no prices; showing an approximate flat series.")
        return approximate_flat_series(positions, start, end, interval), errors

    return points, errors


def fetch_benchmark_series(ticker, start, end, provider=None):
    """[{"date", "value"}] closes for the benchmark; [] on any failure."""
    provider = provider or data_loader.fetch_history
    symbol = normalize_ticker_for_history(ticker)
    try:
        closes = provider([symbol], start, end)
    except Exception as e:
        logger.warning("Benchmark history failed for %s: %s", symbol, e)
        return []

    if closes is None or closes.empty or symbol not in closes.columns:
        return []

    col = closes[symbol].dropna()
    return [{"date": ts.strftime("%Y-%m-%d"), "value": float(v)} for ts, v in col.items()]
