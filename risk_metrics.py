import math

import numpy as np
import pandas as pd

from config import BETA_MIN_SAMPLES, TRADING_DAYS_PER_YEAR

MIN_VOLATILITY_SAMPLES = 10

# Float noise on a constant benchmark
ZERO_VARIANCE = 1e-15


def _finite(value):
    if isinstance(value, bool) or value is None:
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    return n if math.isfinite(n) else None


def _dated_values(series):
    """(date, value) pairs in input order, dropping non-finite values."""
    if isinstance(series, pd.Series):
        raw = [(pd.Timestamp(d).strftime("%Y-%m-%d"), v) for d, v in series.items()]
    else:
        raw = [(p.get("date"), p.get("value")) for p in series or [] if isinstance(p, dict)]

    out = []
    for d, v in raw:
        n = _finite(v)
        if n is not None:
            out.append((d, n))
    return out


# ------------------------------------------------------------
# Returns / volatility / drawdown
# ------------------------------------------------------------

def daily_returns(series):
    """[{"date", "r"}] for each step whose prior value is positive."""
    pts = _dated_values(series)
    out = []
    for (_, prev), (d, cur) in zip(pts, pts[1:]):
        if prev <= 0:
            continue
        r = cur / prev - 1.0
        if math.isfinite(r):
            out.append({"date": d, "r": r})
    return out


def annualized_volatility(returns, periods_per_year=TRADING_DAYS_PER_YEAR):
    """Sample stdev of periodic returns, annualized. None below 10 samples."""
    vals = [r["r"] if isinstance(r, dict) else r for r in returns or []]
    vals = [v for v in (_finite(v) for v in vals) if v is not None]
    if len(vals) < MIN_VOLATILITY_SAMPLES:
        return None

    stdev = float(np.std(np.asarray(vals), ddof=1))
    return stdev * math.sqrt(periods_per_year)


def max_drawdown(series):
    """Most negative (value - running peak) / running peak. None below 2 values."""
    vals = [v for _, v in _dated_values(series)]
    if len(vals) < 2:
        return None

    peak = vals[0]
    mdd = 0.0
    for v in vals:
        if v > peak:
            peak = v
        dd = (v - peak) / peak if peak > 0 else 0.0
        if dd < mdd:
            mdd = dd
    return mdd


def compute_drawdown_series(values):
    """
    Drawdown path, max drawdown and recovery period from a value series
    indexed by date.

    Returns:
        tuple: (drawdown_series (%), max_drawdown (%), recovery_days (int))
    """
    if values is None or values.empty:
        return pd.Series(dtype=float), 0.0, 0

    values = values[values > 0]
    if values.empty:
        return pd.Series(dtype=float), 0.0, 0

    hwm = values.cummax()
    drawdown = (values - hwm) / hwm
    max_dd = float(drawdown.min())

    if max_dd == 0.0:
        return drawdown * 100.0, 0.0, 0

    trough_date = drawdown.idxmin()

    # First point at or above the previous high after the trough
    future = drawdown[drawdown.index > trough_date]
    recovered = future[future >= 0]

    if not recovered.empty:
        recovery_days = (recovered.index[0] - trough_date).days
    else:
        recovery_days = (values.index.max() - trough_date).days

    return drawdown * 100.0, max_dd * 100.0, recovery_days


# ------------------------------------------------------------
# Beta vs benchmark
# ------------------------------------------------------------

def align_return_series_by_date(port, bench):
    """Inner join of two dated return series on exact date match."""
    bench_by_date = {}
    for b in bench or []:
        r = _finite(b.get("r"))
        if r is not None:
            bench_by_date[b.get("date")] = r

    p_out, b_out = [], []
    for p in port or []:
        pr = _finite(p.get("r"))
        br = bench_by_date.get(p.get("date"))
        if pr is not None and br is not None:
            p_out.append(pr)
            b_out.append(br)

    return p_out, b_out


def beta_from_return_series(port, bench, min_samples=BETA_MIN_SAMPLES):
    """
    Covariance(port, bench) / variance(bench), both with the n-1 denominator.

    Returns (beta, n) where n is the aligned sample count; beta is None when
    n < min_samples or the benchmark has zero variance.
    """
    p, b = align_return_series_by_date(port, bench)
    n = len(p)
    if n < min_samples or n < 2:
        return None, n

    p_arr = np.asarray(p)
    b_arr = np.asarray(b)
    cov = float(np.sum((p_arr - p_arr.mean()) * (b_arr - b_arr.mean())) / (n - 1))
    var_b = float(np.sum((b_arr - b_arr.mean()) ** 2) / (n - 1))

    if var_b <= ZERO_VARIANCE:
        return None, n
    return cov / var_b, n
