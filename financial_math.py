import math
from datetime import date

import numpy as np
import pandas as pd

from portfolio_types import is_iso_date, to_number

# ============================================================
# CONFIG / CONSTANTS
# ============================================================
XIRR_NEWTON_ITERATIONS = 50
XIRR_BISECTION_ITERATIONS = 80
XIRR_TOLERANCE = 1e-7
XIRR_NPV_TOLERANCE = 1e-10
XIRR_RATE_FLOOR = -0.95
XIRR_RATE_CAP = 10.0
XIRR_RATE_WIDE_CAP = 50.0

GOAL_SCENARIO_SPREAD = 0.03


def days_between(a_iso, b_iso):
    """Calendar days from a to b (ISO dates)."""
    return (date.fromisoformat(b_iso) - date.fromisoformat(a_iso)).days


def _iso(d):
    if isinstance(d, str):
        return d
    return pd.Timestamp(d).strftime("%Y-%m-%d")


def _as_points(series):
    """
    Accept either a list of {"date", "value"} dicts or a pd.Series indexed by
    date; return sorted (date, value) pairs with valid dates and finite values.
    """
    if series is None:
        return []

    if isinstance(series, pd.Series):
        raw = [(_iso(idx), val) for idx, val in series.items()]
    else:
        raw = [(p.get("date"), p.get("value")) for p in series if isinstance(p, dict)]

    pts = []
    for d, v in raw:
        if not is_iso_date(d):
            continue
        try:
            v = float(v)
        except (TypeError, ValueError):
            continue
        if math.isfinite(v):
            pts.append((d, v))

    pts.sort(key=lambda p: p[0])
    return pts


# ------------------------------------------------------------
# External cash flows (investor perspective)
# ------------------------------------------------------------

def sum_by_date(flows):
    """Merge same-date flows, drop zero amounts and invalid dates, sort by date."""
    by_date = {}
    for f in flows or []:
        d = f.get("date")
        if not is_iso_date(d):
            continue
        amt = to_number(f.get("amount"))
        if amt == 0:
            continue
        by_date[d] = by_date.get(d, 0.0) + amt

    return [{"date": d, "amount": a} for d, a in sorted(by_date.items())]


def cash_flows_from_transactions(transactions, include_trades=False):
    """
    Deposits are money leaving the investor's pocket (negative), withdrawals
    come back to it (positive). Trades are internal to the portfolio and are
    only counted when `include_trades` is set (BUY negative, SELL positive).
    """
    flows = []

    for t in transactions or []:
        if not isinstance(t, dict) or not is_iso_date(t.get("date")):
            continue

        tx_type = t.get("type")
        if tx_type in ("CASH_DEPOSIT", "CASH_WITHDRAWAL"):
            v = abs(to_number(t.get("amount")))
            if v > 0:
                flows.append({"date": t["date"], "amount": -v if tx_type == "CASH_DEPOSIT" else v})
            continue

        if include_trades and tx_type in ("BUY", "SELL"):
            qty = to_number(t.get("quantity"))
            px = to_number(t.get("price"))
            if qty > 0 and px > 0:
                notional = qty * px
                flows.append({"date": t["date"], "amount": -notional if tx_type == "BUY" else notional})

    return sum_by_date(flows)


def xirr_cash_flows_with_terminal_value(cash_flows, terminal_date, terminal_value):
    """External flows plus the ending value as a final positive inflow to the investor."""
    flows = [f for f in cash_flows or [] if is_iso_date(f.get("date"))]
    if is_iso_date(terminal_date):
        flows.append({"date": terminal_date, "amount": to_number(terminal_value)})
    return sum_by_date(flows)


# ------------------------------------------------------------
# Time-weighted return
# ------------------------------------------------------------

def twr(series, cash_flows):
    """
    Cumulative TWR over a valuation series.

    Per step:  r_t = (V_t - CF_t) / V_{t-1} - 1
    where CF_t is the external flow INTO the portfolio on day t, i.e. the
    negated investor-perspective flow. Steps whose prior value is <= 0 are
    skipped. Returns None with fewer than 2 valid points or when every
    step was skipped.
    """
    pts = _as_points(series)
    if len(pts) < 2:
        return None

    flow_by_date = {}
    for f in cash_flows or []:
        d = f.get("date")
        if is_iso_date(d):
            flow_by_date[d] = flow_by_date.get(d, 0.0) + to_number(f.get("amount"))

    factors = []
    for (_, prev), (d, cur) in zip(pts, pts[1:]):
        if prev <= 0:
            continue
        cf_to_portfolio = -flow_by_date.get(d, 0.0)
        r = (cur - cf_to_portfolio) / prev - 1.0
        if math.isfinite(r):
            factors.append(1.0 + r)

    if not factors:
        return None
    return float(np.prod(factors) - 1.0)


# ------------------------------------------------------------
# XIRR (money-weighted return)
# ------------------------------------------------------------

def xirr(cash_flows, guess=0.10):
    """
    Annualized money-weighted return (0.12 => 12%).

    Newton's method from `guess`, then bisection on [-0.95, 10] (widened to
    50 when the bracket has no sign change). Returns None when the flows do
    not contain both an outflow and an inflow or no root can be bracketed.
    """
    flows = [
        (f["date"], float(f["amount"]))
        for f in cash_flows or []
        if is_iso_date(f.get("date")) and _is_finite_number(f.get("amount"))
    ]
    if len(flows) < 2:
        return None
    if not any(a < 0 for _, a in flows) or not any(a > 0 for _, a in flows):
        return None

    flows.sort(key=lambda f: f[0])
    t0 = flows[0][0]
    terms = [(days_between(t0, d) / 365.0, a) for d, a in flows]

    def npv(rate):
        if rate <= -0.999999:
            return math.inf
        try:
            return sum(a / (1.0 + rate) ** t for t, a in terms)
        except OverflowError:
            return math.inf

    def d_npv(rate):
        if rate <= -0.999999:
            return math.inf
        try:
            return sum(-t * a / (1.0 + rate) ** (t + 1.0) for t, a in terms if t != 0)
        except OverflowError:
            return math.inf

    # 1) Newton
    r = guess
    for _ in range(XIRR_NEWTON_ITERATIONS):
        f = npv(r)
        df = d_npv(r)
        if not math.isfinite(f) or not math.isfinite(df) or df == 0:
            break

        nxt = r - f / df
        if abs(nxt - r) < XIRR_TOLERANCE:
            return nxt

        r = max(XIRR_RATE_FLOOR, min(nxt, XIRR_RATE_CAP))

    # 2) Bisection fallback
    lo, hi = XIRR_RATE_FLOOR, XIRR_RATE_CAP
    f_lo, f_hi = npv(lo), npv(hi)

    if math.isfinite(f_lo) and math.isfinite(f_hi) and f_lo * f_hi > 0:
        hi = XIRR_RATE_WIDE_CAP
        f_hi = npv(hi)

    if not math.isfinite(f_lo) or not math.isfinite(f_hi) or f_lo * f_hi > 0:
        return None

    for _ in range(XIRR_BISECTION_ITERATIONS):
        mid = (lo + hi) / 2.0
        f_mid = npv(mid)
        if not math.isfinite(f_mid):
            return None
        if abs(f_mid) < XIRR_NPV_TOLERANCE:
            return mid

        if f_lo * f_mid <= 0:
            hi, f_hi = mid, f_mid
        else:
            lo, f_lo = mid, f_mid

        if abs(hi - lo) < XIRR_TOLERANCE:
            return (hi + lo) / 2.0

    return (hi + lo) / 2.0


def _is_finite_number(value):
    if isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


# ------------------------------------------------------------
# Goal projection helpers
# ------------------------------------------------------------

def fv_lump(pv0, r, yr):
    return pv0 * ((1 + r) ** yr)


def fv_contrib(c, r, yr):
    monthly_r = r / 12.0
    n = yr * 12
    if monthly_r == 0:
        return c * n
    return c * (((1 + monthly_r) ** n - 1) / monthly_r)


def project_goal(current, monthly, annual_rate, years):
    """
    Expected / pessimistic / optimistic future value of the current portfolio
    plus monthly contributions. Pessimistic and optimistic shift the rate by
    3 points (pessimistic floored at 0).
    """
    current = to_number(current)
    monthly = to_number(monthly)
    annual_rate = to_number(annual_rate)
    years = max(int(to_number(years)), 0)

    def _fv(rate, yr):
        return fv_lump(current, rate, yr) + fv_contrib(monthly, rate, yr)

    pess_rate = max(annual_rate - GOAL_SCENARIO_SPREAD, 0.0)
    opt_rate = annual_rate + GOAL_SCENARIO_SPREAD

    path = pd.DataFrame({"year": range(years + 1)})
    path["value"] = path["year"].apply(lambda y: round(_fv(annual_rate, y), 2))

    return {
        "expected": _fv(annual_rate, years),
        "pessimistic": _fv(pess_rate, years),
        "optimistic": _fv(opt_rate, years),
        "pessimisticRate": pess_rate,
        "optimisticRate": opt_rate,
        "contributed": current + monthly * 12 * years,
        "path": path,
    }
