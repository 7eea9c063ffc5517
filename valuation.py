from datetime import datetime, timezone

from portfolio_types import (
    bucket_for,
    finite_or_none,
    is_cash_like,
    to_number,
)

# A cash-like price within this distance of 1.0 is treated as a $1 NAV
PRICE_ONE_TOLERANCE = 1e-6


def _is_about_one(price):
    return abs(price - 1.0) <= PRICE_ONE_TOLERANCE


# ------------------------------------------------------------
# Single source of truth for position value
# ------------------------------------------------------------

def cash_balance(position):
    """
    Resolve the current balance of a cash-like position.

    Cash-like records have been stored several ways over time, so the
    (quantity, costBasisPerUnit, currentPrice) triple is read in this order:

      1. quantity == 1 and a finite currentPrice materially != 1
         -> currentPrice is the balance
      2. quantity == 1
         -> costBasisPerUnit is the balance
      3. currentPrice missing or ~1
         -> quantity is the balance
      4. otherwise quantity * currentPrice
    """
    qty = to_number(position.get("quantity"))
    cost = to_number(position.get("costBasisPerUnit"))
    price = finite_or_none(position.get("currentPrice"))

    if qty == 1 and price is not None and not _is_about_one(price):
        return price
    if qty == 1:
        return cost
    if price is None or _is_about_one(price):
        return qty
    return to_number(qty * price)


def value_for_position(position):
    """Current dollar value of a position. Never NaN or infinite."""
    if not position:
        return 0.0

    if is_cash_like(position.get("assetClass")):
        return cash_balance(position)

    qty = to_number(position.get("quantity"))
    price = finite_or_none(position.get("currentPrice"))
    if price is None:
        price = finite_or_none(position.get("costBasisPerUnit"))
    if price is None:
        price = 0.0
    return to_number(qty * price)


def unit_price(position):
    """
    Price used to turn dollars into units:
    currentPrice -> costBasisPerUnit -> $1 for cash-like -> None.
    """
    price = finite_or_none(position.get("currentPrice"))
    if price is not None and price > 0:
        return price
    cost = finite_or_none(position.get("costBasisPerUnit"))
    if cost is not None and cost > 0:
        return cost
    if is_cash_like(position.get("assetClass")):
        return 1.0
    return None


def cost_basis_total(position):
    return to_number(position.get("costBasisPerUnit")) * to_number(position.get("quantity"))


# ------------------------------------------------------------
# Aggregates
# ------------------------------------------------------------

def compute_totals(positions):
    """Total value and equity/bonds/cash/other bucket dollars and weights."""
    buckets = {"equity": 0.0, "bonds": 0.0, "cash": 0.0, "other": 0.0}
    total = 0.0

    for p in positions or []:
        v = value_for_position(p)
        total += v
        buckets[bucket_for(p.get("assetClass"))] += v

    mix = {k: (v / total if total > 0 else 0.0) for k, v in buckets.items()}
    return {"total": total, "mix_dollar": buckets, "mix_pct": mix}


def compute_snapshot(state, now=None):
    timestamp = (now or datetime.now(timezone.utc)).isoformat()

    by_asset_class = {}
    by_account_type = {}
    total_value = 0.0
    total_cost = 0.0

    for pos in state.get("positions") or []:
        value = value_for_position(pos)
        total_value += value
        total_cost += cost_basis_total(pos)

        ac = pos.get("assetClass") or "Other"
        acct = pos.get("accountType") or "Other"
        by_asset_class[ac] = by_asset_class.get(ac, 0.0) + value
        by_account_type[acct] = by_account_type.get(acct, 0.0) + value

    gain = total_value - total_cost
    gain_pct = (gain / total_cost) * 100.0 if total_cost > 0 else 0.0

    return {
        "timestamp": timestamp,
        "totalValue": total_value,
        "totalGainLossDollar": gain,
        "totalGainLossPercent": gain_pct,
        "byAssetClass": by_asset_class,
        "byAccountType": by_account_type,
    }


def with_snapshot(state, now=None):
    """Return a new state with a fresh snapshot appended."""
    snap = compute_snapshot(state, now=now)
    return {
        **state,
        "snapshots": list(state.get("snapshots") or []) + [snap],
        "lastUpdated": snap["timestamp"],
    }
