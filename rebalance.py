import math

from portfolio_types import ASSET_CLASSES, bucket_for, normalize_ticker
from report_formatting import fmt_dollar_clean
from valuation import unit_price, value_for_position

REMAINDER_EPSILON = 0.01
TARGET_SUM_TOLERANCE = 1e-4

# Bucket plan thresholds
NEAR_TARGET_PCT = 0.03
MIN_MOVE_DOLLARS = 50.0

BUCKET_KEYS = ("equity", "bonds", "cash", "other")


def _clamp01(x):
    try:
        x = float(x)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(x):
        return 0.0
    return max(0.0, min(1.0, x))


def _holdings_by_ticker(positions):
    """Aggregate positions per ticker, keeping first-seen order."""
    items = {}
    for p in positions or []:
        t = normalize_ticker(p.get("ticker"))
        if not t:
            continue
        v = value_for_position(p)
        if t not in items:
            items[t] = {
                "ticker": t,
                "name": p.get("name"),
                "assetClass": p.get("assetClass"),
                "price": unit_price(p),
                "currentValue": v,
            }
        else:
            items[t]["currentValue"] += v
            if items[t]["price"] is None:
                items[t]["price"] = unit_price(p)
    return list(items.values())


# ============================================================
# INVEST-ONLY REBALANCE
# ============================================================

def rebalance(positions, target_weights, new_money):
    """
    Allocate `new_money` toward per-ticker target weights without selling.

        desired_i = target_i * (current_total + new_money)
        raw_i     = max(0, desired_i - current_i)
        buy_i     = raw_i * min(1, new_money / sum(raw))

    Targets are clamped to [0, 1] and normalized to sum to 1. Warnings are
    informational and never stop the computation.
    """
    try:
        new_money = float(new_money)
    except (TypeError, ValueError):
        new_money = 0.0
    if not math.isfinite(new_money):
        new_money = 0.0
    new_money = max(0.0, new_money)

    target_weights = {normalize_ticker(k): v for k, v in (target_weights or {}).items()}
    items = _holdings_by_ticker(positions)
    for x in items:
        x["targetWeight"] = _clamp01(target_weights.get(x["ticker"], 0.0))

    cur_total = sum(x["currentValue"] for x in items)
    post_total = cur_total + new_money

    target_sum = sum(x["targetWeight"] for x in items)
    can_normalize = target_sum > 0
    for x in items:
        x["targetWeight"] = x["targetWeight"] / target_sum if can_normalize else 0.0
        x["currentWeight"] = x["currentValue"] / cur_total if cur_total > 0 else 0.0
        x["raw"] = max(0.0, x["targetWeight"] * post_total - x["currentValue"])

    raw_sum = sum(x["raw"] for x in items)
    scale = min(1.0, new_money / raw_sum) if raw_sum > 0 else 0.0

    rows = []
    for x in items:
        buy = x["raw"] * scale
        post_value = x["currentValue"] + buy
        post_weight = post_value / post_total if post_total > 0 else 0.0
        price = x["price"]
        rows.append({
            "ticker": x["ticker"],
            "name": x["name"],
            "assetClass": x["assetClass"],
            "price": price,
            "currentValue": x["currentValue"],
            "currentWeight": x["currentWeight"],
            "targetWeight": x["targetWeight"],
            "targetDollars": x["targetWeight"] * post_total,
            "buyDollars": buy,
            "buyShares": buy / price if price else None,
            "postValue": post_value,
            "postWeight": post_weight,
            "gapToTarget": x["targetWeight"] - post_weight,
        })

    buy_sum = sum(r["buyDollars"] for r in rows)
    remainder = max(0.0, new_money - buy_sum)

    warnings = []
    if not positions:
        warnings.append("Add positions first to use the rebalance simulator.")
    elif cur_total <= 0:
        warnings.append("Current portfolio value is $0; weights are measured against new money only.")
    if new_money <= 0:
        warnings.append("Enter a positive dollar amount to invest.")
    if not can_normalize:
        warnings.append("Enter target weights (they auto-normalize if they don't sum to 100%).")
    elif abs(target_sum - 1.0) > TARGET_SUM_TOLERANCE:
        warnings.append("Targets auto-normalized (didn't sum to 100%).")
    if remainder > REMAINDER_EPSILON and raw_sum > 0:
        warnings.append(f"Unallocated cash: ~{fmt_dollar_clean(remainder)} (invest-only constraint).")

    rows.sort(key=lambda r: r["buyDollars"], reverse=True)

    return {
        "rows": rows,
        "totals": {
            "curTotal": cur_total,
            "postTotal": post_total,
            "buySum": buy_sum,
            "remainder": remainder,
            "targetSum": target_sum,
        },
        "warnings": warnings,
    }


# ------------------------------------------------------------
# Target presets
# ------------------------------------------------------------

def equal_weight_targets(positions):
    tickers = [x["ticker"] for x in _holdings_by_ticker(positions)]
    if not tickers:
        return {}
    w = 1.0 / len(tickers)
    return {t: w for t in tickers}


def current_weight_targets(positions):
    items = _holdings_by_ticker(positions)
    total = sum(x["currentValue"] for x in items)
    return {x["ticker"]: (x["currentValue"] / total if total > 0 else 0.0) for x in items}


def _class_of(item, keys_are_buckets):
    return bucket_for(item["assetClass"]) if keys_are_buckets else item["assetClass"]


def asset_class_targets(positions, class_weights):
    """
    Turn per-class weights into per-ticker weights.

    Each class's normalized weight is split across the tickers in that class
    by their share of the class's current value (equally when the class is
    worth $0). Keys may be asset classes ("ETF", "Bond", ...) or buckets
    ("equity", "bonds", "cash", "other").
    """
    weights = {k: _clamp01(v) for k, v in (class_weights or {}).items()}
    total_w = sum(weights.values())
    if total_w <= 0:
        return {}
    weights = {k: v / total_w for k, v in weights.items()}

    keys_are_buckets = all(k in BUCKET_KEYS for k in weights) and not any(k in ASSET_CLASSES for k in weights)
    items = _holdings_by_ticker(positions)

    targets = {}
    for cls, w in weights.items():
        members = [x for x in items if _class_of(x, keys_are_buckets) == cls]
        if not members or w <= 0:
            continue
        class_value = sum(x["currentValue"] for x in members)
        for x in members:
            share = x["currentValue"] / class_value if class_value > 0 else 1.0 / len(members)
            targets[x["ticker"]] = targets.get(x["ticker"], 0.0) + w * share

    return targets


# ============================================================
# BUCKET-LEVEL PLAN (equity / bonds / cash)
# ============================================================

def bucket_rebalance_plan(total, current, target):
    """
    Bucket deltas against a target mix and a suggested funding source.

    Returns {"rows", "moves", "primaryFundingSource"} where moves are
    structured suggestions:
      {"kind": "move", "from": "cash", "to": bucket, "amount"}
      {"kind": "deploy", "amount"}            overweight cash, no clear deficit
      {"kind": "sell", "from": bucket, "amount", "cashNeeded"}
      {"kind": "contribute", "to": "cash", "amount"}
    """
    total = float(total or 0)
    cur_pct = {k: (current.get(k, 0.0) / total if total > 0 else 0.0) for k in ("equity", "bonds", "cash")}
    delta = {k: total * target.get(k, 0.0) - current.get(k, 0.0) for k in ("equity", "bonds", "cash")}

    labels = {"equity": "Equity", "bonds": "Bonds", "cash": "Cash/MM"}
    rows = [
        {
            "bucket": labels[k],
            "key": k,
            "currentPct": cur_pct[k],
            "targetPct": target.get(k, 0.0),
            "deltaPct": target.get(k, 0.0) - cur_pct[k],
            "deltaDollar": delta[k],
        }
        for k in ("equity", "bonds", "cash")
    ]

    moves = []
    if max(abs(r["deltaPct"]) for r in rows) < NEAR_TARGET_PCT:
        return {"rows": rows, "moves": moves, "primaryFundingSource": "contributions"}

    if delta["cash"] < 0:
        available = abs(delta["cash"])
        deficits = [(k, max(delta[k], 0.0)) for k in ("equity", "bonds")]
        deficits = [(k, need) for k, need in deficits if need > MIN_MOVE_DOLLARS]

        if deficits:
            remaining = available
            for k, need in deficits:
                amt = min(remaining, need)
                if amt <= 0:
                    continue
                moves.append({"kind": "move", "from": "cash", "to": k, "amount": amt})
                remaining -= amt
                if remaining <= 0:
                    break
        else:
            moves.append({"kind": "deploy", "amount": available})
        return {"rows": rows, "moves": moves, "primaryFundingSource": "cash"}

    if delta["cash"] > 0:
        needed = delta["cash"]
        overweights = [(k, max(-delta[k], 0.0)) for k in ("equity", "bonds")]
        overweights = [(k, excess) for k, excess in overweights if excess > MIN_MOVE_DOLLARS]

        if overweights:
            for k, excess in overweights:
                moves.append({"kind": "sell", "from": k, "amount": min(excess, needed), "cashNeeded": needed})
            return {"rows": rows, "moves": moves, "primaryFundingSource": "sell-overweights"}

        moves.append({"kind": "contribute", "to": "cash", "amount": needed})

    return {"rows": rows, "moves": moves, "primaryFundingSource": "contributions"}
