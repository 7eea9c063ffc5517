import math

from portfolio_types import bucket_for, normalize_ticker
from valuation import value_for_position

TOP_HOLDING_LIMIT = 0.20
TOP_HOLDING_SOFT = 0.10
TOP3_LIMIT = 0.60
TOP3_SOFT = 0.45
CASH_HIGH = 0.25
CASH_SOFT = 0.15

TICKER_SATURATION = 12
CLASS_SATURATION = 5


def tier_for_score(score):
    if score >= 85:
        return "Excellent", "Very well diversified across holdings and asset classes."
    if score >= 70:
        return "Good", "Solid diversification with a few areas to improve."
    if score >= 40:
        return "Fair", "Moderately concentrated. Rebalancing would help."
    return "Poor", "Highly concentrated. Consider spreading risk across more holdings and classes."


def _round_half_up(x):
    return int(math.floor(x + 0.5))


def _pct(p):
    return f"{_round_half_up(p * 100)}%"


def _empty_details():
    return {
        "tier": "Poor",
        "tierHint": "Add positions to compute diversification details.",
        "topHoldingTicker": None,
        "topHoldingPct": 0.0,
        "top3Pct": 0.0,
        "buckets": {"equity": 0.0, "bonds": 0.0, "cash": 0.0, "other": 0.0},
        "warnings": {"topHolding": False, "top3": False},
        "why": [],
        "topConcentrations": [],
    }


def score(positions, risk_level=None):
    """
    Diversification score (0-100) and supporting details.

        100 x [ 0.4 x min(tickers / 12, 1)
              + 0.4 x (1 - HHI)
              + 0.2 x min(asset classes / 5, 1) ]

    HHI is the sum of squared ticker weights. An empty or zero-value
    portfolio scores 0.
    """
    positions = positions or []
    values = [(p, value_for_position(p)) for p in positions]
    total = sum(v for _, v in values)

    if total <= 0:
        return 0, _empty_details()

    by_ticker = {}
    classes = set()
    buckets = {"equity": 0.0, "bonds": 0.0, "cash": 0.0, "other": 0.0}

    for p, v in values:
        t = normalize_ticker(p.get("ticker"))
        by_ticker[t] = by_ticker.get(t, 0.0) + v
        classes.add(p.get("assetClass"))
        buckets[bucket_for(p.get("assetClass"))] += v

    shares = sorted(
        ({"ticker": t, "value": v, "percent": v / total} for t, v in by_ticker.items()),
        key=lambda s: s["percent"],
        reverse=True,
    )

    hhi = sum(s["percent"] ** 2 for s in shares)
    base = (
        min(len(by_ticker) / TICKER_SATURATION, 1.0) * 0.4
        + (1.0 - hhi) * 0.4
        + min(len(classes) / CLASS_SATURATION, 1.0) * 0.2
    )
    value = _round_half_up(base * 100)
    tier, hint = tier_for_score(value)

    top1 = shares[0]
    top1_pct = top1["percent"]
    top3_pct = sum(s["percent"] for s in shares[:3])
    bucket_pct = {k: v / total for k, v in buckets.items()}

    why = []
    if top1_pct > TOP_HOLDING_LIMIT:
        why.append(f"Top holding is {_pct(top1_pct)} ({top1['ticker']}). Target: < 20%.")
    elif top1_pct > TOP_HOLDING_SOFT:
        why.append(f"Top holding is {_pct(top1_pct)} ({top1['ticker']}). Consider a 10-20% range.")

    if top3_pct > TOP3_LIMIT:
        why.append(f"Top 3 holdings are {_pct(top3_pct)}. Target: < 60%.")
    elif top3_pct > TOP3_SOFT:
        why.append(f"Top 3 holdings are {_pct(top3_pct)}. Consider adding more positions over time.")

    cash_pct = bucket_pct["cash"]
    if cash_pct > CASH_HIGH:
        why.append(f"Cash/MM is {_pct(cash_pct)}. Typical target is ~5-15% unless saving for near-term goals.")
    elif cash_pct > CASH_SOFT:
        why.append(f"Cash/MM is {_pct(cash_pct)}. Consider deploying some into diversified funds if appropriate.")

    level = risk_level if isinstance(risk_level, int) and not isinstance(risk_level, bool) else 3
    if bucket_pct["bonds"] == 0 and level <= 2:
        why.append("Bonds are 0%. With a conservative risk level, consider some fixed income for stability.")

    if not why:
        why.append("Your concentrations and asset mix look reasonably balanced for the number of holdings.")

    details = {
        "tier": tier,
        "tierHint": hint,
        "topHoldingTicker": top1["ticker"],
        "topHoldingPct": top1_pct,
        "top3Pct": top3_pct,
        "buckets": bucket_pct,
        "warnings": {
            "topHolding": top1_pct > TOP_HOLDING_LIMIT,
            "top3": top3_pct > TOP3_LIMIT,
        },
        "why": why,
        "topConcentrations": shares[:5],
    }
    return value, details
