import copy
import logging
import uuid

from portfolio_types import (
    TX_TYPES,
    account_of,
    finite_or_none,
    is_cash_like,
    is_iso_date,
    is_trade,
    normalize_ticker,
    to_number,
)
from valuation import cash_balance

logger = logging.getLogger(__name__)

QTY_DECIMALS = 8
COST_DECIMALS = 6
CASH_DECIMALS = 2

_LEDGER_NAMESPACE = uuid.UUID("6f1c1c5e-3b0a-4c59-9a57-0d4a3e0b7d21")


def _key(account, ticker):
    return f"{account}::{ticker}"


def _stable_id(*parts):
    return str(uuid.uuid5(_LEDGER_NAMESPACE, "|".join(parts)))


def _stable_timestamp(iso_date):
    return f"{iso_date}T00:00:00+00:00" if iso_date else "1970-01-01T00:00:00+00:00"


# ------------------------------------------------------------
# Transaction validation
# ------------------------------------------------------------

def validate_transaction(tx):
    """Return a list of reasons the transaction cannot be replayed (empty if valid)."""
    if not isinstance(tx, dict):
        return ["transaction is not a record"]

    problems = []
    tx_type = tx.get("type")
    if tx_type not in TX_TYPES:
        problems.append(f"unknown transaction type: {tx_type!r}")
    if not is_iso_date(tx.get("date")):
        problems.append("missing or invalid date (expected YYYY-MM-DD)")

    if is_trade(tx_type):
        if not normalize_ticker(tx.get("ticker")):
            problems.append("trade requires a ticker")
        qty = finite_or_none(tx.get("quantity"))
        if qty is None or qty <= 0:
            problems.append("trade requires a positive quantity")
        if tx.get("price") is not None:
            px = finite_or_none(tx.get("price"))
            if px is None or px <= 0:
                problems.append("price, when given, must be positive")
    elif tx_type in ("CASH_DEPOSIT", "CASH_WITHDRAWAL"):
        amt = finite_or_none(tx.get("amount"))
        if amt is None or amt <= 0:
            problems.append("cash flow requires a positive amount")

    return problems


def _positive_or_none(value):
    n = finite_or_none(value)
    return n if n is not None and n > 0 else None


def _resolve_trade_price(tx, seed):
    """Explicit price -> seed current price -> seed cost basis. Never invented."""
    px = _positive_or_none(tx.get("price"))
    if px is not None:
        return px
    if seed is not None:
        px = _positive_or_none(seed.get("currentPrice"))
        if px is not None:
            return px
        return _positive_or_none(seed.get("costBasisPerUnit"))
    return None


# ------------------------------------------------------------
# Rebuild positions from (seed, transactions)
# ------------------------------------------------------------

def rebuild_positions(seed_positions, transactions):
    """
    Replay the transaction log on top of the frozen seed positions.

    Only the seed is read; the result is always rebuilt from scratch, so
    calling this twice with the same inputs yields identical output.

    Trades update (quantity, average cost) per (account, ticker). Cash
    deposits/withdrawals and trade settlements accumulate into one cash delta
    per account, which is posted to that account's cash-like position
    (Money Market preferred over Cash) or to a synthesized Cash position.
    """
    seed_positions = [p for p in (seed_positions or []) if isinstance(p, dict)]

    seed_by_key = {}
    for p in seed_positions:
        k = _key(account_of(p), normalize_ticker(p.get("ticker")))
        if k not in seed_by_key:
            seed_by_key[k] = p

    ordered = sorted(
        (t for t in (transactions or []) if isinstance(t, dict) and is_iso_date(t.get("date"))),
        key=lambda t: t["date"],
    )

    agg = {}
    cash_delta = {}
    cash_pos_delta = {}
    cash_earliest = {}

    def _touch_cash(account, amount, date):
        cash_delta[account] = cash_delta.get(account, 0.0) + amount
        if account not in cash_earliest or date < cash_earliest[account]:
            cash_earliest[account] = date

    for t in ordered:
        problems = validate_transaction(t)
        if problems:
            logger.debug("Skipping transaction %s: %s", t.get("id"), "; ".join(problems))
            continue

        tx_type = t["type"]
        account = account_of(t)
        date = t["date"]

        if tx_type == "CASH_DEPOSIT":
            _touch_cash(account, to_number(t.get("amount")), date)
            continue
        if tx_type == "CASH_WITHDRAWAL":
            _touch_cash(account, -to_number(t.get("amount")), date)
            continue

        ticker = normalize_ticker(t.get("ticker"))
        qty = to_number(t.get("quantity"))
        key = _key(account, ticker)
        seed = seed_by_key.get(key)
        if seed is not None and is_cash_like(seed.get("assetClass")):
            # Trades in a cash-like position move balance, never shares
            amount = qty * (_positive_or_none(t.get("price")) or 1.0)
            if tx_type == "SELL":
                held = cash_balance(seed) + cash_pos_delta.get(key, 0.0)
                amount = -min(amount, max(held, 0.0))
            cash_pos_delta[key] = cash_pos_delta.get(key, 0.0) + amount
            _touch_cash(account, -amount, date)
            continue

        px = _resolve_trade_price(t, seed)

        if tx_type == "BUY" and px is None:
            logger.debug("Skipping BUY %s %s on %s: no usable price", qty, ticker, date)
            continue

        cur = agg.get(key)
        if cur is None:
            cur = {
                "account": account,
                "ticker": ticker,
                "qty": to_number(seed.get("quantity")) if seed else 0.0,
                "cost": to_number(seed.get("costBasisPerUnit")) if seed else 0.0,
                "earliest": date,
            }
            agg[key] = cur
        elif date < cur["earliest"]:
            cur["earliest"] = date

        if tx_type == "BUY":
            new_qty = cur["qty"] + qty
            cur["cost"] = (cur["qty"] * cur["cost"] + qty * px) / new_qty if new_qty > 0 else px
            cur["qty"] = new_qty
            _touch_cash(account, -qty * px, date)
        else:
            sold = min(qty, max(cur["qty"], 0.0))
            cur["qty"] = max(0.0, cur["qty"] - qty)
            if px is not None:
                _touch_cash(account, sold * px, date)
            else:
                logger.debug("SELL %s %s on %s has no usable price; cash not credited", qty, ticker, date)

    # Cash target per account with a nonzero delta or a cash-like trade
    active_cash = {
        acct: round(delta, CASH_DECIMALS)
        for acct, delta in cash_delta.items()
        if round(delta, CASH_DECIMALS) != 0
    }
    for key in cash_pos_delta:
        acct = account_of(seed_by_key[key])
        active_cash.setdefault(acct, round(cash_delta.get(acct, 0.0), CASH_DECIMALS))
    cash_targets = {}
    for acct in active_cash:
        candidates = [
            p for p in seed_positions
            if account_of(p) == acct and is_cash_like(p.get("assetClass"))
        ]
        mm = [p for p in candidates if p.get("assetClass") == "Money Market"]
        chosen = (mm or candidates or [None])[0]
        if chosen is not None:
            cash_targets[acct] = chosen

    target_ids = {id(p) for p in cash_targets.values()}

    out = []

    # Untouched seed positions carry over unchanged
    for p in seed_positions:
        k = _key(account_of(p), normalize_ticker(p.get("ticker")))
        if k in agg or k in cash_pos_delta or id(p) in target_ids:
            continue
        out.append(copy.deepcopy(p))

    # Positions replaced by the replayed (quantity, average cost)
    for key, a in agg.items():
        if a["qty"] <= 0:
            continue
        seed = seed_by_key.get(key)
        if seed is not None:
            rebuilt = copy.deepcopy(seed)
        else:
            rebuilt = {
                "id": _stable_id("position", a["account"], a["ticker"]),
                "ticker": a["ticker"],
                "name": a["ticker"],
                "assetClass": "Equity",
                "accountType": a["account"],
                "currency": "USD",
                "purchaseDate": a["earliest"],
                "createdAt": _stable_timestamp(a["earliest"]),
            }
        rebuilt["ticker"] = a["ticker"]
        rebuilt["accountType"] = a["account"]
        rebuilt["quantity"] = round(a["qty"], QTY_DECIMALS)
        rebuilt["costBasisPerUnit"] = round(a["cost"], COST_DECIMALS)
        if not rebuilt.get("purchaseDate"):
            rebuilt["purchaseDate"] = a["earliest"]
        out.append(rebuilt)

    # Post cash deltas
    for acct, delta in active_cash.items():
        target = cash_targets.get(acct)
        if target is not None:
            target_key = _key(acct, normalize_ticker(target.get("ticker")))
            balance = cash_balance(target) + cash_pos_delta.pop(target_key, 0.0) + delta
            cash_pos = copy.deepcopy(target)
        else:
            balance = delta
            cash_pos = {
                "id": _stable_id("cash", acct),
                "ticker": "CASH",
                "name": "Cash",
                "assetClass": "Cash",
                "accountType": acct,
                "currency": "USD",
                "purchaseDate": cash_earliest.get(acct),
                "createdAt": _stable_timestamp(cash_earliest.get(acct)),
            }

        if balance < 0:
            logger.debug("Cash balance for %s would be %.2f; floored at 0", acct, balance)
            balance = 0.0
        if target is None and balance == 0:
            continue

        out.append(_encode_cash(cash_pos, balance))

    # Cash-like positions traded directly but not chosen as their account's target
    for key, moved in cash_pos_delta.items():
        seed = seed_by_key[key]
        balance = cash_balance(seed) + moved
        if balance < 0:
            logger.debug("Cash balance for %s would be %.2f; floored at 0", key, balance)
            balance = 0.0
        out.append(_encode_cash(copy.deepcopy(seed), balance))

    out.sort(key=lambda p: (account_of(p), normalize_ticker(p.get("ticker"))))
    return _dedupe_by_id(out)


def _encode_cash(position, balance):
    position["quantity"] = 1
    position["costBasisPerUnit"] = round(balance, CASH_DECIMALS)
    position["currentPrice"] = 1
    return position


def _dedupe_by_id(positions):
    seen = set()
    out = []
    for p in positions:
        pid = p.get("id")
        if pid is not None and pid in seen:
            logger.warning("Dropping duplicate position id %s (%s)", pid, p.get("ticker"))
            continue
        if pid is not None:
            seen.add(pid)
        out.append(p)
    return out


# ------------------------------------------------------------
# Summaries
# ------------------------------------------------------------

def transaction_summary(transactions):
    deposits = 0.0
    withdrawals = 0.0
    buy_notional = 0.0
    sell_notional = 0.0

    for t in transactions or []:
        tx_type = t.get("type")
        if tx_type == "CASH_DEPOSIT":
            deposits += abs(to_number(t.get("amount")))
        elif tx_type == "CASH_WITHDRAWAL":
            withdrawals += abs(to_number(t.get("amount")))
        elif tx_type in ("BUY", "SELL"):
            notional = to_number(t.get("price")) * to_number(t.get("quantity"))
            if tx_type == "BUY":
                buy_notional += notional
            else:
                sell_notional += notional

    return {
        "deposits": deposits,
        "withdrawals": withdrawals,
        "net": deposits - withdrawals,
        "buyNotional": buy_notional,
        "sellNotional": sell_notional,
    }
