import copy
import logging
import uuid
from datetime import datetime, timezone

from ledger import rebuild_positions, validate_transaction
from portfolio_types import DEFAULT_ACCOUNT, finite_or_none, is_cash_like, normalize_ticker
from valuation import with_snapshot

logger = logging.getLogger(__name__)

SEED_KEY = "positionsSeed"


# ============================================================
# STATE BLOB
# ============================================================

def get_initial_state():
    return {
        "profile": None,
        "positions": [],
        "transactions": [],
        "snapshots": [],
        "lastUpdated": None,
    }


def _list_of_records(value):
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def normalize_loaded_state(raw):
    """
    Coerce whatever came out of storage into a well-formed state dict.
    Returns None when `raw` is not a JSON object at all.
    """
    if not isinstance(raw, dict):
        return None

    profile = raw.get("profile") if isinstance(raw.get("profile"), dict) else None
    last_updated = raw.get("lastUpdated") if isinstance(raw.get("lastUpdated"), str) else None

    state = {
        "profile": profile,
        "positions": _list_of_records(raw.get("positions")),
        "transactions": _list_of_records(raw.get("transactions")),
        "snapshots": _list_of_records(raw.get("snapshots")),
        "lastUpdated": last_updated,
    }

    # The seed only means something while there is a transaction log
    if state["transactions"] and isinstance(raw.get(SEED_KEY), list):
        state[SEED_KEY] = _list_of_records(raw.get(SEED_KEY))

    return state


def _without_seed(state):
    return {k: v for k, v in state.items() if k != SEED_KEY}


def _maybe_snapshot(state, snapshot):
    return with_snapshot(state) if snapshot else state


# ============================================================
# TRANSACTIONS (seed capture / replay / release)
# ============================================================

def set_transactions(state, transactions, snapshot=True):
    """
    Replace the transaction log and re-derive positions.

    - first transaction: the current positions are frozen as the seed
    - later changes: positions are rebuilt from (seed, log); the seed is untouched
    - empty log: positions go back to the seed and the seed is dropped
    """
    transactions = list(transactions or [])
    seed = state.get(SEED_KEY)

    if not transactions:
        if seed is not None:
            positions = copy.deepcopy(seed)
        else:
            positions = list(state.get("positions") or [])
        nxt = {**_without_seed(state), "transactions": [], "positions": positions}
        return _maybe_snapshot(nxt, snapshot)

    if seed is None:
        if state.get("transactions"):
            logger.warning(
                "Transaction log has %d entries but no baseline; using current positions as baseline",
                len(state["transactions"]),
            )
        seed = copy.deepcopy(list(state.get("positions") or []))

    positions = rebuild_positions(seed, transactions)
    nxt = {**state, "transactions": transactions, "positions": positions, SEED_KEY: seed}
    return _maybe_snapshot(nxt, snapshot)


def _prepare_transaction(tx):
    prepared = dict(tx)
    prepared.setdefault("id", str(uuid.uuid4()))
    if not prepared.get("accountType"):
        prepared["accountType"] = DEFAULT_ACCOUNT
    if prepared.get("ticker"):
        prepared["ticker"] = normalize_ticker(prepared["ticker"])
    return prepared


def add_transaction(state, tx, snapshot=True):
    prepared = _prepare_transaction(tx)
    problems = validate_transaction(prepared)
    if problems:
        logger.warning("Rejected transaction: %s", "; ".join(problems))
        return state
    return set_transactions(state, list(state.get("transactions") or []) + [prepared], snapshot)


def update_transaction(state, tx, snapshot=True):
    prepared = _prepare_transaction(tx)
    problems = validate_transaction(prepared)
    if problems:
        logger.warning("Rejected update to transaction %s: %s", prepared.get("id"), "; ".join(problems))
        return state
    txs = [prepared if t.get("id") == prepared["id"] else t for t in state.get("transactions") or []]
    return set_transactions(state, txs, snapshot)


def delete_transaction(state, tx_id, snapshot=True):
    txs = [t for t in state.get("transactions") or [] if t.get("id") != tx_id]
    return set_transactions(state, txs, snapshot)


# ============================================================
# POSITIONS / PROFILE
# ============================================================

def upsert_position(state, position):
    position = dict(position)
    position.setdefault("id", str(uuid.uuid4()))
    position.setdefault("currency", "USD")
    position.setdefault("createdAt", datetime.now(timezone.utc).isoformat())
    if position.get("ticker"):
        position["ticker"] = normalize_ticker(position["ticker"])

    positions = list(state.get("positions") or [])
    for i, p in enumerate(positions):
        if p.get("id") == position["id"]:
            positions[i] = position
            break
    else:
        positions.append(position)

    return with_snapshot({**state, "positions": positions})


def delete_position(state, position_id):
    positions = [p for p in state.get("positions") or [] if p.get("id") != position_id]
    return with_snapshot({**state, "positions": positions})


def clear_positions(state):
    # A wiped position list invalidates any transaction baseline
    return with_snapshot({**_without_seed(state), "positions": []})


def set_positions(state, positions, snapshot=True):
    return _maybe_snapshot({**state, "positions": list(positions or [])}, snapshot)


def set_profile(state, profile):
    return with_snapshot({**state, "profile": dict(profile) if profile else None})


# ============================================================
# PRICE REFRESH
# ============================================================

def apply_quotes(state, quotes):
    """
    Merge quote data into positions. No snapshot is taken here: prices are
    refreshed often and would otherwise flood the snapshot history.
    """
    quotes = quotes or {}
    positions = []

    for p in state.get("positions") or []:
        md = quotes.get(normalize_ticker(p.get("ticker")))
        if not md:
            if is_cash_like(p.get("assetClass")) and finite_or_none(p.get("currentPrice")) is None:
                p = {**p, "currentPrice": 1}
            positions.append(p)
            continue

        positions.append({
            **p,
            "currentPrice": md.get("price"),
            "name": p.get("name") or md.get("name") or p.get("ticker"),
            "sector": p.get("sector") or md.get("sector"),
        })

    return {**state, "positions": positions}


def tickers_needing_quotes(state):
    """Unique upper-cased tickers; empty when every position already has a price."""
    positions = state.get("positions") or []
    if all(finite_or_none(p.get("currentPrice")) is not None for p in positions):
        return []
    return all_tickers(positions)


def all_tickers(positions):
    seen = []
    for p in positions or []:
        t = normalize_ticker(p.get("ticker"))
        if t and t not in seen:
            seen.append(t)
    return seen
