# src/epochflow/runtime/apply/assets.py
from __future__ import annotations

"""Asset book: exact integer balances per asset kind.

This is the in-process rendition of the transfer and destruction primitives
the distribution engine consumes. Components hold value under namespaced
holder ids (`stream:<id>`, `ledger:<id>`, `route:<id>`); identities hold value
under their own id and can never take a component holder id, so only the
component's own operations move value out of it. There are no implicit fees:
every move is exact.
"""

import logging
from typing import Any, Dict, Optional

from epochflow.runtime.apply.common import (
    as_dict,
    as_int,
    ensure_root_dict,
    parse_amount,
    payload_of,
    require_admin,
    require_identity,
    require_recipient,
    require_str,
)
from epochflow.runtime.errors import InsufficientBalance, InvalidIdentity, InvalidPayload
from epochflow.runtime.op_types import OpContext, OpEnvelope

Json = Dict[str, Any]

log = logging.getLogger("epochflow.assets")


def _ensure_asset(state: Json, kind: str) -> Json:
    assets = ensure_root_dict(state, "assets")
    rec = assets.get(kind)
    if not isinstance(rec, dict):
        rec = {"supply": 0, "destroyed": 0, "balances": {}}
        assets[kind] = rec
    rec.setdefault("supply", 0)
    rec.setdefault("destroyed", 0)
    if not isinstance(rec.get("balances"), dict):
        rec["balances"] = {}
    return rec


def balance_of(state: Json, kind: str, holder: str) -> int:
    rec = as_dict(as_dict(state.get("assets")).get(kind))
    return as_int(as_dict(rec.get("balances")).get(holder), 0)


def _set_balance(rec: Json, holder: str, value: int) -> None:
    bals = rec["balances"]
    if value:
        bals[holder] = int(value)
    else:
        bals.pop(holder, None)


def transfer(state: Json, kind: str, src: str, dst: str, amount: int) -> int:
    """Move `amount` of `kind` from `src` to `dst`. Fails without mutation."""
    amt = int(amount)
    if amt < 0:
        raise InvalidPayload({"amount": amt}, reason="negative_amount")
    if not src or not dst:
        raise InvalidIdentity({"src": src, "dst": dst})
    have = balance_of(state, kind, src)
    if have < amt:
        raise InsufficientBalance({"asset": kind, "holder": src, "balance": have, "amount": amt})
    if amt == 0 or src == dst:
        return amt
    rec = _ensure_asset(state, kind)
    _set_balance(rec, src, have - amt)
    _set_balance(rec, dst, balance_of(state, kind, dst) + amt)
    return amt


def transfer_in(state: Json, kind: str, from_id: str, component: str, amount: int) -> int:
    return transfer(state, kind, from_id, component, amount)


def transfer_out(state: Json, kind: str, component: str, to_id: str, amount: int) -> int:
    return transfer(state, kind, component, to_id, amount)


def destroy(state: Json, kind: str, holder: str, amount: int) -> int:
    """Remove `amount` from circulation out of `holder`'s balance."""
    amt = int(amount)
    if amt <= 0:
        return 0
    have = balance_of(state, kind, holder)
    if have < amt:
        raise InsufficientBalance({"asset": kind, "holder": holder, "balance": have, "amount": amt})
    rec = _ensure_asset(state, kind)
    _set_balance(rec, holder, have - amt)
    rec["supply"] = as_int(rec.get("supply"), 0) - amt
    rec["destroyed"] = as_int(rec.get("destroyed"), 0) + amt
    return amt


def issue(state: Json, kind: str, to_id: str, amount: int) -> int:
    amt = int(amount)
    if amt <= 0:
        return 0
    rec = _ensure_asset(state, kind)
    _set_balance(rec, to_id, balance_of(state, kind, to_id) + amt)
    rec["supply"] = as_int(rec.get("supply"), 0) + amt
    return amt


def asset_summary(state: Json, kind: str) -> Optional[Json]:
    rec = as_dict(state.get("assets")).get(kind)
    if not isinstance(rec, dict):
        return None
    return {
        "asset": kind,
        "supply": as_int(rec.get("supply"), 0),
        "destroyed": as_int(rec.get("destroyed"), 0),
        "holders": len(as_dict(rec.get("balances"))),
    }


def _apply_asset_issue(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    require_admin(state, env)
    payload = payload_of(env)
    kind = require_str(payload, "asset")
    to_id = require_recipient(state, payload.get("to"))
    amount = parse_amount(payload)

    issue(state, kind, to_id, amount)
    log.info("asset issued asset=%s to=%s amount=%s", kind, to_id, amount)
    return {"applied": "ASSET_ISSUE", "asset": kind, "to": to_id, "amount": amount}


def _apply_asset_transfer(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    caller = require_identity(env.caller)
    payload = payload_of(env)
    kind = require_str(payload, "asset")
    to_id = require_recipient(state, payload.get("to"))
    amount = parse_amount(payload)

    transfer(state, kind, caller, to_id, amount)
    return {"applied": "ASSET_TRANSFER", "asset": kind, "from": caller, "to": to_id, "amount": amount}


def apply_assets(state: Json, env: OpEnvelope, ctx: OpContext) -> Optional[Json]:
    if env.op == "ASSET_ISSUE":
        return _apply_asset_issue(state, env, ctx)
    if env.op == "ASSET_TRANSFER":
        return _apply_asset_transfer(state, env, ctx)
    return None
