# src/epochflow/runtime/apply/common.py
from __future__ import annotations

"""Payload parsing and precondition helpers shared by apply modules."""

from typing import Any, Dict, List

from epochflow.ledger.constants import LEDGER_HOLDER_PREFIX, ROUTE_HOLDER_PREFIX, STREAM_HOLDER_PREFIX
from epochflow.runtime.errors import InvalidEpoch, InvalidIdentity, InvalidPayload, Unauthorized, ZeroAmount
from epochflow.runtime.op_types import OpContext, OpEnvelope

Json = Dict[str, Any]

COMPONENT_HOLDER_PREFIXES = (STREAM_HOLDER_PREFIX, LEDGER_HOLDER_PREFIX, ROUTE_HOLDER_PREFIX)


def as_dict(x: Any) -> Json:
    return x if isinstance(x, dict) else {}


def as_list(x: Any) -> List[Any]:
    return x if isinstance(x, list) else []


def as_int(x: Any, default: int = 0) -> int:
    try:
        return int(x)
    except Exception:
        return int(default)


def as_str(x: Any) -> str:
    return str(x).strip() if isinstance(x, (str, int)) and not isinstance(x, bool) else ""


def ensure_root_dict(state: Json, key: str) -> Json:
    cur = state.get(key)
    if not isinstance(cur, dict):
        cur = {}
        state[key] = cur
    return cur


def payload_of(env: OpEnvelope) -> Json:
    return as_dict(env.payload)


def require_str(payload: Json, key: str) -> str:
    s = as_str(payload.get(key))
    if not s:
        raise InvalidPayload({"field": key}, reason=f"missing_{key}")
    return s


def parse_int(payload: Json, key: str) -> int:
    v = payload.get(key)
    if isinstance(v, bool) or v is None:
        raise InvalidPayload({"field": key}, reason=f"missing_{key}")
    try:
        return int(v)
    except Exception:
        raise InvalidPayload({"field": key, "value": v}, reason=f"bad_{key}") from None


def parse_amount(payload: Json, key: str = "amount") -> int:
    """Parse a strictly positive integer quantity."""
    amount = parse_int(payload, key)
    if amount < 0:
        raise InvalidPayload({"field": key, "value": amount}, reason="negative_amount")
    if amount == 0:
        raise ZeroAmount({"field": key})
    return amount


def parse_epoch(payload: Json, ctx: OpContext, key: str = "epoch") -> int:
    epoch = parse_int(payload, key)
    if epoch < 0 or not ctx.clock.is_aligned(epoch):
        raise InvalidEpoch({"field": key, "epoch": epoch, "epoch_length": ctx.clock.epoch_length})
    return epoch


def is_component_holder(ident: str) -> bool:
    return ident.startswith(COMPONENT_HOLDER_PREFIXES)


def require_identity(ident: Any, *, field: str = "caller") -> str:
    """An identity id: non-empty and outside the component holder namespace."""
    s = as_str(ident)
    if not s:
        raise InvalidIdentity({"field": field})
    if is_component_holder(s):
        raise InvalidIdentity({"field": field, "value": s}, reason="reserved_holder_id")
    return s


def require_recipient(state: Json, ident: Any, *, field: str = "to") -> str:
    """Receiver of a direct credit: an identity, or an existing stream's holder.

    A stream picks up direct credits on its next sync. Ledger and route
    holders only move value through their own ops.
    """
    s = as_str(ident)
    if not s:
        raise InvalidIdentity({"field": field})
    if not is_component_holder(s):
        return s
    if s.startswith(STREAM_HOLDER_PREFIX) and s[len(STREAM_HOLDER_PREFIX) :] in as_dict(state.get("streams")):
        return s
    raise InvalidIdentity({"field": field, "value": s}, reason="not_a_recipient")


def is_admin(state: Json, caller: str) -> bool:
    admin = as_str(as_dict(state.get("params")).get("admin"))
    return bool(admin) and caller == admin


def require_admin(state: Json, env: OpEnvelope) -> str:
    caller = require_identity(env.caller)
    if not is_admin(state, caller):
        raise Unauthorized({"op": env.op, "caller": caller})
    return caller


def epoch_key(epoch: int) -> str:
    return str(int(epoch))
