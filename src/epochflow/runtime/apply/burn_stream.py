# src/epochflow/runtime/apply/burn_stream.py
from __future__ import annotations

"""BurnStream domain apply semantics.

A stream destroys value gradually, one epoch at a time:

  queue   -> value accumulates in `pending` for the next epoch
  start   -> pending is promoted to `active` once its epoch begins
  drip    -> floor(active * elapsed / L) - destroyed_so_far is destroyed
  (drained) -> active resets, ready for the next pending cycle

At most one cycle is active. Every function validates before it mutates, so
a failed call leaves state untouched and checkpoint() can compose them.
"""

import logging
from typing import Any, Dict, Optional

from epochflow.ledger.constants import STREAM_HOLDER_PREFIX
from epochflow.runtime.apply import assets
from epochflow.runtime.apply.common import (
    as_dict,
    as_int,
    ensure_root_dict,
    parse_amount,
    payload_of,
    require_admin,
    require_identity,
    require_str,
)
from epochflow.runtime.errors import (
    AlreadyActive,
    Conflict,
    InsufficientNewValue,
    NotFound,
    NotReady,
    NothingToStart,
    NothingToSync,
)
from epochflow.runtime.op_types import OpContext, OpEnvelope

Json = Dict[str, Any]

log = logging.getLogger("epochflow.burn")


def _empty_active(rec: Json) -> None:
    rec["active_amount"] = 0
    rec["active_epoch"] = None
    rec["destroyed_so_far"] = 0


def new_stream_record(stream_id: str, asset: str, *, now: int) -> Json:
    rec: Json = {
        "stream_id": stream_id,
        "asset": asset,
        "holder": f"{STREAM_HOLDER_PREFIX}{stream_id}",
        "pending_amount": 0,
        "pending_epoch": None,
        "destroyed_total": 0,
        "cycles_completed": 0,
        "created_at": int(now),
    }
    _empty_active(rec)
    return rec


def get_stream(state: Json, stream_id: str) -> Json:
    rec = as_dict(state.get("streams")).get(stream_id)
    if not isinstance(rec, dict):
        raise NotFound({"stream_id": stream_id}, reason="stream_not_found")
    return rec


def held_balance(state: Json, rec: Json) -> int:
    return assets.balance_of(state, rec["asset"], rec["holder"])


def remaining_active(rec: Json) -> int:
    return as_int(rec.get("active_amount"), 0) - as_int(rec.get("destroyed_so_far"), 0)


def accounted(rec: Json) -> int:
    return as_int(rec.get("pending_amount"), 0) + remaining_active(rec)


def unaccounted(state: Json, rec: Json) -> int:
    return held_balance(state, rec) - accounted(rec)


def burnable_now(rec: Json, ctx: OpContext) -> int:
    """What drip() would destroy at ctx.now, without mutating anything."""
    active = as_int(rec.get("active_amount"), 0)
    epoch = rec.get("active_epoch")
    if active <= 0 or epoch is None or ctx.now < int(epoch):
        return 0
    length = int(ctx.clock.epoch_length)
    elapsed = min(ctx.now - int(epoch), length)
    return (active * elapsed) // length - as_int(rec.get("destroyed_so_far"), 0)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def queue(state: Json, rec: Json, amount: int, ctx: OpContext) -> Json:
    """Add already-held value to the pending cycle."""
    amt = int(amount)
    free = unaccounted(state, rec)
    if amt > free:
        raise InsufficientNewValue(
            {"stream_id": rec["stream_id"], "amount": amt, "unaccounted": max(free, 0)}
        )

    if rec.get("pending_epoch") is None:
        rec["pending_epoch"] = ctx.next_epoch
    rec["pending_amount"] = as_int(rec.get("pending_amount"), 0) + amt

    return {
        "stream_id": rec["stream_id"],
        "queued": amt,
        "pending_amount": rec["pending_amount"],
        "pending_epoch": rec["pending_epoch"],
    }


def sync_unaccounted(state: Json, rec: Json, ctx: OpContext) -> Json:
    diff = unaccounted(state, rec)
    if diff <= 0:
        raise NothingToSync({"stream_id": rec["stream_id"]})
    return queue(state, rec, diff, ctx)


def drip(state: Json, rec: Json, ctx: OpContext) -> int:
    """Destroy whatever the linear schedule allows right now; return the amount."""
    active = as_int(rec.get("active_amount"), 0)
    epoch = rec.get("active_epoch")
    if active <= 0 or epoch is None or ctx.now < int(epoch):
        return 0

    length = int(ctx.clock.epoch_length)
    elapsed = min(ctx.now - int(epoch), length)
    burnable_total = (active * elapsed) // length
    delta = burnable_total - as_int(rec.get("destroyed_so_far"), 0)

    if delta > 0:
        assets.destroy(state, rec["asset"], rec["holder"], delta)
        rec["destroyed_so_far"] = burnable_total
        rec["destroyed_total"] = as_int(rec.get("destroyed_total"), 0) + delta
    else:
        delta = 0

    if elapsed == length and as_int(rec.get("destroyed_so_far"), 0) == active:
        log.info("burn stream completed stream=%s epoch=%s amount=%s", rec["stream_id"], epoch, active)
        rec["cycles_completed"] = as_int(rec.get("cycles_completed"), 0) + 1
        _empty_active(rec)

    return delta


def start(state: Json, rec: Json, ctx: OpContext) -> Json:
    pending_epoch = rec.get("pending_epoch")
    pending_amount = as_int(rec.get("pending_amount"), 0)
    if pending_epoch is None or pending_amount <= 0:
        raise NothingToStart({"stream_id": rec["stream_id"]})
    if ctx.now < int(pending_epoch):
        raise NotReady({"stream_id": rec["stream_id"], "pending_epoch": int(pending_epoch), "now": ctx.now})
    if as_int(rec.get("active_amount"), 0) > 0:
        raise AlreadyActive({"stream_id": rec["stream_id"], "active_epoch": rec.get("active_epoch")})

    rec["active_amount"] = pending_amount
    rec["active_epoch"] = int(pending_epoch)
    rec["destroyed_so_far"] = 0
    rec["pending_amount"] = 0
    rec["pending_epoch"] = None
    log.info("burn stream started stream=%s epoch=%s amount=%s", rec["stream_id"], pending_epoch, pending_amount)

    dripped = drip(state, rec, ctx)
    return {
        "stream_id": rec["stream_id"],
        "active_epoch": int(pending_epoch),
        "active_amount": pending_amount,
        "dripped": dripped,
    }


def checkpoint(state: Json, rec: Json, ctx: OpContext) -> Json:
    """Advance the stream as far as currently possible."""
    synced = 0
    try:
        synced = int(sync_unaccounted(state, rec, ctx)["queued"])
    except NothingToSync:
        pass

    settled = drip(state, rec, ctx)

    started = False
    try:
        out = start(state, rec, ctx)
        started = True
        settled += int(out["dripped"])
    except (NotReady, AlreadyActive):
        pass

    dripped = drip(state, rec, ctx)
    return {
        "stream_id": rec["stream_id"],
        "synced": synced,
        "started": started,
        "dripped": settled + dripped,
    }


def stream_view(state: Json, rec: Json, ctx: OpContext) -> Json:
    return {
        "stream_id": rec["stream_id"],
        "asset": rec["asset"],
        "holder": rec["holder"],
        "pending_amount": as_int(rec.get("pending_amount"), 0),
        "pending_epoch": rec.get("pending_epoch"),
        "active_amount": as_int(rec.get("active_amount"), 0),
        "active_epoch": rec.get("active_epoch"),
        "destroyed_so_far": as_int(rec.get("destroyed_so_far"), 0),
        "remaining_active": remaining_active(rec),
        "held_balance": held_balance(state, rec),
        "unaccounted": unaccounted(state, rec),
        "burnable_now": burnable_now(rec, ctx),
        "destroyed_total": as_int(rec.get("destroyed_total"), 0),
        "cycles_completed": as_int(rec.get("cycles_completed"), 0),
    }


# ---------------------------------------------------------------------------
# Op appliers
# ---------------------------------------------------------------------------


def _stream_from_payload(state: Json, env: OpEnvelope) -> Json:
    return get_stream(state, require_str(payload_of(env), "stream_id"))


def _apply_stream_create(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    require_admin(state, env)
    payload = payload_of(env)
    stream_id = require_str(payload, "stream_id")
    asset = require_str(payload, "asset")

    streams = ensure_root_dict(state, "streams")
    if stream_id in streams:
        raise Conflict({"stream_id": stream_id}, reason="stream_exists")
    streams[stream_id] = new_stream_record(stream_id, asset, now=ctx.now)
    return {"applied": "STREAM_CREATE", "stream_id": stream_id, "asset": asset}


def _apply_stream_queue(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    rec = _stream_from_payload(state, env)
    amount = parse_amount(payload_of(env))
    return {"applied": "STREAM_QUEUE", **queue(state, rec, amount, ctx)}


def _apply_stream_deposit(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    caller = require_identity(env.caller)
    rec = _stream_from_payload(state, env)
    amount = parse_amount(payload_of(env))

    assets.transfer_in(state, rec["asset"], caller, rec["holder"], amount)
    return {"applied": "STREAM_DEPOSIT", "from": caller, **queue(state, rec, amount, ctx)}


def _apply_stream_sync(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    rec = _stream_from_payload(state, env)
    return {"applied": "STREAM_SYNC", **sync_unaccounted(state, rec, ctx)}


def _apply_stream_start(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    rec = _stream_from_payload(state, env)
    return {"applied": "STREAM_START", **start(state, rec, ctx)}


def _apply_stream_drip(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    rec = _stream_from_payload(state, env)
    delta = drip(state, rec, ctx)
    return {
        "applied": "STREAM_DRIP",
        "stream_id": rec["stream_id"],
        "dripped": delta,
        "destroyed_so_far": as_int(rec.get("destroyed_so_far"), 0),
    }


def _apply_stream_checkpoint(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    rec = _stream_from_payload(state, env)
    return {"applied": "STREAM_CHECKPOINT", **checkpoint(state, rec, ctx)}


_OPS = {
    "STREAM_CREATE": _apply_stream_create,
    "STREAM_QUEUE": _apply_stream_queue,
    "STREAM_DEPOSIT": _apply_stream_deposit,
    "STREAM_SYNC": _apply_stream_sync,
    "STREAM_START": _apply_stream_start,
    "STREAM_DRIP": _apply_stream_drip,
    "STREAM_CHECKPOINT": _apply_stream_checkpoint,
}


def apply_burn_stream(state: Json, env: OpEnvelope, ctx: OpContext) -> Optional[Json]:
    fn = _OPS.get(env.op)
    if fn is None:
        return None
    return fn(state, env, ctx)
