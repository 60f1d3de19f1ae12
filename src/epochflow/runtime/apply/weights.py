# src/epochflow/runtime/apply/weights.py
from __future__ import annotations

"""Weight oracle adapters.

Distribution ledgers read two numbers per elapsed epoch:

  total_weight(epoch, target)
  identity_weight(epoch, target, identity)

Both must be frozen once the epoch has elapsed. The in-state weight book
enforces that by refusing reports for elapsed epochs; an external oracle is
wrapped in SnapshotWeightOracle, which copies the first answer for an elapsed
epoch into state and serves every later query from that copy.
"""

from typing import Any, Dict, Optional, Protocol

from epochflow.runtime.apply.common import (
    as_dict,
    as_int,
    as_str,
    ensure_root_dict,
    epoch_key,
    parse_epoch,
    parse_int,
    payload_of,
    require_identity,
    require_str,
)
from epochflow.runtime.errors import InvalidPayload, Unauthorized, WeightFrozen
from epochflow.runtime.op_types import OpContext, OpEnvelope

Json = Dict[str, Any]


class WeightOracle(Protocol):
    def total_weight(self, epoch: int, target: str) -> int: ...

    def identity_weight(self, epoch: int, target: str, identity: str) -> int: ...


def _target_rec(root: Any, epoch: int, target: str) -> Json:
    return as_dict(as_dict(as_dict(root).get(epoch_key(epoch))).get(target))


class LedgerWeightBook:
    """Weight oracle backed by state["weights"]."""

    def __init__(self, state: Json) -> None:
        self._state = state

    def total_weight(self, epoch: int, target: str) -> int:
        return as_int(_target_rec(self._state.get("weights"), epoch, target).get("total"), 0)

    def identity_weight(self, epoch: int, target: str, identity: str) -> int:
        rec = _target_rec(self._state.get("weights"), epoch, target)
        return as_int(as_dict(rec.get("by_identity")).get(identity), 0)


class SnapshotWeightOracle:
    """Caches an external oracle's answers for elapsed epochs inside state."""

    def __init__(self, source: WeightOracle, state: Json, *, current_epoch: int) -> None:
        self._source = source
        self._state = state
        self._current_epoch = int(current_epoch)

    def _slot(self, epoch: int, target: str) -> Json:
        snaps = ensure_root_dict(self._state, "weight_snapshots")
        by_epoch = snaps.setdefault(epoch_key(epoch), {})
        rec = by_epoch.get(target)
        if not isinstance(rec, dict):
            rec = {"by_identity": {}}
            by_epoch[target] = rec
        return rec

    def total_weight(self, epoch: int, target: str) -> int:
        if int(epoch) >= self._current_epoch:
            return int(self._source.total_weight(epoch, target))
        rec = self._slot(epoch, target)
        if "total" not in rec:
            rec["total"] = int(self._source.total_weight(epoch, target))
        return as_int(rec.get("total"), 0)

    def identity_weight(self, epoch: int, target: str, identity: str) -> int:
        if int(epoch) >= self._current_epoch:
            return int(self._source.identity_weight(epoch, target, identity))
        by_id = self._slot(epoch, target)["by_identity"]
        if identity not in by_id:
            by_id[identity] = int(self._source.identity_weight(epoch, target, identity))
        return as_int(by_id.get(identity), 0)


def resolve_oracle(state: Json, ctx: OpContext) -> WeightOracle:
    if ctx.oracle is None:
        return LedgerWeightBook(state)
    return SnapshotWeightOracle(ctx.oracle, state, current_epoch=ctx.current_epoch)


def record_weight(state: Json, *, epoch: int, target: str, identity: str, weight: int) -> Json:
    """Set `identity`'s weight for (epoch, target), replacing any prior report."""
    weights = ensure_root_dict(state, "weights")
    by_epoch = weights.setdefault(epoch_key(epoch), {})
    rec = by_epoch.get(target)
    if not isinstance(rec, dict):
        rec = {"total": 0, "by_identity": {}}
        by_epoch[target] = rec
    by_id = rec.setdefault("by_identity", {})

    prev = as_int(by_id.get(identity), 0)
    if weight:
        by_id[identity] = int(weight)
    else:
        by_id.pop(identity, None)
    rec["total"] = as_int(rec.get("total"), 0) - prev + int(weight)
    return {"previous": prev, "total": rec["total"]}


def _require_reporter(state: Json, caller: str) -> None:
    params = as_dict(state.get("params"))
    reporter = as_str(params.get("weight_reporter")) or as_str(params.get("admin"))
    if not reporter or caller != reporter:
        raise Unauthorized({"caller": caller}, reason="weight_reporter_required")


def _apply_weight_report(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    caller = require_identity(env.caller)
    _require_reporter(state, caller)

    payload = payload_of(env)
    target = require_str(payload, "target")
    identity = require_identity(payload.get("identity"), field="identity")
    weight = parse_int(payload, "weight")
    if weight < 0:
        raise InvalidPayload({"weight": weight}, reason="negative_weight")
    epoch = parse_epoch(payload, ctx) if payload.get("epoch") is not None else ctx.current_epoch

    if epoch < ctx.current_epoch:
        raise WeightFrozen({"epoch": epoch, "current_epoch": ctx.current_epoch})

    out = record_weight(state, epoch=epoch, target=target, identity=identity, weight=weight)
    return {
        "applied": "WEIGHT_REPORT",
        "epoch": epoch,
        "target": target,
        "identity": identity,
        "weight": weight,
        "previous": out["previous"],
        "total": out["total"],
    }


def weights_view(state: Json, *, epoch: int, target: str) -> Json:
    rec = _target_rec(state.get("weights"), epoch, target)
    return {
        "epoch": int(epoch),
        "target": target,
        "total": as_int(rec.get("total"), 0),
        "by_identity": dict(as_dict(rec.get("by_identity"))),
    }


def apply_weights(state: Json, env: OpEnvelope, ctx: OpContext) -> Optional[Json]:
    if env.op == "WEIGHT_REPORT":
        return _apply_weight_report(state, env, ctx)
    return None
