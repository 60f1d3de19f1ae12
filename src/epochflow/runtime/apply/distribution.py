# src/epochflow/runtime/apply/distribution.py
from __future__ import annotations

"""Distribution ledger domain apply semantics.

A ledger collects deposits earmarked for a strictly future (epoch, asset) and
pays identities a pro-rata share once that epoch has fully elapsed:

  payout = total_deposit * identity_weight // total_weight

Integer division truncates; the dust stays in the ledger. The epoch in
progress is never depositable and never claimable.

Value stranded by a zero-weight epoch is recovered according to the ledger's
policy:

  refund - each depositor withdraws its own contribution (external pools)
  sweep  - after a grace period the admin moves it to the treasury (internal pools)
"""

import logging
from typing import Any, Dict, List, Optional

from epochflow.ledger.constants import (
    DEFAULT_SWEEP_GRACE_EPOCHS,
    LEDGER_HOLDER_PREFIX,
    LEDGER_POLICIES,
    POLICY_REFUND,
    POLICY_SWEEP,
    TREASURY_ACCOUNT_ID,
)
from epochflow.runtime.apply import assets
from epochflow.runtime.apply.common import (
    as_dict,
    as_int,
    as_list,
    as_str,
    ensure_root_dict,
    epoch_key,
    is_admin,
    parse_amount,
    parse_epoch,
    parse_int,
    payload_of,
    require_admin,
    require_identity,
    require_str,
)
from epochflow.runtime.apply.weights import WeightOracle, resolve_oracle
from epochflow.runtime.errors import (
    Conflict,
    EpochNotEnded,
    EpochNotFuture,
    GracePeriodNotElapsed,
    InvalidPayload,
    NotFound,
    NotZeroWeightEpoch,
    RecoveryPolicyMismatch,
    TargetHadWeight,
    Unauthorized,
)
from epochflow.runtime.op_types import OpContext, OpEnvelope

Json = Dict[str, Any]

log = logging.getLogger("epochflow.distribution")

_BOOK_KEYS = ("deposits", "contributions", "claimed", "claimed_totals", "refunded", "swept")


def new_ledger_record(
    ledger_id: str,
    *,
    target: str,
    policy: str,
    admin: str,
    grace_epochs: int,
    now: int,
) -> Json:
    rec: Json = {
        "ledger_id": ledger_id,
        "target": target,
        "policy": policy,
        "admin": admin,
        "grace_epochs": int(grace_epochs),
        "holder": f"{LEDGER_HOLDER_PREFIX}{ledger_id}",
        "created_at": int(now),
    }
    for k in _BOOK_KEYS:
        rec[k] = {}
    return rec


def get_ledger(state: Json, ledger_id: str) -> Json:
    rec = as_dict(state.get("ledgers")).get(ledger_id)
    if not isinstance(rec, dict):
        raise NotFound({"ledger_id": ledger_id}, reason="ledger_not_found")
    return rec


def _cell(rec: Json, book: str, epoch: int) -> Json:
    """Mutable per-epoch slot of one of the ledger's books."""
    root = rec.get(book)
    if not isinstance(root, dict):
        root = {}
        rec[book] = root
    slot = root.get(epoch_key(epoch))
    if not isinstance(slot, dict):
        slot = {}
        root[epoch_key(epoch)] = slot
    return slot


def _read(rec: Json, book: str, epoch: int) -> Json:
    return as_dict(as_dict(rec.get(book)).get(epoch_key(epoch)))


def total_deposit(rec: Json, asset: str, epoch: int) -> int:
    return as_int(_read(rec, "deposits", epoch).get(asset), 0)


def contribution_of(rec: Json, asset: str, epoch: int, identity: str) -> int:
    return as_int(as_dict(_read(rec, "contributions", epoch).get(asset)).get(identity), 0)


def has_claimed(rec: Json, asset: str, epoch: int, identity: str) -> bool:
    return identity in as_dict(_read(rec, "claimed", epoch).get(asset))


def _pro_rata(rec: Json, oracle: WeightOracle, asset: str, epoch: int, identity: str) -> int:
    total = total_deposit(rec, asset, epoch)
    if total <= 0:
        return 0
    total_w = int(oracle.total_weight(epoch, rec["target"]))
    if total_w <= 0:
        return 0
    ident_w = int(oracle.identity_weight(epoch, rec["target"], identity))
    if ident_w <= 0:
        return 0
    payout = (total * ident_w) // total_w
    # An inconsistent oracle must never let claims exceed the deposit.
    remaining = total - as_int(_read(rec, "claimed_totals", epoch).get(asset), 0)
    return max(0, min(payout, remaining))


def preview_claim(state: Json, rec: Json, *, identity: str, asset: str, epoch: int, ctx: OpContext) -> int:
    if int(epoch) >= ctx.current_epoch:
        return 0
    if has_claimed(rec, asset, epoch, identity):
        return 0
    return _pro_rata(rec, resolve_oracle(state, ctx), asset, epoch, identity)


def _require_ended(rec: Json, epoch: int, ctx: OpContext) -> None:
    if int(epoch) >= ctx.current_epoch:
        raise EpochNotEnded({"ledger_id": rec["ledger_id"], "epoch": int(epoch), "current_epoch": ctx.current_epoch})


def _require_policy(rec: Json, policy: str) -> None:
    if rec.get("policy") != policy:
        raise RecoveryPolicyMismatch(
            {"ledger_id": rec["ledger_id"], "policy": rec.get("policy"), "required": policy}
        )


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def deposit(state: Json, rec: Json, *, depositor: str, asset: str, epoch: int, amount: int, ctx: OpContext) -> Json:
    if int(epoch) <= ctx.current_epoch:
        raise EpochNotFuture({"ledger_id": rec["ledger_id"], "epoch": int(epoch), "current_epoch": ctx.current_epoch})

    assets.transfer_in(state, asset, depositor, rec["holder"], amount)

    totals = _cell(rec, "deposits", epoch)
    totals[asset] = as_int(totals.get(asset), 0) + int(amount)
    by_id = _cell(rec, "contributions", epoch).setdefault(asset, {})
    by_id[depositor] = as_int(by_id.get(depositor), 0) + int(amount)

    return {
        "ledger_id": rec["ledger_id"],
        "depositor": depositor,
        "asset": asset,
        "epoch": int(epoch),
        "amount": int(amount),
        "epoch_total": totals[asset],
    }


def claim(state: Json, rec: Json, *, identity: str, asset: str, epoch: int, ctx: OpContext) -> int:
    _require_ended(rec, epoch, ctx)

    claimed = _cell(rec, "claimed", epoch).setdefault(asset, {})
    if identity in claimed:
        return 0

    payout = _pro_rata(rec, resolve_oracle(state, ctx), asset, epoch, identity)
    claimed[identity] = payout
    if payout > 0:
        totals = _cell(rec, "claimed_totals", epoch)
        totals[asset] = as_int(totals.get(asset), 0) + payout
        assets.transfer_out(state, asset, rec["holder"], identity, payout)
        log.info(
            "claim paid ledger=%s epoch=%s asset=%s identity=%s amount=%s",
            rec["ledger_id"],
            epoch,
            asset,
            identity,
            payout,
        )
    return payout


def refund_zero_weight_deposit(state: Json, rec: Json, *, depositor: str, asset: str, epoch: int, ctx: OpContext) -> int:
    _require_ended(rec, epoch, ctx)
    _require_policy(rec, POLICY_REFUND)

    oracle = resolve_oracle(state, ctx)
    total_w = int(oracle.total_weight(epoch, rec["target"]))
    if total_w != 0:
        raise TargetHadWeight({"ledger_id": rec["ledger_id"], "epoch": int(epoch), "total_weight": total_w})

    amount = contribution_of(rec, asset, epoch, depositor)
    if amount <= 0:
        return 0

    _cell(rec, "contributions", epoch)[asset][depositor] = 0
    totals = _cell(rec, "deposits", epoch)
    totals[asset] = as_int(totals.get(asset), 0) - amount
    refunded = _cell(rec, "refunded", epoch)
    refunded[asset] = as_int(refunded.get(asset), 0) + amount

    assets.transfer_out(state, asset, rec["holder"], depositor, amount)
    log.info("zero-weight refund ledger=%s epoch=%s asset=%s depositor=%s amount=%s", rec["ledger_id"], epoch, asset, depositor, amount)
    return amount


def sweep_stranded(state: Json, rec: Json, *, caller: str, asset: str, epoch: int, ctx: OpContext) -> int:
    if not (caller == rec.get("admin") or is_admin(state, caller)):
        raise Unauthorized({"ledger_id": rec["ledger_id"], "caller": caller}, reason="ledger_admin_required")
    _require_ended(rec, epoch, ctx)
    _require_policy(rec, POLICY_SWEEP)

    oracle = resolve_oracle(state, ctx)
    total_w = int(oracle.total_weight(epoch, rec["target"]))
    if total_w != 0:
        raise NotZeroWeightEpoch({"ledger_id": rec["ledger_id"], "epoch": int(epoch), "total_weight": total_w})

    grace = as_int(rec.get("grace_epochs"), DEFAULT_SWEEP_GRACE_EPOCHS)
    unlock = ctx.clock.shift(epoch, grace + 1)
    if ctx.current_epoch < unlock:
        raise GracePeriodNotElapsed(
            {"ledger_id": rec["ledger_id"], "epoch": int(epoch), "unlock_epoch": unlock, "current_epoch": ctx.current_epoch}
        )

    total = total_deposit(rec, asset, epoch)
    already = as_int(_read(rec, "claimed_totals", epoch).get(asset), 0)
    amount = total - already
    if amount <= 0:
        return 0

    treasury = as_str(as_dict(state.get("params")).get("treasury")) or TREASURY_ACCOUNT_ID
    _cell(rec, "deposits", epoch)[asset] = already
    swept = _cell(rec, "swept", epoch)
    swept[asset] = as_int(swept.get(asset), 0) + amount

    assets.transfer_out(state, asset, rec["holder"], treasury, amount)
    log.warning("stranded value swept ledger=%s epoch=%s asset=%s amount=%s treasury=%s", rec["ledger_id"], epoch, asset, amount, treasury)
    return amount


def epoch_view(state: Json, rec: Json, *, epoch: int, ctx: OpContext) -> Json:
    deposits = _read(rec, "deposits", epoch)
    ended = int(epoch) < ctx.current_epoch
    total_w: Optional[int] = None
    if ended:
        total_w = int(resolve_oracle(state, ctx).total_weight(epoch, rec["target"]))
    return {
        "ledger_id": rec["ledger_id"],
        "epoch": int(epoch),
        "ended": ended,
        "total_weight": total_w,
        "deposits": {k: as_int(v, 0) for k, v in deposits.items()},
        "claimed_totals": {k: as_int(v, 0) for k, v in _read(rec, "claimed_totals", epoch).items()},
        "refunded": {k: as_int(v, 0) for k, v in _read(rec, "refunded", epoch).items()},
        "swept": {k: as_int(v, 0) for k, v in _read(rec, "swept", epoch).items()},
    }


def ledger_view(state: Json, rec: Json) -> Json:
    epochs = sorted(int(k) for k in as_dict(rec.get("deposits")).keys())
    return {
        "ledger_id": rec["ledger_id"],
        "target": rec.get("target"),
        "policy": rec.get("policy"),
        "admin": rec.get("admin"),
        "grace_epochs": as_int(rec.get("grace_epochs"), DEFAULT_SWEEP_GRACE_EPOCHS),
        "holder": rec.get("holder"),
        "epochs": epochs,
    }


# ---------------------------------------------------------------------------
# Op appliers
# ---------------------------------------------------------------------------


def _ledger_from_payload(state: Json, env: OpEnvelope) -> Json:
    return get_ledger(state, require_str(payload_of(env), "ledger_id"))


def _apply_ledger_create(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    caller = require_admin(state, env)
    payload = payload_of(env)
    ledger_id = require_str(payload, "ledger_id")
    target = require_str(payload, "target")
    policy = as_str(payload.get("policy")).lower() or POLICY_REFUND
    if policy not in LEDGER_POLICIES:
        raise InvalidPayload({"policy": policy, "allowed": list(LEDGER_POLICIES)}, reason="bad_policy")

    default_grace = as_int(as_dict(state.get("params")).get("sweep_grace_epochs"), DEFAULT_SWEEP_GRACE_EPOCHS)
    grace = parse_int(payload, "grace_epochs") if payload.get("grace_epochs") is not None else default_grace
    if grace < 0:
        raise InvalidPayload({"grace_epochs": grace}, reason="negative_grace_epochs")
    admin = as_str(payload.get("admin")) or caller

    ledgers = ensure_root_dict(state, "ledgers")
    if ledger_id in ledgers:
        raise Conflict({"ledger_id": ledger_id}, reason="ledger_exists")
    ledgers[ledger_id] = new_ledger_record(
        ledger_id, target=target, policy=policy, admin=admin, grace_epochs=grace, now=ctx.now
    )
    return {"applied": "LEDGER_CREATE", "ledger_id": ledger_id, "target": target, "policy": policy}


def _apply_ledger_deposit(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    caller = require_identity(env.caller)
    rec = _ledger_from_payload(state, env)
    payload = payload_of(env)
    asset = require_str(payload, "asset")
    epoch = parse_epoch(payload, ctx)
    amount = parse_amount(payload)

    out = deposit(state, rec, depositor=caller, asset=asset, epoch=epoch, amount=amount, ctx=ctx)
    return {"applied": "LEDGER_DEPOSIT", **out}


def _apply_ledger_claim(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    caller = require_identity(env.caller)
    rec = _ledger_from_payload(state, env)
    payload = payload_of(env)
    asset = require_str(payload, "asset")
    epoch = parse_epoch(payload, ctx)

    amount = claim(state, rec, identity=caller, asset=asset, epoch=epoch, ctx=ctx)
    return {"applied": "LEDGER_CLAIM", "ledger_id": rec["ledger_id"], "asset": asset, "epoch": epoch, "amount": amount}


def _apply_ledger_claim_many(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    caller = require_identity(env.caller)
    rec = _ledger_from_payload(state, env)
    payload = payload_of(env)
    asset = require_str(payload, "asset")

    raw = as_list(payload.get("epochs"))
    if not raw:
        raise InvalidPayload({"field": "epochs"}, reason="missing_epochs")
    epochs: List[int] = []
    for e in raw:
        ep = parse_epoch({"epoch": e}, ctx)
        _require_ended(rec, ep, ctx)
        if ep not in epochs:
            epochs.append(ep)

    results = {epoch_key(ep): claim(state, rec, identity=caller, asset=asset, epoch=ep, ctx=ctx) for ep in epochs}
    return {
        "applied": "LEDGER_CLAIM_MANY",
        "ledger_id": rec["ledger_id"],
        "asset": asset,
        "claims": results,
        "amount": sum(results.values()),
    }


def _apply_ledger_refund(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    caller = require_identity(env.caller)
    rec = _ledger_from_payload(state, env)
    payload = payload_of(env)
    asset = require_str(payload, "asset")
    epoch = parse_epoch(payload, ctx)

    amount = refund_zero_weight_deposit(state, rec, depositor=caller, asset=asset, epoch=epoch, ctx=ctx)
    return {"applied": "LEDGER_REFUND", "ledger_id": rec["ledger_id"], "asset": asset, "epoch": epoch, "amount": amount}


def _apply_ledger_sweep(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    caller = require_identity(env.caller)
    rec = _ledger_from_payload(state, env)
    payload = payload_of(env)
    asset = require_str(payload, "asset")
    epoch = parse_epoch(payload, ctx)

    amount = sweep_stranded(state, rec, caller=caller, asset=asset, epoch=epoch, ctx=ctx)
    return {"applied": "LEDGER_SWEEP", "ledger_id": rec["ledger_id"], "asset": asset, "epoch": epoch, "amount": amount}


_OPS = {
    "LEDGER_CREATE": _apply_ledger_create,
    "LEDGER_DEPOSIT": _apply_ledger_deposit,
    "LEDGER_CLAIM": _apply_ledger_claim,
    "LEDGER_CLAIM_MANY": _apply_ledger_claim_many,
    "LEDGER_REFUND": _apply_ledger_refund,
    "LEDGER_SWEEP": _apply_ledger_sweep,
}


def apply_distribution(state: Json, env: OpEnvelope, ctx: OpContext) -> Optional[Json]:
    fn = _OPS.get(env.op)
    if fn is None:
        return None
    return fn(state, env, ctx)
