# src/epochflow/runtime/apply/fees.py
from __future__ import annotations

"""Fee routing.

A fee route splits value arriving from the fee venue between a burn stream
(queued for the next epoch) and a distribution ledger (deposited for the next
epoch). Both legs land in the same atomic operation.
"""

from typing import Any, Dict, Optional

from epochflow.ledger.constants import BPS_DENOMINATOR, POLICY_SWEEP, ROUTE_HOLDER_PREFIX
from epochflow.runtime.apply import assets, burn_stream, distribution
from epochflow.runtime.apply.common import (
    as_dict,
    as_int,
    ensure_root_dict,
    parse_amount,
    parse_int,
    payload_of,
    require_admin,
    require_identity,
    require_str,
)
from epochflow.runtime.errors import Conflict, InvalidPayload, NotFound, RecoveryPolicyMismatch
from epochflow.runtime.op_types import OpContext, OpEnvelope

Json = Dict[str, Any]


def get_route(state: Json, route_id: str) -> Json:
    rec = as_dict(state.get("fee_routes")).get(route_id)
    if not isinstance(rec, dict):
        raise NotFound({"route_id": route_id}, reason="fee_route_not_found")
    return rec


def split_fee(amount: int, burn_bps: int) -> tuple[int, int]:
    burn = (int(amount) * int(burn_bps)) // BPS_DENOMINATOR
    return burn, int(amount) - burn


def _apply_fee_route_create(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    require_admin(state, env)
    payload = payload_of(env)
    route_id = require_str(payload, "route_id")
    asset = require_str(payload, "asset")
    stream_id = require_str(payload, "stream_id")
    ledger_id = require_str(payload, "ledger_id")
    burn_bps = parse_int(payload, "burn_bps")
    if burn_bps < 0 or burn_bps > BPS_DENOMINATOR:
        raise InvalidPayload({"burn_bps": burn_bps}, reason="burn_bps_out_of_range")

    stream = burn_stream.get_stream(state, stream_id)
    if stream["asset"] != asset:
        raise InvalidPayload({"stream_id": stream_id, "stream_asset": stream["asset"], "asset": asset}, reason="asset_mismatch")
    ledger = distribution.get_ledger(state, ledger_id)
    # Route value is deposited by the route itself, so only the sweep path can
    # recover it from a zero-weight epoch.
    if ledger.get("policy") != POLICY_SWEEP:
        raise RecoveryPolicyMismatch(
            {"ledger_id": ledger_id, "policy": ledger.get("policy"), "required": POLICY_SWEEP},
            reason="fee_route_requires_sweep_ledger",
        )

    routes = ensure_root_dict(state, "fee_routes")
    if route_id in routes:
        raise Conflict({"route_id": route_id}, reason="fee_route_exists")
    routes[route_id] = {
        "route_id": route_id,
        "asset": asset,
        "stream_id": stream_id,
        "ledger_id": ledger_id,
        "burn_bps": burn_bps,
        "holder": f"{ROUTE_HOLDER_PREFIX}{route_id}",
        "routed_total": 0,
        "created_at": int(ctx.now),
    }
    return {"applied": "FEE_ROUTE_CREATE", "route_id": route_id, "burn_bps": burn_bps}


def _apply_fees_route(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    caller = require_identity(env.caller)
    payload = payload_of(env)
    route = get_route(state, require_str(payload, "route_id"))
    amount = parse_amount(payload)

    stream = burn_stream.get_stream(state, route["stream_id"])
    ledger = distribution.get_ledger(state, route["ledger_id"])
    burn_part, reward_part = split_fee(amount, as_int(route.get("burn_bps"), 0))

    # The route holds the fee briefly so both legs draw from one place.
    assets.transfer_in(state, route["asset"], caller, route["holder"], amount)

    queued: Optional[Json] = None
    if burn_part > 0:
        assets.transfer(state, route["asset"], route["holder"], stream["holder"], burn_part)
        queued = burn_stream.queue(state, stream, burn_part, ctx)

    deposited: Optional[Json] = None
    if reward_part > 0:
        deposited = distribution.deposit(
            state,
            ledger,
            depositor=route["holder"],
            asset=route["asset"],
            epoch=ctx.next_epoch,
            amount=reward_part,
            ctx=ctx,
        )

    route["routed_total"] = as_int(route.get("routed_total"), 0) + amount
    return {
        "applied": "FEES_ROUTE",
        "route_id": route["route_id"],
        "amount": amount,
        "burned_queue": burn_part,
        "rewards_deposit": reward_part,
        "pending_epoch": (queued or {}).get("pending_epoch"),
        "reward_epoch": (deposited or {}).get("epoch"),
    }


def apply_fees(state: Json, env: OpEnvelope, ctx: OpContext) -> Optional[Json]:
    if env.op == "FEE_ROUTE_CREATE":
        return _apply_fee_route_create(state, env, ctx)
    if env.op == "FEES_ROUTE":
        return _apply_fees_route(state, env, ctx)
    return None
