# src/epochflow/runtime/domain_dispatch.py
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from epochflow.runtime.apply.assets import apply_assets
from epochflow.runtime.apply.burn_stream import apply_burn_stream
from epochflow.runtime.apply.distribution import apply_distribution
from epochflow.runtime.apply.fees import apply_fees
from epochflow.runtime.apply.identity import apply_identity
from epochflow.runtime.apply.weights import apply_weights
from epochflow.runtime.errors import EngineError, UnknownOp
from epochflow.runtime.op_types import OpContext, OpEnvelope
from epochflow.runtime.state_invariants import ensure_state

Json = Dict[str, Any]
ApplyFn = Callable[[Json, OpEnvelope, OpContext], Optional[Json]]


# Operations that anyone may invoke; authorization comes solely from the
# state-machine checks inside each applier.
PERMISSIONLESS_OPS = frozenset(
    {
        "IDENTITY_REGISTER",
        "ASSET_TRANSFER",
        "STREAM_QUEUE",
        "STREAM_DEPOSIT",
        "STREAM_SYNC",
        "STREAM_START",
        "STREAM_DRIP",
        "STREAM_CHECKPOINT",
        "LEDGER_DEPOSIT",
        "LEDGER_CLAIM",
        "LEDGER_CLAIM_MANY",
        "LEDGER_REFUND",
        "FEES_ROUTE",
    }
)

# Privileged operations (admin / weight reporter).
PRIVILEGED_OPS = frozenset(
    {
        "ASSET_ISSUE",
        "WEIGHT_REPORT",
        "STREAM_CREATE",
        "LEDGER_CREATE",
        "LEDGER_SWEEP",
        "FEE_ROUTE_CREATE",
    }
)

SUPPORTED_OPS = PERMISSIONLESS_OPS | PRIVILEGED_OPS


_APPLIERS: tuple[ApplyFn, ...] = (
    apply_identity,
    apply_assets,
    apply_weights,
    apply_burn_stream,
    apply_distribution,
    apply_fees,
)


def apply_op(state: Json, env: Any, ctx: OpContext) -> Json:
    """Dispatch an OpEnvelope to the first domain applier that claims it.

    Appliers mutate `state` in place; callers that need all-or-nothing
    semantics must pass a working copy and discard it on error.
    """
    ensure_state(state)

    env_norm = OpEnvelope.from_json(env) if isinstance(env, dict) else env
    op = str(env_norm.op or "").strip().upper()
    if not op:
        raise UnknownOp({"op": op}, reason="missing_op")
    if op != env_norm.op:
        env_norm = OpEnvelope(op=op, caller=env_norm.caller, nonce=env_norm.nonce, payload=env_norm.payload, sig=env_norm.sig)

    for fn in _APPLIERS:
        try:
            out = fn(state, env_norm, ctx)
        except EngineError:
            raise
        except Exception as e:
            raise EngineError(
                "domain_error",
                type(e).__name__,
                {"op": op, "domain": fn.__name__, "error": str(e)},
            ) from e

        if out is not None:
            return out

    raise UnknownOp({"op": op})
