# src/epochflow/runtime/apply/identity.py
from __future__ import annotations

from typing import Any, Dict, Optional

from epochflow.crypto.sig import is_valid_pubkey
from epochflow.runtime.apply.common import as_dict, as_int, ensure_root_dict, payload_of, require_identity, require_str
from epochflow.runtime.errors import Conflict, InvalidPayload
from epochflow.runtime.op_types import OpContext, OpEnvelope

Json = Dict[str, Any]


def identity_nonce(state: Json, identity: str) -> int:
    rec = as_dict(as_dict(state.get("identities")).get(identity))
    return as_int(rec.get("nonce"), 0)


def bump_nonce(state: Json, identity: str, nonce: int) -> None:
    idents = ensure_root_dict(state, "identities")
    rec = idents.get(identity)
    if not isinstance(rec, dict):
        rec = {"nonce": 0, "keys": []}
        idents[identity] = rec
    rec["nonce"] = max(as_int(rec.get("nonce"), 0), int(nonce))


def _apply_identity_register(state: Json, env: OpEnvelope, ctx: OpContext) -> Json:
    """Bind a public key to a new identity. First registration wins."""
    caller = require_identity(env.caller)
    payload = payload_of(env)
    pubkey = require_str(payload, "pubkey")
    if not is_valid_pubkey(pubkey):
        raise InvalidPayload({"pubkey": pubkey}, reason="bad_pubkey")

    idents = ensure_root_dict(state, "identities")
    rec = idents.get(caller)
    if isinstance(rec, dict) and rec.get("keys"):
        raise Conflict({"identity": caller}, reason="identity_registered")

    idents[caller] = {
        "nonce": as_int(as_dict(rec).get("nonce"), 0),
        "keys": [{"pubkey": pubkey, "active": True}],
        "registered_at": int(ctx.now),
    }
    return {"applied": "IDENTITY_REGISTER", "identity": caller}


def apply_identity(state: Json, env: OpEnvelope, ctx: OpContext) -> Optional[Json]:
    if env.op == "IDENTITY_REGISTER":
        return _apply_identity_register(state, env, ctx)
    return None
