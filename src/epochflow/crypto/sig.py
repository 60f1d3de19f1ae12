# src/epochflow/crypto/sig.py
from __future__ import annotations

import base64
import json
from typing import Any, Dict, List, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

Json = Dict[str, Any]


def _decode_bytes(s: str) -> bytes:
    s = s.strip()
    if not s:
        raise ValueError("empty string")
    # hex
    try:
        return bytes.fromhex(s)
    except Exception:
        pass
    # base64 / base64url
    try:
        padding = "=" * (-len(s) % 4)
        s2 = (s + padding).replace("-", "+").replace("_", "/")
        return base64.b64decode(s2)
    except Exception as e:
        raise ValueError("not hex or base64") from e


def canonical_op_message(*, op: str, caller: str, nonce: int, payload: Json) -> bytes:
    obj: Json = {
        "op": str(op),
        "caller": str(caller),
        "nonce": int(nonce),
        "payload": payload if isinstance(payload, dict) else {},
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def is_valid_pubkey(pubkey: str) -> bool:
    try:
        Ed25519PublicKey.from_public_bytes(_decode_bytes(pubkey))
        return True
    except ValueError:
        return False


def verify_ed25519_signature(*, message: bytes, sig: str, pubkey: str) -> bool:
    try:
        sig_b = _decode_bytes(sig)
        pk_b = _decode_bytes(pubkey)
        key = Ed25519PublicKey.from_public_bytes(pk_b)
        key.verify(sig_b, message)
        return True
    except (InvalidSignature, ValueError):
        return False


def sign_ed25519(*, message: bytes, privkey: str, encoding: str = "hex") -> str:
    """Sign a message with an Ed25519 private key.

    privkey: hex or base64/base64url string representing a 32-byte seed.
    encoding: "hex" (default) or "b64".
    """
    pk_b = _decode_bytes(privkey)
    if len(pk_b) == 64:
        pk_b = pk_b[:32]
    if len(pk_b) != 32:
        raise ValueError("ed25519 privkey must be 32-byte seed (or 64-byte expanded key)")

    key = Ed25519PrivateKey.from_private_bytes(pk_b)
    sig_b = key.sign(message)
    if encoding == "hex":
        return sig_b.hex()
    if encoding in {"b64", "base64"}:
        return base64.b64encode(sig_b).decode("ascii")
    raise ValueError("unsupported encoding")


def sign_op_envelope_dict(*, op: Json, privkey: str, encoding: str = "hex") -> Json:
    """Return a copy of `op` with its 'sig' field populated."""
    name = str(op.get("op") or "").strip().upper()
    caller = str(op.get("caller") or "")
    nonce = int(op.get("nonce") or 0)
    payload = op.get("payload") if isinstance(op.get("payload"), dict) else {}

    msg = canonical_op_message(op=name, caller=caller, nonce=nonce, payload=payload)
    out = dict(op)
    out["op"] = name
    out["payload"] = payload
    out["sig"] = sign_ed25519(message=msg, privkey=privkey, encoding=encoding)
    return out


def active_identity_pubkeys(state: Json, identity: str) -> List[str]:
    """Active keys for `identity`.

    Schema:
      state["identities"][identity]["keys"] = [{"pubkey": "<hex|b64>", "active": bool}, ...]
    """
    idents = state.get("identities")
    if not isinstance(idents, dict):
        return []
    rec = idents.get(identity)
    if not isinstance(rec, dict):
        return []
    keys = rec.get("keys")
    if not isinstance(keys, list):
        return []

    out: List[str] = []
    seen = set()
    for k in keys:
        if not isinstance(k, dict) or not k.get("active", True):
            continue
        pk = k.get("pubkey")
        if isinstance(pk, str) and pk.strip() and pk.strip() not in seen:
            seen.add(pk.strip())
            out.append(pk.strip())
    return out


def verify_op_sig_against_any_key(
    *,
    state: Json,
    op: str,
    caller: str,
    nonce: int,
    payload: Json,
    sig: str,
) -> Tuple[bool, Json]:
    keys = active_identity_pubkeys(state, caller)
    if not keys:
        return False, {"reason": "no_active_keys"}

    msg = canonical_op_message(op=op, caller=caller, nonce=nonce, payload=payload)
    for pk in keys:
        if verify_ed25519_signature(message=msg, sig=sig, pubkey=pk):
            return True, {"pubkey": pk}
    return False, {"reason": "invalid_signature"}
