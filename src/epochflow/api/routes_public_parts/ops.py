from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request

from epochflow.api.errors import ApiError
from epochflow.api.routes_public_parts.common import _call, _engine, _int_param
from epochflow.api.schemas import OpSubmitRequest
from epochflow.api.security import require_admin_token
from epochflow.runtime.domain_dispatch import PRIVILEGED_OPS, SUPPORTED_OPS

router = APIRouter()

Json = Dict[str, Any]


@router.post("/ops/submit")
def ops_submit(request: Request, req: OpSubmitRequest) -> Json:
    """Submit a raw op envelope {op, caller, nonce, payload, sig}.

    Privileged ops are accepted here too; the engine's caller checks decide.
    """
    op = req.op.strip().upper()
    if op not in SUPPORTED_OPS:
        raise ApiError.bad_request("op_unimplemented", "unknown op", {"op": op, "supported": sorted(SUPPORTED_OPS)})
    if op in PRIVILEGED_OPS:
        require_admin_token(request)

    eng = _engine(request)
    env: Json = {"op": op, "caller": req.caller, "nonce": req.nonce, "payload": dict(req.payload), "sig": req.sig}
    return _call(eng.submit, env)


@router.get("/ops/recent")
def ops_recent(request: Request, limit: Optional[str] = None) -> Json:
    eng = _engine(request)
    n = _int_param(limit, 50)
    return {"ok": True, "ops": eng.recent_ops(n)}
