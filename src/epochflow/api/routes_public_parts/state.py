from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from epochflow.api.routes_public_parts.common import _engine

router = APIRouter()

Json = Dict[str, Any]


@router.get("/state/snapshot")
def state_snapshot(request: Request) -> Json:
    """Full engine state. Intended for operators and audits of conservation."""
    return {"ok": True, "state": _engine(request).read_state()}
