from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from epochflow.api.routes_public_parts.common import _engine

router = APIRouter()

Json = Dict[str, Any]


@router.get("/epoch")
def epoch_info(request: Request) -> Json:
    """Current epoch boundaries as seen by the engine clock."""
    return {"ok": True, **_engine(request).epoch_info()}
