from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from epochflow.api.errors import ApiError
from epochflow.api.routes_public_parts.common import _engine

router = APIRouter()

Json = Dict[str, Any]


@router.get("/assets/{kind}")
def asset_get(request: Request, kind: str) -> Json:
    summary = _engine(request).asset_summary(kind)
    if summary is None:
        raise ApiError.not_found("not_found", "unknown asset", {"asset": kind})
    return {"ok": True, "asset": summary}


@router.get("/assets/{kind}/{holder}")
def asset_balance(request: Request, kind: str, holder: str) -> Json:
    return {"ok": True, "asset": kind, "holder": holder, "balance": _engine(request).balance_of(kind, holder)}
