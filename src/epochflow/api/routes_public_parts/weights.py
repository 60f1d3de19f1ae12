from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from epochflow.api.routes_public_parts.common import _call, _engine, _submit
from epochflow.api.schemas import WeightReportRequest

router = APIRouter()

Json = Dict[str, Any]


@router.post("/weights/report")
def weights_report(request: Request, req: WeightReportRequest) -> Json:
    return _submit(request, "WEIGHT_REPORT", req)


@router.get("/weights/{epoch}/{target}")
def weights_get(request: Request, epoch: int, target: str) -> Json:
    eng = _engine(request)
    return {"ok": True, "weights": _call(eng.weights_view, epoch, target)}
