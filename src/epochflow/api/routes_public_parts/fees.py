from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from epochflow.api.routes_public_parts.common import _submit
from epochflow.api.schemas import FeeRouteCreateRequest, FeesRouteRequest
from epochflow.api.security import require_admin_token

router = APIRouter()

Json = Dict[str, Any]


@router.post("/fees", dependencies=[Depends(require_admin_token)])
def fee_route_create(request: Request, req: FeeRouteCreateRequest) -> Json:
    return _submit(request, "FEE_ROUTE_CREATE", req)


@router.post("/fees/{route_id}")
def fees_route(request: Request, route_id: str, req: FeesRouteRequest) -> Json:
    """Pay collected fees into a route: part queued for burning, rest deposited for rewards."""
    return _submit(request, "FEES_ROUTE", req, route_id=route_id)
