from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from epochflow.api.routes_public_parts.common import _call, _engine, _submit
from epochflow.api.schemas import StreamActionRequest, StreamAmountRequest, StreamCreateRequest
from epochflow.api.security import require_admin_token

router = APIRouter()

Json = Dict[str, Any]


@router.post("/streams", dependencies=[Depends(require_admin_token)])
def stream_create(request: Request, req: StreamCreateRequest) -> Json:
    return _submit(request, "STREAM_CREATE", req)


@router.get("/streams/{stream_id}")
def stream_get(request: Request, stream_id: str) -> Json:
    eng = _engine(request)
    return {"ok": True, "stream": _call(eng.stream_view, stream_id)}


@router.post("/streams/{stream_id}/queue")
def stream_queue(request: Request, stream_id: str, req: StreamAmountRequest) -> Json:
    """Queue value the stream already holds. Signed payload: {amount, stream_id}."""
    return _submit(request, "STREAM_QUEUE", req, stream_id=stream_id)


@router.post("/streams/{stream_id}/deposit")
def stream_deposit(request: Request, stream_id: str, req: StreamAmountRequest) -> Json:
    """Move value from the caller into the stream and queue it."""
    return _submit(request, "STREAM_DEPOSIT", req, stream_id=stream_id)


@router.post("/streams/{stream_id}/sync")
def stream_sync(request: Request, stream_id: str, req: StreamActionRequest) -> Json:
    return _submit(request, "STREAM_SYNC", req, stream_id=stream_id)


@router.post("/streams/{stream_id}/start")
def stream_start(request: Request, stream_id: str, req: StreamActionRequest) -> Json:
    return _submit(request, "STREAM_START", req, stream_id=stream_id)


@router.post("/streams/{stream_id}/drip")
def stream_drip(request: Request, stream_id: str, req: StreamActionRequest) -> Json:
    return _submit(request, "STREAM_DRIP", req, stream_id=stream_id)


@router.post("/streams/{stream_id}/checkpoint")
def stream_checkpoint(request: Request, stream_id: str, req: StreamActionRequest) -> Json:
    return _submit(request, "STREAM_CHECKPOINT", req, stream_id=stream_id)
