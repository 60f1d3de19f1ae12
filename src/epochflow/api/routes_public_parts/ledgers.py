from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request

from epochflow.api.errors import ApiError
from epochflow.api.routes_public_parts.common import _call, _engine, _require_int_param, _submit
from epochflow.api.schemas import (
    LedgerClaimManyRequest,
    LedgerCreateRequest,
    LedgerDepositRequest,
    LedgerEpochRequest,
)
from epochflow.api.security import require_admin_token

router = APIRouter()

Json = Dict[str, Any]


@router.post("/ledgers", dependencies=[Depends(require_admin_token)])
def ledger_create(request: Request, req: LedgerCreateRequest) -> Json:
    return _submit(request, "LEDGER_CREATE", req)


@router.get("/ledgers/{ledger_id}")
def ledger_get(request: Request, ledger_id: str) -> Json:
    eng = _engine(request)
    return {"ok": True, "ledger": _call(eng.ledger_view, ledger_id)}


@router.get("/ledgers/{ledger_id}/epochs/{epoch}")
def ledger_epoch_get(request: Request, ledger_id: str, epoch: int) -> Json:
    eng = _engine(request)
    return {"ok": True, "epoch": _call(eng.ledger_epoch_view, ledger_id, epoch)}


@router.get("/ledgers/{ledger_id}/preview")
def ledger_preview(
    request: Request,
    ledger_id: str,
    identity: Optional[str] = None,
    asset: Optional[str] = None,
    epoch: Optional[str] = None,
) -> Json:
    """What `identity` would receive from claim(asset, epoch) right now."""
    ident = str(identity or "").strip()
    kind = str(asset or "").strip()
    if not ident or not kind:
        raise ApiError.bad_request("invalid_payload", "identity and asset are required", {})
    ep = _require_int_param(epoch, "epoch")

    eng = _engine(request)
    amount = _call(eng.preview_claim, ledger_id, identity=ident, asset=kind, epoch=ep)
    return {"ok": True, "ledger_id": ledger_id, "identity": ident, "asset": kind, "epoch": ep, "amount": amount}


@router.post("/ledgers/{ledger_id}/deposit")
def ledger_deposit(request: Request, ledger_id: str, req: LedgerDepositRequest) -> Json:
    return _submit(request, "LEDGER_DEPOSIT", req, ledger_id=ledger_id)


@router.post("/ledgers/{ledger_id}/claim")
def ledger_claim(request: Request, ledger_id: str, req: LedgerEpochRequest) -> Json:
    return _submit(request, "LEDGER_CLAIM", req, ledger_id=ledger_id)


@router.post("/ledgers/{ledger_id}/claim_many")
def ledger_claim_many(request: Request, ledger_id: str, req: LedgerClaimManyRequest) -> Json:
    return _submit(request, "LEDGER_CLAIM_MANY", req, ledger_id=ledger_id)


@router.post("/ledgers/{ledger_id}/refund")
def ledger_refund(request: Request, ledger_id: str, req: LedgerEpochRequest) -> Json:
    """Zero-weight refund of the caller's own contribution."""
    return _submit(request, "LEDGER_REFUND", req, ledger_id=ledger_id)


@router.post("/ledgers/{ledger_id}/sweep", dependencies=[Depends(require_admin_token)])
def ledger_sweep(request: Request, ledger_id: str, req: LedgerEpochRequest) -> Json:
    return _submit(request, "LEDGER_SWEEP", req, ledger_id=ledger_id)
