from __future__ import annotations

"""Pydantic request schemas for the public API.

Every mutating request carries the signing envelope fields (caller, nonce,
sig). The route turns the remaining fields into the op payload, so the
signature covers exactly what the engine applies.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SignedRequest(BaseModel):
    caller: str = Field(default="", description="Identity submitting the op")
    nonce: int = Field(default=0, description="Caller nonce (last + 1) when signatures are required")
    sig: str = Field(default="", description="Hex Ed25519 signature over the canonical op")

    model_config = {"extra": "forbid"}

    def payload(self, **extra: Any) -> Dict[str, Any]:
        """Op payload: every non-envelope field that was set, plus `extra`."""
        body = self.model_dump(exclude={"caller", "nonce", "sig"}, exclude_none=True)
        body.update(extra)
        return body


class StreamCreateRequest(SignedRequest):
    stream_id: str = Field(..., min_length=1)
    asset: str = Field(..., min_length=1)


class StreamAmountRequest(SignedRequest):
    amount: int


class StreamActionRequest(SignedRequest):
    pass


class LedgerCreateRequest(SignedRequest):
    ledger_id: str = Field(..., min_length=1)
    target: str = Field(..., min_length=1)
    policy: str = Field(default="refund", description="refund | sweep")
    admin: Optional[str] = None
    grace_epochs: Optional[int] = None


class LedgerDepositRequest(SignedRequest):
    asset: str = Field(..., min_length=1)
    epoch: int
    amount: int


class LedgerEpochRequest(SignedRequest):
    """Claim, refund and sweep all address one (asset, epoch) slot."""

    asset: str = Field(..., min_length=1)
    epoch: int


class LedgerClaimManyRequest(SignedRequest):
    asset: str = Field(..., min_length=1)
    epochs: List[int] = Field(..., min_length=1)


class WeightReportRequest(SignedRequest):
    target: str = Field(..., min_length=1)
    identity: str = Field(..., min_length=1)
    weight: int
    epoch: Optional[int] = None


class FeeRouteCreateRequest(SignedRequest):
    route_id: str = Field(..., min_length=1)
    asset: str = Field(..., min_length=1)
    stream_id: str = Field(..., min_length=1)
    ledger_id: str = Field(..., min_length=1)
    burn_bps: int


class FeesRouteRequest(SignedRequest):
    amount: int


class OpSubmitRequest(BaseModel):
    op: str = Field(..., min_length=1)
    caller: str = ""
    nonce: int = 0
    payload: Dict[str, Any] = Field(default_factory=dict)
    sig: str = ""
