# src/epochflow/runtime/op_types.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from epochflow.runtime.epoch import EpochClock

Json = Dict[str, Any]


@dataclass(frozen=True)
class OpEnvelope:
    op: str
    caller: str = ""
    nonce: int = 0
    payload: Dict[str, Any] | None = None
    sig: str = ""

    @staticmethod
    def from_json(j: Any) -> "OpEnvelope":
        if isinstance(j, OpEnvelope):
            return j
        if not isinstance(j, dict):
            j = dict(j)  # type: ignore[arg-type]
        return OpEnvelope(
            op=str(j.get("op", "") or "").strip().upper(),
            caller=str(j.get("caller", "") or "").strip(),
            nonce=int(j.get("nonce", 0) or 0),
            payload=dict(j.get("payload", {}) or {}),
            sig=str(j.get("sig", "") or ""),
        )

    def to_json(self) -> Json:
        return {
            "op": self.op,
            "caller": self.caller,
            "nonce": self.nonce,
            "payload": dict(self.payload or {}),
            "sig": self.sig,
        }


@dataclass(frozen=True)
class OpContext:
    """Evaluation context captured once when an operation begins.

    `oracle` is the weight oracle consulted by distribution ledgers; when it is
    None the in-state weight book is used.
    """

    now: int
    clock: EpochClock
    oracle: Optional[Any] = None

    @property
    def current_epoch(self) -> int:
        return self.clock.epoch_start(self.now)

    @property
    def next_epoch(self) -> int:
        return self.clock.next_epoch_start(self.now)
