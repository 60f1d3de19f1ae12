# src/epochflow/runtime/errors.py
from __future__ import annotations

"""Engine error kinds.

Every kind is a precondition violation surfaced synchronously to the caller.
None of them is transient, so nothing here is retried internally: a caller
retries later (usually after more time has elapsed).
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

Json = Dict[str, Any]


@dataclass
class EngineError(Exception):
    """Canonical error type for domain apply and dispatch failures."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class _Kind(EngineError):
    CODE = "engine_error"
    REASON = "engine_error"

    def __init__(self, details: Optional[Json] = None, *, reason: Optional[str] = None) -> None:
        super().__init__(self.CODE, reason or self.REASON, details)


# --- malformed input ---------------------------------------------------


class InvalidPayload(_Kind):
    CODE = "invalid_payload"
    REASON = "invalid_payload"


class InvalidEpoch(InvalidPayload):
    CODE = "invalid_epoch"
    REASON = "epoch_not_aligned"


class ZeroAmount(_Kind):
    CODE = "zero_amount"
    REASON = "amount_must_be_positive"


class InvalidIdentity(_Kind):
    CODE = "invalid_identity"
    REASON = "identity_required"


class UnknownOp(_Kind):
    CODE = "op_unimplemented"
    REASON = "op_not_implemented"


# --- temporal gating ---------------------------------------------------


class EpochNotFuture(_Kind):
    CODE = "epoch_not_future"
    REASON = "deposit_epoch_must_be_future"


class EpochNotEnded(_Kind):
    CODE = "epoch_not_ended"
    REASON = "epoch_must_be_elapsed"


class WeightFrozen(_Kind):
    CODE = "weight_frozen"
    REASON = "epoch_weight_is_final"


# --- burn stream state machine -----------------------------------------


class InsufficientNewValue(_Kind):
    CODE = "insufficient_new_value"
    REASON = "queued_amount_exceeds_unaccounted_balance"


class NothingToSync(_Kind):
    CODE = "nothing_to_sync"
    REASON = "no_unaccounted_balance"


class NotReady(_Kind):
    CODE = "not_ready"
    REASON = "pending_epoch_not_reached"


class NothingToStart(NotReady):
    CODE = "nothing_to_start"
    REASON = "no_pending_cycle"


class AlreadyActive(_Kind):
    CODE = "already_active"
    REASON = "active_cycle_running"


# --- recovery paths ----------------------------------------------------


class TargetHadWeight(_Kind):
    CODE = "target_had_weight"
    REASON = "refund_requires_zero_weight"


class NotZeroWeightEpoch(_Kind):
    CODE = "not_zero_weight_epoch"
    REASON = "sweep_requires_zero_weight"


class GracePeriodNotElapsed(_Kind):
    CODE = "grace_period_not_elapsed"
    REASON = "sweep_too_early"


class RecoveryPolicyMismatch(_Kind):
    CODE = "recovery_policy_mismatch"
    REASON = "ledger_policy_forbids_path"


# --- host-level --------------------------------------------------------


class InsufficientBalance(_Kind):
    CODE = "insufficient_balance"
    REASON = "balance_too_low"


class NotFound(_Kind):
    CODE = "not_found"
    REASON = "not_found"


class Conflict(_Kind):
    CODE = "conflict"
    REASON = "already_exists"


class Unauthorized(_Kind):
    CODE = "unauthorized"
    REASON = "caller_not_authorized"


class InvalidSignature(_Kind):
    CODE = "invalid_signature"
    REASON = "signature_check_failed"


class BadNonce(_Kind):
    CODE = "bad_nonce"
    REASON = "nonce_must_increment"


__all__ = [
    "EngineError",
    "InvalidPayload",
    "InvalidEpoch",
    "ZeroAmount",
    "InvalidIdentity",
    "UnknownOp",
    "EpochNotFuture",
    "EpochNotEnded",
    "WeightFrozen",
    "InsufficientNewValue",
    "NothingToSync",
    "NotReady",
    "NothingToStart",
    "AlreadyActive",
    "TargetHadWeight",
    "NotZeroWeightEpoch",
    "GracePeriodNotElapsed",
    "RecoveryPolicyMismatch",
    "InsufficientBalance",
    "NotFound",
    "Conflict",
    "Unauthorized",
    "InvalidSignature",
    "BadNonce",
]
