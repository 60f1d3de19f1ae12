from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from epochflow.runtime.errors import EngineError

_BAD_REQUEST_CODES = frozenset({"invalid_payload", "invalid_epoch", "zero_amount", "invalid_identity", "op_unimplemented"})
_FORBIDDEN_CODES = frozenset({"unauthorized", "invalid_signature", "bad_nonce"})
_NOT_FOUND_CODES = frozenset({"not_found"})


@dataclass(frozen=True, slots=True)
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    def to_json(self) -> Dict[str, Any]:
        return {"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}}

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def forbidden(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(403, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def conflict(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(409, code, message, details or {})

    @staticmethod
    def too_many(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(429, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    @staticmethod
    def unavailable(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(503, code, message, details or {})

    @staticmethod
    def from_engine_error(e: EngineError) -> "ApiError":
        """Map an engine rejection onto an HTTP status.

        Anything that is not malformed input, an auth failure or a missing
        component is a state-machine precondition and maps to 409.
        """
        details = e.details if isinstance(e.details, dict) else ({} if e.details is None else {"details": e.details})
        if e.code in _BAD_REQUEST_CODES:
            return ApiError.bad_request(e.code, e.reason, details)
        if e.code in _FORBIDDEN_CODES:
            return ApiError.forbidden(e.code, e.reason, details)
        if e.code in _NOT_FOUND_CODES:
            return ApiError.not_found(e.code, e.reason, details)
        if e.code == "domain_error":
            return ApiError.internal(e.code, e.reason, details)
        return ApiError.conflict(e.code, e.reason, details)
