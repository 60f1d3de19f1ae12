from __future__ import annotations

import os
from typing import Any, Callable, Dict, Optional, TypeVar

from fastapi import Request

from epochflow.api.errors import ApiError
from epochflow.api.schemas import SignedRequest
from epochflow.runtime.engine import EpochFlowEngine
from epochflow.runtime.errors import EngineError

Json = Dict[str, Any]
T = TypeVar("T")


def _engine(request: Request) -> EpochFlowEngine:
    eng = getattr(request.app.state, "engine", None)
    if eng is None:
        raise ApiError.unavailable("not_ready", "engine not attached to app.state", {})
    return eng


def _call(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run an engine call, translating rejections into ApiError."""
    try:
        return fn(*args, **kwargs)
    except EngineError as e:
        raise ApiError.from_engine_error(e) from e


def _submit(request: Request, op: str, req: SignedRequest, **payload_extra: Any) -> Json:
    """Submit `op` with the request's envelope fields and a payload built from its body."""
    eng = _engine(request)
    env: Json = {
        "op": op,
        "caller": req.caller,
        "nonce": req.nonce,
        "payload": req.payload(**payload_extra),
        "sig": req.sig,
    }
    return _call(eng.submit, env)


def _env_int(name: str, default: int) -> int:
    try:
        v = str(os.environ.get(name, "") or "").strip()
        return int(v) if v else int(default)
    except ValueError:
        return int(default)


def _int_param(v: Any, default: int) -> int:
    """Parse an int-ish query param safely."""
    if v is None:
        return int(default)
    try:
        s = str(v).strip()
        if s == "":
            return int(default)
        return int(s)
    except ValueError:
        return int(default)


def _require_int_param(v: Optional[str], name: str) -> int:
    try:
        return int(str(v).strip())
    except (TypeError, ValueError):
        raise ApiError.bad_request("invalid_payload", f"missing or bad {name}", {"field": name}) from None
