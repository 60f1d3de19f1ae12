from __future__ import annotations

import time
from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()

# Liveness / readiness checks are mounted without the /v1 prefix.
root_health_router = APIRouter()

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _health_payload(request: Request) -> Json:
    # health must never crash; best-effort telemetry only
    eng = getattr(request.app.state, "engine", None)
    out: Json = {"ok": True, "ts_ms": _now_ms(), "engine_attached": eng is not None}
    if eng is None:
        return out

    out["engine_id"] = str(getattr(eng, "engine_id", "") or "")
    out["require_signatures"] = bool(getattr(eng, "require_signatures", False))
    try:
        out["epoch"] = eng.epoch_info()
    except Exception as e:
        out["epoch_error"] = f"{type(e).__name__}:{e}"

    running = getattr(eng, "checkpoint_loop_running", None)
    out["checkpoint_loop"] = {
        "running": running if isinstance(running, bool) else None,
        "unhealthy": bool(getattr(eng, "checkpoint_loop_unhealthy", False)),
        "last_error": str(getattr(eng, "checkpoint_loop_last_error", "") or "") or None,
    }
    return out


@router.get("/health")
def health(request: Request) -> Json:
    return _health_payload(request)


@root_health_router.get("/healthz")
def healthz() -> Json:
    return {"ok": True}


@root_health_router.get("/readyz")
def readyz(request: Request):
    eng = getattr(request.app.state, "engine", None)
    if eng is None:
        return JSONResponse(status_code=503, content={"ok": False, "error": {"code": "not_ready"}})
    if bool(getattr(eng, "checkpoint_loop_unhealthy", False)):
        return JSONResponse(status_code=503, content={"ok": False, "error": {"code": "checkpoint_loop_unhealthy"}})
    return {"ok": True}
