from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from epochflow.api.config import load_api_config
from epochflow.api.errors import ApiError
from epochflow.api.routes_public import public_router
from epochflow.api.security import RateLimitMiddleware, RequestSizeLimitMiddleware
from epochflow.api.structured_logging import RequestLogMiddleware, configure_structured_logging
from epochflow.runtime.checkpoint_loop import CheckpointLoop
from epochflow.runtime.engine_boot import build_engine as _build_engine


def build_engine():
    """Build an EpochFlowEngine for API runtime.

    This wrapper exists so tests can monkeypatch `epochflow.api.app.build_engine`
    without reaching into runtime modules.
    """
    return _build_engine()


def _parse_cors_origins() -> List[str]:
    """Parse CORS origins with production-safe defaults.

    Policy:
      - If EPOCHFLOW_CORS_ORIGINS is unset/empty -> CORS disabled (fail-closed)
      - Wildcard "*" is rejected in EPOCHFLOW_MODE=prod
      - In non-prod modes, "*" is allowed for convenience
    """
    raw = os.environ.get("EPOCHFLOW_CORS_ORIGINS", "").strip()
    mode = os.environ.get("EPOCHFLOW_MODE", "prod").strip().lower()

    if not raw:
        return []

    origins = [o.strip() for o in raw.split(",") if o.strip()]

    if "*" in origins:
        if mode == "prod":
            raise RuntimeError(
                "Unsafe CORS configuration: wildcard '*' not allowed in production. "
                "Set explicit origins in EPOCHFLOW_CORS_ORIGINS."
            )
        return ["*"]

    return origins


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_json())


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    err = ApiError.bad_request("invalid_payload", "request body failed validation", {"errors": exc.errors()})
    return JSONResponse(status_code=err.status_code, content=err.to_json())


def create_app(*, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): build the engine and attach it as app.state.engine
      - False: keep lightweight for unit tests / import-time validation
    """
    configure_structured_logging()
    mode = os.environ.get("EPOCHFLOW_MODE", "prod").strip().lower()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        """Start/stop the checkpoint keeper loop (opt-in via env)."""
        loop = None
        eng = getattr(app.state, "engine", None)
        autostart = (os.environ.get("EPOCHFLOW_CHECKPOINT_LOOP_AUTOSTART") or "").strip().lower() in {
            "1",
            "true",
            "yes",
            "y",
            "on",
        }
        if autostart and eng is not None and hasattr(eng, "checkpoint_all"):
            loop = CheckpointLoop(engine=eng)
            loop.start()

        app.state.checkpoint_loop = loop
        yield
        if loop is not None:
            loop.stop()

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(
            title="EpochFlow Engine API",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
            lifespan=_lifespan,
        )
    else:
        app = FastAPI(title="EpochFlow Engine API", lifespan=_lifespan)

    app.state.cfg = load_api_config()

    if boot_runtime:
        app.state.engine = build_engine()
    else:
        app.state.engine = None

    app.state.checkpoint_loop = None

    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    # --- Middleware ---
    # Request size limiter should be early to fail fast.
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestLogMiddleware)

    # CORS (explicit allowlist only by default).
    cors_origins = _parse_cors_origins()
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "X-EpochFlow-Admin-Token"],
        )

    app.include_router(public_router)

    return app
