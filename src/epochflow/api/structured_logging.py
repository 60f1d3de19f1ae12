# src/epochflow/api/structured_logging.py
"""JSON-lines logging for the HTTP service.

The request id of the HTTP request being served lives in a context variable.
RequestContextFilter copies it onto every record, so engine lines such as
"op rejected ..." can be joined with the http_request line that caused them.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from epochflow.api.security import classify_request

Json = Dict[str, Any]

REQUEST_ID_HEADER = "x-request-id"

_request_id: ContextVar[str] = ContextVar("epochflow_request_id", default="")


def current_request_id() -> str:
    return _request_id.get()


def _truthy(v: str | None) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", ""):
            record.request_id = _request_id.get()
        return True


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Json = {
            "ts_ms": int(record.created * 1000),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        rid = getattr(record, "request_id", "")
        if rid:
            payload["request_id"] = rid
        fields = getattr(record, "event_fields", None)
        if isinstance(fields, dict):
            payload.update(fields)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def configure_structured_logging() -> None:
    """Send root logging to stdout as JSON lines. Idempotent.

    Level comes from EPOCHFLOW_LOG_LEVEL (default INFO).
    """
    level_name = (os.environ.get("EPOCHFLOW_LOG_LEVEL") or "INFO").strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    if any(isinstance(h.formatter, JsonLineFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLineFormatter())
    handler.addFilter(RequestContextFilter())
    root.handlers = [handler]


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    logger.log(level, event, extra={"event_fields": {"event": event, **fields}})


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Binds a request id and logs one http_request event per request.

    EPOCHFLOW_LOG_REQUESTS=0 turns the access line off; the request id is
    still bound and echoed.
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        self._enabled = (os.environ.get("EPOCHFLOW_LOG_REQUESTS") or "1").strip().lower() not in {"0", "false", "no", "off"}
        self._log_user_agent = _truthy(os.environ.get("EPOCHFLOW_LOG_REQUEST_HEADERS"))
        self._logger = logging.getLogger("epochflow.http")

    async def dispatch(self, request: Request, call_next):
        request_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip()[:128] or uuid.uuid4().hex
        request.state.request_id = request_id
        token = _request_id.set(request_id)

        started = time.monotonic()
        status = 500
        try:
            response = await call_next(request)
            status = int(response.status_code)
            response.headers.setdefault(REQUEST_ID_HEADER, request_id)
            return response
        finally:
            if self._enabled:
                self._log_request(request, status, started)
            _request_id.reset(token)

    def _log_request(self, request: Request, status: int, started: float) -> None:
        path = str(request.url.path or "")
        rc = classify_request(request.method, path)
        fields: Json = {
            "method": request.method,
            "path": path,
            "status": status,
            "duration_ms": int((time.monotonic() - started) * 1000),
            "route_class": rc.kind,
        }
        if rc.component:
            fields["component"] = rc.component
        ua: Optional[str] = request.headers.get("user-agent") if self._log_user_agent else None
        if ua:
            fields["user_agent"] = ua
        log_event(self._logger, "http_request", level=logging.WARNING if status >= 500 else logging.INFO, **fields)
