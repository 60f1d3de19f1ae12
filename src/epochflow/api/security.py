from __future__ import annotations

import ipaddress
import os
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from epochflow.api.config import ApiConfig, admin_token_matches, load_api_config
from epochflow.api.errors import ApiError
from epochflow.ledger.constants import LEDGER_HOLDER_PREFIX, STREAM_HOLDER_PREFIX
from epochflow.runtime.metrics import inc_counter

ADMIN_TOKEN_HEADER = "x-epochflow-admin-token"

EXEMPT_PREFIXES: Tuple[str, ...] = ("/docs", "/openapi.json", "/healthz", "/readyz")

# Permissionless stream maintenance and ledger payouts.
_TICK_ACTIONS = frozenset({"sync", "start", "drip", "checkpoint"})
_CLAIM_ACTIONS = frozenset({"claim", "claim_many", "refund"})
_WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

_DEFAULT_BUCKETS: Dict[str, Tuple[float, float]] = {
    "read": (12.0, 40.0),
    "write": (4.0, 20.0),
    "claim": (2.0, 10.0),
    "tick": (1.0, 5.0),
}


def _truthy(v: str | None) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return int(default)
    try:
        return int(str(raw).strip())
    except ValueError:
        return int(default)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return float(default)
    try:
        return float(str(raw).strip())
    except ValueError:
        return float(default)


def _client_ip(request: Request) -> str:
    """Client address used as the rate limit key. Never used for auth.

    Proxy headers count only with EPOCHFLOW_TRUST_PROXY_HEADERS=1, and then
    the left-most X-Forwarded-For entry wins.
    """
    candidates = []
    if _truthy(os.environ.get("EPOCHFLOW_TRUST_PROXY_HEADERS")):
        candidates.append((request.headers.get("x-forwarded-for") or "").split(",")[0])
    if request.client and request.client.host:
        candidates.append(str(request.client.host))

    for raw in candidates:
        try:
            return str(ipaddress.ip_address(raw.strip()))
        except ValueError:
            continue
    return "unknown"


def require_admin_token(request: Request) -> None:
    """Gate operator routes behind EPOCHFLOW_ADMIN_TOKEN when it is configured.

    The engine still checks that the op's caller is the admin identity; this
    is an extra transport-level gate.
    """
    cfg = getattr(request.app.state, "cfg", None)
    if not isinstance(cfg, ApiConfig):
        cfg = load_api_config()
    if not admin_token_matches(cfg, request.headers.get(ADMIN_TOKEN_HEADER)):
        raise ApiError.forbidden("admin_token_required", "missing or invalid admin token", {"header": ADMIN_TOKEN_HEADER})


@dataclass(frozen=True)
class RouteClass:
    """Rate limit class of a request.

    kind is one of exempt, read, write, claim or tick. Claim and tick
    requests also name the component they touch, so hammering one stream or
    ledger does not use up a client's budget for the others.
    """

    kind: str
    component: str = ""


def classify_request(method: str, path: str) -> RouteClass:
    if path.startswith(EXEMPT_PREFIXES):
        return RouteClass("exempt")
    if (method or "").upper() not in _WRITE_METHODS:
        return RouteClass("read")

    parts = [p for p in path.split("/") if p]
    if len(parts) == 4 and parts[0] == "v1":
        _, root, component_id, action = parts
        if root == "streams" and action in _TICK_ACTIONS:
            return RouteClass("tick", f"{STREAM_HOLDER_PREFIX}{component_id}")
        if root == "ledgers" and action in _CLAIM_ACTIONS:
            return RouteClass("claim", f"{LEDGER_HOLDER_PREFIX}{component_id}")
    return RouteClass("write")


@dataclass(frozen=True)
class TokenBucket:
    rate_per_sec: float
    burst: float


def bucket_config_from_env() -> Dict[str, TokenBucket]:
    """EPOCHFLOW_RL_<KIND>_PER_SEC / EPOCHFLOW_RL_<KIND>_BURST per route class."""
    out: Dict[str, TokenBucket] = {}
    for kind, (rate, burst) in _DEFAULT_BUCKETS.items():
        out[kind] = TokenBucket(
            rate_per_sec=_env_float(f"EPOCHFLOW_RL_{kind.upper()}_PER_SEC", rate),
            burst=_env_float(f"EPOCHFLOW_RL_{kind.upper()}_BURST", burst),
        )
    return out


class RateLimiter:
    """Token buckets keyed by (route class, client, component).

    Keys are held in least-recently-seen order. Idle keys older than ttl_s
    fall off the front, and the oldest keys go first once max_keys is hit.
    """

    def __init__(
        self,
        buckets: Mapping[str, TokenBucket],
        *,
        ttl_s: float = 900.0,
        max_keys: int = 20_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._buckets = dict(buckets)
        self._ttl_s = float(ttl_s)
        self._max_keys = int(max_keys)
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (tokens, last_seen)
        self._keys: "OrderedDict[Tuple[str, str, str], Tuple[float, float]]" = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def _expire(self, now: float) -> None:
        if self._ttl_s <= 0:
            return
        cutoff = now - self._ttl_s
        while self._keys:
            _, (_, last_seen) = next(iter(self._keys.items()))
            if last_seen >= cutoff:
                break
            self._keys.popitem(last=False)

    def allow(self, rc: RouteClass, client: str) -> bool:
        bucket = self._buckets.get(rc.kind)
        if bucket is None:
            return True

        key = (rc.kind, client, rc.component)
        now = self._clock()
        with self._lock:
            self._expire(now)
            tokens, last = self._keys.pop(key, (bucket.burst, now))
            tokens = min(bucket.burst, tokens + (now - last) * bucket.rate_per_sec)
            allowed = tokens >= 1.0
            self._keys[key] = (tokens - 1.0 if allowed else tokens, now)
            while self._max_keys > 0 and len(self._keys) > self._max_keys:
                self._keys.popitem(last=False)
        return allowed


def _error_response(err: ApiError) -> JSONResponse:
    return JSONResponse(status_code=err.status_code, content=err.to_json())


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects oversized write bodies with 413 before they reach a route.

    EPOCHFLOW_MAX_REQUEST_BYTES (default 64000) sets the cap;
    EPOCHFLOW_SIZE_LIMIT_DISABLE=1 turns the check off.
    """

    def __init__(self, app, *, max_bytes: Optional[int] = None):
        super().__init__(app)
        self._enabled = not _truthy(os.environ.get("EPOCHFLOW_SIZE_LIMIT_DISABLE"))
        self._max_bytes = int(max_bytes) if max_bytes is not None else _env_int("EPOCHFLOW_MAX_REQUEST_BYTES", 64_000)

    def _too_large(self, size: int) -> JSONResponse:
        return _error_response(
            ApiError(413, "request_too_large", "Request body too large", {"limit": self._max_bytes, "size": size})
        )

    async def dispatch(self, request: Request, call_next):
        if not self._enabled or classify_request(request.method, request.url.path).kind in {"exempt", "read"}:
            return await call_next(request)

        try:
            declared = int(request.headers.get("content-length") or 0)
        except ValueError:
            declared = 0
        if declared > self._max_bytes:
            return self._too_large(declared)

        # Chunked bodies carry no Content-Length.
        body = await request.body()
        if len(body) > self._max_bytes:
            return self._too_large(len(body))
        return await call_next(request)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-node rate limiting by route class.

    Disabled with EPOCHFLOW_RL_DISABLE=1. Multi-replica deployments should
    limit at the edge as well.
    """

    def __init__(self, app, *, limiter: Optional[RateLimiter] = None):
        super().__init__(app)
        self._enabled = not _truthy(os.environ.get("EPOCHFLOW_RL_DISABLE"))
        self.limiter = limiter or RateLimiter(
            bucket_config_from_env(),
            ttl_s=_env_float("EPOCHFLOW_RL_TTL_S", 900.0),
            max_keys=_env_int("EPOCHFLOW_RL_MAX_KEYS", 20_000),
        )

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        rc = classify_request(request.method, request.url.path)
        if self.limiter.allow(rc, _client_ip(request)):
            return await call_next(request)

        inc_counter("http_rate_limited_total", route_class=rc.kind)
        details = {"route_class": rc.kind}
        if rc.component:
            details["component"] = rc.component
        return _error_response(ApiError.too_many("rate_limited", "Too many requests", details))
