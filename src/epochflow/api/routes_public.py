# src/epochflow/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from epochflow.api.routes_public_parts.assets import router as assets_router
from epochflow.api.routes_public_parts.epoch import router as epoch_router
from epochflow.api.routes_public_parts.fees import router as fees_router
from epochflow.api.routes_public_parts.health import root_health_router
from epochflow.api.routes_public_parts.health import router as health_router
from epochflow.api.routes_public_parts.ledgers import router as ledgers_router
from epochflow.api.routes_public_parts.metrics import router as metrics_router
from epochflow.api.routes_public_parts.ops import router as ops_router
from epochflow.api.routes_public_parts.state import router as state_router
from epochflow.api.routes_public_parts.streams import router as streams_router
from epochflow.api.routes_public_parts.weights import router as weights_router

public_router = APIRouter()

# Versioned API surface
public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(epoch_router, prefix="/v1", tags=["epoch"])
public_router.include_router(streams_router, prefix="/v1", tags=["streams"])
public_router.include_router(ledgers_router, prefix="/v1", tags=["ledgers"])
public_router.include_router(weights_router, prefix="/v1", tags=["weights"])
public_router.include_router(fees_router, prefix="/v1", tags=["fees"])
public_router.include_router(ops_router, prefix="/v1", tags=["ops"])
public_router.include_router(assets_router, prefix="/v1", tags=["assets"])
public_router.include_router(state_router, prefix="/v1", tags=["state"])

# Ops
public_router.include_router(metrics_router, prefix="/v1", tags=["metrics"])
public_router.include_router(root_health_router, tags=["health"])
