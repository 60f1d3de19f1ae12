from __future__ import annotations

from fastapi import APIRouter, Request, Response

from epochflow.runtime.metrics import format_prometheus, metrics_enabled


router = APIRouter()


@router.get("/metrics")
def metrics(request: Request) -> Response:
    """Prometheus-style metrics.

    Disabled by default. Enable with:
      EPOCHFLOW_METRICS_ENABLED=1

    Stream and ledger gauges are refreshed from engine state on each scrape.
    """
    if not metrics_enabled():
        return Response(status_code=404, content="not_found\n", media_type="text/plain")
    eng = getattr(request.app.state, "engine", None)
    if eng is not None:
        eng.publish_state_gauges()
    return Response(content=format_prometheus(), media_type="text/plain")
