"""
Health, readiness and metrics endpoints.

Lightweight operational probes; none of them expose secrets or touch quotas.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from ronchon.core.metrics import METRICS

logger = logging.getLogger("ronchon")

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request):
    """Backward-compatible health payload used by the extension."""
    backend = request.app.state.backend
    return {
        "ok": True,
        "store": backend.name,
        "redis": backend.name == "redis",
        "date": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(request: Request):
    """Readiness check: backing store answers a ping."""
    backend = request.app.state.backend
    if await backend.ping():
        return {"status": "ok", "store": backend.name}
    logger.warning(f"[readyz] store {backend.name} unreachable")
    return JSONResponse(status_code=503, content={"status": "error", "detail": "store unreachable"})


@router.get("/metrics")
def metrics_endpoint():
    return Response(content=METRICS.export_prometheus(), media_type="text/plain")
