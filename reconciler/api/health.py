"""Liveness, readiness and metrics endpoints."""

import logging

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from reconciler.core.metrics import METRICS

logger = logging.getLogger("reconciler")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(request: Request):
    """Readiness check: the document store answers a trivial query."""
    store = request.app.state.store
    if await store.ping():
        return {"status": "ok"}
    logger.warning("[readyz] document store unreachable")
    return JSONResponse(status_code=503, content={"status": "error", "detail": "document store unreachable"})


@router.get("/metrics")
def metrics_endpoint():
    return Response(content=METRICS.export_prometheus(), media_type="text/plain")
