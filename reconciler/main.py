"""
FastAPI app exposing the reconciliation jobs to an HTTP scheduler.

Run with:
    uvicorn reconciler.main:app
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException

from reconciler.api import health, jobs
from reconciler.core.clock import SystemClock
from reconciler.core.config import settings, validate_config
from reconciler.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from reconciler.core.logging import configure_logging
from reconciler.core.middleware.metrics import MetricsMiddleware
from reconciler.core.middleware.request_id import RequestIdMiddleware
from reconciler.features.reconciliation.jobs import default_store

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("reconciler")
    logger.info("Starting reconciler trigger service...")
    # Tests (and embedding callers) may install their own store and clock first
    if getattr(app.state, "store", None) is None:
        app.state.store = default_store()
    if getattr(app.state, "clock", None) is None:
        app.state.clock = SystemClock()
    try:
        yield
    finally:
        logger.info("Stopping reconciler trigger service...")


app = FastAPI(title="FrameIt Reconciler", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(health.router)
app.include_router(jobs.router)


if __name__ == "__main__":
    uvicorn.run("reconciler.main:app", host="0.0.0.0", port=8080)
