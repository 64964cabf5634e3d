"""Error taxonomy for reconciliation runs and the HTTP trigger surface."""

import builtins
import logging
from typing import TYPE_CHECKING, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from reconciler.core.logging import get_request_id

if TYPE_CHECKING:
    from reconciler.models.run import ReconciliationRun


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class UnknownJobError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class TransientStoreError(AppError):
    """Timeouts, rate limiting, dropped connections. Retried within a run."""
    code = "transient_store_error"
    status_code = 503


class PermissionOrConfigError(AppError):
    """Store unreachable or misconfigured. Aborts the whole run."""
    code = "store_fatal"
    status_code = 500


class RunAbortedError(AppError):
    """Raised by the driver when a fatal error stops a run part way."""
    code = "run_aborted"
    status_code = 503

    def __init__(self, message: str, *, summary: "ReconciliationRun", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.summary = summary
        self.cause = cause


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid)
    if isinstance(exc, RunAbortedError):
        payload["summary"] = exc.summary.to_dict()
    logger = logging.getLogger("reconciler")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("reconciler")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("reconciler")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
