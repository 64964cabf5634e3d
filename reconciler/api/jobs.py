"""
HTTP trigger for scheduled reconciliation jobs.

The scheduler POSTs /v1/jobs/{job_name}/run on its own cadence and applies
its own retry policy to the response status. Status codes carry the same
signal as the CLI exit codes: 200 for `success` and `timed_out`, 500 for
`partial` (entities failed after retries) and 503 for `aborted`. The body
is always the run summary.
"""

import hmac
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from reconciler.core.clock import ensure_aware
from reconciler.core.config import settings
from reconciler.core.errors import PermissionError, ValidationError
from reconciler.features.reconciliation.jobs import JOBS, run_job

router = APIRouter(prefix="/v1/jobs", tags=["jobs"])


def require_scheduler_token(request: Request) -> None:
    """Check X-Scheduler-Token when SCHEDULER_TOKEN is configured."""
    expected = settings.SCHEDULER_TOKEN
    if not expected:
        return
    provided = request.headers.get("X-Scheduler-Token", "")
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        raise PermissionError("Invalid scheduler token")


def _parse_now(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return ensure_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        raise ValidationError(f"now must be an ISO-8601 instant, got {value!r}")


@router.get("")
def list_jobs(_: None = Depends(require_scheduler_token)):
    return {"jobs": sorted(JOBS)}


@router.post("/{job_name}/run")
async def trigger_job(
    job_name: str,
    request: Request,
    now: Optional[str] = Query(None, description="Evaluate as of this ISO-8601 instant"),
    _: None = Depends(require_scheduler_token),
):
    run = await run_job(
        job_name,
        store=request.app.state.store,
        clock=request.app.state.clock,
        now=_parse_now(now),
    )
    return JSONResponse(status_code=200 if run.succeeded else 500, content=run.to_dict())
