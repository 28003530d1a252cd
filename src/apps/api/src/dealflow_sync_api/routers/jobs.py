"""Background job endpoints: start, poll, cancel."""
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from dealflow_sync_api.dispatch import start_and_dispatch
from dealflow_sync_api.settings import get_settings
from dealflow_sync_core import ledger
from dealflow_sync_core.jobs import (
    JobKind,
    JobStatus,
    get_active_job,
    get_job,
    list_jobs_for_scope,
    list_recent_jobs,
    request_cancellation,
)
from dealflow_sync_core.util import AlreadyRunning, NotFound, NotRunning

router = APIRouter(prefix="/jobs", tags=["jobs"])
logger = structlog.get_logger()


class JobStart(BaseModel):
    """Request to start a job."""

    scope: str = Field(default="all", min_length=1)
    options: dict[str, Any] = Field(default_factory=dict)


def job_response(job: JobStatus) -> dict[str, Any]:
    """Snapshot plus a pointer to this run's failed records."""
    body = job.model_dump()
    body["open_failed_records"] = ledger.count_open(run_id=job.job_id)
    body["failed_records_url"] = f"/api/failed-records?run_id={job.job_id}&status=all"
    return body


def start(kind: JobKind, scope: str, options: dict[str, Any]) -> dict[str, Any]:
    """Start a job or raise 409 with the id of the job already running."""
    try:
        handle = start_and_dispatch(kind.value, scope, options)
    except AlreadyRunning as e:
        raise HTTPException(
            status_code=409,
            detail={"message": str(e), "job_id": e.job_id},
        ) from None
    logger.info("job_dispatched", job_id=handle.job_id, kind=kind.value, scope=scope)
    return {"job_id": handle.job_id, "status": "running"}


@router.post("/{kind}/start", status_code=202)
def start_job(kind: JobKind, body: JobStart):
    """Start a job of the given kind for a scope."""
    return start(kind, body.scope, body.options)


@router.get("/{kind}/active")
def get_active(kind: JobKind, scope: str = "all"):
    """The active job for (kind, scope), or null."""
    job = get_active_job(kind, scope)
    return job_response(job) if job else None


@router.get("")
def list_jobs(scope: str | None = None, kind: JobKind | None = None, limit: int = 20):
    """Recent jobs, active first. With ``scope``, that scope's full history."""
    limit = max(1, min(limit, get_settings().max_page_size))
    if scope:
        jobs = list_jobs_for_scope(scope, kind.value if kind else None)[:limit]
    else:
        jobs = list_recent_jobs(limit=limit, kind=kind.value if kind else None)
    return {"jobs": [job_response(j) for j in jobs]}


@router.get("/{job_id}")
def get_job_status(job_id: str):
    """Get job status."""
    job = get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job_response(job)


@router.post("/{job_id}/cancel", status_code=202)
def cancel_job(job_id: str):
    """Request cancellation; the job stops at its next record boundary."""
    try:
        job = request_cancellation(job_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Job not found") from None
    except NotRunning as e:
        raise HTTPException(
            status_code=409,
            detail=f"Job cannot be cancelled (status: {e.status})",
        ) from None
    return job_response(job)
