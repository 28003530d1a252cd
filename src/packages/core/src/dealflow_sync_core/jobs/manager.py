"""Job lifecycle: pending -> running -> completed | failed | cancelled.

The persisted ``jobs`` row is the only source of truth. Mutual exclusion per
(kind, scope) is a conditional insert against a partial unique index, so it
holds across threads and process restarts. Terminal states are final: every
transition is an UPDATE guarded by ``status IN ('pending', 'running')``.
"""
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import structlog

from dealflow_sync_core.jobs import repo
from dealflow_sync_core.jobs.models import JobKind, JobState, JobStatus, ProgressDelta, TERMINAL_STATES
from dealflow_sync_core.util import AlreadyRunning, NotFound, NotRunning, generate_id
from dealflow_sync_core.util.time import format_iso, utc_now

logger = structlog.get_logger()

DEFAULT_STALE_AFTER_SECONDS = 600.0


def _kind_value(kind: JobKind | str) -> str:
    return JobKind(kind).value


@dataclass
class JobHandle:
    """What an execution loop holds to report on its job."""

    job_id: str
    kind: str
    scope: str

    def report(self, succeeded: int = 0, failed: int = 0, **counters: int) -> None:
        report_progress(self.job_id, ProgressDelta(succeeded=succeeded, failed=failed, counters=counters))

    def add_total(self, amount: int) -> None:
        repo.add_to_total(self.job_id, amount)

    def cancel_requested(self) -> bool:
        """Checked at every record boundary; doubles as the job's heartbeat."""
        return repo.is_cancel_requested(self.job_id, heartbeat=True)

    def finish(self, outcome: str, result: dict[str, Any] | None = None, error: str | None = None) -> JobStatus:
        return complete(self.job_id, outcome, result=result, error=error)

    def snapshot(self) -> JobStatus:
        job = repo.get_job(self.job_id)
        if job is None:
            raise NotFound(f"Job {self.job_id} not found")
        return job


def start_job(
    kind: JobKind | str,
    scope: str,
    total_estimate: int = 0,
    options: dict[str, Any] | None = None,
) -> JobHandle:
    """Create a job for (kind, scope) and move it to running.

    Raises AlreadyRunning if another job of the same kind and scope is active.
    """
    kind_value = _kind_value(kind)
    job_id = generate_id()
    if not repo.insert_pending_job(job_id, kind_value, scope, total_estimate, options):
        active = repo.get_active_job(kind_value, scope)
        raise AlreadyRunning(kind_value, scope, active.job_id if active else None)
    repo.mark_running(job_id)
    logger.info("job_started", job_id=job_id, kind=kind_value, scope=scope, total_estimate=total_estimate)
    return JobHandle(job_id=job_id, kind=kind_value, scope=scope)


def attach(job_id: str) -> JobHandle:
    """Get a handle for an existing job (e.g. inside a worker thread)."""
    job = repo.get_job(job_id)
    if job is None:
        raise NotFound(f"Job {job_id} not found")
    return JobHandle(job_id=job.job_id, kind=job.kind, scope=job.scope)


def report_progress(job_id: str, delta: ProgressDelta) -> None:
    """Atomically add ``delta`` to the job's counters."""
    if not repo.increment_progress(job_id, delta):
        logger.debug("progress_ignored_for_inactive_job", job_id=job_id)


def request_cancellation(job_id: str) -> JobStatus:
    """Flag a pending/running job for cooperative cancellation."""
    if not repo.set_cancel_requested(job_id):
        job = repo.get_job(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        raise NotRunning(job_id, job.status)
    logger.info("job_cancel_requested", job_id=job_id)
    return repo.get_job(job_id)


def complete(
    job_id: str,
    outcome: JobState | str,
    result: dict[str, Any] | None = None,
    error: str | None = None,
) -> JobStatus:
    """Move a job to a terminal state; a no-op returning the current state if already terminal."""
    status = JobState(outcome).value
    if status not in TERMINAL_STATES:
        raise ValueError(f"Not a terminal state: {status}")
    changed = repo.finish_job(job_id, status, result=result, error_message=error)
    job = repo.get_job(job_id)
    if job is None:
        raise NotFound(f"Job {job_id} not found")
    if changed:
        logger.info(
            "job_finished",
            job_id=job_id,
            status=status,
            processed=job.processed,
            failed=job.failed,
        )
    else:
        logger.info("job_finish_ignored", job_id=job_id, requested=status, current=job.status)
    return job


def get_active_job(kind: JobKind | str, scope: str) -> JobStatus | None:
    return repo.get_active_job(_kind_value(kind), scope)


def get_job(job_id: str) -> JobStatus | None:
    return repo.get_job(job_id)


def _stale_after_seconds() -> float:
    return float(os.environ.get("JOB_STALE_AFTER_SECONDS", DEFAULT_STALE_AFTER_SECONDS))


def recover_interrupted_jobs(stale_after_seconds: float | None = None) -> list[str]:
    """Fail active jobs with no heartbeat for ``stale_after_seconds`` so their (kind, scope) can start again.

    A live loop refreshes ``updated_at`` at every record boundary, so only
    jobs abandoned by a dead process are reclaimed.
    """
    window = _stale_after_seconds() if stale_after_seconds is None else stale_after_seconds
    cutoff = format_iso(utc_now() - timedelta(seconds=window))
    ids = repo.fail_stale_jobs("Interrupted by restart", cutoff)
    if ids:
        logger.warning("interrupted_jobs_failed", job_ids=ids, stale_after_seconds=window)
    return ids
