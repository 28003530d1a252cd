"""Job management module."""
from dealflow_sync_core.jobs.repo import (
    get_job,
    list_jobs_for_scope,
    list_active_jobs,
    list_recent_jobs,
)
from dealflow_sync_core.jobs.manager import (
    JobHandle,
    start_job,
    attach,
    report_progress,
    request_cancellation,
    complete,
    get_active_job,
    recover_interrupted_jobs,
)
from dealflow_sync_core.jobs.models import JobKind, JobState, JobStatus, ProgressDelta

__all__ = [
    "get_job",
    "list_jobs_for_scope",
    "list_active_jobs",
    "list_recent_jobs",
    "JobHandle",
    "start_job",
    "attach",
    "report_progress",
    "request_cancellation",
    "complete",
    "get_active_job",
    "recover_interrupted_jobs",
    "JobKind",
    "JobState",
    "JobStatus",
    "ProgressDelta",
]
