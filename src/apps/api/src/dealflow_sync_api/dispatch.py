"""Run started jobs off the request thread."""
import threading
from typing import Any

import structlog

from dealflow_sync_core.jobs import JobHandle, JobState, complete, start_job
from dealflow_sync_worker.tasks import TASKS

logger = structlog.get_logger()


def run_in_background(handle: JobHandle, options: dict[str, Any]) -> threading.Thread:
    """Execute the job's task in a daemon thread; a crash marks the job failed."""
    task = TASKS[handle.kind]

    def run():
        try:
            task(handle.job_id, handle.scope, options)
        except Exception as e:
            logger.exception("job_thread_crashed", job_id=handle.job_id, error=str(e))
            complete(handle.job_id, JobState.FAILED, error=str(e)[:500])

    thread = threading.Thread(target=run, name=f"{handle.kind}-{handle.job_id}", daemon=True)
    thread.start()
    return thread


def start_and_dispatch(kind: str, scope: str, options: dict[str, Any], total_estimate: int = 0) -> JobHandle:
    """Create the job (raising AlreadyRunning on conflict) and hand it to a worker thread."""
    handle = start_job(kind, scope, total_estimate=total_estimate, options=options)
    run_in_background(handle, options)
    return handle
