"""Job execution loops.

Each task owns one job from running to a terminal state. Per-record failures
are handled inside the core runners; anything that escapes them fails the
whole job. A cancel flag seen at a checkpoint ends the job as cancelled, and
work already applied stays applied.
"""
from typing import Any, Callable

import structlog

from dealflow_sync_core import ledger
from dealflow_sync_core.crm import get_client
from dealflow_sync_core.enrich import EnrichmentRunner, LlmClient, collect_candidates
from dealflow_sync_core.jobs import JobHandle, JobKind, JobState, attach, start_job
from dealflow_sync_core.ledger import FailedRecord
from dealflow_sync_core.sync import Reconciler
from dealflow_sync_core.urlhealth import UrlHealthRunner, collect_targets
from dealflow_sync_core.util import NotFound, UnrecoverableError

from dealflow_sync_worker.settings import (
    get_rate_limit_retries,
    get_url_check_pause,
    get_url_target_limit,
)

logger = structlog.get_logger()

MAX_RESULT_ERRORS = 100


def _fail(handle: JobHandle, error: BaseException) -> None:
    handle.finish(JobState.FAILED, error=str(error)[:500])


def _cancelled_before_start(handle: JobHandle) -> bool:
    if handle.cancel_requested():
        handle.finish(JobState.CANCELLED)
        logger.info("job_cancelled_before_start", job_id=handle.job_id)
        return True
    return False


def run_crm_sync_job(job_id: str, scope: str, options: dict[str, Any] | None = None) -> None:
    """Run a CRM reconciliation job (pull then push)."""
    options = options or {}
    handle = attach(job_id)
    if _cancelled_before_start(handle):
        return
    record_types = tuple(options.get("record_types") or ("person", "company"))
    direction = options.get("direction", "both")
    client = None
    try:
        client = get_client()
        reconciler = Reconciler(
            client,
            scope,
            handle=handle,
            record_types=record_types,
            max_rate_limit_retries=get_rate_limit_retries(),
        )
        full = reconciler.run(direction)
    except UnrecoverableError as e:
        logger.error("sync_aborted", job_id=job_id, scope=scope, error=str(e))
        _fail(handle, e)
        return
    except Exception as e:
        logger.exception("sync_crashed", job_id=job_id, error=str(e))
        _fail(handle, e)
        return
    finally:
        if client is not None:
            client.close()

    total = full.total
    result = {
        "created": total.created,
        "updated": total.updated,
        "skipped": total.skipped,
        "errors": [err.model_dump() for err in total.errors[:MAX_RESULT_ERRORS]],
        "error_count": len(total.errors),
        "pull": full.pull.model_dump(exclude={"errors"}),
        "push": full.push.model_dump(exclude={"errors"}),
    }
    outcome = JobState.CANCELLED if full.cancelled else JobState.COMPLETED
    handle.finish(outcome, result=result)
    logger.info("sync_job_done", job_id=job_id, status=outcome.value, created=total.created, updated=total.updated)


def run_url_health_job(job_id: str, scope: str, options: dict[str, Any] | None = None) -> None:
    """Check every URL field in scope, auto-applying repairs above the threshold."""
    options = options or {}
    handle = attach(job_id)
    if _cancelled_before_start(handle):
        return
    try:
        targets = collect_targets(scope, limit=get_url_target_limit())
        handle.add_total(len(targets))
        runner = UrlHealthRunner(
            handle=handle,
            threshold=options.get("confidence_threshold"),
            include_auto_fix=options.get("include_auto_fix", True),
            pause=get_url_check_pause(),
        )
        summary = runner.run(targets)
    except Exception as e:
        logger.exception("url_health_crashed", job_id=job_id, error=str(e))
        _fail(handle, e)
        return
    outcome = JobState.CANCELLED if summary.cancelled else JobState.COMPLETED
    handle.finish(outcome, result=summary.model_dump(exclude={"cancelled"}))
    logger.info("url_health_job_done", job_id=job_id, status=outcome.value, **summary.model_dump(exclude={"cancelled"}))


def run_enrichment_job(job_id: str, scope: str, options: dict[str, Any] | None = None) -> None:
    """Fill empty profile fields of entities in scope via the LLM."""
    options = options or {}
    handle = attach(job_id)
    if _cancelled_before_start(handle):
        return
    client = None
    try:
        client = LlmClient()
        candidates = collect_candidates(scope, limit=options.get("limit", 500))
        handle.add_total(len(candidates))
        runner = EnrichmentRunner(client, handle=handle, max_rate_limit_retries=get_rate_limit_retries())
        summary = runner.run(candidates)
    except UnrecoverableError as e:
        logger.error("enrichment_aborted", job_id=job_id, scope=scope, error=str(e))
        _fail(handle, e)
        return
    except Exception as e:
        logger.exception("enrichment_crashed", job_id=job_id, error=str(e))
        _fail(handle, e)
        return
    finally:
        if client is not None:
            client.close()
    outcome = JobState.CANCELLED if summary.cancelled else JobState.COMPLETED
    handle.finish(outcome, result=summary.model_dump(exclude={"cancelled"}))
    logger.info("enrichment_job_done", job_id=job_id, status=outcome.value, enriched=summary.enriched)


TASKS: dict[str, Callable[..., None]] = {
    JobKind.CRM_SYNC.value: run_crm_sync_job,
    JobKind.URL_HEALTH.value: run_url_health_job,
    JobKind.ENRICHMENT.value: run_enrichment_job,
}


def run_job_now(kind: str, scope: str, options: dict[str, Any] | None = None, total_estimate: int = 0) -> str:
    """Start a job and run it in the calling thread. Returns the job id."""
    handle = start_job(kind, scope, total_estimate=total_estimate, options=options)
    TASKS[handle.kind](handle.job_id, scope, options or {})
    return handle.job_id


def retry_failed_record(record_id: str) -> FailedRecord:
    """Re-run one ledger entry through the single-record path of the job that produced it."""
    record = ledger.get_record(record_id)
    if record is None or not record.is_open:
        raise NotFound(f"No open failed record {record_id}")

    if record.job_kind == JobKind.CRM_SYNC.value:
        client = get_client()
        try:
            reconciler = Reconciler(client, record.scope or "all", max_rate_limit_retries=get_rate_limit_retries())
            return ledger.retry(record_id, reconciler.retry_failed)
        finally:
            client.close()
    if record.job_kind == JobKind.ENRICHMENT.value:
        llm = LlmClient()
        try:
            return ledger.retry(record_id, EnrichmentRunner(llm).retry_failed)
        finally:
            llm.close()
    if record.job_kind == JobKind.URL_HEALTH.value:
        return ledger.retry(record_id, UrlHealthRunner(pause=0).retry_failed)
    raise NotFound(f"No retry path for job kind {record.job_kind}")
