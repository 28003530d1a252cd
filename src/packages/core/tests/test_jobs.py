"""Tests for the job lifecycle."""
import threading
from datetime import timedelta

import pytest

from dealflow_sync_core.db import get_conn
from dealflow_sync_core.jobs import (
    JobKind,
    JobState,
    attach,
    complete,
    get_active_job,
    get_job,
    recover_interrupted_jobs,
    request_cancellation,
    start_job,
)
from dealflow_sync_core.util import AlreadyRunning, NotFound, NotRunning
from dealflow_sync_core.util.time import format_iso, utc_now


def test_start_job_is_running():
    handle = start_job(JobKind.CRM_SYNC, "group-1", total_estimate=10)
    job = get_job(handle.job_id)
    assert job.status == "running"
    assert job.total_records == 10
    assert job.processed == 0
    assert job.started_at is not None


def test_second_start_for_same_scope_is_rejected():
    first = start_job("crm_sync", "group-1")
    with pytest.raises(AlreadyRunning) as exc:
        start_job("crm_sync", "group-1")
    assert exc.value.job_id == first.job_id


def test_other_scope_or_kind_can_start():
    start_job("crm_sync", "group-1")
    start_job("crm_sync", "group-2")
    start_job("url_health", "group-1")


def test_concurrent_starts_admit_exactly_one():
    results = []

    def attempt():
        try:
            results.append(start_job("url_health", "all").job_id)
        except AlreadyRunning:
            results.append(None)

    threads = [threading.Thread(target=attempt) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len([r for r in results if r]) == 1


def test_scope_is_free_again_after_completion():
    handle = start_job("crm_sync", "group-1")
    handle.finish(JobState.COMPLETED)
    assert get_active_job("crm_sync", "group-1") is None
    start_job("crm_sync", "group-1")


def test_counters_add_up():
    handle = start_job("url_health", "all", total_estimate=3)
    handle.report(succeeded=1, valid_urls=1)
    handle.report(succeeded=1, broken_urls=1, repaired_urls=1)
    handle.report(failed=1)
    job = handle.snapshot()
    assert job.processed == 3
    assert job.succeeded + job.failed == job.processed
    assert job.counters == {"valid_urls": 1, "broken_urls": 1, "repaired_urls": 1}


def test_total_grows_with_processed():
    handle = start_job("crm_sync", "all", total_estimate=1)
    handle.report(succeeded=1)
    handle.report(succeeded=1)
    job = handle.snapshot()
    assert job.total_records >= job.processed == 2


def test_invalid_counter_name_rejected():
    handle = start_job("crm_sync", "all")
    with pytest.raises(ValueError):
        handle.report(succeeded=1, **{"bad-name": 1})


def test_cancellation_flag_then_cancelled():
    handle = start_job("enrichment", "all")
    job = request_cancellation(handle.job_id)
    assert job.cancel_requested
    assert job.status == "running"
    assert attach(handle.job_id).cancel_requested()
    final = handle.finish(JobState.CANCELLED)
    assert final.status == "cancelled"


def test_cancel_finished_job_raises_not_running():
    handle = start_job("enrichment", "all")
    handle.finish(JobState.COMPLETED)
    with pytest.raises(NotRunning) as exc:
        request_cancellation(handle.job_id)
    assert exc.value.status == "completed"


def test_cancel_unknown_job_raises_not_found():
    with pytest.raises(NotFound):
        request_cancellation("missing")


def test_terminal_state_is_final():
    handle = start_job("crm_sync", "all")
    handle.report(succeeded=2)
    complete(handle.job_id, JobState.CANCELLED)
    again = complete(handle.job_id, JobState.COMPLETED, result={"created": 1})
    assert again.status == "cancelled"
    assert again.result is None
    handle.report(succeeded=5)
    assert get_job(handle.job_id).processed == 2


def test_complete_rejects_non_terminal_outcome():
    handle = start_job("crm_sync", "all")
    with pytest.raises(ValueError):
        complete(handle.job_id, JobState.RUNNING)


def _age(job_id, seconds):
    with get_conn() as conn:
        conn.execute(
            "UPDATE jobs SET updated_at = ? WHERE job_id = ?",
            (format_iso(utc_now() - timedelta(seconds=seconds)), job_id),
        )


def test_recover_interrupted_jobs_frees_scope():
    handle = start_job("crm_sync", "all")
    _age(handle.job_id, 3600)
    assert recover_interrupted_jobs() == [handle.job_id]
    job = get_job(handle.job_id)
    assert job.status == "failed"
    assert job.error_message
    start_job("crm_sync", "all")


def test_recover_leaves_live_jobs_running():
    live = start_job("crm_sync", "all")
    _age(live.job_id, 3600)
    live.cancel_requested()

    assert recover_interrupted_jobs() == []
    assert get_job(live.job_id).status == "running"
    with pytest.raises(AlreadyRunning):
        start_job("crm_sync", "all")


def test_recover_window_is_configurable(monkeypatch):
    handle = start_job("url_health", "all")
    _age(handle.job_id, 120)
    assert recover_interrupted_jobs() == []

    monkeypatch.setenv("JOB_STALE_AFTER_SECONDS", "60")
    assert recover_interrupted_jobs() == [handle.job_id]
