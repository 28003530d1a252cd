"""Tests for job execution loops."""
import pytest

from dealflow_sync_core import entities, ledger
from dealflow_sync_core.crm import Page
from dealflow_sync_core.jobs import get_job, request_cancellation, start_job
from dealflow_sync_core.util import AlreadyRunning, NetworkError, NotFound
from dealflow_sync_worker import tasks


class FakeCrm:
    def __init__(self, people=None, fail_pages=False):
        self.people = people or []
        self.fail_pages = fail_pages
        self.closed = False

    def list_page(self, record_type, group_id=None, cursor=None, limit=100):
        if self.fail_pages:
            raise NetworkError("connection refused")
        items = self.people if record_type == "person" else []
        return Page(items=items)

    def create(self, record_type, body, group_id=None):
        return {"id": "new"}

    def update(self, record_type, external_id, body):
        return {"id": external_id}

    def close(self):
        self.closed = True


@pytest.fixture
def crm(monkeypatch):
    fake = FakeCrm(people=[{"id": "per_1", "firstName": "Ada"}, {"id": "per_2", "lastName": "NoFirst"}])
    monkeypatch.setattr(tasks, "get_client", lambda: fake)
    return fake


def test_sync_job_completes_with_result(crm):
    job_id = tasks.run_job_now("crm_sync", "all")

    job = get_job(job_id)
    assert job.status == "completed"
    assert job.result["created"] == 1
    assert job.result["error_count"] == 1
    assert job.result["errors"][0]["id"] == "per_2"
    assert (job.processed, job.failed) == (2, 1)
    assert crm.closed


def test_sync_job_fails_when_listing_fails(crm):
    crm.fail_pages = True
    job_id = tasks.run_job_now("crm_sync", "all")
    job = get_job(job_id)
    assert job.status == "failed"
    assert "Cannot fetch initial page" in job.error_message


def test_job_cancelled_before_start(crm):
    handle = start_job("crm_sync", "all")
    request_cancellation(handle.job_id)
    tasks.run_crm_sync_job(handle.job_id, "all")
    assert get_job(handle.job_id).status == "cancelled"
    assert entities.list_entities() == []


def test_run_job_now_respects_mutual_exclusion(crm):
    start_job("crm_sync", "all")
    with pytest.raises(AlreadyRunning):
        tasks.run_job_now("crm_sync", "all")


def test_url_health_job_with_no_targets():
    job_id = tasks.run_job_now("url_health", "all", {"confidence_threshold": 0.9})
    job = get_job(job_id)
    assert job.status == "completed"
    assert job.result == {"valid_urls": 0, "broken_urls": 0, "repaired_urls": 0, "pending_review": 0, "errors": 0}


def test_sync_job_fails_when_client_cannot_be_built(monkeypatch):
    def broken_client():
        raise ValueError("could not convert string to float: 'abc'")

    monkeypatch.setattr(tasks, "get_client", broken_client)
    job_id = tasks.run_job_now("crm_sync", "all")

    job = get_job(job_id)
    assert job.status == "failed"
    assert "abc" in job.error_message


def test_enrichment_job_fails_without_llm_key(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "gemini")
    monkeypatch.setenv("GEMINI_API_KEY", "")
    for i in range(5):
        entities.create_local("company", "all", {"name": f"Firm{i}"})

    job_id = tasks.run_job_now("enrichment", "all")

    job = get_job(job_id)
    assert job.status == "failed"
    assert "GEMINI_API_KEY" in job.error_message
    assert ledger.count_open() == 0


def test_enrichment_job_fails_when_client_cannot_be_built(monkeypatch):
    def broken_client():
        raise ValueError("bad LLM configuration")

    monkeypatch.setattr(tasks, "LlmClient", broken_client)
    job_id = tasks.run_job_now("enrichment", "all")

    assert get_job(job_id).status == "failed"


def test_retry_failed_record_dispatches_by_kind(crm):
    tasks.run_job_now("crm_sync", "all")
    record = ledger.list_open()[0]
    ledger.update_payload(record.id, {"id": "per_2", "firstName": "Fixed", "lastName": "NoFirst"})

    resolved = tasks.retry_failed_record(record.id)

    assert not resolved.is_open
    assert entities.get_by_external_id("person", "per_2").data["first_name"] == "Fixed"


def test_retry_unknown_record():
    with pytest.raises(NotFound):
        tasks.retry_failed_record("missing")
