"""Tests for the HTTP interface."""
import pytest
from fastapi.testclient import TestClient

from dealflow_sync_api import dispatch
from dealflow_sync_api.main import app
from dealflow_sync_api.routers import failed_records as failed_records_router
from dealflow_sync_core import ledger
from dealflow_sync_core.jobs import JobState, complete
from dealflow_sync_core.util import ValidationError


@pytest.fixture
def dispatched(monkeypatch):
    """Record dispatched jobs instead of running them."""
    calls = []
    monkeypatch.setattr(dispatch, "run_in_background", lambda handle, options: calls.append((handle, options)))
    return calls


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def test_health(client):
    assert client.get("/api/health").json()["status"] == "ok"


def test_start_then_conflict(client, dispatched):
    res = client.post("/api/jobs/crm_sync/start", json={"scope": "grp-1"})
    assert res.status_code == 202
    job_id = res.json()["job_id"]
    assert dispatched[0][0].job_id == job_id

    again = client.post("/api/jobs/crm_sync/start", json={"scope": "grp-1"})
    assert again.status_code == 409
    assert again.json()["detail"]["job_id"] == job_id

    assert client.post("/api/jobs/crm_sync/start", json={"scope": "grp-2"}).status_code == 202


def test_unknown_kind_is_rejected(client, dispatched):
    assert client.post("/api/jobs/reindex/start", json={}).status_code == 422


def test_active_job_snapshot(client, dispatched):
    assert client.get("/api/jobs/url_health/active", params={"scope": "all"}).json() is None
    job_id = client.post("/api/jobs/url_health/start", json={"scope": "all"}).json()["job_id"]

    body = client.get("/api/jobs/url_health/active", params={"scope": "all"}).json()
    assert body["job_id"] == job_id
    assert body["status"] == "running"
    assert body["failed"] == 0
    assert body["failed_records_url"].startswith("/api/failed-records?run_id=")

    assert client.get(f"/api/jobs/{job_id}").json()["job_id"] == job_id
    assert [j["job_id"] for j in client.get("/api/jobs").json()["jobs"]] == [job_id]


def test_cancel(client, dispatched):
    job_id = client.post("/api/jobs/enrichment/start", json={}).json()["job_id"]
    res = client.post(f"/api/jobs/{job_id}/cancel")
    assert res.status_code == 202
    assert res.json()["cancel_requested"] is True

    complete(job_id, JobState.CANCELLED)
    assert client.post(f"/api/jobs/{job_id}/cancel").status_code == 409
    assert client.post("/api/jobs/missing/cancel").status_code == 404
    assert client.get("/api/jobs/missing").status_code == 404


def test_url_health_start_uses_default_threshold(client, dispatched):
    res = client.post("/api/url-health/start", json={"scope": "all", "include_auto_fix": False})
    assert res.status_code == 202
    options = dispatched[0][1]
    assert options == {"include_auto_fix": False, "confidence_threshold": 0.85}
    assert client.post("/api/url-health/start", json={"confidence_threshold": 2}).status_code == 422


def test_url_health_stats_and_checks(client):
    stats = client.get("/api/url-health/stats").json()
    assert stats["total"] == 0
    assert client.get("/api/url-health/checks").json() == {"checks": []}
    assert client.get("/api/url-health/checks", params={"status": "weird"}).status_code == 400


def test_url_health_job_runs_in_background(client, monkeypatch):
    original = dispatch.run_in_background

    def run_and_wait(handle, options):
        original(handle, options).join(timeout=10)

    monkeypatch.setattr(dispatch, "run_in_background", run_and_wait)
    job_id = client.post("/api/url-health/start", json={"scope": "all"}).json()["job_id"]

    body = client.get(f"/api/jobs/{job_id}").json()
    assert body["status"] == "completed"
    assert body["result"]["valid_urls"] == 0


def _failure(key="per_1"):
    return ledger.record_failure("run-1", "crm_sync", "person", key, {"id": key}, ValidationError("no name"))


def test_failed_records_triage(client):
    record = _failure()
    _failure("per_2")

    listing = client.get("/api/failed-records", params={"type": "person"}).json()
    assert listing["total"] == 2

    patched = client.patch(f"/api/failed-records/{record.id}", json={"payload": {"id": "per_1", "firstName": "A"}})
    assert patched.json()["payload"]["firstName"] == "A"

    assert client.delete(f"/api/failed-records/{record.id}").json()["resolution"] == "dismissed"
    assert client.get("/api/failed-records").json()["total"] == 1
    assert client.get("/api/failed-records", params={"status": "all"}).json()["total"] == 2

    assert client.post(f"/api/failed-records/{record.id}/reopen").json()["resolved_at"] is None
    assert client.delete("/api/failed-records/missing").status_code == 404


def test_failed_record_retry(client, monkeypatch):
    record = _failure()
    monkeypatch.setattr(
        failed_records_router,
        "retry_failed_record",
        lambda record_id: ledger.retry(record_id, lambda r: None),
    )
    body = client.post(f"/api/failed-records/{record.id}/retry").json()
    assert body["success"] is True
    assert body["record"]["resolution"] == "retried"
    assert client.post(f"/api/failed-records/{record.id}/retry").status_code == 404
