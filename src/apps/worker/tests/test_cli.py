"""Tests for the worker command line."""
import json

from dealflow_sync_core.db import get_conn
from dealflow_sync_core.jobs import get_job, start_job
from dealflow_sync_worker.main import main


def _last_json(capsys):
    return json.loads(capsys.readouterr().out.strip().splitlines()[-1])


def test_recover_fails_stale_jobs(capsys):
    stale = start_job("enrichment", "all")
    with get_conn() as conn:
        conn.execute(
            "UPDATE jobs SET updated_at = ? WHERE job_id = ?", ("2020-01-01T00:00:00.000000Z", stale.job_id)
        )
    live = start_job("enrichment", "group-1")

    assert main(["recover", "--stale-after", "60"]) == 0
    assert _last_json(capsys) == {"failed_jobs": [stale.job_id]}
    assert get_job(stale.job_id).status == "failed"
    assert get_job(live.job_id).status == "running"


def test_run_url_health_in_foreground(capsys):
    assert main(["run", "url_health", "--threshold", "0.9"]) == 0
    job = _last_json(capsys)
    assert job["status"] == "completed"
    assert job["options"]["confidence_threshold"] == 0.9


def test_run_rejected_while_active(capsys):
    start_job("url_health", "all")
    assert main(["run", "url_health"]) == 1
