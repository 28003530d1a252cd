"""Job repository using SQLite."""
import re
import sqlite3
from typing import Any

import structlog

from dealflow_sync_core.db import dumps, get_conn, loads
from dealflow_sync_core.jobs.models import JobStatus, ProgressDelta
from dealflow_sync_core.util import utc_now_iso

logger = structlog.get_logger()

_COUNTER_NAME = re.compile(r"^[a-z][a-z_]{0,40}$")
_ACTIVE_SQL = "('pending', 'running')"


def _row_to_status(row: sqlite3.Row) -> JobStatus:
    data = dict(row)
    data["counters"] = loads(data.get("counters"), {})
    data["options"] = loads(data.get("options"), {})
    data["result"] = loads(data.get("result"))
    data["cancel_requested"] = bool(data.get("cancel_requested"))
    return JobStatus(**data)


def insert_pending_job(
    job_id: str,
    kind: str,
    scope: str,
    total_records: int = 0,
    options: dict[str, Any] | None = None,
) -> bool:
    """Insert a pending job. Returns False if an active job already holds (kind, scope)."""
    now = utc_now_iso()
    try:
        with get_conn() as conn:
            conn.execute(
                """
                INSERT INTO jobs (job_id, kind, scope, status, total_records, options, created_at, updated_at)
                VALUES (?, ?, ?, 'pending', ?, ?, ?, ?)
                """,
                (job_id, kind, scope, max(0, total_records), dumps(options or {}), now, now),
            )
    except sqlite3.IntegrityError:
        return False
    return True


def mark_running(job_id: str) -> bool:
    """Move a pending job to running."""
    now = utc_now_iso()
    with get_conn() as conn:
        cur = conn.execute(
            """
            UPDATE jobs SET status = 'running', started_at = ?, updated_at = ?
            WHERE job_id = ? AND status = 'pending'
            """,
            (now, now, job_id),
        )
        return cur.rowcount == 1


def get_job(job_id: str) -> JobStatus | None:
    """Get a job by ID."""
    with get_conn() as conn:
        row = conn.execute("SELECT * FROM jobs WHERE job_id = ?", (job_id,)).fetchone()
        if row is None:
            return None
        return _row_to_status(row)


def get_active_job(kind: str, scope: str) -> JobStatus | None:
    """Get the pending/running job for (kind, scope), if any."""
    with get_conn() as conn:
        row = conn.execute(
            f"SELECT * FROM jobs WHERE kind = ? AND scope = ? AND status IN {_ACTIVE_SQL}",
            (kind, scope),
        ).fetchone()
        if row is None:
            return None
        return _row_to_status(row)


def increment_progress(job_id: str, delta: ProgressDelta) -> bool:
    """Apply a progress delta in one UPDATE statement.

    ``total_records`` is raised to at least the new processed count. Terminal
    jobs are left untouched.
    """
    assignments = [
        "processed = processed + :processed",
        "succeeded = succeeded + :succeeded",
        "failed = failed + :failed",
        "total_records = MAX(total_records, processed + :processed)",
        "updated_at = :now",
    ]
    params: dict[str, Any] = {
        "job_id": job_id,
        "processed": delta.processed,
        "succeeded": delta.succeeded,
        "failed": delta.failed,
        "now": utc_now_iso(),
    }
    if delta.counters:
        parts = []
        for i, (name, amount) in enumerate(sorted(delta.counters.items())):
            if not _COUNTER_NAME.match(name):
                raise ValueError(f"Invalid counter name: {name!r}")
            if amount < 0:
                raise ValueError(f"Counter {name} cannot decrease")
            parts.append(f"'$.{name}', COALESCE(json_extract(counters, '$.{name}'), 0) + :c{i}")
            params[f"c{i}"] = amount
        assignments.append(f"counters = json_set(counters, {', '.join(parts)})")
    with get_conn() as conn:
        cur = conn.execute(
            f"UPDATE jobs SET {', '.join(assignments)} WHERE job_id = :job_id AND status IN {_ACTIVE_SQL}",
            params,
        )
        return cur.rowcount == 1


def add_to_total(job_id: str, amount: int) -> None:
    """Grow the total record estimate of an active job."""
    if amount <= 0:
        return
    with get_conn() as conn:
        conn.execute(
            f"""
            UPDATE jobs SET total_records = total_records + ?, updated_at = ?
            WHERE job_id = ? AND status IN {_ACTIVE_SQL}
            """,
            (amount, utc_now_iso(), job_id),
        )


def set_cancel_requested(job_id: str) -> bool:
    """Flag an active job for cancellation. Returns False if the job is not active."""
    with get_conn() as conn:
        cur = conn.execute(
            f"""
            UPDATE jobs SET cancel_requested = 1, updated_at = ?
            WHERE job_id = ? AND status IN {_ACTIVE_SQL}
            """,
            (utc_now_iso(), job_id),
        )
        return cur.rowcount == 1


def is_cancel_requested(job_id: str, heartbeat: bool = False) -> bool:
    """Read the cancel flag; with ``heartbeat`` also refresh ``updated_at`` of an active job."""
    with get_conn() as conn:
        if heartbeat:
            conn.execute(
                f"UPDATE jobs SET updated_at = ? WHERE job_id = ? AND status IN {_ACTIVE_SQL}",
                (utc_now_iso(), job_id),
            )
        row = conn.execute(
            "SELECT cancel_requested FROM jobs WHERE job_id = ?", (job_id,)
        ).fetchone()
        return bool(row and row["cancel_requested"])


def finish_job(
    job_id: str,
    status: str,
    result: dict[str, Any] | None = None,
    error_message: str | None = None,
) -> bool:
    """Move an active job to a terminal status. Returns False if it was already terminal."""
    now = utc_now_iso()
    with get_conn() as conn:
        cur = conn.execute(
            f"""
            UPDATE jobs SET
                status = ?,
                result = COALESCE(?, result),
                error_message = COALESCE(?, error_message),
                completed_at = ?,
                updated_at = ?
            WHERE job_id = ? AND status IN {_ACTIVE_SQL}
            """,
            (status, dumps(result) if result is not None else None, error_message, now, now, job_id),
        )
        return cur.rowcount == 1


def fail_stale_jobs(reason: str, updated_before: str) -> list[str]:
    """Fail pending/running jobs whose last heartbeat is older than ``updated_before``."""
    now = utc_now_iso()
    where = f"status IN {_ACTIVE_SQL} AND COALESCE(updated_at, created_at, '') < ?"
    with get_conn() as conn:
        rows = conn.execute(f"SELECT job_id FROM jobs WHERE {where}", (updated_before,)).fetchall()
        ids = [r["job_id"] for r in rows]
        if ids:
            marks = ", ".join("?" * len(ids))
            conn.execute(
                f"""
                UPDATE jobs SET status = 'failed', error_message = ?, completed_at = ?, updated_at = ?
                WHERE job_id IN ({marks}) AND {where}
                """,
                (reason, now, now, *ids, updated_before),
            )
        return ids


def list_jobs_for_scope(scope: str, kind: str | None = None) -> list[JobStatus]:
    """List jobs for a scope, newest first."""
    sql = "SELECT * FROM jobs WHERE scope = ?"
    params: list[Any] = [scope]
    if kind:
        sql += " AND kind = ?"
        params.append(kind)
    sql += " ORDER BY created_at DESC"
    with get_conn() as conn:
        return [_row_to_status(r) for r in conn.execute(sql, params).fetchall()]


def list_active_jobs() -> list[JobStatus]:
    """List all pending or running jobs."""
    with get_conn() as conn:
        rows = conn.execute(
            f"SELECT * FROM jobs WHERE status IN {_ACTIVE_SQL} ORDER BY created_at DESC"
        ).fetchall()
        return [_row_to_status(r) for r in rows]


def list_recent_jobs(limit: int = 20, kind: str | None = None) -> list[JobStatus]:
    """List recent jobs (active first, then recent terminal ones)."""
    where = "WHERE kind = ?" if kind else ""
    params: list[Any] = [kind] if kind else []
    params.append(limit)
    with get_conn() as conn:
        rows = conn.execute(
            f"""
            SELECT * FROM jobs
            {where}
            ORDER BY
                CASE status
                    WHEN 'running' THEN 0
                    WHEN 'pending' THEN 1
                    ELSE 2
                END,
                updated_at DESC
            LIMIT ?
            """,
            params,
        ).fetchall()
        return [_row_to_status(r) for r in rows]


__all__ = [
    "insert_pending_job",
    "mark_running",
    "get_job",
    "get_active_job",
    "increment_progress",
    "add_to_total",
    "set_cancel_requested",
    "is_cancel_requested",
    "finish_job",
    "fail_stale_jobs",
    "list_jobs_for_scope",
    "list_active_jobs",
    "list_recent_jobs",
]
