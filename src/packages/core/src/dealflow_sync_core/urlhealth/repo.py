"""URL health check persistence."""
import sqlite3
from typing import Any

from pydantic import BaseModel, Field

from dealflow_sync_core.db import dumps, get_conn, loads
from dealflow_sync_core.urlhealth.validator import UrlCheck
from dealflow_sync_core.util import generate_id, utc_now_iso


class UrlHealthRecord(BaseModel):
    id: str
    job_id: str | None = None
    entity_id: str
    entity_type: str
    field_name: str
    target_url: str
    status: str
    http_status: int | None = None
    final_url: str | None = None
    redirect_chain: list[str] = Field(default_factory=list)
    is_parked: bool = False
    error_message: str | None = None
    candidate_url: str | None = None
    confidence: float | None = None
    applied: bool = False
    check_count: int = 0
    checked_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


def _row_to_record(row: sqlite3.Row) -> UrlHealthRecord:
    data = dict(row)
    data["redirect_chain"] = loads(data.get("redirect_chain"), [])
    data["is_parked"] = bool(data.get("is_parked"))
    data["applied"] = bool(data.get("applied"))
    return UrlHealthRecord(**data)


def register_pending(job_id: str, entity_id: str, entity_type: str, field_name: str, url: str) -> None:
    """Mark a URL as queued for checking in this run."""
    now = utc_now_iso()
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO url_health_checks (id, job_id, entity_id, entity_type, field_name, target_url,
                                           status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, 'pending', ?, ?)
            ON CONFLICT (entity_id, field_name) DO UPDATE SET
                job_id = excluded.job_id,
                target_url = excluded.target_url,
                status = 'pending',
                candidate_url = NULL,
                confidence = NULL,
                applied = 0,
                updated_at = excluded.updated_at
            """,
            (generate_id(), job_id, entity_id, entity_type, field_name, url, now, now),
        )


def save_check(
    job_id: str | None,
    entity_id: str,
    entity_type: str,
    field_name: str,
    url: str,
    check: UrlCheck,
    candidate_url: str | None = None,
    confidence: float | None = None,
    applied: bool = False,
) -> UrlHealthRecord:
    """Upsert the outcome of a check (and repair attempt) for one entity field."""
    now = utc_now_iso()
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO url_health_checks (id, job_id, entity_id, entity_type, field_name, target_url, status,
                                           http_status, final_url, redirect_chain, is_parked, error_message,
                                           candidate_url, confidence, applied, check_count, checked_at,
                                           created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
            ON CONFLICT (entity_id, field_name) DO UPDATE SET
                job_id = excluded.job_id,
                target_url = excluded.target_url,
                status = excluded.status,
                http_status = excluded.http_status,
                final_url = excluded.final_url,
                redirect_chain = excluded.redirect_chain,
                is_parked = excluded.is_parked,
                error_message = excluded.error_message,
                candidate_url = excluded.candidate_url,
                confidence = excluded.confidence,
                applied = excluded.applied,
                check_count = url_health_checks.check_count + 1,
                checked_at = excluded.checked_at,
                updated_at = excluded.updated_at
            """,
            (
                generate_id(),
                job_id,
                entity_id,
                entity_type,
                field_name,
                url,
                check.status,
                check.http_status,
                check.final_url,
                dumps(check.redirect_chain),
                int(check.is_parked),
                check.error_message,
                candidate_url,
                confidence,
                int(applied),
                now,
                now,
                now,
            ),
        )
        row = conn.execute(
            "SELECT * FROM url_health_checks WHERE entity_id = ? AND field_name = ?",
            (entity_id, field_name),
        ).fetchone()
    return _row_to_record(row)


def _scope_clause(scope: str) -> tuple[str, list[Any]]:
    if scope in ("all", "", None):
        return "", []
    if scope in ("person", "company"):
        return "AND entity_type = ?", [scope]
    return "AND entity_id IN (SELECT id FROM entities WHERE scope = ?)", [scope]


def url_health_stats(scope: str = "all") -> dict[str, int]:
    """Counts by status; ``checked`` excludes pending rows."""
    clause, params = _scope_clause(scope)
    with get_conn() as conn:
        row = conn.execute(
            f"""
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN status = 'valid' THEN 1 ELSE 0 END), 0) AS valid,
                COALESCE(SUM(CASE WHEN status = 'redirected' THEN 1 ELSE 0 END), 0) AS redirected,
                COALESCE(SUM(CASE WHEN status = 'broken' THEN 1 ELSE 0 END), 0) AS broken,
                COALESCE(SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END), 0) AS pending,
                COALESCE(SUM(CASE WHEN applied = 1 THEN 1 ELSE 0 END), 0) AS repaired,
                COALESCE(SUM(CASE WHEN status = 'broken' AND applied = 0 THEN 1 ELSE 0 END), 0) AS pending_review
            FROM url_health_checks
            WHERE 1=1 {clause}
            """,
            params,
        ).fetchone()
    stats = dict(row)
    stats["checked"] = stats["total"] - stats["pending"]
    return stats


def list_checks(
    scope: str = "all",
    status: str | None = None,
    pending_review: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> list[UrlHealthRecord]:
    clause, params = _scope_clause(scope)
    if status:
        clause += " AND status = ?"
        params.append(status)
    if pending_review:
        clause += " AND status = 'broken' AND applied = 0"
    with get_conn() as conn:
        rows = conn.execute(
            f"""
            SELECT * FROM url_health_checks WHERE 1=1 {clause}
            ORDER BY checked_at IS NULL, checked_at DESC
            LIMIT ? OFFSET ?
            """,
            [*params, limit, offset],
        ).fetchall()
    return [_row_to_record(r) for r in rows]
