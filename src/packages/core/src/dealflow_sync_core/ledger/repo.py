"""Failed-record ledger.

Append/update only: rows are never deleted, so triage readers never see a
record vanish while a job is writing. At most one open row exists per
(run_id, record_key); a repeat failure in the same run bumps ``retry_count``.
"""
import sqlite3
from typing import Any, Callable

import structlog

from dealflow_sync_core.db import dumps, get_conn, loads
from dealflow_sync_core.ledger.models import FailedRecord, FailedRecordPage
from dealflow_sync_core.util import NotFound, classify, generate_id, utc_now_iso

logger = structlog.get_logger()

RetryHandler = Callable[[FailedRecord], Any]


def _row_to_record(row: sqlite3.Row) -> FailedRecord:
    data = dict(row)
    data["payload"] = loads(data.get("payload"), {})
    return FailedRecord(**data)


def record_failure(
    run_id: str,
    job_kind: str,
    record_type: str,
    record_key: str,
    payload: dict[str, Any],
    error: BaseException | str,
    *,
    error_code: str | None = None,
    direction: str = "pull",
    external_id: str | None = None,
    entity_id: str | None = None,
    scope: str | None = None,
) -> FailedRecord:
    """Append a failure, coalescing with an open row for the same (run_id, record_key)."""
    code = error_code or (classify(error) if isinstance(error, BaseException) else "unknown")
    message = str(error)[:1000]
    now = utc_now_iso()
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO failed_records (id, run_id, job_kind, record_type, record_key, external_id, entity_id,
                                        direction, scope, payload, error_code, error_message, retry_count,
                                        created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
            ON CONFLICT (run_id, record_key) WHERE resolved_at IS NULL DO UPDATE SET
                retry_count = retry_count + 1,
                error_code = excluded.error_code,
                error_message = excluded.error_message,
                updated_at = excluded.updated_at
            """,
            (
                generate_id(),
                run_id,
                job_kind,
                record_type,
                record_key,
                external_id,
                entity_id,
                direction,
                scope,
                dumps(payload),
                code,
                message,
                now,
                now,
            ),
        )
        row = conn.execute(
            "SELECT * FROM failed_records WHERE run_id = ? AND record_key = ? AND resolved_at IS NULL",
            (run_id, record_key),
        ).fetchone()
    logger.warning(
        "record_failed",
        run_id=run_id,
        record_type=record_type,
        record_key=record_key,
        error_code=code,
        error=message,
    )
    return _row_to_record(row)


def get_record(record_id: str) -> FailedRecord | None:
    with get_conn() as conn:
        row = conn.execute("SELECT * FROM failed_records WHERE id = ?", (record_id,)).fetchone()
        return _row_to_record(row) if row else None


def _get_open(record_id: str) -> FailedRecord:
    record = get_record(record_id)
    if record is None or not record.is_open:
        raise NotFound(f"No open failed record {record_id}")
    return record


def _resolve(record_id: str, resolution: str) -> FailedRecord:
    now = utc_now_iso()
    with get_conn() as conn:
        cur = conn.execute(
            """
            UPDATE failed_records SET resolution = ?, resolved_at = ?, updated_at = ?
            WHERE id = ? AND resolved_at IS NULL
            """,
            (resolution, now, now, record_id),
        )
        if cur.rowcount != 1:
            raise NotFound(f"No open failed record {record_id}")
    return get_record(record_id)


def retry(record_id: str, handler: RetryHandler) -> FailedRecord:
    """Reprocess one open record with its stored payload.

    Success resolves the record; failure bumps ``retry_count`` and keeps it open.
    """
    record = _get_open(record_id)
    try:
        handler(record)
    except Exception as e:
        now = utc_now_iso()
        with get_conn() as conn:
            conn.execute(
                """
                UPDATE failed_records SET retry_count = retry_count + 1, error_code = ?,
                    error_message = ?, updated_at = ?
                WHERE id = ? AND resolved_at IS NULL
                """,
                (classify(e), str(e)[:1000], now, record_id),
            )
        logger.warning("failed_record_retry_failed", record_id=record_id, error=str(e))
        return get_record(record_id)
    logger.info("failed_record_retried", record_id=record_id)
    return _resolve(record_id, "retried")


def dismiss(record_id: str) -> FailedRecord:
    """Resolve without reprocessing."""
    record = _resolve(record_id, "dismissed")
    logger.info("failed_record_dismissed", record_id=record_id)
    return record


def reopen(record_id: str) -> FailedRecord:
    """Make a resolved record open again so it can be retried."""
    record = get_record(record_id)
    if record is None:
        raise NotFound(f"No failed record {record_id}")
    if record.is_open:
        return record
    now = utc_now_iso()
    try:
        with get_conn() as conn:
            conn.execute(
                "UPDATE failed_records SET resolution = NULL, resolved_at = NULL, updated_at = ? WHERE id = ?",
                (now, record_id),
            )
    except sqlite3.IntegrityError:
        raise NotFound(f"Another open failure exists for {record.record_key} in run {record.run_id}") from None
    logger.info("failed_record_reopened", record_id=record_id)
    return get_record(record_id)


def update_payload(record_id: str, payload: dict[str, Any]) -> FailedRecord:
    """Replace the stored payload of an open record (operator correction before retry)."""
    _get_open(record_id)
    with get_conn() as conn:
        conn.execute(
            "UPDATE failed_records SET payload = ?, updated_at = ? WHERE id = ? AND resolved_at IS NULL",
            (dumps(payload), utc_now_iso(), record_id),
        )
    return get_record(record_id)


def _filters(
    status: str | None,
    record_type: str | None,
    error_code: str | None,
    run_id: str | None,
) -> tuple[str, list[Any]]:
    clauses = []
    params: list[Any] = []
    if status == "open":
        clauses.append("resolved_at IS NULL")
    elif status == "resolved":
        clauses.append("resolved_at IS NOT NULL")
    if record_type:
        clauses.append("record_type = ?")
        params.append(record_type)
    if error_code:
        clauses.append("error_code = ?")
        params.append(error_code)
    if run_id:
        clauses.append("run_id = ?")
        params.append(run_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


def list_open(record_type: str | None = None, error_code: str | None = None) -> list[FailedRecord]:
    """Unresolved records for triage, oldest first."""
    where, params = _filters("open", record_type, error_code, None)
    with get_conn() as conn:
        rows = conn.execute(f"SELECT * FROM failed_records {where} ORDER BY created_at", params).fetchall()
        return [_row_to_record(r) for r in rows]


def list_records(
    status: str | None = "open",
    record_type: str | None = None,
    error_code: str | None = None,
    run_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> FailedRecordPage:
    """Paginated listing of open, resolved or all records (newest first)."""
    where, params = _filters(status, record_type, error_code, run_id)
    with get_conn() as conn:
        total = conn.execute(f"SELECT COUNT(*) FROM failed_records {where}", params).fetchone()[0]
        rows = conn.execute(
            f"SELECT * FROM failed_records {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        ).fetchall()
    return FailedRecordPage(records=[_row_to_record(r) for r in rows], total=total, limit=limit, offset=offset)


def count_open(run_id: str | None = None) -> int:
    where, params = _filters("open", None, None, run_id)
    with get_conn() as conn:
        return conn.execute(f"SELECT COUNT(*) FROM failed_records {where}", params).fetchone()[0]
