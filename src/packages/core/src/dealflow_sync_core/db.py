"""SQLite connection and schema shared by jobs, ledger, URL checks and entities."""
import json
import os
import sqlite3
from contextlib import contextmanager
from typing import Any

import structlog

logger = structlog.get_logger()

SCHEMA = """
PRAGMA journal_mode = WAL;

CREATE TABLE IF NOT EXISTS jobs (
    job_id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    scope TEXT NOT NULL,
    status TEXT NOT NULL,
    total_records INTEGER NOT NULL DEFAULT 0,
    processed INTEGER NOT NULL DEFAULT 0,
    succeeded INTEGER NOT NULL DEFAULT 0,
    failed INTEGER NOT NULL DEFAULT 0,
    counters TEXT NOT NULL DEFAULT '{}',
    options TEXT NOT NULL DEFAULT '{}',
    result TEXT,
    error_message TEXT,
    cancel_requested INTEGER NOT NULL DEFAULT 0,
    created_at TEXT,
    started_at TEXT,
    updated_at TEXT,
    completed_at TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_jobs_one_active
    ON jobs (kind, scope) WHERE status IN ('pending', 'running');

CREATE TABLE IF NOT EXISTS failed_records (
    id TEXT PRIMARY KEY,
    run_id TEXT NOT NULL,
    job_kind TEXT NOT NULL,
    record_type TEXT NOT NULL,
    record_key TEXT NOT NULL,
    external_id TEXT,
    entity_id TEXT,
    direction TEXT NOT NULL,
    scope TEXT,
    payload TEXT NOT NULL DEFAULT '{}',
    error_code TEXT NOT NULL,
    error_message TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0,
    resolution TEXT,
    resolved_at TEXT,
    created_at TEXT,
    updated_at TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_failed_records_open
    ON failed_records (run_id, record_key) WHERE resolved_at IS NULL;

CREATE TABLE IF NOT EXISTS url_health_checks (
    id TEXT PRIMARY KEY,
    job_id TEXT,
    entity_id TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    field_name TEXT NOT NULL,
    target_url TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    http_status INTEGER,
    final_url TEXT,
    redirect_chain TEXT NOT NULL DEFAULT '[]',
    is_parked INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    candidate_url TEXT,
    confidence REAL,
    applied INTEGER NOT NULL DEFAULT 0,
    check_count INTEGER NOT NULL DEFAULT 0,
    checked_at TEXT,
    created_at TEXT,
    updated_at TEXT,
    UNIQUE (entity_id, field_name)
);

CREATE TABLE IF NOT EXISTS entities (
    id TEXT PRIMARY KEY,
    record_type TEXT NOT NULL,
    scope TEXT NOT NULL,
    external_id TEXT,
    name TEXT,
    data TEXT NOT NULL DEFAULT '{}',
    source TEXT NOT NULL DEFAULT 'local',
    external_updated_at TEXT,
    local_updated_at TEXT,
    last_synced_at TEXT,
    created_at TEXT,
    UNIQUE (record_type, external_id)
);
"""


def _get_sqlite_path() -> str:
    return os.environ.get("SQLITE_PATH", "/data/sync.db")


@contextmanager
def get_conn():
    """Get a database connection; commits on success, rolls back on error."""
    path = _get_sqlite_path()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    conn = sqlite3.connect(path, timeout=30)
    conn.row_factory = sqlite3.Row
    try:
        conn.executescript(SCHEMA)
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db():
    """Initialize the database."""
    with get_conn():
        pass
    logger.info("database_ready", path=_get_sqlite_path())


def dumps(value: Any) -> str:
    return json.dumps(value, default=str, sort_keys=True)


def loads(value: str | None, default: Any = None) -> Any:
    if value is None or value == "":
        return default
    try:
        return json.loads(value)
    except ValueError:
        return default
