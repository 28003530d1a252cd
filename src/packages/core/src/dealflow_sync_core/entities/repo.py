"""Local entity store (investors and firms) reconciled against the CRM."""
import sqlite3
from typing import Any

from pydantic import BaseModel, Field

from dealflow_sync_core.db import dumps, get_conn, loads
from dealflow_sync_core.util import generate_id, utc_now_iso

RECORD_TYPES = ("person", "company")
URL_FIELDS = ("website", "linkedin_url", "twitter_url")


class Entity(BaseModel):
    """A local record."""

    id: str
    record_type: str
    scope: str
    external_id: str | None = None
    name: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    source: str = "local"
    external_updated_at: str | None = None
    local_updated_at: str | None = None
    last_synced_at: str | None = None
    created_at: str | None = None

    @property
    def modified_since_sync(self) -> bool:
        if self.last_synced_at is None:
            return True
        return (self.local_updated_at or "") > self.last_synced_at


def _row_to_entity(row: sqlite3.Row) -> Entity:
    data = dict(row)
    data["data"] = loads(data.get("data"), {})
    return Entity(**data)


def _display_name(record_type: str, fields: dict[str, Any]) -> str | None:
    if record_type == "company":
        return fields.get("name")
    full = " ".join(p for p in (fields.get("first_name"), fields.get("last_name")) if p)
    return full or fields.get("email")


def get_entity(entity_id: str) -> Entity | None:
    with get_conn() as conn:
        row = conn.execute("SELECT * FROM entities WHERE id = ?", (entity_id,)).fetchone()
        return _row_to_entity(row) if row else None


def get_by_external_id(record_type: str, external_id: str) -> Entity | None:
    """Look up a local record by its CRM id."""
    with get_conn() as conn:
        row = conn.execute(
            "SELECT * FROM entities WHERE record_type = ? AND external_id = ?",
            (record_type, external_id),
        ).fetchone()
        return _row_to_entity(row) if row else None


def create_local(record_type: str, scope: str, fields: dict[str, Any]) -> Entity:
    """Create a record that originated locally (not yet in the CRM)."""
    now = utc_now_iso()
    entity_id = generate_id()
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO entities (id, record_type, scope, name, data, source, local_updated_at, created_at)
            VALUES (?, ?, ?, ?, ?, 'local', ?, ?)
            """,
            (entity_id, record_type, scope, _display_name(record_type, fields), dumps(fields), now, now),
        )
    return get_entity(entity_id)


def create_from_external(
    record_type: str,
    scope: str,
    external_id: str,
    fields: dict[str, Any],
    external_updated_at: str | None,
) -> Entity:
    """Create a record pulled from the CRM; it starts in sync."""
    now = utc_now_iso()
    entity_id = generate_id()
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO entities (id, record_type, scope, external_id, name, data, source,
                                  external_updated_at, local_updated_at, last_synced_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, 'crm', ?, ?, ?, ?)
            """,
            (
                entity_id,
                record_type,
                scope,
                external_id,
                _display_name(record_type, fields),
                dumps(fields),
                external_updated_at,
                now,
                now,
                now,
            ),
        )
    return get_entity(entity_id)


def apply_external_update(entity_id: str, fields: dict[str, Any], external_updated_at: str | None) -> None:
    """Overwrite fields with the CRM copy and mark the record in sync."""
    now = utc_now_iso()
    with get_conn() as conn:
        row = conn.execute("SELECT record_type, data FROM entities WHERE id = ?", (entity_id,)).fetchone()
        if row is None:
            return
        merged = loads(row["data"], {})
        merged.update(fields)
        conn.execute(
            """
            UPDATE entities SET data = ?, name = ?, external_updated_at = ?,
                local_updated_at = ?, last_synced_at = ?
            WHERE id = ?
            """,
            (dumps(merged), _display_name(row["record_type"], merged), external_updated_at, now, now, entity_id),
        )


def update_fields(entity_id: str, fields: dict[str, Any]) -> bool:
    """Local edit: merge fields and mark the record as modified since last sync."""
    now = utc_now_iso()
    with get_conn() as conn:
        row = conn.execute("SELECT record_type, data FROM entities WHERE id = ?", (entity_id,)).fetchone()
        if row is None:
            return False
        merged = loads(row["data"], {})
        merged.update(fields)
        conn.execute(
            "UPDATE entities SET data = ?, name = ?, local_updated_at = ? WHERE id = ?",
            (dumps(merged), _display_name(row["record_type"], merged), now, entity_id),
        )
        return True


def mark_synced(entity_id: str, external_id: str | None, external_updated_at: str | None) -> None:
    """Record a successful push: the CRM now holds this version."""
    now = utc_now_iso()
    with get_conn() as conn:
        conn.execute(
            """
            UPDATE entities SET
                external_id = COALESCE(?, external_id),
                external_updated_at = COALESCE(?, external_updated_at),
                last_synced_at = ?,
                local_updated_at = CASE WHEN local_updated_at > ? THEN local_updated_at ELSE ? END
            WHERE id = ?
            """,
            (external_id, external_updated_at, now, now, now, entity_id),
        )


def _scope_filter(scope: str, record_type: str | None) -> tuple[str, list[Any]]:
    """WHERE clause for a scope: ``all`` is every record, ``person``/``company`` a record type, else a group."""
    sql = "1=1"
    params: list[Any] = []
    if scope in RECORD_TYPES:
        if record_type and record_type != scope:
            return "0", []
        record_type = scope
    elif scope != "all":
        sql += " AND scope = ?"
        params.append(scope)
    if record_type:
        sql += " AND record_type = ?"
        params.append(record_type)
    return sql, params


def list_pending_push(scope: str, record_type: str) -> list[Entity]:
    """Records in scope changed locally since their last sync, oldest change first."""
    where, params = _scope_filter(scope, record_type)
    with get_conn() as conn:
        rows = conn.execute(
            f"""
            SELECT * FROM entities
            WHERE {where}
              AND (last_synced_at IS NULL OR local_updated_at > last_synced_at)
            ORDER BY local_updated_at
            """,
            params,
        ).fetchall()
        return [_row_to_entity(r) for r in rows]


def list_entities(scope: str = "all", record_type: str | None = None, limit: int | None = None) -> list[Entity]:
    """List entities for a scope (``all``, a record type or a CRM group id), optionally by record type."""
    where, params = _scope_filter(scope, record_type)
    sql = f"SELECT * FROM entities WHERE {where} ORDER BY created_at, id"
    if limit:
        sql += " LIMIT ?"
        params.append(limit)
    with get_conn() as conn:
        return [_row_to_entity(r) for r in conn.execute(sql, params).fetchall()]
