"""Failed-record models."""
from typing import Any

from pydantic import BaseModel, Field

ERROR_CODES = ("network", "validation", "rate_limit", "conflict", "unrecoverable", "unknown")


class FailedRecord(BaseModel):
    """One record's failure within a run."""

    id: str
    run_id: str
    job_kind: str
    record_type: str
    record_key: str
    external_id: str | None = None
    entity_id: str | None = None
    direction: str
    scope: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    error_code: str
    error_message: str | None = None
    retry_count: int = 0
    resolution: str | None = None
    resolved_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None


class FailedRecordPage(BaseModel):
    records: list[FailedRecord]
    total: int
    limit: int
    offset: int
