"""Job models."""
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class JobKind(str, Enum):
    ENRICHMENT = "enrichment"
    URL_HEALTH = "url_health"
    CRM_SYNC = "crm_sync"


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATES = (JobState.PENDING.value, JobState.RUNNING.value)
TERMINAL_STATES = (JobState.COMPLETED.value, JobState.FAILED.value, JobState.CANCELLED.value)


class ProgressDelta(BaseModel):
    """Increment applied to a job's counters in a single update."""

    succeeded: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    counters: dict[str, int] = Field(default_factory=dict)

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed


class JobStatus(BaseModel):
    """Job snapshot returned to pollers."""

    job_id: str
    kind: str
    scope: str
    status: str
    total_records: int
    processed: int
    succeeded: int
    failed: int
    counters: dict[str, int] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] | None = None
    error_message: str | None = None
    cancel_requested: bool = False
    created_at: str | None = None
    started_at: str | None = None
    updated_at: str | None = None
    completed_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES
