"""Utility modules."""
from dealflow_sync_core.util.ids import generate_id, local_record_key
from dealflow_sync_core.util.time import utc_now_iso, parse_timestamp, is_newer
from dealflow_sync_core.util.errors import (
    SyncError,
    NetworkError,
    ValidationError,
    ConflictError,
    RateLimitError,
    UnrecoverableError,
    AlreadyRunning,
    NotRunning,
    NotFound,
    classify,
)

__all__ = [
    "generate_id",
    "local_record_key",
    "utc_now_iso",
    "parse_timestamp",
    "is_newer",
    "SyncError",
    "NetworkError",
    "ValidationError",
    "ConflictError",
    "RateLimitError",
    "UnrecoverableError",
    "AlreadyRunning",
    "NotRunning",
    "NotFound",
    "classify",
]
