"""Failed-record ledger."""
from dealflow_sync_core.ledger.models import ERROR_CODES, FailedRecord, FailedRecordPage
from dealflow_sync_core.ledger.repo import (
    record_failure,
    get_record,
    retry,
    dismiss,
    reopen,
    update_payload,
    list_open,
    list_records,
    count_open,
)

__all__ = [
    "ERROR_CODES",
    "FailedRecord",
    "FailedRecordPage",
    "record_failure",
    "get_record",
    "retry",
    "dismiss",
    "reopen",
    "update_payload",
    "list_open",
    "list_records",
    "count_open",
]
