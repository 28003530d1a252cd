"""Failed-record triage endpoints."""
from typing import Any, Literal

import structlog
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from dealflow_sync_api.settings import get_settings
from dealflow_sync_core import ledger
from dealflow_sync_core.util import NotFound
from dealflow_sync_worker.tasks import retry_failed_record

router = APIRouter(prefix="/failed-records", tags=["failed-records"])
logger = structlog.get_logger()


class PayloadUpdate(BaseModel):
    """Corrected payload to store before retrying."""

    payload: dict[str, Any]


@router.get("")
def list_failed_records(
    type: str | None = None,
    status: Literal["open", "resolved", "all"] = "open",
    error_code: str | None = None,
    run_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
):
    """List failed records, newest first."""
    if error_code and error_code not in ledger.ERROR_CODES:
        raise HTTPException(status_code=400, detail=f"Unknown error code: {error_code}")
    limit = max(1, min(limit, get_settings().max_page_size))
    page = ledger.list_records(
        status=None if status == "all" else status,
        record_type=type,
        error_code=error_code,
        run_id=run_id,
        limit=limit,
        offset=max(0, offset),
    )
    return page.model_dump()


@router.get("/{record_id}")
def get_failed_record(record_id: str):
    record = ledger.get_record(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Failed record not found")
    return record.model_dump()


@router.post("/{record_id}/retry")
def retry_record(record_id: str):
    """Reprocess one record; it stays open (with retry_count bumped) if it fails again."""
    try:
        record = retry_failed_record(record_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from None
    return {"success": not record.is_open, "record": record.model_dump()}


@router.delete("/{record_id}")
def dismiss_record(record_id: str):
    """Resolve a record without reprocessing it."""
    try:
        record = ledger.dismiss(record_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from None
    return record.model_dump()


@router.post("/{record_id}/reopen")
def reopen_record(record_id: str):
    try:
        record = ledger.reopen(record_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from None
    return record.model_dump()


@router.patch("/{record_id}")
def update_record_payload(record_id: str, body: PayloadUpdate):
    """Correct the stored payload of an open record."""
    try:
        record = ledger.update_payload(record_id, body.payload)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from None
    logger.info("failed_record_payload_updated", record_id=record_id)
    return record.model_dump()
