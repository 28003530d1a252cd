"""Two-way reconciliation between the local entity store and the CRM.

Pull: page through the CRM in its own order and create / update / skip local
records (CRM modification time wins). Push: send records changed locally
since their last sync. Each record is processed inside its own error
boundary; a failure becomes a ledger row and never stops the batch. Only a
failed page fetch aborts the run (UnrecoverableError), and work already
applied is kept.
"""
import time
from typing import Any, Callable

import structlog
from pydantic import BaseModel, Field

from dealflow_sync_core import entities, ledger
from dealflow_sync_core.crm import CrmClient
from dealflow_sync_core.jobs import JobHandle
from dealflow_sync_core.ledger import FailedRecord
from dealflow_sync_core.sync import mapper
from dealflow_sync_core.util import (
    ConflictError,
    SyncError,
    UnrecoverableError,
    ValidationError,
    is_newer,
    local_record_key,
)
from dealflow_sync_core.util.backoff import call_with_backoff

logger = structlog.get_logger()

JOB_KIND = "crm_sync"
CREATED = "created"
UPDATED = "updated"
SKIPPED = "skipped"


class SyncErrorEntry(BaseModel):
    type: str
    id: str
    error: str
    code: str


class SyncResult(BaseModel):
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[SyncErrorEntry] = Field(default_factory=list)

    def merge(self, other: "SyncResult") -> "SyncResult":
        return SyncResult(
            created=self.created + other.created,
            updated=self.updated + other.updated,
            skipped=self.skipped + other.skipped,
            errors=[*self.errors, *other.errors],
        )


class FullSyncResult(BaseModel):
    pull: SyncResult = Field(default_factory=SyncResult)
    push: SyncResult = Field(default_factory=SyncResult)
    cancelled: bool = False

    @property
    def total(self) -> SyncResult:
        return self.pull.merge(self.push)


class Cancelled(Exception):
    """Raised internally when the job's cancel flag is seen at a checkpoint."""


class Reconciler:
    """Drives one sync pass for a scope (a CRM group id, or ``all``)."""

    def __init__(
        self,
        client: CrmClient,
        scope: str,
        handle: JobHandle | None = None,
        record_types: tuple[str, ...] = entities.RECORD_TYPES,
        max_rate_limit_retries: int = 3,
        base_backoff: float = 2.0,
        max_backoff: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.scope = scope
        self.handle = handle
        self.record_types = record_types
        self.max_rate_limit_retries = max_rate_limit_retries
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self._sleep = sleep

    @property
    def run_id(self) -> str:
        return self.handle.job_id if self.handle else "adhoc"

    # -- external calls -------------------------------------------------

    def _call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Call the CRM, backing off on rate limits before giving up."""
        return call_with_backoff(
            fn,
            *args,
            max_retries=self.max_rate_limit_retries,
            base_delay=self.base_backoff,
            max_delay=self.max_backoff,
            sleep=self._sleep,
            **kwargs,
        )

    def _checkpoint(self) -> None:
        if self.handle and self.handle.cancel_requested():
            raise Cancelled()

    def _report(self, outcome: str | None) -> None:
        if not self.handle:
            return
        if outcome is None:
            self.handle.report(failed=1)
        else:
            self.handle.report(succeeded=1, **{outcome: 1})

    def _fail(
        self,
        result: SyncResult,
        record_type: str,
        record_key: str,
        payload: dict[str, Any],
        error: Exception,
        direction: str,
        external_id: str | None = None,
        entity_id: str | None = None,
    ) -> None:
        code = error.error_code if isinstance(error, SyncError) else "network"
        ledger.record_failure(
            self.run_id,
            JOB_KIND,
            record_type,
            record_key,
            payload,
            error,
            error_code=code,
            direction=direction,
            external_id=external_id,
            entity_id=entity_id,
            scope=self.scope,
        )
        result.errors.append(SyncErrorEntry(type=record_type, id=record_key, error=str(error)[:300], code=code))
        self._report(None)

    # -- single-record paths (also used by ledger retry) -----------------

    def apply_pulled(self, record_type: str, raw: dict[str, Any]) -> str:
        """Apply one CRM record locally. Returns created / updated / skipped."""
        mapped = mapper.from_external(record_type, raw)
        local = entities.get_by_external_id(record_type, mapped.external_id)
        if local is None:
            entities.create_from_external(
                record_type, self.scope, mapped.external_id, mapped.fields, mapped.modified_at
            )
            return CREATED
        if mapped.modified_at is not None and local.external_updated_at is not None:
            newer = is_newer(mapped.modified_at, local.external_updated_at)
        else:
            # no marker on one side: CRM copy is authoritative, write only on change
            newer = mapper.fields_differ(local.data, mapped.fields) or (
                mapped.modified_at is not None and local.external_updated_at is None
            )
        if not newer:
            return SKIPPED
        entities.apply_external_update(local.id, mapped.fields, mapped.modified_at)
        return UPDATED

    def push_entity(self, entity: entities.Entity, body: dict[str, Any] | None = None) -> str:
        """Send one local record to the CRM. Returns created / updated."""
        if body is None:
            body = mapper.to_external(entity.record_type, entity.data)
        if entity.external_id:
            response = self._call(self.client.update, entity.record_type, entity.external_id, body)
            entities.mark_synced(entity.id, None, response.get("updatedAt"))
            return UPDATED
        response = self._call(self.client.create, entity.record_type, body, self.scope)
        external_id = response.get("id")
        if not external_id:
            raise ValidationError("CRM create returned no id")
        entities.mark_synced(entity.id, str(external_id), response.get("updatedAt"))
        return CREATED

    # -- phases -----------------------------------------------------------

    def _fetch_page(self, record_type: str, cursor: str | None, first: bool):
        try:
            return self._call(self.client.list_page, record_type, self.scope, cursor)
        except SyncError as e:
            where = "initial page" if first else "next page"
            raise UnrecoverableError(f"Cannot fetch {where} of {record_type} records: {e}") from e

    def pull(self, record_type: str, result: SyncResult | None = None) -> SyncResult:
        """Page through the CRM. Counts accumulate into ``result`` so a cancelled run keeps them."""
        result = result if result is not None else SyncResult()
        cursor = None
        first = True
        while True:
            self._checkpoint()
            page = self._fetch_page(record_type, cursor, first)
            first = False
            if self.handle:
                self.handle.add_total(len(page.items))
            for raw in page.items:
                self._checkpoint()
                ext_id = str(raw.get("id")) if isinstance(raw, dict) and raw.get("id") else None
                try:
                    outcome = self.apply_pulled(record_type, raw)
                except Exception as e:
                    key = ext_id or f"{record_type}:row:{result.created + result.updated + result.skipped + len(result.errors)}"
                    payload = raw if isinstance(raw, dict) else {"raw": raw}
                    self._fail(result, record_type, key, payload, e, "pull", external_id=ext_id)
                    continue
                setattr(result, outcome, getattr(result, outcome) + 1)
                self._report(outcome)
            if not page.has_more:
                break
            cursor = page.next_cursor
        logger.info("pull_finished", scope=self.scope, record_type=record_type, **result.model_dump(exclude={"errors"}))
        return result

    def push(self, record_type: str, result: SyncResult | None = None) -> SyncResult:
        result = result if result is not None else SyncResult()
        pending = entities.list_pending_push(self.scope, record_type)
        if self.handle:
            self.handle.add_total(len(pending))
        for entity in pending:
            self._checkpoint()
            key = entity.external_id or local_record_key(entity.id)
            try:
                body = mapper.to_external(entity.record_type, entity.data)
                outcome = self.push_entity(entity, body)
            except ConflictError as e:
                # the record already exists on the CRM side
                entities.mark_synced(entity.id, None, None)
                result.skipped += 1
                result.errors.append(SyncErrorEntry(type=record_type, id=key, error=f"skipped: {e}"[:300], code="conflict"))
                self._report(SKIPPED)
                continue
            except UnrecoverableError:
                raise
            except Exception as e:
                self._fail(
                    result,
                    record_type,
                    key,
                    dict(entity.data),
                    e,
                    "push",
                    external_id=entity.external_id,
                    entity_id=entity.id,
                )
                continue
            setattr(result, outcome, getattr(result, outcome) + 1)
            self._report(outcome)
        logger.info("push_finished", scope=self.scope, record_type=record_type, **result.model_dump(exclude={"errors"}))
        return result

    def run(self, direction: str = "both") -> FullSyncResult:
        """Pull then push for every record type. Stops early on cancellation."""
        full = FullSyncResult()
        try:
            if direction in ("both", "pull"):
                for record_type in self.record_types:
                    self.pull(record_type, full.pull)
            if direction in ("both", "push"):
                for record_type in self.record_types:
                    self.push(record_type, full.push)
        except Cancelled:
            full.cancelled = True
            logger.info("sync_cancelled", scope=self.scope, run_id=self.run_id)
        return full

    # -- retry --------------------------------------------------------------

    def retry_failed(self, record: FailedRecord) -> str:
        """Re-run the single-record path for a ledger entry using its stored payload."""
        if record.direction == "push":
            if not record.entity_id:
                raise ValidationError("Failed push record has no entity id")
            entity = entities.get_entity(record.entity_id)
            if entity is None:
                raise ValidationError(f"Entity {record.entity_id} no longer exists")
            if record.payload and mapper.fields_differ(entity.data, record.payload):
                entities.update_fields(entity.id, record.payload)
                entity = entities.get_entity(entity.id)
            try:
                return self.push_entity(entity)
            except ConflictError:
                entities.mark_synced(entity.id, None, None)
                return SKIPPED
        return self.apply_pulled(record.record_type, record.payload)
