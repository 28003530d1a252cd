"""Enrichment batch: fill empty profile fields from an LLM lookup."""
import time
from typing import Any, Callable, Protocol

import structlog
from pydantic import BaseModel

from dealflow_sync_core import entities, ledger
from dealflow_sync_core.enrich.llm import EnrichmentResult
from dealflow_sync_core.jobs import JobHandle
from dealflow_sync_core.ledger import FailedRecord
from dealflow_sync_core.util import SyncError, UnrecoverableError, ValidationError, local_record_key
from dealflow_sync_core.util.backoff import call_with_backoff

logger = structlog.get_logger()

JOB_KIND = "enrichment"

ENRICHABLE_FIELDS = {
    "person": ("description", "title", "company", "linkedin_url", "twitter_url"),
    "company": ("description", "industry", "website", "linkedin_url", "employee_range", "foundation_year"),
}


class Enricher(Protocol):
    def enrich(self, record_type: str, fields: dict[str, Any], missing: list[str]) -> EnrichmentResult: ...


class EnrichmentSummary(BaseModel):
    enriched: int = 0
    unchanged: int = 0
    failed: int = 0
    cancelled: bool = False


def missing_fields(entity: entities.Entity) -> list[str]:
    wanted = ENRICHABLE_FIELDS.get(entity.record_type, ())
    return [f for f in wanted if entity.data.get(f) in (None, "")]


def collect_candidates(scope: str = "all", limit: int | None = 500) -> list[entities.Entity]:
    """Entities in scope with at least one empty enrichable field."""
    found = [e for e in entities.list_entities(scope) if missing_fields(e)]
    return found[:limit] if limit else found


class EnrichmentRunner:
    def __init__(
        self,
        enricher: Enricher,
        handle: JobHandle | None = None,
        max_rate_limit_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.enricher = enricher
        self.handle = handle
        self.max_rate_limit_retries = max_rate_limit_retries
        self._sleep = sleep

    def enrich_entity(self, entity: entities.Entity) -> bool:
        """Enrich one entity. Returns True if any field was filled."""
        missing = missing_fields(entity)
        if not missing:
            return False
        result = call_with_backoff(
            self.enricher.enrich,
            entity.record_type,
            entity.data,
            missing,
            max_retries=self.max_rate_limit_retries,
            sleep=self._sleep,
        )
        updates = {k: v for k, v in result.non_empty().items() if k in missing}
        if not updates:
            return False
        entities.update_fields(entity.id, updates)
        logger.info("entity_enriched", entity_id=entity.id, fields=sorted(updates))
        return True

    def run(self, candidates: list[entities.Entity]) -> EnrichmentSummary:
        summary = EnrichmentSummary()
        run_id = self.handle.job_id if self.handle else "adhoc"
        for entity in candidates:
            if self.handle and self.handle.cancel_requested():
                summary.cancelled = True
                break
            try:
                changed = self.enrich_entity(entity)
            except UnrecoverableError:
                raise
            except Exception as e:
                summary.failed += 1
                code = e.error_code if isinstance(e, SyncError) else "network"
                ledger.record_failure(
                    run_id,
                    JOB_KIND,
                    entity.record_type,
                    entity.external_id or local_record_key(entity.id),
                    {"entity_id": entity.id, "fields": entity.data},
                    e,
                    error_code=code,
                    direction="enrich",
                    external_id=entity.external_id,
                    entity_id=entity.id,
                    scope=entity.scope,
                )
                if self.handle:
                    self.handle.report(failed=1)
                continue
            if changed:
                summary.enriched += 1
                if self.handle:
                    self.handle.report(succeeded=1, enriched=1)
            else:
                summary.unchanged += 1
                if self.handle:
                    self.handle.report(succeeded=1)
        return summary

    def retry_failed(self, record: FailedRecord) -> bool:
        entity = entities.get_entity(record.entity_id) if record.entity_id else None
        if entity is None:
            raise ValidationError("Entity for failed enrichment no longer exists")
        return self.enrich_entity(entity)
