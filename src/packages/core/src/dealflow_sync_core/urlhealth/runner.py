"""URL health batch loop with confidence-gated auto-repair."""
import os
import time
from typing import Callable

import structlog
from pydantic import BaseModel

from dealflow_sync_core import entities, ledger
from dealflow_sync_core.jobs import JobHandle
from dealflow_sync_core.ledger import FailedRecord
from dealflow_sync_core.urlhealth import repo
from dealflow_sync_core.urlhealth.repair import RepairCandidate, propose_repair
from dealflow_sync_core.urlhealth.validator import BROKEN, UrlCheck, check_url

logger = structlog.get_logger()

JOB_KIND = "url_health"
DEFAULT_CONFIDENCE_THRESHOLD = 0.85


def default_threshold() -> float:
    return float(os.environ.get("URL_HEALTH_THRESHOLD", DEFAULT_CONFIDENCE_THRESHOLD))


class UrlTarget(BaseModel):
    """One URL field of one entity."""

    entity_id: str
    entity_type: str
    field_name: str
    url: str
    entity_name: str | None = None

    @property
    def key(self) -> str:
        return f"{self.entity_id}:{self.field_name}"


class UrlHealthSummary(BaseModel):
    valid_urls: int = 0
    broken_urls: int = 0
    repaired_urls: int = 0
    pending_review: int = 0
    errors: int = 0
    cancelled: bool = False


def collect_targets(scope: str = "all", limit: int | None = 1000) -> list[UrlTarget]:
    """URL fields of entities in scope (``all``, ``person``, ``company`` or a group id)."""
    targets = []
    for entity in entities.list_entities(scope):
        for field in entities.URL_FIELDS:
            url = entity.data.get(field)
            if isinstance(url, str) and url.strip():
                targets.append(
                    UrlTarget(
                        entity_id=entity.id,
                        entity_type=entity.record_type,
                        field_name=field,
                        url=url.strip(),
                        entity_name=entity.name,
                    )
                )
        if limit and len(targets) >= limit:
            return targets[:limit]
    return targets


def gate(candidate: RepairCandidate | None, threshold: float) -> bool:
    """Auto-apply only at or above the threshold."""
    return candidate is not None and candidate.confidence >= threshold


class UrlHealthRunner:
    """Checks targets one by one, updating job counters after each."""

    def __init__(
        self,
        handle: JobHandle | None = None,
        threshold: float | None = None,
        include_auto_fix: bool = True,
        checker: Callable[[str], UrlCheck] = check_url,
        repairer: Callable[[str], RepairCandidate | None] | None = None,
        pause: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.handle = handle
        self.threshold = default_threshold() if threshold is None else threshold
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError("confidence threshold must be within [0, 1]")
        self.include_auto_fix = include_auto_fix
        self.checker = checker
        self.repairer = repairer or (lambda url: propose_repair(url, probe=checker))
        self.pause = pause
        self._sleep = sleep

    @property
    def job_id(self) -> str | None:
        return self.handle.job_id if self.handle else None

    def process(self, target: UrlTarget) -> dict[str, int]:
        """Check (and maybe repair) one URL. Returns the counter increments."""
        check = self.checker(target.url)
        candidate = None
        applied = False
        if check.status == BROKEN and self.include_auto_fix:
            candidate = self.repairer(target.url)
            if gate(candidate, self.threshold):
                applied = entities.update_fields(target.entity_id, {target.field_name: candidate.url})
                if not applied:
                    logger.warning("url_repair_owner_missing", entity_id=target.entity_id)
        repo.save_check(
            self.job_id,
            target.entity_id,
            target.entity_type,
            target.field_name,
            target.url,
            check,
            candidate_url=candidate.url if candidate else None,
            confidence=candidate.confidence if candidate else None,
            applied=applied,
        )
        if check.status != BROKEN:
            return {"valid_urls": 1}
        if applied:
            logger.info(
                "url_repaired",
                entity_id=target.entity_id,
                field=target.field_name,
                url=target.url,
                repaired=candidate.url,
                confidence=candidate.confidence,
            )
            return {"broken_urls": 1, "repaired_urls": 1}
        return {"broken_urls": 1, "pending_review": 1}

    def run(self, targets: list[UrlTarget]) -> UrlHealthSummary:
        summary = UrlHealthSummary()
        if self.job_id:
            for t in targets:
                repo.register_pending(self.job_id, t.entity_id, t.entity_type, t.field_name, t.url)
        for i, target in enumerate(targets):
            if self.handle and self.handle.cancel_requested():
                summary.cancelled = True
                break
            try:
                counters = self.process(target)
            except Exception as e:
                summary.errors += 1
                ledger.record_failure(
                    self.job_id or "adhoc",
                    JOB_KIND,
                    "url",
                    target.key,
                    target.model_dump(),
                    e,
                    direction="check",
                    entity_id=target.entity_id,
                )
                if self.handle:
                    self.handle.report(failed=1)
                continue
            for name, amount in counters.items():
                setattr(summary, name, getattr(summary, name) + amount)
            if self.handle:
                self.handle.report(succeeded=1, **counters)
            if self.pause and i < len(targets) - 1:
                self._sleep(self.pause)
        return summary

    def retry_failed(self, record: FailedRecord) -> dict[str, int]:
        return self.process(UrlTarget(**record.payload))
