"""URL health validation and confidence-gated repair."""
from dealflow_sync_core.urlhealth.validator import (
    BROKEN,
    PENDING,
    REDIRECTED,
    VALID,
    UrlCheck,
    check_url,
    normalize_url,
)
from dealflow_sync_core.urlhealth.repair import RepairCandidate, propose_candidates, propose_repair
from dealflow_sync_core.urlhealth.repo import UrlHealthRecord, list_checks, url_health_stats
from dealflow_sync_core.urlhealth.runner import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    UrlHealthRunner,
    UrlHealthSummary,
    UrlTarget,
    collect_targets,
    default_threshold,
    gate,
)

__all__ = [
    "BROKEN",
    "PENDING",
    "REDIRECTED",
    "VALID",
    "UrlCheck",
    "check_url",
    "normalize_url",
    "RepairCandidate",
    "propose_candidates",
    "propose_repair",
    "UrlHealthRecord",
    "list_checks",
    "url_health_stats",
    "DEFAULT_CONFIDENCE_THRESHOLD",
    "UrlHealthRunner",
    "UrlHealthSummary",
    "UrlTarget",
    "collect_targets",
    "default_threshold",
    "gate",
]
