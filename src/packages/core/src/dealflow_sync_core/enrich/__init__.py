"""LLM-backed record enrichment."""
from dealflow_sync_core.enrich.llm import EnrichmentResult, LlmClient, get_llm_config
from dealflow_sync_core.enrich.runner import (
    ENRICHABLE_FIELDS,
    EnrichmentRunner,
    EnrichmentSummary,
    collect_candidates,
    missing_fields,
)

__all__ = [
    "EnrichmentResult",
    "LlmClient",
    "get_llm_config",
    "ENRICHABLE_FIELDS",
    "EnrichmentRunner",
    "EnrichmentSummary",
    "collect_candidates",
    "missing_fields",
]
