"""Tests for LLM enrichment."""
import httpx
import pytest

from dealflow_sync_core import entities, ledger
from dealflow_sync_core.enrich import EnrichmentResult, EnrichmentRunner, LlmClient, collect_candidates, missing_fields
from dealflow_sync_core.enrich.llm import _extract_json
from dealflow_sync_core.jobs import start_job
from dealflow_sync_core.util import RateLimitError, UnrecoverableError, ValidationError


class StubEnricher:
    def __init__(self, result=None, error=None):
        self.result = result or EnrichmentResult()
        self.error = error
        self.calls = []

    def enrich(self, record_type, fields, missing):
        self.calls.append((record_type, missing))
        if self.error:
            raise self.error
        return self.result


def test_only_missing_fields_are_filled():
    firm = entities.create_local("company", "all", {"name": "Acme", "industry": "Fintech"})
    stub = StubEnricher(EnrichmentResult(industry="Biotech", description="Seed fund", foundation_year=2015))

    assert EnrichmentRunner(stub).enrich_entity(firm) is True

    data = entities.get_entity(firm.id).data
    assert data["industry"] == "Fintech"
    assert data["description"] == "Seed fund"
    assert data["foundation_year"] == 2015
    assert "industry" not in stub.calls[0][1]


def test_complete_entities_are_not_candidates():
    full = {f: "x" for f in ("description", "industry", "website", "linkedin_url", "employee_range", "foundation_year")}
    entities.create_local("company", "all", {"name": "Done", **full})
    partial = entities.create_local("company", "all", {"name": "Partial"})
    assert [e.id for e in collect_candidates("all")] == [partial.id]
    assert "website" in missing_fields(partial)


def test_run_counts_and_isolates_failures():
    entities.create_local("company", "all", {"name": "A"})
    entities.create_local("company", "all", {"name": "B"})
    handle = start_job("enrichment", "all")
    stub = StubEnricher(error=ValidationError("model returned junk"))

    summary = EnrichmentRunner(stub, handle=handle).run(collect_candidates("all"))

    assert summary.failed == 2
    assert ledger.count_open(run_id=handle.job_id) == 2
    assert ledger.list_open()[0].error_code == "validation"
    assert handle.snapshot().failed == 2


def test_empty_answer_is_unchanged():
    entities.create_local("person", "all", {"first_name": "Ada"})
    summary = EnrichmentRunner(StubEnricher()).run(collect_candidates("all"))
    assert (summary.enriched, summary.unchanged) == (0, 1)


def test_rate_limit_is_retried():
    firm = entities.create_local("company", "all", {"name": "Acme"})

    class Flaky(StubEnricher):
        def enrich(self, record_type, fields, missing):
            if not self.calls:
                self.calls.append("limited")
                raise RateLimitError("slow", retry_after=3)
            return EnrichmentResult(description="VC")

    delays = []
    assert EnrichmentRunner(Flaky(), sleep=delays.append).enrich_entity(firm)
    assert delays == [3]


def test_unrecoverable_error_stops_the_run():
    entities.create_local("company", "all", {"name": "Acme"})
    with pytest.raises(UnrecoverableError):
        EnrichmentRunner(StubEnricher(error=UnrecoverableError("bad key"))).run(collect_candidates("all"))


def test_retry_failed_record():
    firm = entities.create_local("company", "all", {"name": "Acme"})
    EnrichmentRunner(StubEnricher(error=ValidationError("junk"))).run([firm])
    record = ledger.list_open()[0]

    runner = EnrichmentRunner(StubEnricher(EnrichmentResult(description="Growth fund")))
    assert not ledger.retry(record.id, runner.retry_failed).is_open
    assert entities.get_entity(firm.id).data["description"] == "Growth fund"


def test_extract_json_from_fenced_block():
    assert _extract_json('```json\n{"industry": "VC"}\n```') == {"industry": "VC"}
    with pytest.raises(ValidationError):
        _extract_json("no json here")


def test_ollama_client_parses_structured_output():
    def handler(request):
        assert request.url.path == "/api/chat"
        return httpx.Response(200, json={"message": {"content": '{"description": "Angel investor", "extra": 1}'}})

    config = {
        "provider": "ollama",
        "gemini_api_key": "",
        "gemini_model": "unused",
        "ollama_url": "http://ollama.test",
        "ollama_model": "llama3.2",
    }
    client = LlmClient(config=config, transport=httpx.MockTransport(handler))
    result = client.enrich("person", {"first_name": "Ada"}, ["description"])
    client.close()
    assert result.non_empty() == {"description": "Angel investor"}
    assert client.model_name == "ollama/llama3.2"


def test_gemini_without_key_aborts_the_run():
    config = {"provider": "gemini", "gemini_api_key": "", "gemini_model": "m", "ollama_url": "", "ollama_model": ""}
    client = LlmClient(config=config)
    with pytest.raises(UnrecoverableError):
        client.enrich("company", {"name": "Acme"}, ["industry"])

    for i in range(3):
        entities.create_local("company", "all", {"name": f"Firm{i}"})
    with pytest.raises(UnrecoverableError):
        EnrichmentRunner(client).run(collect_candidates("all"))
    assert ledger.count_open() == 0
    client.close()
