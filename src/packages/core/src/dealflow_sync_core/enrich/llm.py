"""Hosted LLM lookup with a structured (JSON) output contract."""
import json
import os
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from dealflow_sync_core.crm.client import raise_for_response
from dealflow_sync_core.util import NetworkError, UnrecoverableError, ValidationError

logger = structlog.get_logger()


def get_llm_config() -> dict[str, str]:
    """Get LLM configuration from environment variables."""
    return {
        "provider": os.getenv("LLM_PROVIDER", "gemini"),
        "gemini_api_key": os.getenv("GEMINI_API_KEY", ""),
        "gemini_model": os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
        "ollama_url": os.getenv("OLLAMA_URL", "http://ollama:11434"),
        "ollama_model": os.getenv("OLLAMA_MODEL", "llama3.2"),
    }


class EnrichmentResult(BaseModel):
    """Fields the model may fill in. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    description: str | None = None
    industry: str | None = None
    title: str | None = None
    company: str | None = None
    website: str | None = None
    linkedin_url: str | None = None
    twitter_url: str | None = None
    employee_range: str | None = None
    foundation_year: int | None = None

    def non_empty(self) -> dict[str, Any]:
        return {k: v for k, v in self.model_dump().items() if v not in (None, "")}


def build_prompt(record_type: str, fields: dict[str, Any], missing: list[str]) -> str:
    known = {k: v for k, v in fields.items() if v not in (None, "")}
    kind = "investment firm" if record_type == "company" else "investor"
    return f"""You are enriching a CRM record for an {kind}.

KNOWN FIELDS (JSON):
{json.dumps(known, sort_keys=True)}

Return ONLY a JSON object with these keys when you are confident of the value: {", ".join(missing)}.
Omit any key you are not sure about. Do not invent URLs."""


def _extract_json(text: str) -> dict[str, Any]:
    text = (text or "").strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise ValidationError("LLM response contains no JSON object")
    try:
        data = json.loads(text[start : end + 1])
    except ValueError as e:
        raise ValidationError(f"LLM response is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError("LLM response is not a JSON object")
    return data


class LlmClient:
    """One request/response call per record."""

    def __init__(
        self,
        config: dict[str, str] | None = None,
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.config = config or get_llm_config()
        self._http = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._http.close()

    @property
    def model_name(self) -> str:
        if self.config["provider"] == "ollama":
            return f"ollama/{self.config['ollama_model']}"
        return f"gemini/{self.config['gemini_model']}"

    def _post(self, url: str, action: str, **kwargs) -> dict[str, Any]:
        try:
            response = self._http.post(url, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{action}: timeout") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{action}: {e}") from e
        raise_for_response(response, action)
        try:
            return response.json()
        except ValueError as e:
            raise ValidationError(f"{action}: response is not JSON") from e

    def _call_gemini(self, prompt: str) -> str:
        api_key = self.config["gemini_api_key"]
        if not api_key:
            raise UnrecoverableError("GEMINI_API_KEY not configured")
        model = self.config["gemini_model"]
        data = self._post(
            f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
            "gemini",
            params={"key": api_key},
            json={
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {"temperature": 0.2, "responseMimeType": "application/json"},
            },
        )
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error("gemini_parse_error", error=str(e))
            raise ValidationError("Failed to parse Gemini response") from e

    def _call_ollama(self, prompt: str) -> str:
        data = self._post(
            f"{self.config['ollama_url']}/api/chat",
            "ollama",
            json={
                "model": self.config["ollama_model"],
                "messages": [{"role": "user", "content": prompt}],
                "stream": False,
                "format": "json",
                "options": {"temperature": 0.2},
            },
        )
        return (data.get("message") or {}).get("content", "")

    def enrich(self, record_type: str, fields: dict[str, Any], missing: list[str]) -> EnrichmentResult:
        prompt = build_prompt(record_type, fields, missing)
        if self.config["provider"] == "ollama":
            text = self._call_ollama(prompt)
        else:
            text = self._call_gemini(prompt)
        try:
            return EnrichmentResult(**_extract_json(text))
        except PydanticValidationError as e:
            raise ValidationError(f"LLM output failed validation: {e.error_count()} errors") from e
