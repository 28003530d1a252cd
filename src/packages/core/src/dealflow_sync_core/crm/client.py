"""CRM (Folk-style people/companies API) client."""
import os
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field

from dealflow_sync_core.util import (
    ConflictError,
    NetworkError,
    RateLimitError,
    SyncError,
    UnrecoverableError,
    ValidationError,
)

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 15.0
PAGE_SIZE = 100

_COLLECTIONS = {"person": "people", "company": "companies"}


class Page(BaseModel):
    """One page of a paginated list call."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False


def _collection(record_type: str) -> str:
    try:
        return _COLLECTIONS[record_type]
    except KeyError:
        raise ValidationError(f"Unknown record type: {record_type}") from None


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def raise_for_response(response: httpx.Response, action: str) -> None:
    """Translate an error response into the sync error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    body = response.text[:300]
    message = f"{action}: HTTP {status} {body}".strip()
    if status == 429:
        raise RateLimitError(message, retry_after=_retry_after(response))
    if status == 409:
        raise ConflictError(message, status_code=status)
    if status in (401, 403):
        raise UnrecoverableError(message, status_code=status)
    if status >= 500 or status == 408:
        raise NetworkError(message, status_code=status)
    raise ValidationError(message, status_code=status)


class CrmClient:
    """Thin client over the CRM's list/create/update operations.

    Every call carries an explicit timeout. Transport failures surface as
    NetworkError; HTTP errors are classified by ``raise_for_response``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )
        self.configured = bool(api_key)

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method: str, path: str, action: str, **kwargs) -> dict[str, Any]:
        try:
            response = self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{action}: timeout ({e.__class__.__name__})") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{action}: {e}") from e
        raise_for_response(response, action)
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise ValidationError(f"{action}: response is not JSON") from e
        if not isinstance(data, dict):
            raise ValidationError(f"{action}: unexpected response shape")
        return data

    def list_page(
        self,
        record_type: str,
        group_id: str | None = None,
        cursor: str | None = None,
        limit: int = PAGE_SIZE,
    ) -> Page:
        """Fetch one page of people or companies, optionally within a group."""
        params: dict[str, Any] = {"limit": limit}
        if cursor:
            params["cursor"] = cursor
        if group_id and group_id != "all":
            params["groupId"] = group_id
        collection = _collection(record_type)
        data = self._request("GET", f"/v1/{collection}", f"list {collection}", params=params)
        pagination = data.get("pagination") or {}
        items = data.get("data") or []
        if not isinstance(items, list):
            raise ValidationError(f"list {collection}: 'data' is not a list")
        return Page(
            items=items,
            next_cursor=pagination.get("nextCursor"),
            has_more=bool(pagination.get("hasMore")) and bool(pagination.get("nextCursor")),
        )

    def create(self, record_type: str, body: dict[str, Any], group_id: str | None = None) -> dict[str, Any]:
        collection = _collection(record_type)
        payload = dict(body)
        if group_id and group_id != "all":
            payload.setdefault("groups", [{"id": group_id}])
        return self._request("POST", f"/v1/{collection}", f"create {record_type}", json=payload)

    def update(self, record_type: str, external_id: str, body: dict[str, Any]) -> dict[str, Any]:
        collection = _collection(record_type)
        return self._request("PATCH", f"/v1/{collection}/{external_id}", f"update {record_type}", json=body)

    def test_connection(self) -> dict[str, Any]:
        """Check credentials with a one-record list call."""
        if not self.configured:
            return {"success": False, "message": "CRM API key not configured"}
        try:
            self.list_page("person", limit=1)
        except SyncError as e:
            return {"success": False, "message": f"CRM API error: {e}"}
        return {"success": True, "message": "Connected to CRM successfully"}


def get_client(transport: httpx.BaseTransport | None = None) -> CrmClient:
    """Create a CRM client from environment variables."""
    url = os.environ.get("CRM_API_URL", "https://api.folk.app")
    api_key = os.environ.get("CRM_API_KEY", "")
    timeout = float(os.environ.get("CRM_TIMEOUT_SECONDS", DEFAULT_TIMEOUT))
    return CrmClient(url, api_key=api_key, timeout=timeout, transport=transport)
