"""Tests for the CRM client and its error classification."""
import httpx
import pytest

from dealflow_sync_core.crm import CrmClient
from dealflow_sync_core.util import (
    ConflictError,
    NetworkError,
    RateLimitError,
    UnrecoverableError,
    ValidationError,
)


def _client(handler) -> CrmClient:
    return CrmClient("https://crm.test", api_key="key", transport=httpx.MockTransport(handler))


def test_list_page_sends_cursor_and_group():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(
            200,
            json={"data": [{"id": "p1"}], "pagination": {"nextCursor": "c2", "hasMore": True}},
        )

    with _client(handler) as client:
        page = client.list_page("person", group_id="grp", cursor="c1", limit=10)
    assert seen["path"] == "/v1/people"
    assert seen["params"] == {"limit": "10", "cursor": "c1", "groupId": "grp"}
    assert seen["auth"] == "Bearer key"
    assert page.items == [{"id": "p1"}]
    assert page.next_cursor == "c2"
    assert page.has_more


def test_last_page_has_no_more():
    with _client(lambda r: httpx.Response(200, json={"data": [], "pagination": {}})) as client:
        page = client.list_page("company")
    assert not page.has_more


def test_create_adds_group():
    captured = {}

    def handler(request: httpx.Request):
        captured["body"] = request.read()
        return httpx.Response(201, json={"id": "c9"})

    with _client(handler) as client:
        assert client.create("company", {"name": "Acme"}, group_id="grp") == {"id": "c9"}
    assert b'"groups"' in captured["body"]


@pytest.mark.parametrize(
    "status,error",
    [
        (409, ConflictError),
        (401, UnrecoverableError),
        (403, UnrecoverableError),
        (500, NetworkError),
        (503, NetworkError),
        (422, ValidationError),
    ],
)
def test_error_classification(status, error):
    with _client(lambda r: httpx.Response(status, text="nope")) as client:
        with pytest.raises(error):
            client.update("person", "p1", {"firstName": "A"})


def test_rate_limit_carries_retry_after():
    with _client(lambda r: httpx.Response(429, headers={"Retry-After": "7"})) as client:
        with pytest.raises(RateLimitError) as exc:
            client.list_page("person")
    assert exc.value.retry_after == 7.0
    assert exc.value.retryable


def test_transport_failure_is_network_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with _client(handler) as client:
        with pytest.raises(NetworkError):
            client.list_page("person")


def test_connection_check_without_key():
    client = CrmClient("https://crm.test", api_key="")
    assert client.test_connection()["success"] is False
    client.close()
