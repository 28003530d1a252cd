"""Tests for time helpers and backoff."""
import pytest

from dealflow_sync_core.util import NetworkError, RateLimitError, classify, is_newer, parse_timestamp
from dealflow_sync_core.util.backoff import call_with_backoff


def test_parse_timestamp_handles_z_suffix():
    assert parse_timestamp("2024-05-01T10:00:00Z") == parse_timestamp("2024-05-01T10:00:00+00:00")
    assert parse_timestamp("not a date") is None
    assert parse_timestamp("") is None


def test_is_newer():
    assert is_newer("2024-05-02T00:00:00Z", "2024-05-01T00:00:00Z")
    assert not is_newer("2024-05-01T00:00:00Z", "2024-05-01T00:00:00Z")
    assert is_newer("2024-05-01T00:00:00Z", None)
    assert not is_newer(None, "2024-05-01T00:00:00Z")


def test_backoff_is_capped():
    delays = []

    def always_limited():
        raise RateLimitError("slow")

    with pytest.raises(RateLimitError):
        call_with_backoff(always_limited, max_retries=4, base_delay=10, max_delay=30, sleep=delays.append)
    assert delays == [10, 20, 30, 30]


def test_retry_after_is_capped_and_returns_result():
    delays = []
    responses = [RateLimitError("slow", retry_after=120), RateLimitError("slow", retry_after=5)]

    def flaky():
        if responses:
            raise responses.pop(0)
        return "ok"

    assert call_with_backoff(flaky, max_delay=30, sleep=delays.append) == "ok"
    assert delays == [30, 5]


def test_zero_retries_raises_immediately():
    delays = []

    def always_limited():
        raise RateLimitError("slow")

    with pytest.raises(RateLimitError):
        call_with_backoff(always_limited, max_retries=0, sleep=delays.append)
    assert delays == []


def test_other_errors_are_not_retried():
    delays = []

    def broken():
        raise NetworkError("down")

    with pytest.raises(NetworkError):
        call_with_backoff(broken, sleep=delays.append)
    assert delays == []


def test_classify():
    assert classify(RateLimitError("x")) == "rate_limit"
    assert classify(KeyError("x")) == "unknown"
