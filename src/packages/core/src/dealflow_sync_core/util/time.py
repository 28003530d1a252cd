"""Time utilities."""
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format an aware UTC datetime the way timestamps are stored."""
    return dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def utc_now_iso() -> str:
    """Get current UTC time in ISO format."""
    return format_iso(utc_now())


def parse_timestamp(value) -> datetime | None:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware UTC datetime.

    Returns None for empty or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_newer(candidate, reference) -> bool:
    """True when ``candidate`` is strictly later than ``reference``.

    A missing reference counts as older than any parseable candidate.
    """
    cand = parse_timestamp(candidate)
    if cand is None:
        return False
    ref = parse_timestamp(reference)
    return ref is None or cand > ref
