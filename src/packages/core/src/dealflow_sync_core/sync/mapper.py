"""Translate between local entity fields and CRM people/company records.

Pure functions, no I/O. Malformed input raises ValidationError.
"""
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from dealflow_sync_core.util import ValidationError, parse_timestamp


class MappedRecord(BaseModel):
    """A CRM record in internal shape."""

    record_type: str
    external_id: str
    fields: dict[str, Any] = Field(default_factory=dict)
    modified_at: str | None = None


def _first_value(items: Any) -> str | None:
    """First ``value`` of a CRM list field (``[{"value": ...}]`` or ``["..."]``)."""
    if not items:
        return None
    if not isinstance(items, list):
        raise ValidationError(f"Expected a list, got {type(items).__name__}")
    head = items[0]
    if isinstance(head, dict):
        value = head.get("value")
    else:
        value = head
    if value is None:
        return None
    return str(value).strip() or None


def _url_for(urls: list[str], *hosts: str) -> str | None:
    """First URL whose host is one of ``hosts`` (or a subdomain of one)."""
    for u in urls:
        host = (urlparse(u if "://" in u else f"https://{u}").hostname or "").lower()
        if any(host == h or host.endswith("." + h) for h in hosts):
            return u
    return None


def _clean(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if v not in (None, "", [])}


def _external_id(raw: dict[str, Any]) -> str:
    ext_id = raw.get("id")
    if ext_id is None or str(ext_id).strip() == "":
        raise ValidationError("CRM record has no id")
    return str(ext_id)


def _modified_at(raw: dict[str, Any]) -> str | None:
    value = raw.get("updatedAt")
    if value in (None, ""):
        return None
    if parse_timestamp(value) is None:
        raise ValidationError(f"Unparseable updatedAt: {value!r}")
    return str(value)


def person_from_external(raw: dict[str, Any]) -> MappedRecord:
    """Map a CRM person to internal investor fields."""
    if not isinstance(raw, dict):
        raise ValidationError("CRM person must be an object")
    ext_id = _external_id(raw)
    first = raw.get("firstName")
    last = raw.get("lastName")
    full = (raw.get("fullName") or raw.get("name") or "").strip()
    if not first and full:
        first = full.split(" ")[0]
    if not last and full and " " in full:
        last = " ".join(full.split(" ")[1:])
    urls = [str(u) for u in (raw.get("urls") or []) if u]
    fields = {
        "first_name": first,
        "last_name": last,
        "email": _first_value(raw.get("emails")),
        "phone": _first_value(raw.get("phones")),
        "title": raw.get("jobTitle"),
        "company": raw.get("company"),
        "description": raw.get("description"),
        "linkedin_url": raw.get("linkedinUrl") or _url_for(urls, "linkedin.com"),
        "twitter_url": _url_for(urls, "twitter.com", "x.com"),
    }
    fields = _clean(fields)
    if not fields.get("first_name") and not fields.get("email"):
        raise ValidationError(f"Person {ext_id} has neither a name nor an email")
    return MappedRecord(record_type="person", external_id=ext_id, fields=fields, modified_at=_modified_at(raw))


def company_from_external(raw: dict[str, Any]) -> MappedRecord:
    """Map a CRM company to internal firm fields."""
    if not isinstance(raw, dict):
        raise ValidationError("CRM company must be an object")
    ext_id = _external_id(raw)
    name = (raw.get("name") or "").strip()
    if not name:
        raise ValidationError(f"Company {ext_id} has no name")
    urls = [str(u) for u in (raw.get("urls") or []) if u]
    website = raw.get("domain") or next((u for u in urls if "linkedin.com" not in u.lower()), None)
    if website and "://" not in website:
        website = f"https://{website}"
    fields = {
        "name": name,
        "description": raw.get("description"),
        "industry": raw.get("industry"),
        "website": website,
        "linkedin_url": raw.get("linkedinUrl") or _url_for(urls, "linkedin.com"),
        "employee_range": raw.get("employeeRange") or raw.get("size"),
        "foundation_year": raw.get("foundationYear"),
        "email": _first_value(raw.get("emails")),
        "phone": _first_value(raw.get("phones")),
    }
    return MappedRecord(record_type="company", external_id=ext_id, fields=_clean(fields), modified_at=_modified_at(raw))


def person_to_external(fields: dict[str, Any]) -> dict[str, Any]:
    """Map internal investor fields to a CRM person body."""
    first = fields.get("first_name")
    last = fields.get("last_name")
    full = " ".join(p for p in (first, last) if p).strip()
    if not full and not fields.get("email"):
        raise ValidationError("Person needs a name or an email")
    urls = [u for u in (fields.get("linkedin_url"), fields.get("twitter_url"), fields.get("website")) if u]
    body = {
        "firstName": first,
        "lastName": last,
        "fullName": full or None,
        "description": fields.get("description"),
        "jobTitle": fields.get("title"),
        "emails": [fields["email"]] if fields.get("email") else None,
        "phones": [fields["phone"]] if fields.get("phone") else None,
        "urls": urls or None,
    }
    return {k: v for k, v in body.items() if v is not None}


def company_to_external(fields: dict[str, Any]) -> dict[str, Any]:
    """Map internal firm fields to a CRM company body."""
    name = (fields.get("name") or "").strip()
    if not name:
        raise ValidationError("Company needs a name")
    urls = [u for u in (fields.get("website"), fields.get("linkedin_url")) if u]
    body = {
        "name": name,
        "description": fields.get("description"),
        "industry": fields.get("industry"),
        "foundationYear": fields.get("foundation_year"),
        "employeeRange": fields.get("employee_range"),
        "emails": [fields["email"]] if fields.get("email") else None,
        "phones": [fields["phone"]] if fields.get("phone") else None,
        "urls": urls or None,
    }
    return {k: v for k, v in body.items() if v is not None}


_FROM_EXTERNAL = {"person": person_from_external, "company": company_from_external}
_TO_EXTERNAL = {"person": person_to_external, "company": company_to_external}


def from_external(record_type: str, raw: dict[str, Any]) -> MappedRecord:
    try:
        mapper = _FROM_EXTERNAL[record_type]
    except KeyError:
        raise ValidationError(f"Unknown record type: {record_type}") from None
    return mapper(raw)


def to_external(record_type: str, fields: dict[str, Any]) -> dict[str, Any]:
    try:
        mapper = _TO_EXTERNAL[record_type]
    except KeyError:
        raise ValidationError(f"Unknown record type: {record_type}") from None
    return mapper(fields)


def fields_differ(local: dict[str, Any], incoming: dict[str, Any]) -> bool:
    """True if applying ``incoming`` would change any local field."""
    return any(local.get(k) != v for k, v in incoming.items())
