"""Tests for CRM record mapping."""
import pytest

from dealflow_sync_core.sync.mapper import (
    company_from_external,
    company_to_external,
    fields_differ,
    from_external,
    person_from_external,
    person_to_external,
)
from dealflow_sync_core.util import ValidationError


def test_person_from_external():
    mapped = person_from_external(
        {
            "id": "per_1",
            "firstName": "Ada",
            "lastName": "Lovelace",
            "emails": [{"value": "ada@example.com"}],
            "jobTitle": "Partner",
            "urls": ["https://box.com/ada", "https://x.com/ada", "https://www.linkedin.com/in/ada"],
            "updatedAt": "2024-05-01T10:00:00Z",
        }
    )
    assert mapped.external_id == "per_1"
    assert mapped.modified_at == "2024-05-01T10:00:00Z"
    assert mapped.fields == {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "title": "Partner",
        "linkedin_url": "https://www.linkedin.com/in/ada",
        "twitter_url": "https://x.com/ada",
    }


def test_person_full_name_is_split():
    mapped = person_from_external({"id": "p", "fullName": "Grace Brewster Hopper"})
    assert mapped.fields["first_name"] == "Grace"
    assert mapped.fields["last_name"] == "Brewster Hopper"


def test_person_without_name_or_email_is_invalid():
    with pytest.raises(ValidationError):
        person_from_external({"id": "p", "jobTitle": "Partner"})


def test_missing_id_is_invalid():
    with pytest.raises(ValidationError):
        person_from_external({"firstName": "Ada"})


def test_bad_timestamp_is_invalid():
    with pytest.raises(ValidationError):
        company_from_external({"id": "c", "name": "Acme", "updatedAt": "yesterday"})


def test_emails_must_be_a_list():
    with pytest.raises(ValidationError):
        person_from_external({"id": "p", "firstName": "Ada", "emails": "ada@example.com"})


def test_company_from_external_adds_scheme_to_domain():
    mapped = company_from_external({"id": "c1", "name": "Acme Ventures", "domain": "acme.vc"})
    assert mapped.fields["website"] == "https://acme.vc"
    assert mapped.modified_at is None


def test_company_without_name_is_invalid():
    with pytest.raises(ValidationError):
        company_from_external({"id": "c1", "name": "  "})


def test_unknown_record_type():
    with pytest.raises(ValidationError):
        from_external("deal", {"id": "d"})


def test_person_to_external():
    body = person_to_external(
        {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com", "linkedin_url": "https://l/in/ada"}
    )
    assert body == {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "fullName": "Ada Lovelace",
        "emails": ["ada@example.com"],
        "urls": ["https://l/in/ada"],
    }


def test_company_to_external_requires_name():
    with pytest.raises(ValidationError):
        company_to_external({"website": "https://acme.vc"})


def test_fields_differ():
    local = {"name": "Acme", "website": "https://acme.vc"}
    assert not fields_differ(local, {"name": "Acme"})
    assert fields_differ(local, {"name": "Acme Capital"})
    assert fields_differ(local, {"industry": "VC"})
