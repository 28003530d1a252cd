"""ID generation utilities."""
import uuid


def generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def local_record_key(entity_id: str) -> str:
    """Ledger key for a local record that has no CRM id yet."""
    return f"local:{entity_id}"
