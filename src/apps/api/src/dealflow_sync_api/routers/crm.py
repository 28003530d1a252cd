"""CRM connection endpoint."""
from fastapi import APIRouter

from dealflow_sync_core.crm import get_client

router = APIRouter(prefix="/crm", tags=["crm"])


@router.get("/test")
def test_connection():
    """Check that the configured CRM credentials work."""
    with get_client() as client:
        return client.test_connection()
