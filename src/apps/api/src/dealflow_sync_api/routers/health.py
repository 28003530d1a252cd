"""Health check endpoint."""
from fastapi import APIRouter

from dealflow_sync_core.jobs import list_active_jobs

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Health check."""
    return {"status": "ok", "active_jobs": len(list_active_jobs())}
