"""URL health endpoints."""
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from dealflow_sync_api.routers.jobs import start
from dealflow_sync_api.settings import get_settings
from dealflow_sync_core.jobs import JobKind
from dealflow_sync_core.urlhealth import BROKEN, PENDING, REDIRECTED, VALID, list_checks, url_health_stats

router = APIRouter(prefix="/url-health", tags=["url-health"])


class UrlHealthStart(BaseModel):
    """Request to start a URL health job."""

    scope: str = Field(default="all", min_length=1)
    include_auto_fix: bool = True
    confidence_threshold: float | None = Field(default=None, ge=0.0, le=1.0)


@router.post("/start", status_code=202)
def start_url_health(body: UrlHealthStart):
    """Check every URL in scope; repairs at or above the threshold are applied."""
    threshold = body.confidence_threshold
    if threshold is None:
        threshold = get_settings().url_health_threshold
    options = {"include_auto_fix": body.include_auto_fix, "confidence_threshold": threshold}
    return start(JobKind.URL_HEALTH, body.scope, options)


@router.get("/stats")
def get_stats(scope: str = "all"):
    return url_health_stats(scope)


@router.get("/checks")
def get_checks(
    scope: str = "all",
    status: str | None = None,
    pending_review: bool = False,
    limit: int = 50,
    offset: int = 0,
):
    """Latest check per URL field, most recently checked first."""
    if status and status not in (VALID, REDIRECTED, BROKEN, PENDING):
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    limit = max(1, min(limit, get_settings().max_page_size))
    checks = list_checks(scope, status=status, pending_review=pending_review, limit=limit, offset=max(0, offset))
    return {"checks": [c.model_dump() for c in checks]}
