"""FastAPI application entrypoint."""
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dealflow_sync_api.logging import configure_logging
from dealflow_sync_api.routers import crm, failed_records, health, jobs, url_health
from dealflow_sync_api.settings import export_to_environment, get_settings
from dealflow_sync_core.db import init_db
from dealflow_sync_core.jobs import recover_interrupted_jobs

settings = get_settings()
export_to_environment(settings)
configure_logging(settings.log_level)
logger = structlog.get_logger()

app = FastAPI(title="Dealflow Sync API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/api")
app.include_router(jobs.router, prefix="/api")
app.include_router(failed_records.router, prefix="/api")
app.include_router(url_health.router, prefix="/api")
app.include_router(crm.router, prefix="/api")


@app.on_event("startup")
def startup():
    """Initialize on startup."""
    logger.info("initializing_database")
    init_db()
    interrupted = recover_interrupted_jobs()
    if interrupted:
        logger.warning("recovered_interrupted_jobs", count=len(interrupted))
