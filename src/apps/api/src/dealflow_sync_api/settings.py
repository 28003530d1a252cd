"""API settings."""
import os
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    sqlite_path: str = "/data/sync.db"
    crm_api_url: str = "https://api.folk.app"
    crm_api_key: str | None = None
    url_health_threshold: float = 0.85
    llm_provider: str = "gemini"
    gemini_api_key: str | None = None
    ollama_url: str = "http://ollama:11434"
    log_level: str = "info"
    cors_origins: list[str] = ["*"]
    max_page_size: int = 200
    job_stale_after_seconds: float = 600.0

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()


def export_to_environment(settings: Settings) -> None:
    """Make values loaded from ``.env`` visible to the core and worker packages."""
    values = {
        "SQLITE_PATH": settings.sqlite_path,
        "CRM_API_URL": settings.crm_api_url,
        "CRM_API_KEY": settings.crm_api_key,
        "URL_HEALTH_THRESHOLD": str(settings.url_health_threshold),
        "LLM_PROVIDER": settings.llm_provider,
        "GEMINI_API_KEY": settings.gemini_api_key,
        "OLLAMA_URL": settings.ollama_url,
        "JOB_STALE_AFTER_SECONDS": str(settings.job_stale_after_seconds),
    }
    for key, value in values.items():
        if value is not None:
            os.environ.setdefault(key, value)
