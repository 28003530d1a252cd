"""Worker settings."""
import os


def get_rate_limit_retries() -> int:
    """How many times a rate-limited call is retried before the record fails."""
    return int(os.environ.get("RATE_LIMIT_RETRIES", "3"))


def get_url_check_pause() -> float:
    """Delay between URL checks, in seconds."""
    return float(os.environ.get("URL_CHECK_PAUSE_SECONDS", "0.2"))


def get_url_target_limit() -> int:
    return int(os.environ.get("URL_HEALTH_MAX_TARGETS", "1000"))
