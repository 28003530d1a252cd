"""Rate-limit backoff for external calls."""
import time
from typing import Any, Callable

import structlog
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from dealflow_sync_core.util.errors import RateLimitError

logger = structlog.get_logger()


def _wait_retry_after_or_exponential(base_delay: float, max_delay: float):
    exponential = wait_exponential(multiplier=base_delay, max=max_delay)

    def wait(retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception()
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            return min(retry_after, max_delay)
        return exponential(retry_state)

    return wait


def _log_backoff(retry_state: RetryCallState) -> None:
    logger.info(
        "rate_limited_backing_off",
        attempt=retry_state.attempt_number,
        delay=retry_state.next_action.sleep if retry_state.next_action else None,
    )


def call_with_backoff(
    fn: Callable[..., Any],
    *args,
    max_retries: int = 3,
    base_delay: float = 2.0,
    max_delay: float = 60.0,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs,
) -> Any:
    """Call ``fn``; on RateLimitError wait (Retry-After or exponential) and try again.

    Re-raises the RateLimitError once ``max_retries`` waits are used up.
    """
    retrying = Retrying(
        retry=retry_if_exception_type(RateLimitError),
        stop=stop_after_attempt(max_retries + 1),
        wait=_wait_retry_after_or_exponential(base_delay, max_delay),
        sleep=sleep,
        before_sleep=_log_backoff,
        reraise=True,
    )
    return retrying(fn, *args, **kwargs)
