"""Error taxonomy for batch jobs and the failed-record ledger."""


class SyncError(Exception):
    """Base class for errors raised while processing a batch."""

    error_code = "unknown"
    retryable = False

    def __init__(self, message: str = "", *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NetworkError(SyncError):
    """Transient transport failure (timeout, DNS, connection, 5xx)."""

    error_code = "network"
    retryable = True


class ValidationError(SyncError):
    """Payload rejected by the mapper or by the target system."""

    error_code = "validation"


class ConflictError(SyncError):
    """Target already holds the record (e.g. duplicate); treated as skipped."""

    error_code = "conflict"


class RateLimitError(SyncError):
    """Target asked us to slow down."""

    error_code = "rate_limit"
    retryable = True

    def __init__(self, message: str = "", *, retry_after: float | None = None, status_code: int | None = 429):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class UnrecoverableError(SyncError):
    """The whole scope cannot be processed; aborts the job."""

    error_code = "unrecoverable"


class AlreadyRunning(Exception):
    """An active job already exists for the same kind and scope."""

    def __init__(self, kind: str, scope: str, job_id: str | None = None):
        super().__init__(f"A {kind} job is already running for scope {scope!r}")
        self.kind = kind
        self.scope = scope
        self.job_id = job_id


class NotRunning(Exception):
    """The job is not pending or running."""

    def __init__(self, job_id: str, status: str):
        super().__init__(f"Job {job_id} is not running (status: {status})")
        self.job_id = job_id
        self.status = status


class NotFound(Exception):
    """The requested job or record does not exist (or is not in a usable state)."""


def classify(exc: BaseException) -> str:
    """Map an exception to a ledger error code."""
    if isinstance(exc, SyncError):
        return exc.error_code
    return "unknown"
