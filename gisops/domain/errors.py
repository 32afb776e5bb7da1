"""Error taxonomy shared by the job engine and the batch edit coordinator.

Only `NetworkError` and `RateLimitError` are ever retried automatically.
Item-level edit failures are not exceptions; they travel inside
`EditItemResult` values.
"""

from typing import Any, List, Optional

from gisops.domain.models.jobs import JobHandle, JobMessage, JobStatus, MessageSeverity


class GisOpsError(Exception):
    """Base class for every error raised by gisops."""

    def __init__(self, message: str, code: Optional[int] = None, details: Optional[List[str]] = None):
        self.message = message
        self.code = code
        self.details = list(details or [])
        super().__init__(message)


# --- Retryable ---

class NetworkError(GisOpsError):
    """Connection failure, request timeout or 5xx response."""

    def __init__(self, message: str, code: Optional[int] = None, details: Optional[List[str]] = None):
        super().__init__(message, code=code, details=details)
        self.attempts = 1


class RateLimitError(GisOpsError):
    """429 response or an explicit backoff hint from the server."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        code: Optional[int] = 429,
        details: Optional[List[str]] = None,
    ):
        super().__init__(message, code=code, details=details)
        self.retry_after = retry_after
        self.attempts = 1


# --- Terminal ---

class ValidationError(GisOpsError):
    """Request rejected locally (shape checks) or by the server (4xx)."""


class PermissionDeniedError(GisOpsError):
    """Missing, expired or insufficient credentials."""


class NotFoundError(GisOpsError):
    """The job or resource is unknown to the server (for example expired)."""


class MalformedResponseError(GisOpsError):
    """The server answered with a body that breaks the documented contract."""


class NotReadyError(GisOpsError):
    """A job result was requested before the job succeeded."""

    def __init__(self, handle: JobHandle, status: JobStatus):
        super().__init__(f"Job {handle.id} has no result yet (status: {status.value}).")
        self.handle = handle
        self.status = status


class RemoteJobFailure(GisOpsError):
    """The remote job finished in FAILED; carries its message log verbatim."""

    def __init__(self, handle: JobHandle, messages: List[JobMessage]):
        summary = next(
            (m.text for m in reversed(messages) if m.severity is MessageSeverity.ERROR),
            "no error message reported",
        )
        super().__init__(f"Job {handle.id} failed: {summary}")
        self.handle = handle
        self.messages = messages


class PollTimeoutError(GisOpsError, TimeoutError):
    """The poll deadline passed. The remote job may still be running."""

    def __init__(self, handle: JobHandle, last_status: Optional[JobStatus], elapsed: float, deadline: float):
        last = last_status.value if last_status else "unknown"
        super().__init__(
            f"Polling job {handle.id} timed out after {elapsed:.2f}s "
            f"(deadline {deadline:.2f}s, last status: {last})."
        )
        self.handle = handle
        self.last_status = last_status
        self.status = JobStatus.TIMED_OUT
        self.elapsed = elapsed
        self.deadline = deadline


class WaitCancelledError(GisOpsError):
    """The local wait loop was aborted through its cancellation token.

    The remote job is untouched.
    """

    def __init__(self, handle: JobHandle, last_status: Optional[JobStatus]):
        super().__init__(f"Waiting for job {handle.id} was cancelled locally.")
        self.handle = handle
        self.last_status = last_status


class CancellationUnsupportedError(GisOpsError):
    """The backend offers no remote cancel operation."""


RETRYABLE_ERRORS = (NetworkError, RateLimitError)


def is_retryable(error: Any) -> bool:
    return isinstance(error, RETRYABLE_ERRORS)
