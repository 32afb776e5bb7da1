"""Domain models for long-running remote jobs.

Includes the closed `JobStatus` state machine, the `JobHandle` returned by
submission, status reports, job messages and result payloads.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from gisops.domain.models.common import JobId


class JobStatus(str, Enum):
    """Lifecycle state of a remote job.

    Transitions are monotonic. `TIMED_OUT` is a local classification made by
    the poller when its deadline passes; no backend ever reports it.
    """

    SUBMITTED = "submitted"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_local_only(self) -> bool:
        return self is JobStatus.TIMED_OUT

    def can_transition_to(self, other: "JobStatus") -> bool:
        """True if `other` is this status or a legal successor of it."""
        if other is self:
            return True
        if other is JobStatus.TIMED_OUT:
            return not self.is_terminal
        return other in _TRANSITIONS[self]


TERMINAL_STATUSES: FrozenSet[JobStatus] = frozenset({
    JobStatus.SUCCEEDED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
    JobStatus.TIMED_OUT,
})

_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.SUBMITTED: frozenset({
        JobStatus.EXECUTING, JobStatus.SUCCEEDED, JobStatus.FAILED,
        JobStatus.CANCELLING, JobStatus.CANCELLED,
    }),
    JobStatus.EXECUTING: frozenset({
        JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLING, JobStatus.CANCELLED,
    }),
    # Cancel can lose the race against natural completion.
    JobStatus.CANCELLING: frozenset({
        JobStatus.CANCELLED, JobStatus.SUCCEEDED, JobStatus.FAILED,
    }),
    JobStatus.SUCCEEDED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
    JobStatus.TIMED_OUT: frozenset(),
}


class MessageSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class JobHandle:
    """Opaque identifier of a submitted job, owned by the caller."""
    id: JobId
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __str__(self) -> str:
        return str(self.id)


@dataclass(frozen=True)
class JobStatusReport:
    """One observation of a job's remote status."""
    status: JobStatus
    progress: Optional[float] = None  # Percent complete, when the backend reports it
    message: Optional[str] = None
    observed_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class JobMessage:
    """Entry of the append-only message log produced by a remote job."""
    severity: MessageSeverity
    text: str
    sequence: int


@dataclass
class ResultPayload:
    """Outputs of a succeeded job.

    `values` maps output names to decoded values; `raw` keeps the backend's
    response body for callers that need fields the backend does not decode.
    """
    job_id: JobId
    values: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)


def error_messages(messages: List[JobMessage]) -> List[JobMessage]:
    """Returns only the ERROR severity entries of a message log."""
    return [m for m in messages if m.severity is MessageSeverity.ERROR]
