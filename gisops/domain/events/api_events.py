"""Domain Events related to API calls, job polling and batch edits.

Examples include events for when calls are deferred by the rate limiter,
retried, fail or succeed, and when a poll loop observes or discards a status.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


# --- API Call Events ---

@dataclass
class ApiCallInitiated(DomainEvent):
    """Event triggered when an API call is about to be made."""
    service: str  # e.g. 'geoprocessing', 'feature'
    endpoint: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallSucceeded(DomainEvent):
    service: str
    endpoint: str
    latency_ms: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallFailed(DomainEvent):
    """Event triggered when an API call fails definitively (after retries)."""
    service: str
    endpoint: str
    error_type: str
    error_message: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallDeferred(DomainEvent):
    """Event triggered when an API call waits for a rate limiter slot."""
    service: str
    endpoint: str
    wait_time_seconds: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    service: str
    endpoint: str
    attempt_number: int
    delay_seconds: float
    timestamp: float = field(default_factory=time.time)


# --- Job Events ---

@dataclass
class JobStatusObserved(DomainEvent):
    job_id: str
    status: str
    progress: Optional[float] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class StaleStatusDiscarded(DomainEvent):
    """A status read older than the last accepted one was dropped."""
    job_id: str
    current_status: str
    stale_status: str
    timestamp: float = field(default_factory=time.time)


# --- Edit Events ---

@dataclass
class EditBatchApplied(DomainEvent):
    layer: str
    success_count: int
    failure_count: int
    rolled_back: bool
    timestamp: float = field(default_factory=time.time)


EventListener = Callable[[DomainEvent], Any]


class EventDispatcher:
    """Publishes domain events to subscribed listeners.

    Every event is logged at DEBUG level. Listener errors are logged and do
    not interrupt the operation that produced the event.
    """

    def __init__(self) -> None:
        self._listeners: List[EventListener] = []

    def subscribe(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def dispatch(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener {listener!r} failed for {type(event).__name__}: {e}", exc_info=True)
