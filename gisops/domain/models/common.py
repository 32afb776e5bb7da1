"""Defines common Value Objects used across the job and edit contexts.

These objects represent simple values like identifiers, URLs and the backoff
policy shared by polling and transport retries.
"""

import random
from dataclasses import dataclass
from typing import NewType, Optional, Union

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are plain values at runtime.
JobId = NewType("JobId", str)                  # Opaque id issued by the remote job service
ServiceUrl = NewType("ServiceUrl", str)        # Base URL of a service or GP task
LayerId = NewType("LayerId", int)              # Index of a layer inside a FeatureServer
ObjectId = NewType("ObjectId", int)            # Server-assigned integer feature id
GlobalId = NewType("GlobalId", str)            # GUID-style feature id
ClientTempId = NewType("ClientTempId", str)    # Caller-chosen correlation key for adds
AuthToken = NewType("AuthToken", str)

FeatureId = Union[ObjectId, GlobalId, int, str]


@dataclass(frozen=True)
class BackoffPolicy:
    """Value Object describing exponential backoff and the polling deadline.

    The same policy drives the wait between status polls and the wait between
    retries of transport or rate-limit failures.

    Attributes:
        base_interval: Delay in seconds before the first re-check.
        max_interval: Upper bound for the delay (before jitter).
        deadline: Total time budget in seconds for a poll loop (None = no deadline).
        jitter: Maximum random seconds added on top of each delay.
        max_retries: Retries allowed for a single transport call.
    """
    base_interval: float = 1.0
    max_interval: float = 30.0
    deadline: Optional[float] = None
    jitter: float = 0.0
    max_retries: int = 5

    def __post_init__(self) -> None:
        if self.base_interval <= 0 or self.max_interval <= 0:
            raise ValueError("Backoff intervals must be positive.")
        if self.max_interval < self.base_interval:
            raise ValueError("max_interval must be >= base_interval.")
        if self.deadline is not None and self.deadline <= 0:
            raise ValueError("deadline must be positive when set.")
        if self.jitter < 0 or self.max_retries < 0:
            raise ValueError("jitter and max_retries must be non-negative.")

    def interval(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Returns the delay before check number `attempt + 1`.

        interval = min(max_interval, base_interval * 2**attempt) + jitter
        """
        # Cap the exponent so huge attempt counts cannot overflow the float.
        exponent = min(attempt, 62)
        delay = min(self.max_interval, self.base_interval * (2 ** exponent))
        if self.jitter:
            delay += (rng or random).uniform(0, self.jitter)
        return delay
