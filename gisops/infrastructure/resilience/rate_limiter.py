"""Implementation of a rate limiter.

Controls the frequency of outgoing requests to prevent hitting service rate
limits. Uses a token bucket shared by every job poll loop and batch edit call.
"""

import asyncio
import logging
import time
from threading import Lock
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 10             # Tokens (requests) per interval...
DEFAULT_INTERVAL_SECONDS = 1.0    # ...refilled continuously over this many seconds


class RateLimiter:
    """Reservation-based token bucket.

    Each caller takes a token immediately. When the bucket is empty the token
    count goes negative, which queues the caller behind earlier reservations;
    the caller then waits out its own delay without holding the lock. The
    counter is guarded by a threading lock, so one limiter can be shared by
    tasks on different event loops or threads.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initializes the rate limiter.

        Args:
            capacity: Burst size, and number of tokens refilled per interval.
            interval: Refill period in seconds.
            clock: Monotonic time source (injectable for tests).
            sleep: Awaitable sleep used to wait out a reservation.
        """
        if capacity <= 0 or interval <= 0:
            raise ValueError("Capacity and interval must be positive.")
        self.capacity = capacity
        self.interval = interval
        self._rate = capacity / interval  # tokens per second
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated = clock()
        self._lock = Lock()
        logger.info(f"RateLimiter initialized: {capacity} requests / {interval} seconds")

    def _refill(self, now: float) -> None:
        elapsed = now - self._updated
        if elapsed > 0:
            self._tokens = min(float(self.capacity), self._tokens + elapsed * self._rate)
            self._updated = now

    def reserve(self) -> float:
        """Takes one token and returns the seconds to wait before using it."""
        with self._lock:
            self._refill(self._clock())
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self._rate

    async def wait_for_permission(self) -> float:
        """Waits until a request is permitted. Returns the time waited."""
        wait_time = self.reserve()
        if wait_time > 0:
            logger.debug(f"Rate limit reached. Waiting for {wait_time:.3f} seconds.")
            await self._sleep(wait_time)
        return wait_time

    def get_wait_time(self) -> float:
        """Estimates the wait for the next request without reserving a token."""
        with self._lock:
            self._refill(self._clock())
            if self._tokens >= 1:
                return 0.0
            return (1 - self._tokens) / self._rate

    @property
    def available_tokens(self) -> float:
        with self._lock:
            self._refill(self._clock())
            return self._tokens
