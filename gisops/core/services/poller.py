"""
Polls a job until it reaches a terminal status or the deadline passes.

Backoff state (attempt counter, last accepted status, start time) lives in
the loop itself, so concurrent polls of different jobs never interfere.
"""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Optional

from gisops.core.services.job_client import JobClient
from gisops.domain.errors import NetworkError, PollTimeoutError, RateLimitError, WaitCancelledError
from gisops.domain.events.api_events import EventDispatcher, JobStatusObserved, StaleStatusDiscarded
from gisops.domain.models.common import BackoffPolicy
from gisops.domain.models.jobs import JobHandle, JobStatus, JobStatusReport

logger = logging.getLogger(__name__)

StatusCallback = Callable[[JobHandle, JobStatusReport], Any]


class CancellationToken:
    """Lets a caller abort a local wait loop. The remote job is not touched."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class Poller:
    """Drives `JobClient.get_status` with exponential backoff."""

    def __init__(
        self,
        job_client: JobClient,
        dispatcher: Optional[EventDispatcher] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """Initializes the Poller.

        Args:
            job_client: Client used for every status read.
            dispatcher: Receiver of JobStatusObserved/StaleStatusDiscarded events.
            clock: Monotonic clock in seconds (injectable for tests).
            sleep: Awaitable sleep used between polls (injectable for tests).
            rng: Random source for jitter.
        """
        self.job_client = job_client
        self.dispatcher = dispatcher or EventDispatcher()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng

    async def poll_until_complete(
        self,
        handle: JobHandle,
        policy: BackoffPolicy,
        cancellation_token: Optional[CancellationToken] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> JobStatus:
        """Waits for `handle` to reach SUCCEEDED, FAILED or CANCELLED.

        Args:
            handle: The job to watch.
            policy: Backoff intervals and the overall deadline.
            cancellation_token: Aborts the local wait when cancelled.
            on_status: Called with every accepted status report.

        Returns:
            The terminal status reported by the remote service.

        Raises:
            PollTimeoutError: If the deadline passes first. Carries the last
                observed status; the remote job may still be running.
                Status reads retried past the deadline end the same way.
            WaitCancelledError: If the cancellation token fires.
        """
        start = self._clock()
        attempt = 0
        last_status: Optional[JobStatus] = None

        while True:
            self._check_cancelled(handle, cancellation_token, last_status)
            report = await self._read_status(handle, policy, start, last_status)

            if last_status is not None and not last_status.can_transition_to(report.status):
                logger.debug(
                    f"Discarding stale status {report.status.value} for job {handle.id} "
                    f"(already observed {last_status.value})"
                )
                self.dispatcher.dispatch(StaleStatusDiscarded(
                    job_id=str(handle.id), current_status=last_status.value, stale_status=report.status.value,
                ))
            else:
                last_status = report.status
                self.dispatcher.dispatch(JobStatusObserved(
                    job_id=str(handle.id), status=report.status.value, progress=report.progress,
                ))
                if on_status is not None:
                    on_status(handle, report)
                if report.status.is_terminal:
                    logger.info(f"Job {handle.id} reached {report.status.value} after {attempt + 1} poll(s)")
                    return report.status

            elapsed = self._clock() - start
            wait = policy.interval(attempt, self._rng)
            if policy.deadline is not None:
                remaining = policy.deadline - elapsed
                if remaining <= 0:
                    logger.warning(
                        f"Poll deadline of {policy.deadline}s passed for job {handle.id} "
                        f"(last status: {last_status.value if last_status else 'unknown'})"
                    )
                    raise PollTimeoutError(handle, last_status, elapsed, policy.deadline)
                wait = min(wait, remaining)

            logger.debug(f"Job {handle.id} not finished; next poll in {wait:.2f}s (attempt {attempt + 1})")
            await self._pause(wait, handle, cancellation_token, last_status)
            attempt += 1

    async def _read_status(
        self, handle: JobHandle, policy: BackoffPolicy, start: float, last_status: Optional[JobStatus],
    ) -> JobStatusReport:
        if policy.deadline is None:
            return await self.job_client.get_status(handle)

        now = self._clock()
        remaining = max(policy.deadline - (now - start), 0.0)
        try:
            return await self.job_client.get_status(handle, time_budget=remaining)
        except (NetworkError, RateLimitError) as e:
            if self._clock() < now + remaining:
                raise
            elapsed = self._clock() - start
            logger.warning(
                f"Poll deadline of {policy.deadline}s passed for job {handle.id} while retrying a status read: {e}"
            )
            raise PollTimeoutError(handle, last_status, elapsed, policy.deadline) from e

    @staticmethod
    def _check_cancelled(
        handle: JobHandle, token: Optional[CancellationToken], last_status: Optional[JobStatus],
    ) -> None:
        if token is not None and token.is_cancelled:
            logger.info(f"Stopped waiting for job {handle.id}; the remote job keeps running")
            raise WaitCancelledError(handle, last_status)

    async def _pause(
        self,
        delay: float,
        handle: JobHandle,
        token: Optional[CancellationToken],
        last_status: Optional[JobStatus],
    ) -> None:
        if token is None:
            await self._sleep(delay)
            return

        sleeper = asyncio.ensure_future(self._sleep(delay))
        watcher = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({sleeper, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, watcher):
                if not task.done():
                    task.cancel()
        self._check_cancelled(handle, token, last_status)
