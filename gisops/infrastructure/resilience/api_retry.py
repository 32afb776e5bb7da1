"""Service for executing API calls with rate limiting and automatic retries.

Implements exponential backoff for transient errors: network failures and
5xx responses (`NetworkError`) and throttling (`RateLimitError`). When the
server sends a `Retry-After` hint the wait is at least that long. Terminal
errors (validation, permission, not found) propagate on the first attempt.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from gisops.domain.errors import GisOpsError, NetworkError, RateLimitError
from gisops.domain.events.api_events import (
    ApiCallDeferred,
    ApiCallFailed,
    ApiCallInitiated,
    ApiCallSucceeded,
    EventDispatcher,
    RetryScheduled,
)
from gisops.domain.interfaces.transport import Transport, TransportRequest
from gisops.domain.models.common import BackoffPolicy
from gisops.infrastructure.resilience.rate_limiter import RateLimiter
from gisops.infrastructure.resilience.result_decoder import ResultDecoder

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ApiRetryService:
    """Sends requests through the shared rate limiter with retry and backoff."""

    def __init__(
        self,
        transport: Transport,
        rate_limiter: RateLimiter,
        policy: Optional[BackoffPolicy] = None,
        decoder: Optional[ResultDecoder] = None,
        dispatcher: Optional[EventDispatcher] = None,
        service_name: str = "arcgis",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes the ApiRetryService.

        Args:
            transport: The transport performing HTTP exchanges.
            rate_limiter: The limiter shared by every outbound call.
            policy: Backoff policy; the same one used between status polls.
            decoder: Classifier turning responses into taxonomy errors.
            dispatcher: Receiver of API call events.
            service_name: Name of the service (for logging/events).
            sleep: Awaitable sleep used between retries (injectable for tests).
            clock: Monotonic clock measuring retry time budgets.
        """
        self.transport = transport
        self.rate_limiter = rate_limiter
        self.policy = policy or BackoffPolicy()
        self.decoder = decoder or ResultDecoder()
        self.dispatcher = dispatcher or EventDispatcher()
        self.service_name = service_name
        self._sleep = sleep
        self._clock = clock

        logger.info(
            f"ApiRetryService initialized: service='{service_name}', max_retries={self.policy.max_retries}, "
            f"base_interval={self.policy.base_interval}s, max_interval={self.policy.max_interval}s"
        )

    async def _acquire_slot(self, endpoint: str) -> None:
        wait_duration = self.rate_limiter.get_wait_time()
        if wait_duration > 0:
            self.dispatcher.dispatch(ApiCallDeferred(
                service=self.service_name, endpoint=endpoint, wait_time_seconds=wait_duration,
            ))
        await self.rate_limiter.wait_for_permission()

    def _give_up(self, endpoint: str, error: GisOpsError, attempts: int) -> None:
        logger.error(f"Giving up on {self.service_name}.{endpoint} after {attempts} attempt(s): {error}")
        self.dispatcher.dispatch(ApiCallFailed(
            service=self.service_name, endpoint=endpoint,
            error_type=type(error).__name__, error_message=str(error),
        ))

    async def execute_with_retry(
        self,
        func: Callable[[], Awaitable[T]],
        endpoint: str,
        retry: bool = True,
        time_budget: Optional[float] = None,
    ) -> T:
        """Executes an async call with rate limiting and retries.

        Args:
            func: Zero-argument coroutine function performing one attempt.
            endpoint: Name of the endpoint (for logging/events).
            retry: When False the call is attempted once (data-affecting calls).
            time_budget: Seconds the retries may spend in total. Waits are
                clipped to it and no retry is scheduled once it is used up.

        Returns:
            The result of the first successful attempt.

        Raises:
            NetworkError, RateLimitError: When retries or the budget are
                exhausted (or retries are disabled).
            GisOpsError: Any terminal error, on the attempt that produced it.
        """
        max_retries = self.policy.max_retries if retry else 0
        budget_ends = self._clock() + time_budget if time_budget is not None else None

        for attempt in range(max_retries + 1):
            await self._acquire_slot(endpoint)
            self.dispatcher.dispatch(ApiCallInitiated(service=self.service_name, endpoint=endpoint))
            start_time = time.perf_counter()
            try:
                result = await func()
            except (NetworkError, RateLimitError) as e:
                e.attempts = attempt + 1
                if attempt >= max_retries:
                    self._give_up(endpoint, e, attempt + 1)
                    raise
                delay = self.policy.interval(attempt)
                retry_after = getattr(e, "retry_after", None)
                if retry_after is not None:
                    delay = max(delay, retry_after)
                if budget_ends is not None:
                    remaining = budget_ends - self._clock()
                    if remaining <= 0:
                        self._give_up(endpoint, e, attempt + 1)
                        raise
                    delay = min(delay, remaining)
                logger.warning(
                    f"Retryable error calling {self.service_name}.{endpoint} on attempt "
                    f"{attempt + 1}/{max_retries + 1}: {type(e).__name__}. Waiting {delay:.2f}s..."
                )
                self.dispatcher.dispatch(RetryScheduled(
                    service=self.service_name, endpoint=endpoint,
                    attempt_number=attempt + 1, delay_seconds=delay,
                ))
                await self._sleep(delay)
                continue
            except GisOpsError as e:
                logger.error(f"Non-retryable error calling {self.service_name}.{endpoint}: {e}")
                self.dispatcher.dispatch(ApiCallFailed(
                    service=self.service_name, endpoint=endpoint,
                    error_type=type(e).__name__, error_message=str(e),
                ))
                raise

            latency_ms = (time.perf_counter() - start_time) * 1000
            self.dispatcher.dispatch(ApiCallSucceeded(
                service=self.service_name, endpoint=endpoint, latency_ms=latency_ms,
            ))
            return result

        # The loop always returns or raises; reaching here means max_retries < 0.
        raise RuntimeError("ApiRetryService loop exited without a result")

    async def request(
        self, request: TransportRequest, retry: bool = True, time_budget: Optional[float] = None,
    ) -> Any:
        """Sends `request` and returns the decoded body of a successful response."""
        endpoint = request.endpoint or request.url

        async def attempt() -> Any:
            response = await self.transport.send(request)
            return self.decoder.raise_for_response(response, endpoint=endpoint)

        return await self.execute_with_retry(attempt, endpoint=endpoint, retry=retry, time_budget=time_budget)
