"""
Core service running a job end to end: submit, poll, collect.
"""

import logging
from typing import Any, Mapping, Optional

from gisops.core.services.job_client import JobClient
from gisops.core.services.poller import CancellationToken, Poller, StatusCallback
from gisops.domain.errors import GisOpsError, PollTimeoutError
from gisops.domain.models.common import BackoffPolicy
from gisops.domain.models.jobs import JobHandle, ResultPayload

logger = logging.getLogger(__name__)


class JobService:
    """Orchestrates the submit -> poll -> result workflow."""

    def __init__(
        self,
        job_client: JobClient,
        poller: Poller,
        default_policy: Optional[BackoffPolicy] = None,
        cancel_on_timeout: bool = False,
    ):
        self.job_client = job_client
        self.poller = poller
        self.default_policy = default_policy or BackoffPolicy()
        self.cancel_on_timeout = cancel_on_timeout

    async def wait_for_result(
        self,
        handle: JobHandle,
        policy: Optional[BackoffPolicy] = None,
        cancellation_token: Optional[CancellationToken] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> ResultPayload:
        """Polls an already submitted job and returns its result.

        Raises:
            RemoteJobFailure: If the job failed.
            NotReadyError: If the job ended CANCELLED.
            PollTimeoutError: If the deadline passed (the job is cancelled
                remotely first when `cancel_on_timeout` is set).
            WaitCancelledError: If the token fired.
        """
        try:
            await self.poller.poll_until_complete(
                handle, policy or self.default_policy, cancellation_token, on_status=on_status,
            )
        except PollTimeoutError:
            if self.cancel_on_timeout:
                await self._cancel_quietly(handle)
            raise
        return await self.job_client.get_result(handle)

    async def run(
        self,
        params: Mapping[str, Any],
        policy: Optional[BackoffPolicy] = None,
        cancellation_token: Optional[CancellationToken] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> ResultPayload:
        """Submits a job with `params` and waits for its result."""
        handle = await self.job_client.submit(params)
        return await self.wait_for_result(handle, policy, cancellation_token, on_status)

    async def _cancel_quietly(self, handle: JobHandle) -> None:
        # The timeout is the error the caller sees; a failed cancel is only logged.
        try:
            status = await self.job_client.cancel(handle)
            logger.info(f"Requested cancellation of timed out job {handle.id}: {status.value}")
        except GisOpsError as e:
            logger.warning(f"Could not cancel timed out job {handle.id}: {e}")
