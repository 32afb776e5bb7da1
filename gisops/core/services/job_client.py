"""
Core service exposing the lifecycle operations of one job service.

The client holds no per-job state: every operation takes a `JobHandle` and
talks to the remote service through the shared retry service, so any number
of jobs can be driven concurrently by the same client.
"""

import logging
from typing import Any, List, Mapping, Optional

from gisops.domain.errors import (
    CancellationUnsupportedError,
    NotReadyError,
    RemoteJobFailure,
)
from gisops.domain.interfaces.job_backend import JobBackend
from gisops.domain.models.jobs import (
    JobHandle,
    JobMessage,
    JobStatus,
    JobStatusReport,
    ResultPayload,
)
from gisops.infrastructure.resilience.api_retry import ApiRetryService

logger = logging.getLogger(__name__)


class JobClient:
    """Submit, inspect, collect and cancel jobs of one backend."""

    def __init__(self, backend: JobBackend, retry_service: ApiRetryService):
        self.backend = backend
        self.retry_service = retry_service
        logger.info(f"JobClient initialized for backend '{backend.name}'")

    async def submit(self, params: Mapping[str, Any]) -> JobHandle:
        """Submits a job.

        Args:
            params: Backend-specific job parameters.

        Returns:
            The handle identifying the new job, initially SUBMITTED.

        Raises:
            ValidationError: If the parameters are rejected locally (before any
                network call) or by the server.
            NetworkError, RateLimitError: When retries are exhausted.
            PermissionDeniedError: If the credentials are refused.
        """
        self.backend.validate_params(params)
        body = await self.retry_service.request(self.backend.submit_request(params))
        job_id, initial_status = self.backend.parse_submit(body)
        handle = JobHandle(id=job_id)
        logger.info(f"Submitted {self.backend.name} job {handle.id} (initial status: {initial_status.value})")
        return handle

    async def get_status(self, handle: JobHandle, time_budget: Optional[float] = None) -> JobStatusReport:
        """Reads the current remote status. Idempotent.

        Args:
            handle: The job.
            time_budget: Seconds that retries of this read may take in total.

        Raises:
            NotFoundError: If the job is unknown to the server or has expired.
        """
        body = await self.retry_service.request(self.backend.status_request(handle.id), time_budget=time_budget)
        report = self.backend.parse_status(body)
        logger.debug(f"Job {handle.id} status: {report.status.value} (progress={report.progress})")
        return report

    async def get_messages(self, handle: JobHandle, since: Optional[int] = None) -> List[JobMessage]:
        """Returns the job's messages in sequence order.

        Args:
            handle: The job.
            since: Only messages with a greater sequence number are returned.
        """
        body = await self.retry_service.request(self.backend.messages_request(handle.id))
        messages = sorted(self.backend.parse_messages(body), key=lambda m: m.sequence)
        if since is not None:
            messages = [m for m in messages if m.sequence > since]
        return messages

    async def get_result(self, handle: JobHandle) -> ResultPayload:
        """Fetches the outputs of a succeeded job.

        Raises:
            NotReadyError: If the job has not (yet) succeeded.
            RemoteJobFailure: If the job failed; carries its message log.
        """
        report = await self.get_status(handle)
        if report.status is JobStatus.FAILED:
            messages = await self.get_messages(handle)
            logger.warning(f"Job {handle.id} failed remotely with {len(messages)} message(s)")
            raise RemoteJobFailure(handle, messages)
        if report.status is not JobStatus.SUCCEEDED:
            raise NotReadyError(handle, report.status)

        body = await self.retry_service.request(self.backend.result_request(handle.id))
        payload = self.backend.parse_result(handle.id, body)

        # --- Output parameters published by reference ---
        for name, request in self.backend.follow_up_requests(handle.id, payload).items():
            value_body = await self.retry_service.request(request)
            payload.values[name] = self.backend.parse_follow_up(name, value_body)

        logger.info(f"Collected result of job {handle.id} ({len(payload.values)} output(s))")
        return payload

    async def cancel(self, handle: JobHandle) -> JobStatus:
        """Requests best-effort cancellation of a remote job.

        A job that is already terminal is left alone and its status returned.
        Otherwise the result is CANCELLING, or the terminal status the remote
        reports if cancellation completed immediately or lost the race against
        natural completion.

        Raises:
            CancellationUnsupportedError: If the backend cannot cancel jobs.
        """
        report = await self.get_status(handle)
        if report.status.is_terminal:
            logger.info(f"Job {handle.id} already {report.status.value}; nothing to cancel")
            return report.status

        request = self.backend.cancel_request(handle.id)
        if request is None:
            raise CancellationUnsupportedError(
                f"Backend '{self.backend.name}' does not support cancelling job {handle.id}."
            )

        body = await self.retry_service.request(request)
        remote_status = self.backend.parse_cancel(body)
        if remote_status.is_terminal:
            logger.info(f"Cancel of job {handle.id} answered with terminal status {remote_status.value}")
            return remote_status
        logger.info(f"Cancellation of job {handle.id} requested")
        return JobStatus.CANCELLING
