"""Interface for long-running job services.

A JobBackend supplies only the request/response mapping of one service
(geoprocessing, elevation, portal publishing, ...). The state machine,
polling, backoff and retries live in the core services and are shared by
every backend.
"""

import abc
from typing import Any, Dict, List, Mapping, Optional, Tuple

from gisops.domain.interfaces.transport import TransportRequest
from gisops.domain.models.common import JobId
from gisops.domain.models.jobs import JobMessage, JobStatus, JobStatusReport, ResultPayload


class JobBackend(abc.ABC):
    """Abstract Base Class mapping the job capability set onto one service."""

    #: Short service name used in logs and events.
    name: str = "jobs"

    def validate_params(self, params: Mapping[str, Any]) -> None:
        """Local shape checks run before any network call.

        Raises:
            ValidationError: If `params` cannot possibly be accepted.
        """
        return None

    # --- Submit ---

    @abc.abstractmethod
    def submit_request(self, params: Mapping[str, Any]) -> TransportRequest:
        pass

    @abc.abstractmethod
    def parse_submit(self, body: Any) -> Tuple[JobId, JobStatus]:
        """Extracts the job id and initial status from a submit response."""
        pass

    # --- Status ---

    @abc.abstractmethod
    def status_request(self, job_id: JobId) -> TransportRequest:
        pass

    @abc.abstractmethod
    def parse_status(self, body: Any) -> JobStatusReport:
        pass

    # --- Result ---

    @abc.abstractmethod
    def result_request(self, job_id: JobId) -> TransportRequest:
        pass

    @abc.abstractmethod
    def parse_result(self, job_id: JobId, body: Any) -> ResultPayload:
        pass

    def follow_up_requests(self, job_id: JobId, payload: ResultPayload) -> Dict[str, TransportRequest]:
        """Extra requests needed to resolve output values by reference.

        Returns a mapping of output name to the request that fetches its value.
        """
        return {}

    def parse_follow_up(self, name: str, body: Any) -> Any:
        return body

    # --- Messages ---

    @abc.abstractmethod
    def messages_request(self, job_id: JobId) -> TransportRequest:
        pass

    @abc.abstractmethod
    def parse_messages(self, body: Any) -> List[JobMessage]:
        pass

    # --- Cancel ---

    def cancel_request(self, job_id: JobId) -> Optional[TransportRequest]:
        """Returns None when the service has no remote cancel operation."""
        return None

    def parse_cancel(self, body: Any) -> JobStatus:
        return self.parse_status(body).status
