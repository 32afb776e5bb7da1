"""Generic job backend speaking the service-agnostic wire contract.

    POST /jobs                   body=params  -> {jobId, status}
    GET  /jobs/{id}/status                    -> {status, progress?}
    GET  /jobs/{id}/result                    -> result payload
    GET  /jobs/{id}/messages                  -> [{severity, text, sequence}]
    POST /jobs/{id}/cancel                    -> {status}
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from gisops.domain.errors import MalformedResponseError, ValidationError
from gisops.domain.interfaces.job_backend import JobBackend
from gisops.domain.interfaces.transport import TransportRequest
from gisops.domain.models.common import JobId
from gisops.domain.models.jobs import (
    JobMessage,
    JobStatus,
    JobStatusReport,
    MessageSeverity,
    ResultPayload,
)

logger = logging.getLogger(__name__)

_STATUS_ALIASES: Dict[str, JobStatus] = {
    "new": JobStatus.SUBMITTED,
    "submitted": JobStatus.SUBMITTED,
    "pending": JobStatus.SUBMITTED,
    "queued": JobStatus.SUBMITTED,
    "waiting": JobStatus.SUBMITTED,
    "executing": JobStatus.EXECUTING,
    "running": JobStatus.EXECUTING,
    "succeeded": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
    # A remote-side timeout is a failure; TIMED_OUT is reserved for the local deadline.
    "timedout": JobStatus.FAILED,
    "timed_out": JobStatus.FAILED,
    "cancelling": JobStatus.CANCELLING,
    "canceling": JobStatus.CANCELLING,
    "cancelled": JobStatus.CANCELLED,
    "canceled": JobStatus.CANCELLED,
}

_SEVERITY_ALIASES: Dict[str, MessageSeverity] = {
    "info": MessageSeverity.INFO,
    "informative": MessageSeverity.INFO,
    "warning": MessageSeverity.WARNING,
    "error": MessageSeverity.ERROR,
}


def parse_status_text(value: Any) -> JobStatus:
    """Maps a remote status string onto the closed JobStatus enum."""
    if not isinstance(value, str):
        raise MalformedResponseError(f"Job status is not a string: {value!r}")
    status = _STATUS_ALIASES.get(value.strip().lower())
    if status is None:
        raise MalformedResponseError(f"Unknown job status: {value!r}")
    return status


def parse_progress(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return max(0.0, min(100.0, float(value)))
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-numeric progress value: {value!r}")
        return None


def require_mapping(body: Any, what: str) -> Dict[str, Any]:
    if not isinstance(body, dict):
        raise MalformedResponseError(f"{what} response is not a JSON object: {body!r}")
    return body


class GenericJobBackend(JobBackend):
    """Backend for services exposing the `/jobs` contract directly."""

    name = "jobs"

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def _job_url(self, job_id: JobId, suffix: str) -> str:
        return f"{self.base_url}/jobs/{job_id}/{suffix}"

    def validate_params(self, params: Mapping[str, Any]) -> None:
        if not isinstance(params, Mapping):
            raise ValidationError(f"Job parameters must be a mapping, got {type(params).__name__}.")
        bad_keys = [k for k in params if not isinstance(k, str) or not k]
        if bad_keys:
            raise ValidationError(f"Job parameter names must be non-empty strings: {bad_keys!r}")

    def submit_request(self, params: Mapping[str, Any]) -> TransportRequest:
        return TransportRequest("POST", f"{self.base_url}/jobs", json=dict(params), endpoint="submit")

    def parse_submit(self, body: Any) -> Tuple[JobId, JobStatus]:
        body = require_mapping(body, "submit")
        job_id = body.get("jobId")
        if not job_id:
            raise MalformedResponseError(f"Submit response carries no jobId: {body!r}")
        return JobId(str(job_id)), parse_status_text(body.get("status", "submitted"))

    def status_request(self, job_id: JobId) -> TransportRequest:
        return TransportRequest("GET", self._job_url(job_id, "status"), endpoint="status")

    def parse_status(self, body: Any) -> JobStatusReport:
        body = require_mapping(body, "status")
        return JobStatusReport(
            status=parse_status_text(body.get("status")),
            progress=parse_progress(body.get("progress")),
            message=body.get("message"),
        )

    def result_request(self, job_id: JobId) -> TransportRequest:
        return TransportRequest("GET", self._job_url(job_id, "result"), endpoint="result")

    def parse_result(self, job_id: JobId, body: Any) -> ResultPayload:
        if isinstance(body, dict):
            return ResultPayload(job_id=job_id, values=dict(body), raw=body)
        return ResultPayload(job_id=job_id, values={"result": body}, raw={"result": body})

    def messages_request(self, job_id: JobId) -> TransportRequest:
        return TransportRequest("GET", self._job_url(job_id, "messages"), endpoint="messages")

    def parse_messages(self, body: Any) -> List[JobMessage]:
        entries = body.get("messages") if isinstance(body, dict) else body
        if not isinstance(entries, list):
            raise MalformedResponseError(f"Messages response is not a list: {body!r}")
        messages = []
        for index, entry in enumerate(entries):
            entry = require_mapping(entry, "message entry")
            severity = _SEVERITY_ALIASES.get(str(entry.get("severity", "info")).lower(), MessageSeverity.INFO)
            sequence = entry.get("sequence", index)
            messages.append(JobMessage(severity=severity, text=str(entry.get("text", "")), sequence=int(sequence)))
        return sorted(messages, key=lambda m: m.sequence)

    def cancel_request(self, job_id: JobId) -> Optional[TransportRequest]:
        return TransportRequest("POST", self._job_url(job_id, "cancel"), endpoint="cancel")

    def parse_cancel(self, body: Any) -> JobStatus:
        body = require_mapping(body, "cancel")
        return parse_status_text(body.get("status"))
