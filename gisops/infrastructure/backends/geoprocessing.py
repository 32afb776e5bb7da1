"""Backend for asynchronous ArcGIS geoprocessing (GPServer) tasks."""

import json
import logging
from typing import Any, Dict, List, Mapping, Tuple

from gisops.domain.errors import MalformedResponseError
from gisops.domain.interfaces.transport import TransportRequest
from gisops.domain.models.common import JobId
from gisops.domain.models.jobs import (
    JobMessage,
    JobStatus,
    JobStatusReport,
    MessageSeverity,
    ResultPayload,
)
from gisops.infrastructure.backends.generic import GenericJobBackend, parse_progress, require_mapping

logger = logging.getLogger(__name__)

GP_STATUS_MAP: Dict[str, JobStatus] = {
    "esriJobNew": JobStatus.SUBMITTED,
    "esriJobSubmitted": JobStatus.SUBMITTED,
    "esriJobSubmitting": JobStatus.SUBMITTED,
    "esriJobWaiting": JobStatus.SUBMITTED,
    "esriJobExecuting": JobStatus.EXECUTING,
    "esriJobSucceeded": JobStatus.SUCCEEDED,
    "esriJobFailed": JobStatus.FAILED,
    "esriJobTimedOut": JobStatus.FAILED,
    "esriJobCancelling": JobStatus.CANCELLING,
    "esriJobCancelled": JobStatus.CANCELLED,
    "esriJobDeleting": JobStatus.CANCELLED,
    "esriJobDeleted": JobStatus.CANCELLED,
}

GP_MESSAGE_SEVERITY: Dict[str, MessageSeverity] = {
    "esriJobMessageTypeInformative": MessageSeverity.INFO,
    "esriJobMessageTypeEmpty": MessageSeverity.INFO,
    "esriJobMessageTypeWarning": MessageSeverity.WARNING,
    "esriJobMessageTypeError": MessageSeverity.ERROR,
    "esriJobMessageTypeAbort": MessageSeverity.ERROR,
}


def parse_gp_status(value: Any) -> JobStatus:
    status = GP_STATUS_MAP.get(value) if isinstance(value, str) else None
    if status is None:
        raise MalformedResponseError(f"Unknown geoprocessing job status: {value!r}")
    return status


def encode_gp_params(params: Mapping[str, Any]) -> Dict[str, str]:
    """Form-encodes task parameters. Strings pass through, everything else is JSON."""
    form = {"f": "json"}
    for name, value in params.items():
        form[name] = value if isinstance(value, str) else json.dumps(value)
    return form


class GeoprocessingBackend(GenericJobBackend):
    """Maps the job capability set onto `{task}/submitJob` and `{task}/jobs/{id}`."""

    name = "geoprocessing"

    def __init__(self, task_url: str):
        super().__init__(task_url)
        self.task_url = self.base_url

    def _job_url(self, job_id: JobId, suffix: str = "") -> str:
        url = f"{self.task_url}/jobs/{job_id}"
        return f"{url}/{suffix.lstrip('/')}" if suffix else url

    def submit_request(self, params: Mapping[str, Any]) -> TransportRequest:
        return TransportRequest(
            "POST", f"{self.task_url}/submitJob", data=encode_gp_params(params), endpoint="submitJob",
        )

    def parse_submit(self, body: Any) -> Tuple[JobId, JobStatus]:
        body = require_mapping(body, "submitJob")
        job_id = body.get("jobId")
        if not job_id:
            raise MalformedResponseError(f"submitJob response carries no jobId: {body!r}")
        return JobId(str(job_id)), parse_gp_status(body.get("jobStatus", "esriJobSubmitted"))

    def status_request(self, job_id: JobId) -> TransportRequest:
        return TransportRequest(
            "GET", self._job_url(job_id), params={"f": "json", "returnMessages": "false"}, endpoint="jobStatus",
        )

    def parse_status(self, body: Any) -> JobStatusReport:
        body = require_mapping(body, "job status")
        progress = body.get("progress")
        percent = progress.get("percent") if isinstance(progress, dict) else None
        message = progress.get("message") if isinstance(progress, dict) else None
        return JobStatusReport(
            status=parse_gp_status(body.get("jobStatus")),
            progress=parse_progress(percent),
            message=message,
        )

    def result_request(self, job_id: JobId) -> TransportRequest:
        return TransportRequest("GET", self._job_url(job_id), params={"f": "json"}, endpoint="jobResults")

    def parse_result(self, job_id: JobId, body: Any) -> ResultPayload:
        body = require_mapping(body, "job results")
        results = body.get("results") or {}
        if not isinstance(results, dict):
            raise MalformedResponseError(f"Job results are not an object: {results!r}")
        # Output values are resolved through follow-up requests.
        return ResultPayload(job_id=job_id, values={}, raw=body)

    def follow_up_requests(self, job_id: JobId, payload: ResultPayload) -> Dict[str, TransportRequest]:
        requests = {}
        for name, ref in (payload.raw.get("results") or {}).items():
            param_url = ref.get("paramUrl") if isinstance(ref, dict) else None
            if not param_url:
                logger.warning(f"Result parameter '{name}' of job {job_id} has no paramUrl; skipping.")
                continue
            requests[name] = TransportRequest(
                "GET", self._job_url(job_id, param_url), params={"f": "json"}, endpoint=f"result:{name}",
            )
        return requests

    def parse_follow_up(self, name: str, body: Any) -> Any:
        body = require_mapping(body, f"result parameter '{name}'")
        if "value" not in body:
            raise MalformedResponseError(f"Result parameter '{name}' carries no value: {body!r}")
        return body["value"]

    def messages_request(self, job_id: JobId) -> TransportRequest:
        return TransportRequest(
            "GET", self._job_url(job_id), params={"f": "json", "returnMessages": "true"}, endpoint="jobMessages",
        )

    def parse_messages(self, body: Any) -> List[JobMessage]:
        body = require_mapping(body, "job messages")
        entries = body.get("messages") or []
        if not isinstance(entries, list):
            raise MalformedResponseError(f"Job messages are not a list: {entries!r}")
        messages = []
        for index, entry in enumerate(entries):
            entry = require_mapping(entry, "job message")
            severity = GP_MESSAGE_SEVERITY.get(entry.get("type"), MessageSeverity.INFO)
            messages.append(JobMessage(severity=severity, text=str(entry.get("description", "")), sequence=index))
        return messages

    def cancel_request(self, job_id: JobId) -> TransportRequest:
        return TransportRequest("POST", self._job_url(job_id, "cancel"), data={"f": "json"}, endpoint="cancelJob")

    def parse_cancel(self, body: Any) -> JobStatus:
        body = require_mapping(body, "cancelJob")
        return parse_gp_status(body.get("jobStatus"))
