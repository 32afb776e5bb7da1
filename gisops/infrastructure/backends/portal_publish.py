"""Backend for portal publish jobs (hosted layers created from uploaded items).

A publish job is addressed by both the source item and the job id, so the
handle id packs them as `"{itemId}:{jobId}"`.
"""

import json
import logging
from typing import Any, List, Mapping, Tuple

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
from gisops.infrastructure.backends.generic import require_mapping

logger = logging.getLogger(__name__)

PUBLISH_STATUS_MAP = {
    "pending": JobStatus.SUBMITTED,
    "processing": JobStatus.EXECUTING,
    "partial": JobStatus.EXECUTING,
    "completed": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
}

FILE_TYPES = ("csv", "shapefile", "geojson", "fileGeodatabase", "featureCollection", "excel", "serviceDefinition")


def make_job_id(item_id: str, job_id: str) -> JobId:
    return JobId(f"{item_id}:{job_id}")


def split_job_id(job_id: JobId) -> Tuple[str, str]:
    item_id, sep, remote_job_id = str(job_id).partition(":")
    if not sep or not item_id or not remote_job_id:
        raise ValidationError(f"Publish job id must look like 'itemId:jobId', got {job_id!r}.")
    return item_id, remote_job_id


class PortalPublishBackend(JobBackend):
    name = "portal-publish"

    def __init__(self, portal_url: str, username: str):
        self.rest_url = f"{portal_url.rstrip('/')}/sharing/rest"
        self.username = username

    def validate_params(self, params: Mapping[str, Any]) -> None:
        if not params.get("itemId"):
            raise ValidationError("Publishing requires the 'itemId' of the uploaded source item.")
        filetype = params.get("filetype")
        if filetype not in FILE_TYPES:
            raise ValidationError(f"Invalid filetype {filetype!r}. Expected one of: {', '.join(FILE_TYPES)}.")
        publish_parameters = params.get("publishParameters", {})
        if not isinstance(publish_parameters, dict):
            raise ValidationError("'publishParameters' must be an object.")

    def submit_request(self, params: Mapping[str, Any]) -> TransportRequest:
        form = {
            "f": "json",
            "itemId": str(params["itemId"]),
            "filetype": params["filetype"],
            "publishParameters": json.dumps(params.get("publishParameters", {})),
        }
        return TransportRequest(
            "POST", f"{self.rest_url}/content/users/{self.username}/publish", data=form, endpoint="publish",
        )

    def parse_submit(self, body: Any) -> Tuple[JobId, JobStatus]:
        body = require_mapping(body, "publish")
        services = body.get("services")
        if not isinstance(services, list) or not services:
            raise MalformedResponseError(f"Publish response lists no services: {body!r}")
        service = require_mapping(services[0], "published service")
        if isinstance(service.get("error"), dict):
            error = service["error"]
            raise ValidationError(
                f"publish: error {error.get('code')}: {error.get('message', 'publish rejected')}",
                code=error.get("code"),
            )
        item_id = service.get("serviceItemId")
        job_id = service.get("jobId")
        if not item_id or not job_id:
            raise MalformedResponseError(f"Published service carries no serviceItemId/jobId: {service!r}")
        return make_job_id(item_id, job_id), JobStatus.SUBMITTED

    def status_request(self, job_id: JobId) -> TransportRequest:
        item_id, remote_job_id = split_job_id(job_id)
        return TransportRequest(
            "GET",
            f"{self.rest_url}/content/users/{self.username}/items/{item_id}/status",
            params={"f": "json", "jobId": remote_job_id, "jobType": "publish"},
            endpoint="publishStatus",
        )

    def parse_status(self, body: Any) -> JobStatusReport:
        body = require_mapping(body, "publish status")
        raw_status = body.get("status")
        status = PUBLISH_STATUS_MAP.get(str(raw_status).lower()) if raw_status is not None else None
        if status is None:
            raise MalformedResponseError(f"Unknown publish status: {raw_status!r}")
        return JobStatusReport(status=status, message=body.get("statusMessage") or None)

    def result_request(self, job_id: JobId) -> TransportRequest:
        item_id, _ = split_job_id(job_id)
        return TransportRequest(
            "GET", f"{self.rest_url}/content/items/{item_id}", params={"f": "json"}, endpoint="item",
        )

    def parse_result(self, job_id: JobId, body: Any) -> ResultPayload:
        body = require_mapping(body, "item")
        values = {key: body.get(key) for key in ("id", "title", "type", "url") if key in body}
        return ResultPayload(job_id=job_id, values=values, raw=body)

    def messages_request(self, job_id: JobId) -> TransportRequest:
        return self.status_request(job_id)

    def parse_messages(self, body: Any) -> List[JobMessage]:
        body = require_mapping(body, "publish status")
        text = body.get("statusMessage")
        if not text:
            return []
        failed = str(body.get("status", "")).lower() == "failed"
        severity = MessageSeverity.ERROR if failed else MessageSeverity.INFO
        return [JobMessage(severity=severity, text=str(text), sequence=0)]
