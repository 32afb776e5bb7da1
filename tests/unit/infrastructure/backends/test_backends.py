import json

import pytest

from gisops.domain.errors import MalformedResponseError, ValidationError
from gisops.domain.models.common import JobId
from gisops.domain.models.jobs import JobStatus, MessageSeverity, ResultPayload
from gisops.infrastructure.backends import (
    ElevationBackend,
    GenericJobBackend,
    GeoprocessingBackend,
    PortalPublishBackend,
)
from gisops.infrastructure.backends.elevation import ELEVATION_GP_URL

TASK_URL = "https://gis.example.com/arcgis/rest/services/Tools/GPServer/Buffer"


# --- Generic /jobs contract ---

class TestGenericJobBackend:
    backend = GenericJobBackend("https://jobs.example.com/api/")

    def test_requests_follow_the_jobs_contract(self):
        submit = self.backend.submit_request({"op": "profile"})
        assert (submit.method, submit.url, submit.json) == ("POST", "https://jobs.example.com/api/jobs", {"op": "profile"})
        assert self.backend.status_request(JobId("j1")).url == "https://jobs.example.com/api/jobs/j1/status"
        assert self.backend.result_request(JobId("j1")).url.endswith("/jobs/j1/result")
        assert self.backend.messages_request(JobId("j1")).url.endswith("/jobs/j1/messages")
        cancel = self.backend.cancel_request(JobId("j1"))
        assert (cancel.method, cancel.url) == ("POST", "https://jobs.example.com/api/jobs/j1/cancel")

    def test_parse_submit_and_status(self):
        assert self.backend.parse_submit({"jobId": "j1", "status": "Executing"}) == ("j1", JobStatus.EXECUTING)
        report = self.backend.parse_status({"status": "executing", "progress": 42})
        assert report.status is JobStatus.EXECUTING
        assert report.progress == 42.0

    def test_remote_timeout_is_a_failure_not_timed_out(self):
        assert self.backend.parse_status({"status": "timedOut"}).status is JobStatus.FAILED

    def test_unknown_status_is_malformed(self):
        with pytest.raises(MalformedResponseError):
            self.backend.parse_status({"status": "sleeping"})
        with pytest.raises(MalformedResponseError):
            self.backend.parse_submit({"status": "submitted"})

    def test_messages_are_ordered_by_sequence(self):
        messages = self.backend.parse_messages([
            {"severity": "error", "text": "boom", "sequence": 2},
            {"severity": "info", "text": "start", "sequence": 1},
        ])
        assert [(m.sequence, m.severity) for m in messages] == [(1, MessageSeverity.INFO), (2, MessageSeverity.ERROR)]

    def test_validate_params_rejects_non_string_keys(self):
        with pytest.raises(ValidationError):
            self.backend.validate_params({1: "x"})


# --- Geoprocessing ---

class TestGeoprocessingBackend:
    backend = GeoprocessingBackend(TASK_URL)

    def test_submit_form_encodes_parameters(self):
        request = self.backend.submit_request({"Distance": 5, "Units": "Meters", "Input": {"features": []}})
        assert request.url == f"{TASK_URL}/submitJob"
        assert request.data == {
            "f": "json", "Distance": "5", "Units": "Meters", "Input": json.dumps({"features": []}),
        }

    @pytest.mark.parametrize("remote,expected", [
        ("esriJobNew", JobStatus.SUBMITTED),
        ("esriJobWaiting", JobStatus.SUBMITTED),
        ("esriJobExecuting", JobStatus.EXECUTING),
        ("esriJobSucceeded", JobStatus.SUCCEEDED),
        ("esriJobFailed", JobStatus.FAILED),
        ("esriJobTimedOut", JobStatus.FAILED),
        ("esriJobCancelling", JobStatus.CANCELLING),
        ("esriJobCancelled", JobStatus.CANCELLED),
        ("esriJobDeleted", JobStatus.CANCELLED),
    ])
    def test_status_mapping(self, remote, expected):
        assert self.backend.parse_status({"jobId": "j", "jobStatus": remote}).status is expected

    def test_progress_is_read_from_percent(self):
        report = self.backend.parse_status({
            "jobStatus": "esriJobExecuting", "progress": {"type": "default", "message": "Buffering", "percent": 55},
        })
        assert report.progress == 55.0
        assert report.message == "Buffering"

    def test_messages_use_esri_types(self):
        messages = self.backend.parse_messages({"messages": [
            {"type": "esriJobMessageTypeInformative", "description": "Executing"},
            {"type": "esriJobMessageTypeWarning", "description": "Slow"},
            {"type": "esriJobMessageTypeError", "description": "Failed"},
        ]})
        assert [m.severity for m in messages] == [MessageSeverity.INFO, MessageSeverity.WARNING, MessageSeverity.ERROR]
        assert [m.sequence for m in messages] == [0, 1, 2]
        assert self.backend.messages_request(JobId("j1")).params["returnMessages"] == "true"

    def test_result_parameters_are_fetched_by_reference(self):
        body = {"jobId": "j1", "results": {"Output": {"paramUrl": "results/Output"}}}
        payload = self.backend.parse_result(JobId("j1"), body)
        requests = self.backend.follow_up_requests(JobId("j1"), payload)
        assert list(requests) == ["Output"]
        assert requests["Output"].url == f"{TASK_URL}/jobs/j1/results/Output"
        assert self.backend.parse_follow_up("Output", {"paramName": "Output", "value": {"features": []}}) == {"features": []}

    def test_cancel(self):
        request = self.backend.cancel_request(JobId("j1"))
        assert (request.method, request.url) == ("POST", f"{TASK_URL}/jobs/j1/cancel")
        assert self.backend.parse_cancel({"jobId": "j1", "jobStatus": "esriJobCancelling"}) is JobStatus.CANCELLING


# --- Elevation ---

def test_elevation_backend_targets_the_task():
    backend = ElevationBackend("Viewshed")
    assert backend.task_url == f"{ELEVATION_GP_URL}/Viewshed"
    assert backend.submit_request({"InputPoints": {}}).url == f"{ELEVATION_GP_URL}/Viewshed/submitJob"


def test_elevation_requires_task_inputs():
    backend = ElevationBackend("Profile")
    with pytest.raises(ValidationError, match="InputLineFeatures"):
        backend.validate_params({"DEMResolution": "30m"})
    backend.validate_params({"InputLineFeatures": {"features": [{}]}, "DEMResolution": "FINEST"})


def test_elevation_rejects_unknown_resolution_and_task():
    with pytest.raises(ValidationError, match="DEMResolution"):
        ElevationBackend("Profile").validate_params({"InputLineFeatures": {"features": [{}]}, "DEMResolution": "5m"})
    with pytest.raises(ValidationError):
        ElevationBackend("Slope")


# --- Portal publish ---

class TestPortalPublishBackend:
    backend = PortalPublishBackend("https://www.arcgis.com", "gis_user")

    def test_submit_and_handle_id(self):
        request = self.backend.submit_request({"itemId": "abc", "filetype": "csv", "publishParameters": {"name": "Trees"}})
        assert request.url == "https://www.arcgis.com/sharing/rest/content/users/gis_user/publish"
        assert json.loads(request.data["publishParameters"]) == {"name": "Trees"}
        body = {"services": [{"serviceItemId": "svc1", "jobId": "job9", "type": "Feature Service"}]}
        assert self.backend.parse_submit(body) == ("svc1:job9", JobStatus.SUBMITTED)

    def test_publish_error_is_validation(self):
        body = {"services": [{"success": False, "error": {"code": 400, "message": "Item not found"}}]}
        with pytest.raises(ValidationError, match="Item not found"):
            self.backend.parse_submit(body)

    def test_status_request(self):
        request = self.backend.status_request(JobId("svc1:job9"))
        assert request.url == "https://www.arcgis.com/sharing/rest/content/users/gis_user/items/svc1/status"
        assert request.params == {"f": "json", "jobId": "job9", "jobType": "publish"}

    @pytest.mark.parametrize("remote,expected", [
        ("processing", JobStatus.EXECUTING),
        ("partial", JobStatus.EXECUTING),
        ("completed", JobStatus.SUCCEEDED),
        ("failed", JobStatus.FAILED),
    ])
    def test_status_mapping(self, remote, expected):
        assert self.backend.parse_status({"status": remote}).status is expected

    def test_failure_message(self):
        messages = self.backend.parse_messages({"status": "failed", "statusMessage": "Bad CSV"})
        assert len(messages) == 1
        assert messages[0].severity is MessageSeverity.ERROR

    def test_no_remote_cancel(self):
        assert self.backend.cancel_request(JobId("svc1:job9")) is None

    def test_validation(self):
        with pytest.raises(ValidationError):
            self.backend.validate_params({"filetype": "csv"})
        with pytest.raises(ValidationError):
            self.backend.validate_params({"itemId": "abc", "filetype": "docx"})
        with pytest.raises(ValidationError):
            self.backend.status_request(JobId("no-separator"))

    def test_result_exposes_item_fields(self):
        payload = self.backend.parse_result(JobId("svc1:job9"), {"id": "svc1", "title": "Trees", "url": "https://x/FeatureServer"})
        assert isinstance(payload, ResultPayload)
        assert payload.get("url") == "https://x/FeatureServer"
