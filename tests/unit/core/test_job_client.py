import pytest

from gisops.core.services.job_client import JobClient
from gisops.domain.errors import (
    CancellationUnsupportedError,
    NotFoundError,
    NotReadyError,
    RemoteJobFailure,
    ValidationError,
)
from gisops.domain.models.common import JobId
from gisops.domain.models.jobs import JobHandle, JobStatus
from gisops.infrastructure.backends import GenericJobBackend, GeoprocessingBackend, PortalPublishBackend
from tests.fakes import ScriptedTransport, ok

BASE = "https://jobs.example.com"
TASK = "https://gis.example.com/arcgis/rest/services/Tools/GPServer/Buffer"


@pytest.fixture
def client(retry_service) -> JobClient:
    return JobClient(GenericJobBackend(BASE), retry_service)


@pytest.fixture
def handle() -> JobHandle:
    return JobHandle(id=JobId("j1"))


async def test_submit_returns_handle(client: JobClient, transport: ScriptedTransport):
    transport.on("POST", f"{BASE}/jobs", ok({"jobId": "j1", "status": "submitted"}))

    handle = await client.submit({"op": "profile", "path": [[0, 0], [1, 1]]})

    assert handle.id == "j1"
    assert transport.requests[0].json == {"op": "profile", "path": [[0, 0], [1, 1]]}


async def test_invalid_params_fail_before_any_network_call(client: JobClient, transport: ScriptedTransport):
    with pytest.raises(ValidationError):
        await client.submit({"": "nameless"})
    assert transport.requests == []


async def test_unknown_job_is_not_found(client: JobClient, transport: ScriptedTransport, handle):
    transport.on("GET", f"{BASE}/jobs/j1/status", ok({"error": {"code": 404, "message": "Job expired"}}))

    with pytest.raises(NotFoundError):
        await client.get_status(handle)


async def test_result_before_success_is_not_ready(client: JobClient, transport: ScriptedTransport, handle):
    transport.on("GET", f"{BASE}/jobs/j1/status", ok({"status": "executing", "progress": 40}))

    with pytest.raises(NotReadyError) as exc_info:
        await client.get_result(handle)

    assert exc_info.value.status is JobStatus.EXECUTING
    assert transport.calls("GET", f"{BASE}/jobs/j1/result") == []


async def test_failed_job_raises_with_message_log(client: JobClient, transport: ScriptedTransport, handle):
    transport.on("GET", f"{BASE}/jobs/j1/status", ok({"status": "failed"}))
    transport.on("GET", f"{BASE}/jobs/j1/messages", ok([
        {"severity": "info", "text": "Started", "sequence": 0},
        {"severity": "error", "text": "Input path is empty", "sequence": 1},
    ]))

    with pytest.raises(RemoteJobFailure) as exc_info:
        await client.get_result(handle)

    assert [m.text for m in exc_info.value.messages] == ["Started", "Input path is empty"]
    assert "Input path is empty" in str(exc_info.value)


async def test_result_of_succeeded_job(client: JobClient, transport: ScriptedTransport, handle):
    transport.on("GET", f"{BASE}/jobs/j1/status", ok({"status": "succeeded"}))
    transport.on("GET", f"{BASE}/jobs/j1/result", ok({"profile": [1, 2, 3]}))

    payload = await client.get_result(handle)

    assert payload.get("profile") == [1, 2, 3]


async def test_result_parameters_are_merged_from_follow_ups(retry_service, transport: ScriptedTransport, handle):
    client = JobClient(GeoprocessingBackend(TASK), retry_service)
    transport.on("GET", f"{TASK}/jobs/j1", ok({"jobId": "j1", "jobStatus": "esriJobSucceeded",
                                               "results": {"Output": {"paramUrl": "results/Output"}}}))
    transport.on("GET", f"{TASK}/jobs/j1/results/Output", ok({"paramName": "Output", "value": {"features": [1]}}))

    payload = await client.get_result(handle)

    assert payload.values == {"Output": {"features": [1]}}


async def test_messages_since(client: JobClient, transport: ScriptedTransport, handle):
    transport.on("GET", f"{BASE}/jobs/j1/messages", ok({"messages": [
        {"text": "c", "sequence": 3}, {"text": "a", "sequence": 1}, {"text": "b", "sequence": 2},
    ]}))

    assert [m.text for m in await client.get_messages(handle)] == ["a", "b", "c"]
    assert [m.text for m in await client.get_messages(handle, since=1)] == ["b", "c"]


# --- Cancellation ---

async def test_cancel_of_finished_job_is_a_no_op(client: JobClient, transport: ScriptedTransport, handle):
    transport.on("GET", f"{BASE}/jobs/j1/status", ok({"status": "succeeded"}))

    assert await client.cancel(handle) is JobStatus.SUCCEEDED
    assert transport.calls("POST", f"{BASE}/jobs/j1/cancel") == []


async def test_cancel_of_running_job_is_cancelling(client: JobClient, transport: ScriptedTransport, handle):
    transport.on("GET", f"{BASE}/jobs/j1/status", ok({"status": "executing"}))
    transport.on("POST", f"{BASE}/jobs/j1/cancel", ok({"status": "cancelling"}))

    assert await client.cancel(handle) is JobStatus.CANCELLING
    assert len(transport.calls("POST", f"{BASE}/jobs/j1/cancel")) == 1


async def test_cancel_losing_the_race_reports_the_terminal_status(client, transport: ScriptedTransport, handle):
    transport.on("GET", f"{BASE}/jobs/j1/status", ok({"status": "executing"}))
    transport.on("POST", f"{BASE}/jobs/j1/cancel", ok({"status": "succeeded"}))

    assert await client.cancel(handle) is JobStatus.SUCCEEDED


async def test_cancel_unsupported(retry_service, transport: ScriptedTransport):
    client = JobClient(PortalPublishBackend("https://portal.example.com", "gis_user"), retry_service)
    transport.on(
        "GET",
        "https://portal.example.com/sharing/rest/content/users/gis_user/items/svc1/status",
        ok({"status": "processing"}),
    )

    with pytest.raises(CancellationUnsupportedError):
        await client.cancel(JobHandle(id=JobId("svc1:job9")))


async def test_get_status_is_idempotent(client: JobClient, transport: ScriptedTransport, handle):
    transport.on("GET", f"{BASE}/jobs/j1/status", ok({"status": "executing", "progress": 55, "message": "Tracing"}))

    first = await client.get_status(handle)
    second = await client.get_status(handle)

    assert (first.status, first.progress, first.message) == (second.status, second.progress, second.message)
    assert first.status is JobStatus.EXECUTING
    assert [(r.method, r.url) for r in transport.requests] == [("GET", f"{BASE}/jobs/j1/status")] * 2
