import pytest

from gisops.domain.errors import (
    MalformedResponseError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ValidationError,
)
from gisops.infrastructure.resilience.result_decoder import FailureClass, ResultDecoder
from tests.fakes import ok


@pytest.fixture
def decoder() -> ResultDecoder:
    return ResultDecoder()


@pytest.mark.parametrize("status,retry_after,expected", [
    (200, None, None),
    (429, None, FailureClass.RETRYABLE_RATE_LIMIT),
    (503, 5.0, FailureClass.RETRYABLE_RATE_LIMIT),
    (500, None, FailureClass.RETRYABLE_TRANSPORT),
    (502, None, FailureClass.RETRYABLE_TRANSPORT),
    (400, None, FailureClass.TERMINAL_VALIDATION),
    (409, None, FailureClass.TERMINAL_VALIDATION),
    (401, None, FailureClass.TERMINAL_PERMISSION),
    (403, None, FailureClass.TERMINAL_PERMISSION),
    (498, None, FailureClass.TERMINAL_PERMISSION),
    (404, None, FailureClass.TERMINAL_NOT_FOUND),
])
def test_classify_status(decoder, status, retry_after, expected):
    assert decoder.classify_status(status, retry_after) == expected


def test_only_two_classes_are_retryable():
    assert {c for c in FailureClass if c.retryable} == {
        FailureClass.RETRYABLE_TRANSPORT, FailureClass.RETRYABLE_RATE_LIMIT,
    }


def test_embedded_error_in_http_200_is_classified_by_code(decoder):
    response = ok({"error": {"code": 498, "message": "Invalid token.", "details": []}})
    assert decoder.classify_response(response) is FailureClass.TERMINAL_PERMISSION
    with pytest.raises(PermissionDeniedError) as exc_info:
        decoder.raise_for_response(response, endpoint="submitJob")
    assert exc_info.value.code == 498
    assert "submitJob" in str(exc_info.value)
    assert "Invalid token." in str(exc_info.value)


def test_embedded_error_without_code_is_validation(decoder):
    response = ok({"error": {"message": "Unable to complete operation.", "details": ["bad field"]}})
    with pytest.raises(ValidationError) as exc_info:
        decoder.raise_for_response(response)
    assert exc_info.value.details == ["bad field"]


def test_rate_limit_carries_retry_after(decoder):
    with pytest.raises(RateLimitError) as exc_info:
        decoder.raise_for_response(ok("Too Many Requests", status_code=429, retry_after=3.0))
    assert exc_info.value.retry_after == 3.0


def test_server_errors_become_network_errors(decoder):
    with pytest.raises(NetworkError):
        decoder.raise_for_response(ok("<html>Bad gateway</html>", status_code=502))


def test_not_found(decoder):
    with pytest.raises(NotFoundError):
        decoder.raise_for_response(ok({"error": {"code": 404, "message": "Job not found"}}))


def test_success_returns_body(decoder):
    assert decoder.raise_for_response(ok({"jobId": "j1"})) == {"jobId": "j1"}


def test_classify_exception(decoder):
    assert decoder.classify_exception(NetworkError("x")) is FailureClass.RETRYABLE_TRANSPORT
    assert decoder.classify_exception(RateLimitError("x")) is FailureClass.RETRYABLE_RATE_LIMIT
    assert decoder.classify_exception(ValidationError("x")) is FailureClass.TERMINAL_VALIDATION


def test_decode_item_success(decoder):
    outcome = decoder.decode_item({"objectId": 12, "globalId": "{G}", "success": True})
    assert outcome.success
    assert outcome.object_id == 12
    assert outcome.global_id == "{G}"
    assert outcome.error_code is None


def test_decode_item_failure(decoder):
    outcome = decoder.decode_item({
        "clientTempId": "tmp-2", "success": False, "error": {"code": 1000, "description": "Invalid geometry."},
    })
    assert not outcome.success
    assert outcome.client_temp_id == "tmp-2"
    assert outcome.error_code == 1000
    assert outcome.error_message == "Invalid geometry."


def test_decode_item_requires_success_flag(decoder):
    with pytest.raises(MalformedResponseError):
        decoder.decode_item({"objectId": 1})


@pytest.mark.parametrize("flag,expected", [("false", False), ("False", False), ("true", True), (False, False)])
def test_decode_item_parses_string_success_flags(decoder, flag, expected):
    assert decoder.decode_item({"objectId": 3, "success": flag}).success is expected


@pytest.mark.parametrize("flag", [None, "yes", 1, {}])
def test_decode_item_rejects_non_boolean_success(decoder, flag):
    with pytest.raises(MalformedResponseError):
        decoder.decode_item({"objectId": 3, "success": flag})
