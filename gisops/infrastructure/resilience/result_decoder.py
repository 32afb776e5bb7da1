"""Classifies raw failures into the error taxonomy.

ArcGIS-style services report many errors inside HTTP 200 bodies
(`{"error": {"code": 498, "message": "...", "details": [...]}}`), so both the
HTTP status and any embedded error code are inspected. Only the two
retryable classes feed the retry service; everything else is surfaced to the
caller unchanged.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from gisops.domain.errors import (
    GisOpsError,
    MalformedResponseError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    RemoteJobFailure,
    ValidationError,
)
from gisops.domain.interfaces.transport import TransportResponse

logger = logging.getLogger(__name__)

# ArcGIS token errors: 498 invalid/expired token, 499 token required.
PERMISSION_CODES = frozenset({401, 403, 498, 499})


class FailureClass(str, Enum):
    RETRYABLE_TRANSPORT = "retryable-transport"
    RETRYABLE_RATE_LIMIT = "retryable-rate-limit"
    TERMINAL_VALIDATION = "terminal-validation"
    TERMINAL_PERMISSION = "terminal-permission"
    TERMINAL_NOT_FOUND = "terminal-not-found"
    REMOTE_JOB_FAILURE = "remote-job-failure"
    ITEM_LEVEL_FAILURE = "item-level-failure"

    @property
    def retryable(self) -> bool:
        return self in (FailureClass.RETRYABLE_TRANSPORT, FailureClass.RETRYABLE_RATE_LIMIT)


@dataclass(frozen=True)
class EmbeddedError:
    code: Optional[int]
    message: str
    details: List[str]


@dataclass(frozen=True)
class ItemOutcome:
    """Decoded fields of one applyEdits result entry."""
    success: bool
    object_id: Optional[int] = None
    global_id: Optional[str] = None
    client_temp_id: Optional[str] = None
    error_code: Optional[int] = None
    error_message: Optional[str] = None


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


class ResultDecoder:
    """Turns transport responses and exceptions into taxonomy classes/errors."""

    def classify_status(self, status_code: int, retry_after: Optional[float] = None) -> Optional[FailureClass]:
        """Classifies an HTTP (or embedded) status code. None means success."""
        if 200 <= status_code < 300:
            return None
        if status_code == 429:
            return FailureClass.RETRYABLE_RATE_LIMIT
        if status_code >= 500 and retry_after is not None:
            # 503 with Retry-After is a backoff hint.
            return FailureClass.RETRYABLE_RATE_LIMIT
        if status_code >= 500:
            return FailureClass.RETRYABLE_TRANSPORT
        if status_code in PERMISSION_CODES:
            return FailureClass.TERMINAL_PERMISSION
        if status_code == 404:
            return FailureClass.TERMINAL_NOT_FOUND
        return FailureClass.TERMINAL_VALIDATION

    def embedded_error(self, body: Any) -> Optional[EmbeddedError]:
        """Extracts an `{"error": {...}}` envelope from a response body."""
        if not isinstance(body, dict) or not isinstance(body.get("error"), dict):
            return None
        error: Dict[str, Any] = body["error"]
        details = error.get("details") or []
        if not isinstance(details, list):
            details = [str(details)]
        return EmbeddedError(
            code=_as_int(error.get("code")),
            message=str(error.get("message") or error.get("description") or "Unknown error"),
            details=[str(d) for d in details],
        )

    def classify_response(self, response: TransportResponse) -> Optional[FailureClass]:
        failure = self.classify_status(response.status_code, response.retry_after)
        if failure is not None:
            return failure
        embedded = self.embedded_error(response.body)
        if embedded is None:
            return None
        # An embedded error without a code is still an error.
        return self.classify_status(embedded.code or 400)

    def classify_exception(self, error: BaseException) -> FailureClass:
        if isinstance(error, RateLimitError):
            return FailureClass.RETRYABLE_RATE_LIMIT
        if isinstance(error, NetworkError):
            return FailureClass.RETRYABLE_TRANSPORT
        if isinstance(error, PermissionDeniedError):
            return FailureClass.TERMINAL_PERMISSION
        if isinstance(error, NotFoundError):
            return FailureClass.TERMINAL_NOT_FOUND
        if isinstance(error, RemoteJobFailure):
            return FailureClass.REMOTE_JOB_FAILURE
        return FailureClass.TERMINAL_VALIDATION

    def raise_for_response(self, response: TransportResponse, endpoint: str = "") -> Any:
        """Returns the response body, or raises the error it represents.

        Raises:
            RateLimitError, NetworkError: Retryable failures.
            PermissionDeniedError, NotFoundError, ValidationError: Terminal failures.
        """
        failure = self.classify_response(response)
        if failure is None:
            return response.body

        embedded = self.embedded_error(response.body)
        if embedded is not None:
            code = embedded.code if embedded.code is not None else response.status_code
            message = embedded.message
            details = embedded.details
        else:
            code = response.status_code
            message = self._body_excerpt(response.body) or f"HTTP {response.status_code}"
            details = []
        label = f"{endpoint}: " if endpoint else ""
        text = f"{label}HTTP {response.status_code}, error {code}: {message}"

        logger.debug(f"Classified response from '{endpoint}' as {failure.value} (code={code})")
        raise self._error_for(failure, text, code, details, response.retry_after)

    def _error_for(
        self,
        failure: FailureClass,
        text: str,
        code: Optional[int],
        details: List[str],
        retry_after: Optional[float],
    ) -> GisOpsError:
        if failure is FailureClass.RETRYABLE_RATE_LIMIT:
            return RateLimitError(text, retry_after=retry_after, code=code, details=details)
        if failure is FailureClass.RETRYABLE_TRANSPORT:
            return NetworkError(text, code=code, details=details)
        if failure is FailureClass.TERMINAL_PERMISSION:
            return PermissionDeniedError(text, code=code, details=details)
        if failure is FailureClass.TERMINAL_NOT_FOUND:
            return NotFoundError(text, code=code, details=details)
        return ValidationError(text, code=code, details=details)

    @staticmethod
    def _body_excerpt(body: Any, limit: int = 200) -> str:
        if body is None:
            return ""
        text = body if isinstance(body, str) else repr(body)
        return text[:limit]

    # --- Item-level decoding ---

    def decode_item(self, raw: Any) -> ItemOutcome:
        """Decodes one entry of addResults/updateResults/deleteResults.

        Item failures are data, not exceptions: they are returned verbatim
        inside the outcome and must never be retried.
        """
        if not isinstance(raw, dict) or "success" not in raw:
            raise MalformedResponseError(f"Edit result entry is not an object with 'success': {raw!r}")
        error = raw.get("error") if isinstance(raw.get("error"), dict) else None
        success = _as_bool(raw.get("success"))
        if success is None:
            raise MalformedResponseError(f"Edit result entry has a non-boolean 'success': {raw!r}")
        if not success and error is None:
            logger.debug(f"Failed edit result entry carries no error object: {raw!r}")
        client_temp_id = raw.get("clientTempId")
        return ItemOutcome(
            success=success,
            object_id=_as_int(raw.get("objectId", raw.get("assignedId"))),
            global_id=raw.get("globalId"),
            client_temp_id=str(client_temp_id) if client_temp_id is not None else None,
            error_code=_as_int(error.get("code")) if error else None,
            error_message=(error.get("description") or error.get("message")) if error else None,
        )
