"""
Core service applying atomic multi-item feature edits.

Each `apply_edits` call is exactly one network request. Results are placed
back onto the request through an explicit correlation map (client temp ids
for adds, feature ids for updates and deletes) rather than by trusting the
server to preserve order. Item failures are data; only the failure of the
call itself raises.
"""

import json
import re
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from gisops.domain.errors import MalformedResponseError, ValidationError
from gisops.domain.events.api_events import EditBatchApplied, EventDispatcher
from gisops.domain.interfaces.transport import TransportRequest
from gisops.domain.models.edits import (
    AddItem,
    BatchEditRequest,
    DeleteItem,
    EditItemResult,
    EditKind,
    EditResult,
    UpdateItem,
)
from gisops.infrastructure.resilience.api_retry import ApiRetryService
from gisops.infrastructure.resilience.result_decoder import ItemOutcome, ResultDecoder

logger = logging.getLogger(__name__)

RESULT_KEYS = {
    EditKind.ADD: "addResults",
    EditKind.UPDATE: "updateResults",
    EditKind.DELETE: "deleteResults",
}


def _key(value: Any) -> str:
    """Normalizes ids for lookups: GUIDs compare without braces, case-insensitively."""
    return str(value).strip().strip("{}").lower()


class CorrelationMap:
    """Maps echoed result keys back to request positions for one item kind."""

    def __init__(self, kind: EditKind, normalize: Callable[[Any], str] = _key):
        self.kind = kind
        self._normalize = normalize
        self._by_key: Dict[str, int] = {}
        self._taken: Dict[int, int] = {}  # request index -> result position

    def register(self, key: Any, index: int) -> None:
        if key is None or key == "":
            return
        self._by_key.setdefault(self._normalize(key), index)

    def lookup(self, key: Any) -> Optional[int]:
        if key is None:
            return None
        return self._by_key.get(self._normalize(key))

    def claim(self, index: int, position: int) -> None:
        if index in self._taken:
            raise MalformedResponseError(
                f"{RESULT_KEYS[self.kind]} entries {self._taken[index]} and {position} "
                f"both describe request item {index}."
            )
        self._taken[index] = position


class BatchEditCoordinator:
    """Applies a BatchEditRequest to one layer through `applyEdits`."""

    def __init__(
        self,
        service_url: str,
        retry_service: ApiRetryService,
        decoder: Optional[ResultDecoder] = None,
        dispatcher: Optional[EventDispatcher] = None,
        object_id_field: str = "OBJECTID",
        global_id_field: str = "GlobalID",
    ):
        """Initializes the coordinator.

        Args:
            service_url: Feature service URL; layers live at `{service_url}/{layer_id}`.
            retry_service: Shared rate-limited sender. Edits are never retried.
            decoder: Item result decoder.
            dispatcher: Receiver of EditBatchApplied events.
            object_id_field: Attribute naming the object id of updated features.
            global_id_field: Attribute naming the global id of features.
        """
        self.service_url = service_url.rstrip("/")
        self.retry_service = retry_service
        self.decoder = decoder or ResultDecoder()
        self.dispatcher = dispatcher or EventDispatcher()
        self.object_id_field = object_id_field
        self.global_id_field = global_id_field

    async def apply_edits(self, layer_id: Any, request: BatchEditRequest) -> EditResult:
        """Sends all adds, updates and deletes of `request` in one call.

        Returns:
            One EditItemResult per request item, aligned with the request.
            With `rollback_on_failure` any failure fails every item.

        Raises:
            ValidationError: If the request is structurally invalid (no network
                call is made) or the server rejects the call as a whole while
                rollback is off.
            NetworkError, RateLimitError: If the call itself fails. No partial
                result exists in that case.
            MalformedResponseError: If the response cannot be correlated or
                breaks the all-or-nothing contract.
        """
        self.validate(request)
        http_request = self.build_request(layer_id, request)
        logger.info(
            f"Applying edits to layer {layer_id}: {len(request.adds)} add(s), {len(request.updates)} update(s), "
            f"{len(request.deletes)} delete(s), rollback_on_failure={request.rollback_on_failure}"
        )

        try:
            body = await self.retry_service.request(http_request, retry=False)
        except ValidationError as e:
            if not request.rollback_on_failure:
                raise
            # The server refused the atomic batch as a whole: nothing was persisted.
            logger.warning(f"applyEdits on layer {layer_id} rejected as a whole: {e}")
            result = self._rejected_batch(request, e)
            self._report(layer_id, result, rolled_back=True)
            return result

        result = self.decode_response(request, body)
        rolled_back = request.rollback_on_failure and not result.all_succeeded()
        self._report(layer_id, result, rolled_back)
        return result

    # --- Validation ---

    def validate(self, request: BatchEditRequest) -> None:
        """Local structural checks. Geometry content is left to the server."""
        if request.is_empty():
            raise ValidationError("Batch edit request contains no adds, updates or deletes.")

        seen_temp_ids = set()
        for index, item in enumerate(request.adds):
            if not isinstance(item, AddItem):
                raise ValidationError(f"adds[{index}] is not an AddItem.")
            self._check_attributes(item.attributes, item.geometry, f"adds[{index}]")
            temp_id = item.client_temp_id
            if temp_id is None or str(temp_id).strip() == "":
                raise ValidationError(f"adds[{index}] has no client_temp_id.")
            if str(temp_id) in seen_temp_ids:
                raise ValidationError(f"adds[{index}] reuses client_temp_id {temp_id!r}.")
            seen_temp_ids.add(str(temp_id))

        self._check_ids(request.updates, UpdateItem, "updates", request.use_global_ids)
        for index, item in enumerate(request.updates):
            self._check_attributes(item.attributes, item.geometry, f"updates[{index}]")
            if not item.attributes and item.geometry is None:
                raise ValidationError(f"updates[{index}] changes neither attributes nor geometry.")
        self._check_ids(request.deletes, DeleteItem, "deletes", request.use_global_ids)

    @staticmethod
    def _check_attributes(attributes: Any, geometry: Any, label: str) -> None:
        if not isinstance(attributes, dict):
            raise ValidationError(f"{label}: attributes must be a mapping.")
        if geometry is not None and not isinstance(geometry, dict):
            raise ValidationError(f"{label}: geometry must be a JSON object or None.")

    @staticmethod
    def _check_ids(items: Sequence[Any], expected: type, label: str, use_global_ids: bool) -> None:
        seen = set()
        for index, item in enumerate(items):
            if not isinstance(item, expected):
                raise ValidationError(f"{label}[{index}] is not a {expected.__name__}.")
            feature_id = item.id
            if use_global_ids:
                if not isinstance(feature_id, str) or not feature_id.strip():
                    raise ValidationError(f"{label}[{index}]: a global id string is required.")
            elif isinstance(feature_id, bool) or not isinstance(feature_id, int):
                raise ValidationError(f"{label}[{index}]: an integer object id is required, got {feature_id!r}.")
            if _key(feature_id) in seen:
                raise ValidationError(f"{label}[{index}] repeats feature id {feature_id!r}.")
            seen.add(_key(feature_id))

    # --- Encoding ---

    def build_request(self, layer_id: Any, request: BatchEditRequest) -> TransportRequest:
        form: Dict[str, str] = {
            "f": "json",
            "rollbackOnFailure": "true" if request.rollback_on_failure else "false",
            "useGlobalIds": "true" if request.use_global_ids else "false",
        }
        if request.adds:
            form["adds"] = json.dumps([self._encode_add(item) for item in request.adds])
        if request.updates:
            form["updates"] = json.dumps([self._encode_update(item, request.use_global_ids) for item in request.updates])
        if request.deletes:
            if request.use_global_ids:
                form["deletes"] = json.dumps([item.id for item in request.deletes])
            else:
                form["deletes"] = ",".join(str(item.id) for item in request.deletes)
        if request.gdb_version:
            form["gdbVersion"] = request.gdb_version
        if request.session_id:
            form["sessionID"] = request.session_id
        return TransportRequest(
            "POST", f"{self.service_url}/{layer_id}/applyEdits", data=form, endpoint="applyEdits",
        )

    @staticmethod
    def _encode_add(item: AddItem) -> Dict[str, Any]:
        feature: Dict[str, Any] = {"attributes": dict(item.attributes), "clientTempId": item.client_temp_id}
        if item.geometry is not None:
            feature["geometry"] = item.geometry
        return feature

    def _encode_update(self, item: UpdateItem, use_global_ids: bool) -> Dict[str, Any]:
        id_field = self.global_id_field if use_global_ids else self.object_id_field
        feature: Dict[str, Any] = {"attributes": {**item.attributes, id_field: item.id}}
        if item.geometry is not None:
            feature["geometry"] = item.geometry
        return feature

    # --- Decoding ---

    def decode_response(self, request: BatchEditRequest, body: Any) -> EditResult:
        """Correlates the server's result arrays with the request items."""
        if not isinstance(body, dict):
            raise MalformedResponseError(f"applyEdits response is not a JSON object: {body!r}")

        outcomes = {
            EditKind.ADD: self._correlate_adds(request, self._entries(body, EditKind.ADD, len(request.adds))),
            EditKind.UPDATE: self._correlate_features(
                request.updates, EditKind.UPDATE, request.use_global_ids,
                self._entries(body, EditKind.UPDATE, len(request.updates)),
            ),
            EditKind.DELETE: self._correlate_features(
                request.deletes, EditKind.DELETE, request.use_global_ids,
                self._entries(body, EditKind.DELETE, len(request.deletes)),
            ),
        }

        items = {EditKind.ADD: request.adds, EditKind.UPDATE: request.updates, EditKind.DELETE: request.deletes}
        batch_failed = any(not o.success for kind_outcomes in outcomes.values() for o in kind_outcomes)
        rollback = request.rollback_on_failure and batch_failed

        results: Dict[EditKind, List[EditItemResult]] = {}
        for kind, kind_outcomes in outcomes.items():
            results[kind] = [
                self._item_result(kind, item, outcome, rollback)
                for item, outcome in zip(items[kind], kind_outcomes)
            ]
        return EditResult(
            add_results=results[EditKind.ADD],
            update_results=results[EditKind.UPDATE],
            delete_results=results[EditKind.DELETE],
        )

    @staticmethod
    def _entries(body: Dict[str, Any], kind: EditKind, expected: int) -> List[Any]:
        key = RESULT_KEYS[kind]
        entries = body.get(key)
        if entries is None and expected == 0:
            return []
        if not isinstance(entries, list):
            raise MalformedResponseError(f"applyEdits response has no '{key}' list.")
        if len(entries) != expected:
            raise MalformedResponseError(f"'{key}' has {len(entries)} entries for {expected} submitted item(s).")
        return entries

    def _correlate_adds(self, request: BatchEditRequest, entries: List[Any]) -> List[ItemOutcome]:
        correlation = CorrelationMap(EditKind.ADD, normalize=str)
        by_global_id = CorrelationMap(EditKind.ADD)
        for index, item in enumerate(request.adds):
            correlation.register(item.client_temp_id, index)
            if request.use_global_ids:
                by_global_id.register(item.attributes.get(self.global_id_field), index)

        placed: List[Any] = [None] * len(entries)
        for position, raw in enumerate(entries):
            outcome = self.decoder.decode_item(raw)
            if outcome.client_temp_id is not None:
                index = correlation.lookup(outcome.client_temp_id)
                if index is None:
                    raise MalformedResponseError(f"addResults echoes unknown clientTempId {outcome.client_temp_id!r}.")
            else:
                index = by_global_id.lookup(outcome.global_id)
                if index is None:
                    index = position
            correlation.claim(index, position)
            placed[index] = outcome
        return placed

    def _correlate_features(
        self,
        items: Sequence[Any],
        kind: EditKind,
        use_global_ids: bool,
        entries: List[Any],
    ) -> List[ItemOutcome]:
        correlation = CorrelationMap(kind)
        for index, item in enumerate(items):
            correlation.register(item.id, index)

        placed: List[Any] = [None] * len(entries)
        for position, raw in enumerate(entries):
            outcome = self.decoder.decode_item(raw)
            echoed = outcome.global_id if use_global_ids else outcome.object_id
            index = correlation.lookup(echoed)
            if index is None:
                index = position
            correlation.claim(index, position)
            placed[index] = outcome
        return placed

    def _item_result(self, kind: EditKind, item: Any, outcome: ItemOutcome, rollback: bool) -> EditItemResult:
        assigned_id = None
        if kind is EditKind.ADD:
            if outcome.object_id is not None and outcome.object_id >= 0:
                assigned_id = outcome.object_id
            elif outcome.success:
                assigned_id = outcome.global_id

        if not rollback:
            return EditItemResult(
                correlation_id=item.correlation_id,
                success=outcome.success,
                assigned_id=assigned_id if outcome.success else None,
                error_code=outcome.error_code,
                error_message=outcome.error_message,
                global_id=outcome.global_id,
            )

        if assigned_id is not None:
            raise MalformedResponseError(
                f"Add {item.correlation_id!r} reports assigned id {assigned_id!r} although the batch was rolled back."
            )
        own_failure = not outcome.success and (outcome.error_code is not None or outcome.error_message is not None)
        return EditItemResult(
            correlation_id=item.correlation_id,
            success=False,
            error_code=outcome.error_code,
            error_message=outcome.error_message,
            global_id=outcome.global_id if kind is not EditKind.ADD else None,
            rolled_back=not own_failure,
        )

    @staticmethod
    def _rejected_batch(request: BatchEditRequest, error: ValidationError) -> EditResult:
        """Fails every item of a batch the server refused as a whole.

        Items named by the error details (as `adds[1]` or by their correlation
        id) carry the error; the rest are marked rolled back. Without such a
        hint every item carries the envelope error.
        """
        sections = {
            EditKind.ADD: ("adds", request.adds),
            EditKind.UPDATE: ("updates", request.updates),
            EditKind.DELETE: ("deletes", request.deletes),
        }
        blamed: Dict[Any, str] = {}
        for detail in error.details:
            for kind, (label, items) in sections.items():
                for index, item in enumerate(items):
                    pattern = rf"(?<![\w-]){re.escape(str(item.correlation_id))}(?![\w-])"
                    if f"{label}[{index}]" in detail or re.search(pattern, detail, re.IGNORECASE):
                        blamed.setdefault((kind, index), detail)

        def failed(kind: EditKind, index: int, item: Any) -> EditItemResult:
            if blamed and (kind, index) not in blamed:
                return EditItemResult(correlation_id=item.correlation_id, success=False, rolled_back=True)
            return EditItemResult(
                correlation_id=item.correlation_id,
                success=False,
                error_code=error.code,
                error_message=blamed.get((kind, index), error.message),
            )

        results = {
            kind: [failed(kind, index, item) for index, item in enumerate(items)]
            for kind, (_, items) in sections.items()
        }
        return EditResult(
            add_results=results[EditKind.ADD],
            update_results=results[EditKind.UPDATE],
            delete_results=results[EditKind.DELETE],
        )

    def _report(self, layer_id: Any, result: EditResult, rolled_back: bool) -> None:
        success_count = result.success_count()
        failure_count = result.failure_count()
        if failure_count:
            logger.warning(
                f"applyEdits on layer {layer_id}: {success_count} succeeded, {failure_count} failed"
                f"{' (batch rolled back)' if rolled_back else ''}"
            )
        else:
            logger.info(f"applyEdits on layer {layer_id}: all {success_count} item(s) succeeded")
        self.dispatcher.dispatch(EditBatchApplied(
            layer=str(layer_id), success_count=success_count, failure_count=failure_count, rolled_back=rolled_back,
        ))
