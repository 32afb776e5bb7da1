"""Domain models for atomic multi-item feature edits.

A `BatchEditRequest` carries three ordered sequences (adds, updates, deletes)
that are applied in a single call. The matching `EditResult` holds one
`EditItemResult` per submitted item, in request order.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from gisops.domain.models.common import ClientTempId, FeatureId


class EditKind(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


# --- Edit Items ---

@dataclass(frozen=True)
class AddItem:
    """A new feature. The server assigns its permanent id only on success,
    so the caller supplies `client_temp_id` to correlate the result."""
    attributes: Dict[str, Any]
    client_temp_id: ClientTempId
    geometry: Optional[Dict[str, Any]] = None

    kind = EditKind.ADD

    @property
    def correlation_id(self) -> ClientTempId:
        return self.client_temp_id


@dataclass(frozen=True)
class UpdateItem:
    id: FeatureId
    attributes: Dict[str, Any] = field(default_factory=dict)
    geometry: Optional[Dict[str, Any]] = None

    kind = EditKind.UPDATE

    @property
    def correlation_id(self) -> FeatureId:
        return self.id


@dataclass(frozen=True)
class DeleteItem:
    id: FeatureId

    kind = EditKind.DELETE

    @property
    def correlation_id(self) -> FeatureId:
        return self.id


EditItem = Union[AddItem, UpdateItem, DeleteItem]


@dataclass
class BatchEditRequest:
    """One atomic applyEdits call.

    With `rollback_on_failure=True` the request is evaluated as a single unit:
    any item failure fails every item and nothing is persisted.
    """
    adds: List[AddItem] = field(default_factory=list)
    updates: List[UpdateItem] = field(default_factory=list)
    deletes: List[DeleteItem] = field(default_factory=list)
    use_global_ids: bool = False
    rollback_on_failure: bool = True
    gdb_version: Optional[str] = None
    session_id: Optional[str] = None

    def item_count(self) -> int:
        return len(self.adds) + len(self.updates) + len(self.deletes)

    def is_empty(self) -> bool:
        return self.item_count() == 0


# --- Results ---

@dataclass(frozen=True)
class ItemLevelFailure:
    """Per-item error carried inside an EditItemResult. Never raised."""
    kind: EditKind
    correlation_id: Any
    code: Optional[int]
    message: Optional[str]
    rolled_back: bool = False


@dataclass
class EditItemResult:
    correlation_id: Any  # client_temp_id for adds, feature id otherwise
    success: bool
    assigned_id: Optional[FeatureId] = None
    error_code: Optional[int] = None
    error_message: Optional[str] = None
    global_id: Optional[str] = None
    rolled_back: bool = False  # Failed only because the whole batch was rolled back

    def failure(self, kind: EditKind) -> Optional[ItemLevelFailure]:
        if self.success:
            return None
        return ItemLevelFailure(
            kind=kind,
            correlation_id=self.correlation_id,
            code=self.error_code,
            message=self.error_message,
            rolled_back=self.rolled_back,
        )


@dataclass
class EditResult:
    """Outcome of a batch edit, positionally aligned with the request."""
    add_results: List[EditItemResult] = field(default_factory=list)
    update_results: List[EditItemResult] = field(default_factory=list)
    delete_results: List[EditItemResult] = field(default_factory=list)

    def _all(self):
        yield from ((EditKind.ADD, r) for r in self.add_results)
        yield from ((EditKind.UPDATE, r) for r in self.update_results)
        yield from ((EditKind.DELETE, r) for r in self.delete_results)

    def all_succeeded(self) -> bool:
        return all(r.success for _, r in self._all())

    def success_count(self) -> int:
        return sum(1 for _, r in self._all() if r.success)

    def failure_count(self) -> int:
        return sum(1 for _, r in self._all() if not r.success)

    def failures(self, include_rolled_back: bool = False) -> List[ItemLevelFailure]:
        """Lists failed items. By default only the items that failed on their
        own are returned, not the ones dragged down by a rollback."""
        found = []
        for kind, result in self._all():
            failure = result.failure(kind)
            if failure is None:
                continue
            if failure.rolled_back and not include_rolled_back:
                continue
            found.append(failure)
        return found
