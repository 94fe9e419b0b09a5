"""RecordStore Protocol, the storage collaborator interface.

Stores keep records as an envelope (id, project, collection, timestamps,
soft-delete flag) around an opaque JSON payload. Stores raise
UpstreamTimeoutError for timeouts and StorageError for other failures.
"""

import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from fieldgate.query.predicates import RecordQuery


@dataclass
class Record:
    id: int
    project: str
    collection: str
    payload: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    deleted: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Flatten to the API shape: envelope keys plus payload fields."""
        result: dict[str, Any] = {
            "id": self.id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        result.update(copy.deepcopy(self.payload))
        return result


@dataclass(frozen=True)
class Link:
    """A relation field value: source record → target record."""

    source_id: int
    field: str
    target_id: int
    project: str = ""
    target_collection: str = ""


@dataclass(frozen=True)
class Snapshot:
    """Immutable pre-mutation copy of a record's payload."""

    record_id: int
    project: str
    collection: str
    payload: dict[str, Any]
    taken_at: datetime
    actor: str
    operation: str = "update"
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "recordId": self.record_id,
            "project": self.project,
            "collection": self.collection,
            "payload": copy.deepcopy(self.payload),
            "takenAt": self.taken_at.isoformat(),
            "actor": self.actor,
            "operation": self.operation,
        }


@runtime_checkable
class RecordStore(Protocol):
    """Interface all record stores must implement."""

    def connect(self) -> None: ...

    def close(self) -> None: ...

    def fetch(self, query: RecordQuery) -> list[Record]: ...

    def count(self, query: RecordQuery) -> int: ...

    def get(self, project: str, collection: str, id: int) -> Record | None: ...

    def insert(
        self,
        project: str,
        collection: str,
        payload: dict[str, Any],
        at: datetime | None = None,
    ) -> Record: ...

    def update(
        self, id: int, partial_payload: dict[str, Any], at: datetime | None = None
    ) -> Record: ...

    def soft_delete(self, id: int, at: datetime | None = None) -> None: ...

    def snapshot(self, snapshot: Snapshot) -> None: ...

    def list_snapshots(self, record_id: int) -> list[Snapshot]: ...

    def create_link(self, link: Link) -> None: ...

    def remove_link(self, source_id: int, field: str) -> None: ...

    def list_links(self, source_id: int) -> list[Link]: ...
