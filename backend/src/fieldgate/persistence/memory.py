"""In-memory record store.

Keeps records, snapshots and links in dicts and evaluates predicates in
Python. Used for tests and for ``memory://`` development databases.
"""

import copy
import threading
from datetime import UTC, datetime
from typing import Any

from fieldgate.errors import NotFoundError
from fieldgate.persistence.adapter import Link, Record, Snapshot
from fieldgate.query.predicates import RecordQuery, evaluate, sort_records


class MemoryRecordStore:
    """Dict-backed RecordStore."""

    def __init__(self) -> None:
        self._records: dict[int, Record] = {}
        self._snapshots: list[Snapshot] = []
        self._links: dict[tuple[int, str], Link] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def connect(self) -> None:
        pass

    def close(self) -> None:
        pass

    def _matching(self, query: RecordQuery) -> list[Record]:
        return [r for r in self._records.values() if evaluate(query.predicate, r)]

    def fetch(self, query: RecordQuery) -> list[Record]:
        with self._lock:
            rows = sort_records(self._matching(query), query.sort)
            end = None if query.limit is None else query.offset + query.limit
            return [copy.deepcopy(r) for r in rows[query.offset:end]]

    def count(self, query: RecordQuery) -> int:
        with self._lock:
            return len(self._matching(query))

    def get(self, project: str, collection: str, id: int) -> Record | None:
        with self._lock:
            record = self._records.get(id)
            if record is None or record.project != project or record.collection != collection:
                return None
            return copy.deepcopy(record)

    def insert(
        self,
        project: str,
        collection: str,
        payload: dict[str, Any],
        at: datetime | None = None,
    ) -> Record:
        now = at or datetime.now(UTC)
        with self._lock:
            record = Record(
                id=self._next_id,
                project=project,
                collection=collection,
                payload=copy.deepcopy(payload),
                created_at=now,
                updated_at=now,
            )
            self._records[record.id] = record
            self._next_id += 1
            return copy.deepcopy(record)

    def update(
        self, id: int, partial_payload: dict[str, Any], at: datetime | None = None
    ) -> Record:
        with self._lock:
            record = self._records.get(id)
            if record is None:
                raise NotFoundError("Record not found")
            record.payload.update(copy.deepcopy(partial_payload))
            record.updated_at = at or datetime.now(UTC)
            return copy.deepcopy(record)

    def soft_delete(self, id: int, at: datetime | None = None) -> None:
        with self._lock:
            record = self._records.get(id)
            if record is None:
                raise NotFoundError("Record not found")
            record.deleted = True
            record.updated_at = at or datetime.now(UTC)

    def snapshot(self, snapshot: Snapshot) -> None:
        with self._lock:
            stored = Snapshot(
                record_id=snapshot.record_id,
                project=snapshot.project,
                collection=snapshot.collection,
                payload=copy.deepcopy(snapshot.payload),
                taken_at=snapshot.taken_at,
                actor=snapshot.actor,
                operation=snapshot.operation,
                id=len(self._snapshots) + 1,
            )
            self._snapshots.append(stored)

    def list_snapshots(self, record_id: int) -> list[Snapshot]:
        with self._lock:
            return [copy.deepcopy(s) for s in self._snapshots if s.record_id == record_id]

    def create_link(self, link: Link) -> None:
        with self._lock:
            # Many-to-one: a source field holds at most one link
            self._links[(link.source_id, link.field)] = link

    def remove_link(self, source_id: int, field: str) -> None:
        with self._lock:
            self._links.pop((source_id, field), None)

    def list_links(self, source_id: int) -> list[Link]:
        with self._lock:
            return [link for (sid, _), link in sorted(self._links.items()) if sid == source_id]
