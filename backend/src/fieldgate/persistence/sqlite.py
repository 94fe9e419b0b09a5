"""SQLite record store.

Records live in one system table (``_records``) with the payload stored as
JSON text. Predicates compile to SQLite JSON1 expressions (``json_extract``,
``json_each``), so filtering, search and sorting all run in the database.
Case-insensitive matching goes through ``fg_fold``, a Python casefold
registered on each connection.

Uses SQLAlchemy Core with textual SQL; the engine owns connection pooling.
"""

import json
import logging
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.pool import StaticPool

from fieldgate.core.types import CONTAINS, EQ, IN, IS_NULL, NEQ, RANGE
from fieldgate.errors import NotFoundError, StorageError, UpstreamTimeoutError
from fieldgate.persistence.adapter import Link, Record, Snapshot
from fieldgate.query.predicates import (
    MATCH,
    SYSTEM_ATTRIBUTES,
    And,
    Compare,
    Or,
    Predicate,
    RecordQuery,
    SortKey,
)

logger = logging.getLogger(__name__)

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

# System attribute → column
_COLUMNS = {
    "id": "id",
    "created_at": "created_at",
    "updated_at": "updated_at",
    "project": "project",
    "collection": "collection",
    "deleted": "deleted",
}


def _format_ts(value: datetime) -> str:
    # Fixed-width UTC text keeps lexical order equal to time order
    return value.astimezone(UTC).strftime(_TIMESTAMP_FORMAT)


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _fold(value: Any) -> Any:
    return value.casefold() if isinstance(value, str) else value


def _register_functions(dbapi_conn: Any, connection_record: Any) -> None:
    # SQLite's lower() folds ASCII only; match Python's casefold on every connection
    dbapi_conn.create_function("fg_fold", 1, _fold, deterministic=True)



class _Compiler:
    """Compiles a predicate tree to a WHERE fragment with named parameters."""

    def __init__(self) -> None:
        self.params: dict[str, Any] = {}

    def _bind(self, value: Any) -> str:
        name = f"p{len(self.params)}"
        if isinstance(value, bool):
            value = int(value)
        self.params[name] = value
        return f":{name}"

    def _path(self, field: str) -> str:
        # Field names are validated identifiers, safe to inline
        return f"'$.{field}'"

    def _expr(self, node: Compare | SortKey) -> str:
        if node.system:
            return _COLUMNS[SYSTEM_ATTRIBUTES[node.field]]
        return f"json_extract(_records.payload, {self._path(node.field)})"

    def compile(self, predicate: Predicate) -> str:
        if isinstance(predicate, And):
            if not predicate.items:
                return "1 = 1"
            return "(" + " AND ".join(self.compile(p) for p in predicate.items) + ")"
        if isinstance(predicate, Or):
            if not predicate.items:
                return "1 = 0"
            return "(" + " OR ".join(self.compile(p) for p in predicate.items) + ")"
        return self._compare(predicate)

    def _compare(self, node: Compare) -> str:
        expr = self._expr(node)
        op = node.op

        if op == IS_NULL:
            return f"{expr} IS NULL" if node.value else f"{expr} IS NOT NULL"
        if op == EQ:
            return f"{expr} = {self._bind(node.value)}"
        if op == NEQ:
            return f"{expr} != {self._bind(node.value)}"
        if op == IN:
            placeholders = ", ".join(self._bind(v) for v in node.value)
            return f"{expr} IN ({placeholders})"
        if op == RANGE:
            lo, hi = node.value
            parts = [f"{expr} IS NOT NULL"]
            if lo is not None:
                parts.append(f"{expr} >= {self._bind(lo)}")
            if hi is not None:
                parts.append(f"{expr} <= {self._bind(hi)}")
            return "(" + " AND ".join(parts) + ")"
        if op == CONTAINS and node.kind == "multi_enum":
            return (
                "EXISTS (SELECT 1 FROM json_each(_records.payload, "
                f"{self._path(node.field)}) AS je WHERE je.value = {self._bind(node.value)})"
            )
        if op == MATCH and node.kind == "multi_enum":
            return (
                "EXISTS (SELECT 1 FROM json_each(_records.payload, "
                f"{self._path(node.field)}) AS je "
                f"WHERE instr(fg_fold(je.value), fg_fold({self._bind(node.value)})) > 0)"
            )
        if op in (CONTAINS, MATCH):
            return (
                f"(json_type(_records.payload, {self._path(node.field)}) = 'text' "
                f"AND instr(fg_fold({expr}), fg_fold({self._bind(node.value)})) > 0)"
            )
        raise StorageError(f"Unsupported operator '{op}'")

    def order_by(self, sort: tuple[SortKey, ...]) -> str:
        parts = [
            f"{self._expr(key)} {'DESC' if key.descending else 'ASC'}" for key in sort
        ]
        return ", ".join(parts) if parts else "id ASC"


class SQLiteRecordStore:
    """RecordStore over SQLite via SQLAlchemy Core."""

    def __init__(self, database_url: str = "sqlite://", timeout: float = 5.0):
        """Initialize the store.

        Args:
            database_url: SQLAlchemy SQLite URL, e.g. "sqlite:///data/fieldgate.db".
                          "sqlite://" gives a private in-memory database.
            timeout: Seconds to wait on a locked database before timing out
        """
        self.database_url = database_url
        self.timeout = timeout
        self._engine: Any = None

    def connect(self) -> None:
        """Create the engine and system tables."""
        kwargs: dict[str, Any] = {
            "connect_args": {"timeout": self.timeout, "check_same_thread": False},
        }
        if self.database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every checkout sees an empty db
            kwargs["poolclass"] = StaticPool
        self._engine = create_engine(self.database_url, **kwargs)
        event.listen(self._engine, "connect", _register_functions)
        self._ensure_tables()

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @property
    def engine(self) -> Any:
        if self._engine is None:
            raise StorageError("Database not connected")
        return self._engine

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Translate driver errors into fieldgate storage errors."""
        try:
            yield
        except sa_exc.TimeoutError as e:
            logger.error("Storage %s timed out: %s", operation, e)
            raise UpstreamTimeoutError(f"Storage {operation} timed out") from e
        except sa_exc.OperationalError as e:
            if "locked" in str(e).lower() or "timeout" in str(e).lower():
                logger.error("Storage %s timed out: %s", operation, e)
                raise UpstreamTimeoutError(f"Storage {operation} timed out") from e
            logger.error("Storage %s failed: %s", operation, e)
            raise StorageError(f"Storage {operation} failed") from e
        except sa_exc.SQLAlchemyError as e:
            logger.error("Storage %s failed: %s", operation, e)
            raise StorageError(f"Storage {operation} failed") from e

    def _ensure_tables(self) -> None:
        with self._guard("initialize"), self.engine.begin() as conn:
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS _records (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    project     TEXT NOT NULL,
                    collection  TEXT NOT NULL,
                    payload     TEXT NOT NULL,
                    created_at  TEXT NOT NULL,
                    updated_at  TEXT NOT NULL,
                    deleted     INTEGER NOT NULL DEFAULT 0
                )
            """))
            conn.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_records_scope
                ON _records(project, collection, deleted)
            """))
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS _snapshots (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    record_id   INTEGER NOT NULL,
                    project     TEXT NOT NULL,
                    collection  TEXT NOT NULL,
                    payload     TEXT NOT NULL,
                    taken_at    TEXT NOT NULL,
                    actor       TEXT NOT NULL,
                    operation   TEXT NOT NULL
                )
            """))
            conn.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_snapshots_record
                ON _snapshots(record_id)
            """))
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS _links (
                    source_id          INTEGER NOT NULL,
                    field              TEXT NOT NULL,
                    target_id          INTEGER NOT NULL,
                    project            TEXT NOT NULL,
                    target_collection  TEXT NOT NULL,
                    PRIMARY KEY (source_id, field)
                )
            """))

    def _row_to_record(self, row: Any) -> Record:
        m = row._mapping
        return Record(
            id=m["id"],
            project=m["project"],
            collection=m["collection"],
            payload=json.loads(m["payload"]),
            created_at=_parse_ts(m["created_at"]),
            updated_at=_parse_ts(m["updated_at"]),
            deleted=bool(m["deleted"]),
        )

    def _get_by_id(self, conn: Any, id: int) -> Record | None:
        row = conn.execute(
            text("SELECT * FROM _records WHERE id = :id"), {"id": id}
        ).fetchone()
        return self._row_to_record(row) if row else None

    def _require_by_id(self, conn: Any, id: int) -> Record:
        record = self._get_by_id(conn, id)
        if record is None:
            raise NotFoundError("Record not found")
        return record

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def fetch(self, query: RecordQuery) -> list[Record]:
        compiler = _Compiler()
        where = compiler.compile(query.predicate)
        order = compiler.order_by(query.sort)
        sql = f"SELECT * FROM _records WHERE {where} ORDER BY {order}"
        params = dict(compiler.params)
        if query.limit is not None:
            sql += " LIMIT :_limit OFFSET :_offset"
            params.update({"_limit": query.limit, "_offset": query.offset})
        elif query.offset:
            sql += " LIMIT -1 OFFSET :_offset"
            params["_offset"] = query.offset

        with self._guard("fetch"), self.engine.connect() as conn:
            rows = conn.execute(text(sql), params).fetchall()
        return [self._row_to_record(r) for r in rows]

    def count(self, query: RecordQuery) -> int:
        compiler = _Compiler()
        where = compiler.compile(query.predicate)
        with self._guard("count"), self.engine.connect() as conn:
            return conn.execute(
                text(f"SELECT COUNT(*) FROM _records WHERE {where}"), compiler.params
            ).scalar_one()

    def get(self, project: str, collection: str, id: int) -> Record | None:
        with self._guard("get"), self.engine.connect() as conn:
            record = self._get_by_id(conn, id)
        if record is None or record.project != project or record.collection != collection:
            return None
        return record

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(
        self,
        project: str,
        collection: str,
        payload: dict[str, Any],
        at: datetime | None = None,
    ) -> Record:
        now = _format_ts(at or datetime.now(UTC))
        with self._guard("insert"), self.engine.begin() as conn:
            result = conn.execute(
                text("""
                    INSERT INTO _records (project, collection, payload, created_at, updated_at, deleted)
                    VALUES (:project, :collection, :payload, :now, :now, 0)
                """),
                {
                    "project": project,
                    "collection": collection,
                    "payload": json.dumps(payload),
                    "now": now,
                },
            )
            record = self._require_by_id(conn, result.lastrowid)
        return record

    def update(
        self, id: int, partial_payload: dict[str, Any], at: datetime | None = None
    ) -> Record:
        now = _format_ts(at or datetime.now(UTC))
        with self._guard("update"), self.engine.begin() as conn:
            current = self._require_by_id(conn, id)
            payload = {**current.payload, **partial_payload}
            conn.execute(
                text("UPDATE _records SET payload = :payload, updated_at = :now WHERE id = :id"),
                {"payload": json.dumps(payload), "now": now, "id": id},
            )
            record = self._require_by_id(conn, id)
        return record

    def soft_delete(self, id: int, at: datetime | None = None) -> None:
        now = _format_ts(at or datetime.now(UTC))
        with self._guard("delete"), self.engine.begin() as conn:
            result = conn.execute(
                text("UPDATE _records SET deleted = 1, updated_at = :now WHERE id = :id"),
                {"now": now, "id": id},
            )
            if result.rowcount == 0:
                raise NotFoundError("Record not found")

    # ------------------------------------------------------------------
    # Snapshots (append-only)
    # ------------------------------------------------------------------

    def snapshot(self, snapshot: Snapshot) -> None:
        with self._guard("snapshot"), self.engine.begin() as conn:
            conn.execute(
                text("""
                    INSERT INTO _snapshots
                        (record_id, project, collection, payload, taken_at, actor, operation)
                    VALUES
                        (:record_id, :project, :collection, :payload, :taken_at, :actor, :operation)
                """),
                {
                    "record_id": snapshot.record_id,
                    "project": snapshot.project,
                    "collection": snapshot.collection,
                    "payload": json.dumps(snapshot.payload),
                    "taken_at": _format_ts(snapshot.taken_at),
                    "actor": snapshot.actor,
                    "operation": snapshot.operation,
                },
            )

    def list_snapshots(self, record_id: int) -> list[Snapshot]:
        with self._guard("list snapshots"), self.engine.connect() as conn:
            rows = conn.execute(
                text("SELECT * FROM _snapshots WHERE record_id = :rid ORDER BY id"),
                {"rid": record_id},
            ).fetchall()
        return [
            Snapshot(
                id=r._mapping["id"],
                record_id=r._mapping["record_id"],
                project=r._mapping["project"],
                collection=r._mapping["collection"],
                payload=json.loads(r._mapping["payload"]),
                taken_at=_parse_ts(r._mapping["taken_at"]),
                actor=r._mapping["actor"],
                operation=r._mapping["operation"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def create_link(self, link: Link) -> None:
        with self._guard("create link"), self.engine.begin() as conn:
            conn.execute(
                text("""
                    INSERT INTO _links (source_id, field, target_id, project, target_collection)
                    VALUES (:source_id, :field, :target_id, :project, :target_collection)
                    ON CONFLICT (source_id, field) DO UPDATE SET
                        target_id = excluded.target_id,
                        project = excluded.project,
                        target_collection = excluded.target_collection
                """),
                {
                    "source_id": link.source_id,
                    "field": link.field,
                    "target_id": link.target_id,
                    "project": link.project,
                    "target_collection": link.target_collection,
                },
            )

    def remove_link(self, source_id: int, field: str) -> None:
        with self._guard("remove link"), self.engine.begin() as conn:
            conn.execute(
                text("DELETE FROM _links WHERE source_id = :sid AND field = :field"),
                {"sid": source_id, "field": field},
            )

    def list_links(self, source_id: int) -> list[Link]:
        with self._guard("list links"), self.engine.connect() as conn:
            rows = conn.execute(
                text("SELECT * FROM _links WHERE source_id = :sid ORDER BY field"),
                {"sid": source_id},
            ).fetchall()
        return [
            Link(
                source_id=r._mapping["source_id"],
                field=r._mapping["field"],
                target_id=r._mapping["target_id"],
                project=r._mapping["project"],
                target_collection=r._mapping["target_collection"],
            )
            for r in rows
        ]
