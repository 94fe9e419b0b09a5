"""Record operation orchestration.

Every operation runs as a short pipeline that stops at the first failure:

    Resolve → AuthorizeCollection →
        read:   AuthorizeFields → Translate → Fetch → Project
        write:  AuthorizeFields → ValidateSchema → Snapshot → Persist → Project
        delete: Snapshot → SoftDelete
        action: AuthorizeAction → ValidateInput → Invoke

The service holds no per-request state. Each call takes one reference to
the live registry and uses it throughout, so a concurrent reload never
changes the schema mid-request.
"""

import asyncio
import dataclasses
import logging
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Iterator

from fieldgate.actions.registry import ActionContext, ActionRegistry, ActionResult
from fieldgate.auth.permissions import (
    apply_field_read_policy,
    apply_field_write_policy,
    authorize_action,
    authorize_collection,
    can_access_collection,
    get_field_access,
    is_readable,
    readable_fields,
    visible_collections,
)
from fieldgate.auth.types import Operation, Principal
from fieldgate.config import Settings
from fieldgate.core.types import EQ
from fieldgate.errors import (
    ConflictError,
    FieldgateError,
    FieldIssue,
    NotFoundError,
    OperationCancelledError,
    StorageError,
    UpstreamTimeoutError,
    ValidationError,
)
from fieldgate.metadata.definitions import CollectionSpec
from fieldgate.persistence.adapter import Link, Record, RecordStore, Snapshot
from fieldgate.query.predicates import And, Compare, Predicate, RecordQuery
from fieldgate.query.translator import QueryRequest, translate
from fieldgate.registry import Registry, RegistryHolder
from fieldgate.services.validation import check_required, check_values, validate_input

logger = logging.getLogger(__name__)


@dataclass
class Page:
    data: list[dict[str, Any]]
    total: int
    offset: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.data) < self.total

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "pagination": {
                "total": self.total,
                "limit": self.limit,
                "offset": self.offset,
                "hasMore": self.has_more,
            },
        }


@dataclass
class MutationResult:
    """Outcome of a create/update/delete.

    Attributes:
        data: The record as the caller may see it (None after delete)
        warnings: Non-fatal problems, e.g. a failed snapshot
    """

    data: dict[str, Any] | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"data": self.data}
        if self.warnings:
            result["warnings"] = list(self.warnings)
        return result


def _scope(project: str, collection: str) -> list[Predicate]:
    return [
        Compare("project", EQ, project, kind="system", system=True),
        Compare("collection", EQ, collection, kind="system", system=True),
        Compare("deleted", EQ, False, kind="system", system=True),
    ]


async def _check_cancelled(cancel: asyncio.Event | None) -> None:
    if cancel is None:
        return
    # Let the disconnect watcher run before deciding
    await asyncio.sleep(0)
    if cancel.is_set():
        raise OperationCancelledError("Operation cancelled before it was persisted")


class RecordService:
    """Executes list/get/create/update/delete/action requests."""

    def __init__(
        self,
        registry: RegistryHolder,
        store: RecordStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._holder = registry
        self._store = store
        self._settings = settings or Settings()
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def registry(self) -> Registry:
        return self._holder.current

    @property
    def store(self) -> RecordStore:
        return self._store

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _storage(self, operation: str) -> Iterator[None]:
        """Surface storage failures as StorageError / UpstreamTimeoutError."""
        try:
            yield
        except FieldgateError:
            raise
        except TimeoutError as e:
            logger.error("Storage %s timed out", operation)
            raise UpstreamTimeoutError(f"Storage {operation} timed out") from e
        except Exception as e:
            logger.error("Storage %s failed: %s", operation, e)
            raise StorageError(f"Storage {operation} failed") from e

    def _after(self, moment: datetime) -> datetime:
        """Current time, forced strictly later than *moment*."""
        now = self._clock()
        if now <= moment:
            now = moment + timedelta(microseconds=1)
        return now

    def _project(
        self, record: Record, spec: CollectionSpec, principal: Principal | None
    ) -> dict[str, Any]:
        return apply_field_read_policy(record.to_dict(), spec, principal)

    def _find_singleton(self, project: str, spec: CollectionSpec) -> Record | None:
        query = RecordQuery(
            project=project,
            collection=spec.name,
            predicate=And(tuple(_scope(project, spec.name))),
            limit=1,
        )
        with self._storage("fetch"):
            rows = self._store.fetch(query)
        return rows[0] if rows else None

    def _load(self, project: str, spec: CollectionSpec, record_id: int | None) -> Record:
        if record_id is None:
            if not spec.singleton:
                raise ValidationError(
                    [FieldIssue(message="A record id is required", code="MISSING_ID", field="id")]
                )
            record = self._find_singleton(project, spec)
        else:
            with self._storage("get"):
                record = self._store.get(project, spec.name, record_id)
        if record is None or record.deleted:
            raise NotFoundError("Record not found")
        return record

    def _check_relations(
        self, project: str, spec: CollectionSpec, changes: dict[str, Any]
    ) -> list[FieldIssue]:
        issues: list[FieldIssue] = []
        for f in spec.fields:
            if f.type != "relation" or changes.get(f.name) is None:
                continue
            target_id = changes[f.name]
            with self._storage("get"):
                target = self._store.get(project, f.relation, target_id)
            if target is None or target.deleted:
                issues.append(
                    FieldIssue(
                        message=f"{f.label} refers to a missing {f.relation} record",
                        code="DANGLING_RELATION",
                        field=f.name,
                    )
                )
        return issues

    def _check_unique(
        self,
        project: str,
        spec: CollectionSpec,
        changes: dict[str, Any],
        record_id: int | None,
    ) -> None:
        for f in spec.fields:
            if not f.unique or changes.get(f.name) is None:
                continue
            query = RecordQuery(
                project=project,
                collection=spec.name,
                predicate=And(
                    (*_scope(project, spec.name), Compare(f.name, EQ, changes[f.name], kind=f.type))
                ),
                limit=2,
            )
            with self._storage("fetch"):
                clashes = [r for r in self._store.fetch(query) if r.id != record_id]
            if clashes:
                raise ConflictError(
                    f"{f.label} must be unique", code="DUPLICATE_VALUE", field=f.name
                )

    def _validate_write(
        self,
        project: str,
        spec: CollectionSpec,
        changes: dict[str, Any],
        merged: dict[str, Any],
        record_id: int | None,
    ) -> None:
        issues = check_values(spec.fields, changes) + check_required(spec.fields, merged)
        if issues:
            raise ValidationError(issues)
        issues = self._check_relations(project, spec, changes)
        if issues:
            raise ValidationError(issues)
        self._check_unique(project, spec, changes, record_id)

    def _snapshot(
        self,
        spec: CollectionSpec,
        record: Record,
        principal: Principal,
        operation: str,
    ) -> tuple[datetime, list[str]]:
        """Copy the current payload before a mutation.

        Returns the snapshot time and any warnings. A failed snapshot is a
        warning unless snapshot_failure_fatal is set.
        """
        taken_at = self._clock()
        if not spec.snapshots:
            return taken_at, []
        try:
            with self._storage("snapshot"):
                self._store.snapshot(
                    Snapshot(
                        record_id=record.id,
                        project=record.project,
                        collection=record.collection,
                        payload=dict(record.payload),
                        taken_at=taken_at,
                        actor=principal.actor,
                        operation=operation,
                    )
                )
        except StorageError as e:
            if self._settings.snapshot_failure_fatal:
                raise
            message = f"Snapshot of record {record.id} failed: {e.message}"
            logger.warning(message)
            return taken_at, [message]
        return taken_at, []

    def _sync_links(
        self, project: str, spec: CollectionSpec, record_id: int, changes: dict[str, Any]
    ) -> None:
        for f in spec.fields:
            if f.type != "relation" or f.name not in changes:
                continue
            with self._storage("link"):
                self._store.remove_link(record_id, f.name)
                if changes[f.name] is not None:
                    self._store.create_link(
                        Link(
                            source_id=record_id,
                            field=f.name,
                            target_id=changes[f.name],
                            project=project,
                            target_collection=f.relation or "",
                        )
                    )

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def list_records(
        self,
        project: str,
        collection: str,
        principal: Principal | None,
        query: QueryRequest | None = None,
    ) -> Page:
        registry = self.registry
        spec = registry.get_collection(project, collection)
        authorize_collection(principal, spec, Operation.READ)

        record_query = translate(
            project,
            spec,
            principal,
            query or QueryRequest(),
            default_page_size=self._settings.default_page_size,
            max_page_size=self._settings.max_page_size,
        )
        with self._storage("fetch"):
            records = self._store.fetch(record_query)
            total = self._store.count(record_query)

        return Page(
            data=[self._project(r, spec, principal) for r in records],
            total=total,
            offset=record_query.offset,
            limit=record_query.limit or len(records),
        )

    async def get_record(
        self,
        project: str,
        collection: str,
        principal: Principal | None,
        record_id: int | None = None,
    ) -> dict[str, Any]:
        spec = self.registry.get_collection(project, collection)
        authorize_collection(principal, spec, Operation.READ)
        record = self._load(project, spec, record_id)
        return self._project(record, spec, principal)

    async def list_collections(
        self, project: str, principal: Principal | None
    ) -> list[CollectionSpec]:
        """Collections the principal may read, narrowed to readable fields."""
        registry = self.registry
        return [
            dataclasses.replace(spec, fields=tuple(readable_fields(principal, spec)))
            for spec in visible_collections(principal, registry.iter_collections(project))
        ]

    async def describe_collection(
        self, project: str, collection: str, principal: Principal | None
    ) -> dict[str, Any]:
        """Collection metadata with per-field access flags for the principal."""
        spec = self.registry.get_collection(project, collection)
        authorize_collection(principal, spec, Operation.READ)

        fields = []
        for f in readable_fields(principal, spec):
            field_meta = f.to_dict()
            field_meta["access"] = get_field_access(principal, f)
            fields.append(field_meta)

        return {
            "name": spec.name,
            "title": spec.title,
            "singleton": spec.singleton,
            "template": spec.template,
            "labelField": spec.label_field,
            "access": {
                "read": True,
                "write": can_access_collection(principal, spec, Operation.WRITE),
                "delete": can_access_collection(principal, spec, Operation.DELETE),
            },
            "fields": fields,
        }

    async def record_context(
        self,
        project: str,
        collection: str,
        principal: Principal | None,
        record_id: int | None = None,
    ) -> dict[str, Any]:
        """Input for the templating collaborator.

        Returns:
            {"project", "collection", "template", "record", "relations"} where
            relations maps each readable relation field to {"id", "label"} or None
        """
        registry = self.registry
        spec = registry.get_collection(project, collection)
        authorize_collection(principal, spec, Operation.READ)
        record = self._load(project, spec, record_id)

        relations: dict[str, dict[str, Any] | None] = {}
        for f in readable_fields(principal, spec):
            if f.type != "relation":
                continue
            target_id = record.payload.get(f.name)
            if target_id is None:
                relations[f.name] = None
                continue
            summary: dict[str, Any] | None = {"id": target_id, "label": None}
            target_spec = registry.find_collection(project, f.relation or "")
            if target_spec and can_access_collection(principal, target_spec, Operation.READ):
                with self._storage("get"):
                    target = self._store.get(project, target_spec.name, target_id)
                if target is None or target.deleted:
                    summary = None
                elif target_spec.label_field:
                    label_spec = target_spec.get_field(target_spec.label_field)
                    if label_spec and is_readable(principal, label_spec):
                        summary["label"] = target.payload.get(label_spec.name)
            relations[f.name] = summary

        return {
            "project": project,
            "collection": spec.name,
            "template": spec.template,
            "record": self._project(record, spec, principal),
            "relations": relations,
        }

    async def list_snapshots(
        self,
        project: str,
        collection: str,
        principal: Principal | None,
        record_id: int,
    ) -> list[dict[str, Any]]:
        """Snapshot history of a record, payloads narrowed to readable fields."""
        spec = self.registry.get_collection(project, collection)
        authorize_collection(principal, spec, Operation.READ)
        with self._storage("get"):
            record = self._store.get(project, spec.name, record_id)
        if record is None:
            raise NotFoundError("Record not found")
        with self._storage("list snapshots"):
            snapshots = self._store.list_snapshots(record_id)

        visible = {f.name for f in readable_fields(principal, spec)}
        result = []
        for snap in snapshots:
            data = snap.to_dict()
            data["payload"] = {k: v for k, v in snap.payload.items() if k in visible}
            result.append(data)
        return result

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def create_record(
        self,
        project: str,
        collection: str,
        principal: Principal,
        data: dict[str, Any],
        *,
        cancel: asyncio.Event | None = None,
    ) -> MutationResult:
        spec = self.registry.get_collection(project, collection)
        authorize_collection(principal, spec, Operation.WRITE)

        if spec.singleton and self._find_singleton(project, spec) is not None:
            raise ConflictError(
                f"'{spec.name}' is a singleton and already has a record",
                code="SINGLETON_EXISTS",
            )

        payload = apply_field_write_policy(data, spec, principal)
        self._validate_write(project, spec, payload, payload, None)

        await _check_cancelled(cancel)
        with self._storage("insert"):
            record = self._store.insert(project, spec.name, payload, at=self._clock())
        self._sync_links(project, spec, record.id, payload)

        logger.debug("Created %s/%s #%s", project, spec.name, record.id)
        return MutationResult(data=self._project(record, spec, principal))

    async def update_record(
        self,
        project: str,
        collection: str,
        principal: Principal,
        record_id: int | None,
        data: dict[str, Any],
        *,
        cancel: asyncio.Event | None = None,
    ) -> MutationResult:
        spec = self.registry.get_collection(project, collection)
        authorize_collection(principal, spec, Operation.WRITE)
        current = self._load(project, spec, record_id)

        allowed = apply_field_write_policy(data, spec, principal)
        changes = {
            k: v for k, v in allowed.items()
            if k not in current.payload or current.payload[k] != v
        }
        if not changes:
            return MutationResult(data=self._project(current, spec, principal))

        merged = {**current.payload, **changes}
        self._validate_write(project, spec, changes, merged, current.id)

        taken_at, warnings = self._snapshot(spec, current, principal, "update")

        await _check_cancelled(cancel)
        with self._storage("update"):
            record = self._store.update(current.id, changes, at=self._after(taken_at))
        self._sync_links(project, spec, record.id, changes)

        logger.debug("Updated %s/%s #%s (%s)", project, spec.name, record.id, ", ".join(changes))
        return MutationResult(data=self._project(record, spec, principal), warnings=warnings)

    async def delete_record(
        self,
        project: str,
        collection: str,
        principal: Principal,
        record_id: int | None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> MutationResult:
        spec = self.registry.get_collection(project, collection)
        authorize_collection(principal, spec, Operation.DELETE)
        current = self._load(project, spec, record_id)

        taken_at, warnings = self._snapshot(spec, current, principal, "delete")

        await _check_cancelled(cancel)
        with self._storage("delete"):
            self._store.soft_delete(current.id, at=self._after(taken_at))

        logger.debug("Deleted %s/%s #%s", project, spec.name, current.id)
        return MutationResult(warnings=warnings)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def run_action(
        self,
        project: str,
        action: str,
        principal: Principal,
        input: dict[str, Any] | None = None,
    ) -> ActionResult:
        spec = self.registry.get_action(project, action)
        authorize_action(principal, spec)

        data = dict(input or {})
        issues = validate_input(spec.fields, data)
        if issues:
            raise ValidationError(issues)

        try:
            handler = ActionRegistry.get(spec.handler)
        except ValueError:
            raise NotFoundError(f"Action '{action}' has no registered handler") from None

        ctx = ActionContext(
            project=project,
            action=spec.name,
            principal=principal,
            input=data,
            services=self,
        )
        result = await handler(ctx)
        if result is None:
            return ActionResult()
        if isinstance(result, dict):
            return ActionResult(data=result)
        return result
