"""Tests for the record operation pipeline (RecordService)."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from conftest import write_project

from fieldgate.auth.types import Principal
from fieldgate.config import Settings
from fieldgate.errors import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    OperationCancelledError,
    StorageError,
    UpstreamTimeoutError,
    ValidationError,
)
from fieldgate.persistence.memory import MemoryRecordStore
from fieldgate.persistence.sqlite import SQLiteRecordStore
from fieldgate.query.translator import QueryRequest
from fieldgate.registry import RegistryHolder
from fieldgate.services import RecordService

VIEWER = Principal.of("viewer", user_id="vic")
EDITOR = Principal.of("editor", user_id="eddie")
ADMIN = Principal.of("admin", user_id="root")
T0 = datetime(2026, 5, 1, 9, 0, tzinfo=UTC)


# =============================================================================
# Fixtures
# =============================================================================


class FlakySnapshotStore(MemoryRecordStore):
    def snapshot(self, snapshot):
        raise RuntimeError("snapshot table unavailable")


class SlowStore(MemoryRecordStore):
    def update(self, id, partial_payload, at=None):
        raise TimeoutError("lock wait exceeded")

    def fetch(self, query):
        raise ConnectionError("connection reset")


@pytest.fixture
def holder(projects_path):
    return RegistryHolder.from_path(projects_path)


@pytest.fixture
def store():
    s = MemoryRecordStore()
    s.connect()
    return s


@pytest.fixture
def service(holder, store):
    return RecordService(holder, store, Settings())


def fixed_clock():
    return T0


async def create_car(service, **data):
    payload = {"model": "X3", **data}
    result = await service.create_record("shop", "car", EDITOR, payload)
    return result.data


# =============================================================================
# Resolve / authorize
# =============================================================================


class TestResolve:
    @pytest.mark.asyncio
    async def test_unknown_project(self, service):
        with pytest.raises(NotFoundError):
            await service.list_records("garage", "car", VIEWER)

    @pytest.mark.asyncio
    async def test_unknown_collection(self, service):
        with pytest.raises(NotFoundError):
            await service.get_record("shop", "truck", VIEWER, 1)

    @pytest.mark.asyncio
    async def test_unknown_record(self, service):
        with pytest.raises(NotFoundError):
            await service.get_record("shop", "car", VIEWER, 42)

    @pytest.mark.asyncio
    async def test_record_of_other_collection_not_found(self, service):
        person = await service.create_record("shop", "person", EDITOR, {"name": "Ada"})
        with pytest.raises(NotFoundError):
            await service.get_record("shop", "car", VIEWER, person.data["id"])

    @pytest.mark.asyncio
    async def test_outsider_denied(self, service):
        with pytest.raises(AccessDeniedError):
            await service.list_records("shop", "car", Principal.of("guest"))

    @pytest.mark.asyncio
    async def test_anonymous_denied(self, service):
        with pytest.raises(AccessDeniedError):
            await service.list_records("shop", "car", None)


# =============================================================================
# Reads
# =============================================================================


class TestReads:
    @pytest.mark.asyncio
    async def test_projection_hides_restricted_fields(self, service):
        car = await create_car(service, vin="WBA1")
        seen_by_viewer = await service.get_record("shop", "car", VIEWER, car["id"])
        seen_by_editor = await service.get_record("shop", "car", EDITOR, car["id"])
        assert "vin" not in seen_by_viewer
        assert seen_by_editor["vin"] == "WBA1"
        assert {"id", "createdAt", "updatedAt"} <= set(seen_by_viewer)

    @pytest.mark.asyncio
    async def test_list_projects_every_row(self, service):
        await create_car(service, vin="A")
        await create_car(service, model="Golf", vin="B")
        page = await service.list_records("shop", "car", VIEWER)
        assert page.total == 2
        assert all("vin" not in row for row in page.data)

    @pytest.mark.asyncio
    async def test_filter_on_hidden_field_denied(self, service):
        await create_car(service, vin="A")
        request = QueryRequest(filter={"conditions": [{"field": "vin", "value": "A"}]})
        with pytest.raises(AccessDeniedError):
            await service.list_records("shop", "car", VIEWER, request)
        page = await service.list_records("shop", "car", EDITOR, request)
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_search_skips_hidden_fields(self, service):
        await create_car(service, model="Golf", vin="SECRET1")
        page = await service.list_records("shop", "car", VIEWER, QueryRequest(search="secret"))
        assert page.total == 0
        page = await service.list_records("shop", "car", EDITOR, QueryRequest(search="golf"))
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_pagination_is_deterministic(self, service):
        for i in range(7):
            await create_car(service, model="Same", vin=f"V{i}")

        seen = []
        for offset in range(0, 7, 3):
            page = await service.list_records(
                "shop", "car", VIEWER,
                QueryRequest(sort=[{"field": "model"}], offset=offset, limit=3),
            )
            seen.extend(row["id"] for row in page.data)

        assert seen == sorted(seen)
        assert len(set(seen)) == 7

    @pytest.mark.asyncio
    async def test_page_metadata(self, service):
        for i in range(3):
            await create_car(service, vin=f"V{i}")
        page = await service.list_records("shop", "car", VIEWER, QueryRequest(limit=2))
        assert page.to_dict()["pagination"] == {
            "total": 3, "limit": 2, "offset": 0, "hasMore": True,
        }

    @pytest.mark.asyncio
    async def test_deleted_records_not_listed(self, service):
        car = await create_car(service, vin="A")
        await service.delete_record("shop", "car", ADMIN, car["id"])
        page = await service.list_records("shop", "car", VIEWER)
        assert page.total == 0
        with pytest.raises(NotFoundError):
            await service.get_record("shop", "car", VIEWER, car["id"])


# =============================================================================
# Writes
# =============================================================================


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_returns_projected_record(self, service):
        result = await service.create_record(
            "shop", "car", EDITOR, {"model": "X3", "color": "red", "extras": ["abs"]}
        )
        assert result.data["model"] == "X3"
        assert result.data["extras"] == ["abs"]
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_unwritable_fields_silently_dropped(self, service, store):
        result = await service.create_record(
            "shop", "car", EDITOR, {"model": "X3", "year": 2020, "nonsense": 1}
        )
        stored = store.get("shop", "car", result.data["id"])
        assert stored.payload == {"model": "X3"}

    @pytest.mark.asyncio
    async def test_required_field(self, service):
        with pytest.raises(ValidationError) as exc:
            await service.create_record("shop", "car", EDITOR, {"color": "red"})
        assert exc.value.issues[0].code == "REQUIRED"
        assert exc.value.field == "model"

    @pytest.mark.asyncio
    async def test_viewer_cannot_supply_required_field(self, service):
        # model is write-restricted, so a viewer's create has no model at all
        with pytest.raises(ValidationError):
            await service.create_record("shop", "car", VIEWER, {"model": "X3"})

    @pytest.mark.asyncio
    async def test_type_mismatch(self, service):
        with pytest.raises(ValidationError) as exc:
            await service.create_record(
                "shop", "car", EDITOR, {"model": "X3", "color": "green", "extras": "abs"}
            )
        assert [i.field for i in exc.value.issues] == ["color", "extras"]
        assert all(i.code == "TYPE_MISMATCH" for i in exc.value.issues)

    @pytest.mark.asyncio
    async def test_unique_conflict(self, service):
        await create_car(service, vin="WBA1")
        with pytest.raises(ConflictError) as exc:
            await create_car(service, vin="WBA1")
        assert exc.value.field == "vin"

    @pytest.mark.asyncio
    async def test_unique_ignores_deleted_records(self, service):
        car = await create_car(service, vin="WBA1")
        await service.delete_record("shop", "car", ADMIN, car["id"])
        await create_car(service, vin="WBA1")

    @pytest.mark.asyncio
    async def test_dangling_relation(self, service):
        with pytest.raises(ValidationError) as exc:
            await create_car(service, owner=999)
        assert exc.value.issues[0].code == "DANGLING_RELATION"

    @pytest.mark.asyncio
    async def test_relation_creates_link(self, service, store):
        person = await service.create_record("shop", "person", EDITOR, {"name": "Ada"})
        car = await create_car(service, owner=person.data["id"])
        links = store.list_links(car["id"])
        assert [(link.field, link.target_id, link.target_collection) for link in links] == [
            ("owner", person.data["id"], "person")
        ]

    @pytest.mark.asyncio
    async def test_no_snapshot_on_create(self, service, store):
        car = await create_car(service)
        assert store.list_snapshots(car["id"]) == []


class TestUpdate:
    @pytest.mark.asyncio
    async def test_denied_fields_leave_record_unchanged(self, service, store):
        # Viewer may write to the collection but owns no field write rule
        car = await create_car(service, color="red")
        before = store.get("shop", "car", car["id"])

        result = await service.update_record(
            "shop", "car", VIEWER, car["id"], {"model": "M3", "year": 2024}
        )

        after = store.get("shop", "car", car["id"])
        assert after.payload == before.payload
        assert after.updated_at == before.updated_at
        assert result.data["model"] == "X3"
        assert "year" not in result.data
        assert store.list_snapshots(car["id"]) == []

    @pytest.mark.asyncio
    async def test_partial_update(self, service):
        car = await create_car(service, color="red", vin="A")
        result = await service.update_record(
            "shop", "car", EDITOR, car["id"], {"color": "blue"}
        )
        assert result.data["color"] == "blue"
        assert result.data["vin"] == "A"
        assert result.data["model"] == "X3"

    @pytest.mark.asyncio
    async def test_unchanged_values_are_a_no_op(self, service, store):
        car = await create_car(service, color="red")
        await service.update_record("shop", "car", EDITOR, car["id"], {"color": "red"})
        assert store.list_snapshots(car["id"]) == []

    @pytest.mark.asyncio
    async def test_required_checked_on_merged_record(self, service):
        car = await create_car(service)
        with pytest.raises(ValidationError) as exc:
            await service.update_record("shop", "car", EDITOR, car["id"], {"model": None})
        assert exc.value.issues[0].code == "REQUIRED"

    @pytest.mark.asyncio
    async def test_unique_allows_own_value(self, service):
        car = await create_car(service, vin="A", color="red")
        await service.update_record(
            "shop", "car", EDITOR, car["id"], {"vin": "A", "color": "blue"}
        )

    @pytest.mark.asyncio
    async def test_unique_conflict_on_update(self, service):
        await create_car(service, vin="A")
        other = await create_car(service, vin="B")
        with pytest.raises(ConflictError):
            await service.update_record("shop", "car", EDITOR, other["id"], {"vin": "A"})

    @pytest.mark.asyncio
    async def test_relation_change_replaces_link(self, service, store):
        ada = await service.create_record("shop", "person", EDITOR, {"name": "Ada"})
        bob = await service.create_record("shop", "person", EDITOR, {"name": "Bob"})
        car = await create_car(service, owner=ada.data["id"])

        await service.update_record(
            "shop", "car", EDITOR, car["id"], {"owner": bob.data["id"]}
        )
        assert [link.target_id for link in store.list_links(car["id"])] == [bob.data["id"]]

        await service.update_record("shop", "car", EDITOR, car["id"], {"owner": None})
        assert store.list_links(car["id"]) == []

    @pytest.mark.asyncio
    async def test_relation_to_deleted_record_rejected(self, service):
        ada = await service.create_record("shop", "person", EDITOR, {"name": "Ada"})
        car = await create_car(service)
        await service.delete_record("shop", "person", ADMIN, ada.data["id"])
        with pytest.raises(ValidationError):
            await service.update_record(
                "shop", "car", EDITOR, car["id"], {"owner": ada.data["id"]}
            )

    @pytest.mark.asyncio
    async def test_update_requires_id_for_regular_collection(self, service):
        with pytest.raises(ValidationError) as exc:
            await service.update_record("shop", "car", EDITOR, None, {"model": "A"})
        assert exc.value.issues[0].code == "MISSING_ID"


# =============================================================================
# Snapshots
# =============================================================================


class TestSnapshots:
    @pytest.mark.asyncio
    async def test_snapshot_precedes_persist(self, holder, store):
        service = RecordService(holder, store, Settings(), clock=fixed_clock)
        car = await create_car(service, color="red")

        await service.update_record("shop", "car", EDITOR, car["id"], {"color": "blue"})

        snapshots = store.list_snapshots(car["id"])
        record = store.get("shop", "car", car["id"])
        assert len(snapshots) == 1
        assert snapshots[0].payload["color"] == "red"
        assert snapshots[0].actor == "eddie"
        assert snapshots[0].operation == "update"
        assert snapshots[0].taken_at < record.updated_at

    @pytest.mark.asyncio
    async def test_snapshot_before_delete(self, holder, store):
        service = RecordService(holder, store, Settings(), clock=fixed_clock)
        car = await create_car(service)
        await service.delete_record("shop", "car", ADMIN, car["id"])

        snapshots = store.list_snapshots(car["id"])
        record = store.get("shop", "car", car["id"])
        assert [s.operation for s in snapshots] == ["delete"]
        assert snapshots[0].taken_at < record.updated_at
        assert record.deleted

    @pytest.mark.asyncio
    async def test_snapshot_failure_is_a_warning_by_default(self, holder, caplog):
        store = FlakySnapshotStore()
        service = RecordService(holder, store, Settings())
        car = await create_car(service, color="red")

        result = await service.update_record(
            "shop", "car", EDITOR, car["id"], {"color": "blue"}
        )

        assert result.data["color"] == "blue"
        assert len(result.warnings) == 1
        assert "Snapshot" in result.warnings[0]
        assert "Snapshot of record" in caplog.text

    @pytest.mark.asyncio
    async def test_snapshot_failure_fatal_when_configured(self, holder):
        store = FlakySnapshotStore()
        service = RecordService(holder, store, Settings(snapshot_failure_fatal=True))
        car = await create_car(service, color="red")

        with pytest.raises(StorageError):
            await service.update_record("shop", "car", EDITOR, car["id"], {"color": "blue"})
        assert store.get("shop", "car", car["id"]).payload["color"] == "red"

    @pytest.mark.asyncio
    async def test_snapshots_disabled_for_collection(self, tmp_path, store):
        root = tmp_path / "projects"
        write_project(root, "shop", {
            "collections/note.yaml": (
                "collection: note\nsnapshots: false\nroles: [editor]\n"
                "fields: [{name: text, type: string, permissions: {write: [editor]}}]\n"
            ),
        })
        service = RecordService(RegistryHolder.from_path(root), store, Settings())
        note = await service.create_record("shop", "note", EDITOR, {"text": "a"})
        await service.update_record("shop", "note", EDITOR, note.data["id"], {"text": "b"})
        assert store.list_snapshots(note.data["id"]) == []

    @pytest.mark.asyncio
    async def test_list_snapshots_projects_payload(self, service):
        car = await create_car(service, vin="A", color="red")
        await service.update_record("shop", "car", EDITOR, car["id"], {"color": "blue"})

        history = await service.list_snapshots("shop", "car", VIEWER, car["id"])
        assert len(history) == 1
        assert history[0]["payload"] == {"model": "X3", "color": "red"}
        assert (await service.list_snapshots("shop", "car", EDITOR, car["id"]))[0]["payload"][
            "vin"
        ] == "A"


# =============================================================================
# Delete
# =============================================================================


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_needs_delete_role(self, service):
        car = await create_car(service)
        with pytest.raises(AccessDeniedError):
            await service.delete_record("shop", "car", EDITOR, car["id"])

    @pytest.mark.asyncio
    async def test_delete_twice(self, service):
        car = await create_car(service)
        result = await service.delete_record("shop", "car", ADMIN, car["id"])
        assert result.data is None
        with pytest.raises(NotFoundError):
            await service.delete_record("shop", "car", ADMIN, car["id"])


# =============================================================================
# Singletons
# =============================================================================


class TestSingleton:
    @pytest.mark.asyncio
    async def test_second_create_conflicts(self, service):
        await service.create_record("shop", "settings", EDITOR, {"shop_name": "Fast Cars"})
        with pytest.raises(ConflictError) as exc:
            await service.create_record("shop", "settings", EDITOR, {"shop_name": "Other"})
        assert exc.value.code == "SINGLETON_EXISTS"

    @pytest.mark.asyncio
    async def test_get_and_update_without_id(self, service):
        await service.create_record("shop", "settings", EDITOR, {"shop_name": "Fast Cars"})

        result = await service.update_record(
            "shop", "settings", EDITOR, None, {"currency": "EUR"}
        )
        assert result.data["currency"] == "EUR"

        record = await service.get_record("shop", "settings", VIEWER)
        assert record["shop_name"] == "Fast Cars"
        assert record["currency"] == "EUR"

    @pytest.mark.asyncio
    async def test_get_before_create(self, service):
        with pytest.raises(NotFoundError):
            await service.get_record("shop", "settings", VIEWER)

    @pytest.mark.asyncio
    async def test_list_returns_at_most_one(self, service):
        await service.create_record("shop", "settings", EDITOR, {"shop_name": "Fast Cars"})
        page = await service.list_records("shop", "settings", VIEWER, QueryRequest(limit=50))
        assert len(page.data) == 1
        assert page.limit == 1

    @pytest.mark.asyncio
    async def test_create_allowed_again_after_delete(self, holder, store):
        service = RecordService(holder, store, Settings())
        first = await service.create_record("shop", "settings", EDITOR, {"shop_name": "A"})
        store.soft_delete(first.data["id"])
        await service.create_record("shop", "settings", EDITOR, {"shop_name": "B"})


# =============================================================================
# Failure propagation and cancellation
# =============================================================================


class TestFailures:
    @pytest.mark.asyncio
    async def test_timeout_surfaces_as_upstream_timeout(self, holder):
        store = SlowStore()
        service = RecordService(holder, store, Settings())
        car = await create_car(service)
        with pytest.raises(UpstreamTimeoutError):
            await service.update_record("shop", "car", EDITOR, car["id"], {"color": "red"})

    @pytest.mark.asyncio
    async def test_other_failures_surface_as_storage_error(self, holder):
        service = RecordService(holder, SlowStore(), Settings())
        with pytest.raises(StorageError) as exc:
            await service.list_records("shop", "car", VIEWER)
        assert not isinstance(exc.value, UpstreamTimeoutError)
        assert isinstance(exc.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_cancel_before_persist(self, service, store):
        car = await create_car(service, color="red")
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError):
            await service.update_record(
                "shop", "car", EDITOR, car["id"], {"color": "blue"}, cancel=cancel
            )
        assert store.get("shop", "car", car["id"]).payload["color"] == "red"

    @pytest.mark.asyncio
    async def test_cancel_before_create(self, service, store):
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(OperationCancelledError):
            await service.create_record("shop", "car", EDITOR, {"model": "X3"}, cancel=cancel)
        page = await service.list_records("shop", "car", VIEWER)
        assert page.total == 0

    @pytest.mark.asyncio
    async def test_cancel_before_delete(self, service, store):
        car = await create_car(service)
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(OperationCancelledError):
            await service.delete_record("shop", "car", ADMIN, car["id"], cancel=cancel)
        assert not store.get("shop", "car", car["id"]).deleted

    @pytest.mark.asyncio
    async def test_unset_event_does_not_cancel(self, service):
        car = await create_car(service)
        result = await service.update_record(
            "shop", "car", EDITOR, car["id"], {"color": "red"}, cancel=asyncio.Event()
        )
        assert result.data["color"] == "red"


# =============================================================================
# Metadata and templating
# =============================================================================


class TestMetadata:
    @pytest.mark.asyncio
    async def test_list_collections_for_viewer(self, service):
        collections = await service.list_collections("shop", VIEWER)
        assert [c.name for c in collections] == ["car", "person", "settings"]
        car = collections[0]
        assert "vin" not in car.field_names

    @pytest.mark.asyncio
    async def test_list_collections_for_outsider(self, service):
        assert await service.list_collections("shop", Principal.of("guest")) == []

    @pytest.mark.asyncio
    async def test_describe_collection_annotates_access(self, service):
        described = await service.describe_collection("shop", "car", VIEWER)
        fields = {f["name"]: f for f in described["fields"]}
        assert "vin" not in fields
        assert fields["model"]["access"] == {"read": True, "write": False}
        assert described["access"] == {"read": True, "write": True, "delete": False}
        assert described["labelField"] == "model"

        described = await service.describe_collection("shop", "car", EDITOR)
        fields = {f["name"]: f for f in described["fields"]}
        assert fields["vin"]["access"] == {"read": True, "write": True}

    @pytest.mark.asyncio
    async def test_record_context_resolves_relation_labels(self, service):
        ada = await service.create_record("shop", "person", EDITOR, {"name": "Ada"})
        car = await create_car(service, owner=ada.data["id"], vin="A")

        context = await service.record_context("shop", "car", VIEWER, car["id"])

        assert context["project"] == "shop"
        assert context["collection"] == "car"
        assert context["template"] is None
        assert "vin" not in context["record"]
        assert context["relations"] == {"owner": {"id": ada.data["id"], "label": "Ada"}}

    @pytest.mark.asyncio
    async def test_record_context_empty_and_deleted_relations(self, service):
        ada = await service.create_record("shop", "person", EDITOR, {"name": "Ada"})
        with_owner = await create_car(service, owner=ada.data["id"], vin="A")
        without_owner = await create_car(service, vin="B")
        await service.delete_record("shop", "person", ADMIN, ada.data["id"])

        context = await service.record_context("shop", "car", VIEWER, without_owner["id"])
        assert context["relations"] == {"owner": None}
        context = await service.record_context("shop", "car", VIEWER, with_owner["id"])
        assert context["relations"] == {"owner": None}


# =============================================================================
# Same pipeline over SQLite
# =============================================================================


@pytest.mark.asyncio
async def test_car_scenario_on_sqlite(holder):
    store = SQLiteRecordStore("sqlite://")
    store.connect()
    try:
        service = RecordService(holder, store, Settings(), clock=fixed_clock)
        car = await create_car(service, vin="A", color="red")

        unchanged = await service.update_record(
            "shop", "car", VIEWER, car["id"], {"model": "M3", "year": 2024}
        )
        assert unchanged.data["model"] == "X3"

        await service.update_record("shop", "car", EDITOR, car["id"], {"color": "blue"})
        snapshots = store.list_snapshots(car["id"])
        record = store.get("shop", "car", car["id"])
        assert len(snapshots) == 1
        assert snapshots[0].taken_at < record.updated_at
        assert record.updated_at - snapshots[0].taken_at == timedelta(microseconds=1)
    finally:
        store.close()
