"""Tests for sync cycles, pushes and deletes under each source-of-truth policy."""

import pytest

from conftest import DATABASE_ID, USER_ID, notion_page
from tracker2notion.exceptions import (
    ArchiveFailedError,
    InvalidArgumentError,
    PushFailedError,
    RecordNotFoundError,
)
from tracker2notion.models import FieldConfig, Record, SourceOfTruth, ValueKind
from tracker2notion.orchestrator import SyncOrchestrator
from tracker2notion.registry import SchemaRegistry


@pytest.fixture
def remote_orchestrator(connected_store, client_factory) -> SyncOrchestrator:
    return SyncOrchestrator(connected_store, SourceOfTruth.REMOTE, client_factory=client_factory)


@pytest.fixture
def local_orchestrator(connected_store, client_factory) -> SyncOrchestrator:
    return SyncOrchestrator(connected_store, SourceOfTruth.LOCAL, client_factory=client_factory)


class TestFullSync:
    @pytest.mark.asyncio
    async def test_remote_reconciles(self, remote_orchestrator, fake_notion):
        fake_notion.add_pages(DATABASE_ID, [notion_page("p1", "Toast")])

        result = await remote_orchestrator.run_full_sync(USER_ID)

        assert result.ok
        assert [r.remote_id for r in result.records] == ["p1"]
        assert result.stats.created == 1

    @pytest.mark.asyncio
    async def test_remote_failure_shows_no_records(self, remote_orchestrator, fake_notion, connected_store):
        connected_store.upsert_record(Record(id="cached", user_id=USER_ID, remote_id="p1"))
        fake_notion.errors[f"POST /v1/databases/{DATABASE_ID}/query"] = (502, "Bad gateway")

        result = await remote_orchestrator.run_full_sync(USER_ID)

        assert not result.ok
        assert result.records == []
        assert "Bad gateway" in result.error
        assert connected_store.get_record("cached") is not None

    @pytest.mark.asyncio
    async def test_local_returns_cache_without_remote_calls(self, local_orchestrator, fake_notion, connected_store):
        connected_store.upsert_record(Record(id="draft", user_id=USER_ID))

        result = await local_orchestrator.run_full_sync(USER_ID)

        assert [r.id for r in result.records] == ["draft"]
        assert fake_notion.requests == []

    @pytest.mark.asyncio
    async def test_uses_active_schema_fields(self, connected_store, client_factory, fake_notion):
        registry = SchemaRegistry(connected_store)
        schema = registry.instantiate_from_template("macro-tracking", USER_ID)
        registry.set_active(USER_ID, schema.id)
        page = notion_page("p1", "Chicken")
        page["properties"]["Protein"] = {"type": "number", "number": 35}
        fake_notion.add_pages(DATABASE_ID, [page])
        orchestrator = SyncOrchestrator(connected_store, client_factory=client_factory, registry=registry)

        result = await orchestrator.run_full_sync(USER_ID)

        record = result.records[0]
        assert record.schema_id == schema.id
        assert record.field_values["protein"] == 35
        assert record.field_values["carbs"] == 0


class TestPush:
    @pytest.mark.asyncio
    async def test_remote_push_stores_after_notion_accepts(self, remote_orchestrator, fake_notion, connected_store):
        record = await remote_orchestrator.push_new_record(USER_ID, {"text": "Toast", "ai_summary": "Carbs"})

        assert record.remote_id
        page = fake_notion.find_page(record.remote_id)
        assert page["properties"]["Name"]["title"][0]["plain_text"] == "Toast"
        assert page["properties"]["Summary"]["rich_text"][0]["plain_text"] == "Carbs"
        assert "Photo" not in page["properties"]
        assert connected_store.get_record(record.id).remote_id == record.remote_id

    @pytest.mark.asyncio
    async def test_remote_push_failure_stores_nothing(self, remote_orchestrator, fake_notion, connected_store):
        fake_notion.errors["POST /v1/pages"] = (400, "Name is not a property that exists.")

        with pytest.raises(PushFailedError) as exc_info:
            await remote_orchestrator.push_new_record(USER_ID, {"name": "Toast"})

        assert "Name is not a property that exists." in str(exc_info.value.original_error)
        assert connected_store.list_records(USER_ID) == []

    @pytest.mark.asyncio
    async def test_local_push_failure_leaves_pending_record(self, local_orchestrator, fake_notion, connected_store):
        fake_notion.errors["POST /v1/pages"] = (503, "Service unavailable")

        with pytest.raises(PushFailedError) as exc_info:
            await local_orchestrator.push_new_record(USER_ID, {"name": "Toast"})

        stored = connected_store.get_record(exc_info.value.record.id)
        assert stored is not None
        assert stored.remote_id is None
        assert [r.id for r in local_orchestrator.pending_records(USER_ID)] == [stored.id]

    @pytest.mark.asyncio
    async def test_local_push_success(self, local_orchestrator, connected_store):
        record = await local_orchestrator.push_new_record(USER_ID, {"name": "Toast"})

        assert connected_store.get_record(record.id).remote_id == record.remote_id
        assert local_orchestrator.pending_records(USER_ID) == []

    @pytest.mark.asyncio
    async def test_without_database_saves_locally(self, store, client_factory, fake_notion):
        orchestrator = SyncOrchestrator(store, client_factory=client_factory)

        record = await orchestrator.push_new_record(USER_ID, {"name": "Toast"})

        assert record.remote_id is None
        assert store.get_record(record.id) is not None
        assert fake_notion.requests == []

    @pytest.mark.asyncio
    async def test_missing_required_field(self, remote_orchestrator, fake_notion):
        with pytest.raises(InvalidArgumentError, match="Name"):
            await remote_orchestrator.push_new_record(USER_ID, {"summary": "no title"})

        assert fake_notion.requests == []

    @pytest.mark.asyncio
    async def test_schema_values_are_validated(self, connected_store, client_factory, fake_notion):
        registry = SchemaRegistry(connected_store)
        registry.set_active(USER_ID, registry.instantiate_from_template("macro-tracking", USER_ID).id)
        orchestrator = SyncOrchestrator(connected_store, client_factory=client_factory, registry=registry)

        record = await orchestrator.push_new_record(
            USER_ID, {"name": "Chicken", "protein": "35", "carbs": "lots", "date": "2024-01-31T12:00:00Z"}
        )

        assert record.field_values["protein"] == 35
        assert record.field_values["carbs"] == 0
        assert record.timestamp == 1706702400000
        page = fake_notion.find_page(record.remote_id)
        assert page["properties"]["Protein"] == {"number": 35}
        assert page["properties"]["Date"] == {"date": {"start": "2024-01-31T12:00:00.000Z"}}


    @pytest.mark.asyncio
    async def test_out_of_range_date_is_rejected_before_storing(self, local_orchestrator, fake_notion, connected_store):
        with pytest.raises(InvalidArgumentError, match="Date"):
            await local_orchestrator.push_new_record(USER_ID, {"name": "Toast", "date": "99999999999999999"})

        assert connected_store.list_records(USER_ID) == []
        assert fake_notion.requests == []

    @pytest.mark.asyncio
    async def test_out_of_range_optional_date_is_cleared(self, connected_store, client_factory, fake_notion):
        registry = SchemaRegistry(connected_store)
        schema = registry.create_schema(
            USER_ID,
            "Workouts",
            [
                FieldConfig(id="name", name="Name", value_kind=ValueKind.TITLE, required=True),
                FieldConfig(id="next_session", name="Next Session", value_kind=ValueKind.DATE),
            ],
        )
        registry.set_active(USER_ID, schema.id)
        orchestrator = SyncOrchestrator(connected_store, SourceOfTruth.LOCAL, client_factory, registry)

        record = await orchestrator.push_new_record(USER_ID, {"name": "Run", "next_session": "99999999999999999"})

        assert record.field_values["next_session"] is None
        assert fake_notion.find_page(record.remote_id)["properties"]["Next Session"] == {"date": None}


class TestUpdate:
    @pytest.mark.asyncio
    async def test_patches_page_and_store(self, remote_orchestrator, fake_notion, connected_store):
        record = await remote_orchestrator.push_new_record(USER_ID, {"name": "Toast", "summary": "Carbs"})

        updated = await remote_orchestrator.update_record(USER_ID, record.id, {"name": "Jam toast"})

        assert updated.id == record.id
        assert updated.field_values["name"] == "Jam toast"
        assert updated.field_values["summary"] == "Carbs"
        assert updated.timestamp == record.timestamp
        page = fake_notion.find_page(record.remote_id)
        assert page["properties"]["Name"]["title"][0]["plain_text"] == "Jam toast"
        assert connected_store.get_record(record.id).field_values["name"] == "Jam toast"

    @pytest.mark.asyncio
    async def test_remote_rejection_keeps_old_values(self, remote_orchestrator, fake_notion, connected_store):
        record = await remote_orchestrator.push_new_record(USER_ID, {"name": "Toast"})
        fake_notion.errors[f"PATCH /v1/pages/{record.remote_id}"] = (409, "Conflict occurred while saving.")

        with pytest.raises(PushFailedError):
            await remote_orchestrator.update_record(USER_ID, record.id, {"name": "Jam toast"})

        assert connected_store.get_record(record.id).field_values["name"] == "Toast"

    @pytest.mark.asyncio
    async def test_local_rejection_keeps_edit(self, local_orchestrator, fake_notion, connected_store):
        record = await local_orchestrator.push_new_record(USER_ID, {"name": "Toast"})
        fake_notion.errors[f"PATCH /v1/pages/{record.remote_id}"] = (409, "Conflict occurred while saving.")

        with pytest.raises(PushFailedError):
            await local_orchestrator.update_record(USER_ID, record.id, {"name": "Jam toast"})

        assert connected_store.get_record(record.id).field_values["name"] == "Jam toast"

    @pytest.mark.asyncio
    async def test_unpushed_record_updates_locally(self, remote_orchestrator, fake_notion, connected_store):
        connected_store.upsert_record(
            Record(id="draft", user_id=USER_ID, field_values={"name": "Toast", "date": 1706702400000})
        )

        updated = await remote_orchestrator.update_record(USER_ID, "draft", {"summary": "Carbs"})

        assert updated.field_values["summary"] == "Carbs"
        assert updated.timestamp == 1706702400000
        assert fake_notion.requests == []

    @pytest.mark.asyncio
    async def test_cannot_clear_required_field(self, remote_orchestrator, connected_store):
        record = await remote_orchestrator.push_new_record(USER_ID, {"name": "Toast"})

        with pytest.raises(InvalidArgumentError):
            await remote_orchestrator.update_record(USER_ID, record.id, {"name": ""})

    @pytest.mark.asyncio
    async def test_unknown_record(self, remote_orchestrator):
        with pytest.raises(RecordNotFoundError):
            await remote_orchestrator.update_record(USER_ID, "missing", {"name": "Toast"})


class TestDelete:
    @pytest.mark.asyncio
    async def test_archive_then_delete(self, remote_orchestrator, connected_store):
        record = await remote_orchestrator.push_new_record(USER_ID, {"name": "Toast"})

        outcome = await remote_orchestrator.delete_record(USER_ID, record.id)

        assert outcome.remote_archived and outcome.local_deleted
        result = await remote_orchestrator.run_full_sync(USER_ID)
        assert result.records == []
        assert connected_store.list_records(USER_ID) == []

    @pytest.mark.asyncio
    async def test_archive_failure_keeps_record(self, remote_orchestrator, fake_notion, connected_store):
        record = await remote_orchestrator.push_new_record(USER_ID, {"name": "Toast"})
        fake_notion.errors[f"PATCH /v1/pages/{record.remote_id}"] = (403, "Insufficient permissions")

        with pytest.raises(ArchiveFailedError) as exc_info:
            await remote_orchestrator.delete_record(USER_ID, record.id)

        assert exc_info.value.remote_id == record.remote_id
        assert connected_store.get_record(record.id) is not None
        assert fake_notion.find_page(record.remote_id)["archived"] is False

    @pytest.mark.asyncio
    async def test_local_only_delete(self, remote_orchestrator, fake_notion, connected_store):
        record = await remote_orchestrator.push_new_record(USER_ID, {"name": "Toast"})

        outcome = await remote_orchestrator.delete_record(USER_ID, record.id, archive_remote=False)

        assert outcome.local_deleted and not outcome.remote_archived
        assert fake_notion.find_page(record.remote_id)["archived"] is False

    @pytest.mark.asyncio
    async def test_unpushed_record_deletes_without_remote_call(self, remote_orchestrator, fake_notion, connected_store):
        connected_store.upsert_record(Record(id="draft", user_id=USER_ID))

        outcome = await remote_orchestrator.delete_record(USER_ID, "draft")

        assert outcome.local_deleted
        assert fake_notion.requests == []

    @pytest.mark.asyncio
    async def test_unknown_record(self, remote_orchestrator, connected_store):
        connected_store.upsert_record(Record(id="theirs", user_id="someone-else"))

        with pytest.raises(RecordNotFoundError):
            await remote_orchestrator.delete_record(USER_ID, "theirs")
        with pytest.raises(RecordNotFoundError):
            await remote_orchestrator.delete_record(USER_ID, "missing")
