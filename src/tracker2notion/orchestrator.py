"""Sync cycles and record writes, under one source-of-truth policy."""

import logging
from typing import Any

from tracker2notion.exceptions import (
    ArchiveFailedError,
    ConfigurationError,
    InvalidArgumentError,
    NotionAPIError,
    PushFailedError,
    RecordNotFoundError,
)
from tracker2notion.models import (
    DeleteOutcome,
    FieldConfig,
    Record,
    Schema,
    SourceOfTruth,
    SyncResult,
    SyncStats,
    ValueKind,
    now_ms,
)
from tracker2notion.notion.client import NotionClient
from tracker2notion.notion.properties import normalize_values, to_remote_properties
from tracker2notion.notion.schema import LEGACY_FIELDS, legacy_field_values
from tracker2notion.notion.sync import ClientFactory, ReconciliationEngine
from tracker2notion.registry import SchemaRegistry
from tracker2notion.store import LocalStore

logger = logging.getLogger(__name__)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


class SyncOrchestrator:
    """
    Runs sync cycles and record writes for one source-of-truth policy.

    REMOTE: Notion is what the user sees. A full sync reconciles the local
    store against Notion; new records are stored locally only after Notion
    accepted them.

    LOCAL: the local store is what the user sees and Notion is a best-effort
    mirror. New records are stored first and then pushed; a failed push
    leaves the record pending.
    """

    def __init__(
        self,
        store: LocalStore,
        source_of_truth: SourceOfTruth = SourceOfTruth.REMOTE,
        client_factory: ClientFactory = NotionClient,
        registry: SchemaRegistry | None = None,
        engine: ReconciliationEngine | None = None,
    ):
        self.store = store
        self.source_of_truth = SourceOfTruth(source_of_truth)
        self.client_factory = client_factory
        self.registry = registry or SchemaRegistry(store)
        self.engine = engine or ReconciliationEngine(store, client_factory)

    async def run_full_sync(self, user_id: str) -> SyncResult:
        """
        Produce the record set to display.

        A Notion failure is not retried and not papered over with local
        data: the result has no records and carries the error.
        """
        stats = SyncStats()

        if self.source_of_truth is SourceOfTruth.LOCAL:
            records = self.store.list_records(user_id)
            logger.info(f"Local store is the source of truth: {len(records)} records")
            return SyncResult(records=records, stats=stats)

        schema = self.registry.get_active(user_id)
        logger.info(f"\n=== Syncing Notion → local ({schema.name if schema else 'legacy fields'}) ===")

        try:
            records = await self.engine.reconcile(user_id, schema, stats)
        except NotionAPIError as e:
            logger.error(f"Sync failed: {e}")
            stats.errors.append(str(e))
            return SyncResult(records=[], stats=stats, error=str(e))

        return SyncResult(records=records, stats=stats)

    def _validate(
        self, user_id: str, field_values: dict[str, Any], timestamp: int
    ) -> tuple[Schema | None, list[FieldConfig], dict[str, Any], int]:
        """Validate input values against the active schema (or legacy fields).

        Returns the schema, its fields, the normalized values and the record
        timestamp (the first date field, else ``timestamp``).
        """
        schema = self.registry.get_active(user_id)

        if schema is None:
            fields = LEGACY_FIELDS
            field_values = legacy_field_values(field_values, timestamp)
        else:
            fields = schema.fields

        values = normalize_values(fields, field_values, timestamp)

        missing = [f.name for f in fields if f.required and _is_empty(values.get(f.id))]
        if missing:
            raise InvalidArgumentError(f"Missing required fields: {', '.join(missing)}")

        for field in fields:
            if field.kind is ValueKind.DATE and values.get(field.id) is not None:
                timestamp = values[field.id]
                break

        return schema, fields, values, timestamp

    def _prepare_record(self, user_id: str, field_values: dict[str, Any]) -> tuple[Record, list[FieldConfig]]:
        schema, fields, values, timestamp = self._validate(user_id, field_values, now_ms())
        record = Record(
            user_id=user_id,
            schema_id=schema.id if schema is not None else None,
            timestamp=timestamp,
            field_values=values,
        )
        return record, fields

    async def push_new_record(self, user_id: str, field_values: dict[str, Any]) -> Record:
        """
        Create a record and push it to Notion.

        Raises:
            InvalidArgumentError: a required field has no value
            PushFailedError: Notion rejected the page. Under REMOTE nothing
                was stored; under LOCAL the record stays stored without a
                remote id.
        """
        record, fields = self._prepare_record(user_id, field_values)

        settings = self.store.get_user_settings(user_id)
        if settings is None or not settings.has_remote:
            logger.info("No Notion database configured, saving locally only")
            return self.store.upsert_record(record)

        if self.source_of_truth is SourceOfTruth.LOCAL:
            record = self.store.upsert_record(record)

        properties = to_remote_properties(fields, record.field_values)
        client = self.client_factory(settings.notion_api_key)
        try:
            created = await client.create_page(settings.notion_database_id, properties)
        except NotionAPIError as e:
            logger.error(f"Failed to push record {record.id}: {e}")
            raise PushFailedError(record, e) from e
        finally:
            await client.close()

        logger.info(f"Pushed record {record.id} as Notion page {created.remote_id}")
        record = record.model_copy(update={"remote_id": created.remote_id, "remote_url": created.remote_url})
        return self.store.upsert_record(record)

    async def update_record(self, user_id: str, record_id: str, field_values: dict[str, Any]) -> Record:
        """
        Change field values on an existing record and patch its Notion page.

        Values not given keep their current value. Records that never reached
        Notion are updated locally only.

        Raises:
            RecordNotFoundError: no such record for this user
            InvalidArgumentError: a required field ends up empty
            PushFailedError: Notion rejected the patch. Under REMOTE the local
                record is unchanged; under LOCAL the edit is kept locally.
        """
        existing = self.store.get_record(record_id)
        if existing is None or existing.user_id != user_id:
            raise RecordNotFoundError(record_id)

        merged = {**existing.field_values, **field_values}
        schema, fields, values, timestamp = self._validate(user_id, merged, existing.timestamp)
        record = existing.model_copy(
            update={
                "field_values": values,
                "timestamp": timestamp,
                "schema_id": schema.id if schema is not None else existing.schema_id,
            }
        )

        settings = self.store.get_user_settings(user_id)
        if not record.is_synced or settings is None or not settings.has_remote:
            return self.store.upsert_record(record)

        if self.source_of_truth is SourceOfTruth.LOCAL:
            record = self.store.upsert_record(record)

        client = self.client_factory(settings.notion_api_key)
        try:
            await client.update_page(record.remote_id, to_remote_properties(fields, values))
        except NotionAPIError as e:
            logger.error(f"Failed to update page {record.remote_id}: {e}")
            raise PushFailedError(record, e) from e
        finally:
            await client.close()

        logger.info(f"Updated record {record.id} and Notion page {record.remote_id}")
        return self.store.upsert_record(record)

    async def delete_record(self, user_id: str, record_id: str, archive_remote: bool = True) -> DeleteOutcome:
        """
        Delete a record locally, archiving its Notion page first.

        If archiving fails the local record is kept and ArchiveFailedError
        is raised. With ``archive_remote=False`` only the local copy goes.
        """
        record = self.store.get_record(record_id)
        if record is None or record.user_id != user_id:
            raise RecordNotFoundError(record_id)

        outcome = DeleteOutcome(record_id=record_id)

        if archive_remote and record.remote_id:
            settings = self.store.get_user_settings(user_id)
            if settings is None or not settings.notion_api_key:
                raise ArchiveFailedError(
                    record_id, record.remote_id, ConfigurationError("No Notion token configured")
                )

            client = self.client_factory(settings.notion_api_key)
            try:
                await client.archive_page(record.remote_id)
            except NotionAPIError as e:
                logger.error(f"Failed to archive page {record.remote_id}: {e}")
                raise ArchiveFailedError(record_id, record.remote_id, e) from e
            finally:
                await client.close()
            outcome.remote_archived = True

        outcome.local_deleted = self.store.delete_record(record_id)
        return outcome

    def pending_records(self, user_id: str) -> list[Record]:
        """Local records that never reached Notion. They are not retried automatically."""
        return [r for r in self.store.list_records(user_id) if not r.is_synced]
