"""Reconciliation of Notion pages with the local record store."""

import logging
from collections.abc import Callable

from tracker2notion.exceptions import DataIntegrityError
from tracker2notion.models import FieldConfig, Record, Schema, SyncStats, ValueKind
from tracker2notion.notion.client import NotionClient
from tracker2notion.notion.properties import from_remote_properties, to_epoch_ms
from tracker2notion.notion.schema import LEGACY_FIELDS
from tracker2notion.store import LocalStore

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], NotionClient]


def fields_for(schema: Schema | None) -> list[FieldConfig]:
    """Fields to map with: the schema's, or the legacy set when there is none."""
    return schema.fields if schema is not None else LEGACY_FIELDS


def _page_timestamp(page: dict, fields: list[FieldConfig], values: dict) -> int:
    """First date field value, else the page creation time."""
    for field in fields:
        if field.kind is ValueKind.DATE and values.get(field.id) is not None:
            return values[field.id]
    return to_epoch_ms(page.get("created_time")) or 0


def record_from_page(page: dict, fields: list[FieldConfig], user_id: str, schema_id: str | None) -> Record:
    """Convert a Notion page into a (not yet stored) record.

    Raises DataIntegrityError when the page has no id, since such a page
    can never be matched to a local record.
    """
    remote_id = page.get("id")
    if not remote_id:
        raise DataIntegrityError("Notion page without an id", page=page)

    values = from_remote_properties(fields, page.get("properties", {}))
    return Record(
        user_id=user_id,
        schema_id=schema_id,
        timestamp=_page_timestamp(page, fields, values),
        field_values=values,
        remote_id=remote_id,
        remote_url=page.get("url"),
    )


async def fetch_remote_records(
    client: NotionClient,
    database_id: str,
    fields: list[FieldConfig],
    user_id: str,
    schema_id: str | None = None,
    stats: SyncStats | None = None,
) -> list[Record]:
    """Fetch and convert every active page of a database, without touching the store."""
    records = []
    async for page in client.query_database_all(database_id):
        try:
            records.append(record_from_page(page, fields, user_id, schema_id))
        except DataIntegrityError as e:
            logger.error(f"  Dropped page: {e}")
            if stats is not None:
                stats.skipped += 1
                stats.errors.append(str(e))

    logger.info(f"Fetched {len(records)} records from Notion")
    return records


class ReconciliationEngine:
    """Merges the Notion database into the local store; Notion wins."""

    def __init__(self, store: LocalStore, client_factory: ClientFactory = NotionClient):
        self.store = store
        self.client_factory = client_factory

    async def reconcile(self, user_id: str, schema: Schema | None, stats: SyncStats | None = None) -> list[Record]:
        """
        Bring the local store in line with Notion and return what to display.

        1. Load the user's cached records
        2. Without a configured database, return the cache as is
        3. Fetch all pages (paginated) and convert them with the schema fields
        4. Match each page to a cached record by remote id only
           - match: take Notion's values, keep the local id
           - no match: store a new local record carrying the remote id
        5. Return the Notion-derived records only; local records that were
           never pushed are not part of the result

        Raises NotionAPIError when Notion can't be read.
        """
        stats = stats if stats is not None else SyncStats()
        cached = self.store.list_records(user_id)

        settings = self.store.get_user_settings(user_id)
        if settings is None or not settings.has_remote:
            logger.info("No Notion database configured, using local records")
            return cached

        # Matching is by remote id only. Title/date collisions are common
        # (two meals can share both), so there is no fallback key.
        by_remote_id: dict[str, Record] = {}
        for record in cached:
            if not record.remote_id:
                continue
            if record.remote_id in by_remote_id:
                logger.warning(
                    f"Records {by_remote_id[record.remote_id].id} and {record.id} "
                    f"share remote id {record.remote_id}, keeping the first"
                )
                continue
            by_remote_id[record.remote_id] = record

        logger.info(f"Indexed {len(by_remote_id)} local records with a remote id")

        client = self.client_factory(settings.notion_api_key)
        try:
            remote_records = await fetch_remote_records(
                client,
                settings.notion_database_id,
                fields_for(schema),
                user_id,
                schema.id if schema is not None else None,
                stats,
            )
        finally:
            await client.close()

        result: list[Record] = []
        seen: set[str] = set()
        for remote in remote_records:
            if remote.remote_id in seen:
                logger.warning(f"Notion returned page {remote.remote_id} twice, ignoring the repeat")
                continue
            seen.add(remote.remote_id)

            local = by_remote_id.get(remote.remote_id)
            if local is None:
                record = self.store.upsert_record(remote)
                by_remote_id[remote.remote_id] = record
                stats.created += 1
            else:
                record = local.model_copy(
                    update={
                        "field_values": remote.field_values,
                        "timestamp": remote.timestamp,
                        "remote_url": remote.remote_url or local.remote_url,
                        "schema_id": remote.schema_id or local.schema_id,
                    }
                )
                if record != local:
                    self.store.upsert_record(record)
                    stats.updated += 1
                else:
                    stats.unchanged += 1
            result.append(record)

        visible = []
        for record in result:
            if not record.remote_id:
                error = DataIntegrityError(f"record {record.id} has no remote id after reconciliation")
                logger.error(str(error))
                stats.skipped += 1
                stats.errors.append(str(error))
                continue
            visible.append(record)

        logger.info(
            f"Reconciled {len(visible)} records: {stats.created} created, "
            f"{stats.updated} updated, {stats.unchanged} unchanged, {stats.skipped} dropped"
        )
        return sorted(visible, key=lambda r: r.timestamp, reverse=True)
