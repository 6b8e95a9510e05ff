"""Local record store backed by a single JSON file."""

import logging
import os
import tempfile
from pathlib import Path

from pydantic import BaseModel, Field

from tracker2notion.models import Record, Schema, UserSettings

STORE_VERSION = 1

logger = logging.getLogger(__name__)


class StoreData(BaseModel):
    """On-disk layout of the store."""

    version: int = STORE_VERSION
    records: dict[str, Record] = Field(default_factory=dict)
    schemas: dict[str, Schema] = Field(default_factory=dict)
    settings: dict[str, UserSettings] = Field(default_factory=dict)


class LocalStore:
    """Records, schemas and user settings, scoped by user id.

    With ``path=None`` the store lives in memory only. Every write is
    persisted immediately by rewriting the file atomically. Callers get
    copies, so mutating a returned model never changes the store.
    """

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path) if path is not None else None
        self.data = self._load()

    def _load(self) -> StoreData:
        if self.path is None or not self.path.exists():
            return StoreData()
        data = StoreData.model_validate_json(self.path.read_text(encoding="utf-8"))
        logger.debug(f"Loaded {len(data.records)} records and {len(data.schemas)} schemas from {self.path}")
        return data

    def save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(self.data.model_dump_json(indent=2))
            os.replace(tmp_name, self.path)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    # Records

    def list_records(self, user_id: str) -> list[Record]:
        """All records for a user, newest first."""
        records = [r.model_copy(deep=True) for r in self.data.records.values() if r.user_id == user_id]
        return sorted(records, key=lambda r: r.timestamp, reverse=True)

    def get_record(self, record_id: str) -> Record | None:
        record = self.data.records.get(record_id)
        return record.model_copy(deep=True) if record else None

    def upsert_record(self, record: Record) -> Record:
        """Insert or replace a record.

        A remote id, once stored, is never cleared by a later write.
        """
        existing = self.data.records.get(record.id)
        if existing is not None and existing.remote_id and not record.remote_id:
            logger.warning(f"Keeping remote id {existing.remote_id} on record {record.id}")
            record = record.model_copy(
                update={"remote_id": existing.remote_id, "remote_url": record.remote_url or existing.remote_url}
            )

        self.data.records[record.id] = record.model_copy(deep=True)
        self.save()
        return record

    def delete_record(self, record_id: str) -> bool:
        if self.data.records.pop(record_id, None) is None:
            return False
        self.save()
        return True

    # Schemas

    def get_schema(self, schema_id: str) -> Schema | None:
        schema = self.data.schemas.get(schema_id)
        return schema.model_copy(deep=True) if schema else None

    def list_schemas(self, user_id: str) -> list[Schema]:
        """All schemas for a user, most recently updated first."""
        schemas = [s.model_copy(deep=True) for s in self.data.schemas.values() if s.user_id == user_id]
        return sorted(schemas, key=lambda s: s.updated_at, reverse=True)

    def save_schema(self, schema: Schema) -> Schema:
        self.data.schemas[schema.id] = schema.model_copy(deep=True)
        self.save()
        return schema

    def delete_schema(self, schema_id: str) -> bool:
        if self.data.schemas.pop(schema_id, None) is None:
            return False
        self.save()
        return True

    # User settings

    def get_user_settings(self, user_id: str) -> UserSettings | None:
        settings = self.data.settings.get(user_id)
        return settings.model_copy() if settings else None

    def save_user_settings(self, user_id: str, **updates) -> UserSettings:
        """Merge ``updates`` into the user's settings."""
        current = self.data.settings.get(user_id) or UserSettings(user_id=user_id)
        merged = UserSettings.model_validate({**current.model_dump(), **updates, "user_id": user_id})
        self.data.settings[user_id] = merged
        self.save()
        return merged.model_copy()
