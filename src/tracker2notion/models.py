"""Data models for tracker2notion."""

import time
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class ValueKind(str, Enum):
    """Kinds of value a tracked field can hold."""

    TITLE = "title"
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    URL = "url"
    SELECT = "select"
    MULTI_SELECT = "multi_select"
    CHECKBOX = "checkbox"


# Notion property type used for each value kind
REMOTE_PROPERTY_KINDS: dict[ValueKind, str] = {
    ValueKind.TITLE: "title",
    ValueKind.TEXT: "rich_text",
    ValueKind.NUMBER: "number",
    ValueKind.DATE: "date",
    ValueKind.URL: "url",
    ValueKind.SELECT: "select",
    ValueKind.MULTI_SELECT: "multi_select",
    ValueKind.CHECKBOX: "checkbox",
}


class SourceOfTruth(str, Enum):
    """Which store decides what the user sees after a sync."""

    REMOTE = "remote"
    LOCAL = "local"


# Validated field value; which member is used depends on the field's kind
FieldValue = str | int | float | bool | list[str] | None


def resolve_kind(kind: Any) -> ValueKind | None:
    """Return the known ValueKind for ``kind``, or None for kinds this version doesn't know."""
    try:
        return ValueKind(kind)
    except ValueError:
        return None


class FieldConfig(BaseModel):
    """One trackable attribute of a schema."""

    id: str = Field(min_length=1, description="Stable key, immutable once records use it")
    name: str = Field(description="Display name, also the Notion property name")
    value_kind: ValueKind | str
    required: bool = False
    show_in_form: bool = True
    remote_property_kind: str | None = None

    # For select/multi-select
    options: list[str] | None = None

    # For numbers
    number_format: str | None = None
    unit: str | None = None

    default_value: Any = None

    # Hints for the external extraction model
    extract_from_ai: bool = False
    ai_prompt_hint: str | None = None

    @model_validator(mode="after")
    def _derive_remote_property_kind(self) -> "FieldConfig":
        if self.remote_property_kind is None:
            kind = resolve_kind(self.value_kind)
            self.remote_property_kind = REMOTE_PROPERTY_KINDS[kind] if kind else "rich_text"
        return self

    @property
    def kind(self) -> ValueKind | None:
        return resolve_kind(self.value_kind)


class Schema(BaseModel):
    """Named, ordered set of fields a user tracks."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    name: str
    description: str | None = None
    template_id: str | None = None
    fields: list[FieldConfig]
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    @field_validator("fields")
    @classmethod
    def _check_fields(cls, fields: list[FieldConfig]) -> list[FieldConfig]:
        seen: set[str] = set()
        for field in fields:
            if field.id in seen:
                raise ValueError(f"Duplicate field id: {field.id}")
            seen.add(field.id)

        titles = [f for f in fields if f.kind is ValueKind.TITLE]
        if len(titles) != 1:
            raise ValueError(f"Schema needs exactly one title field, found {len(titles)}")
        return fields

    def get_field(self, field_id: str) -> FieldConfig | None:
        return next((f for f in self.fields if f.id == field_id), None)

    @property
    def title_field(self) -> FieldConfig:
        return next(f for f in self.fields if f.kind is ValueKind.TITLE)


class SchemaTemplate(BaseModel):
    """Static, versioned blueprint a schema can be instantiated from."""

    id: str
    name: str
    description: str
    icon: str = ""
    version: int = 1
    recommended: bool = False
    fields: list[FieldConfig]


class Record(BaseModel):
    """One logged instance of schema-shaped data."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    schema_id: str | None = None
    timestamp: int = Field(default_factory=now_ms)
    field_values: dict[str, FieldValue] = Field(default_factory=dict)

    # Foreign key to the Notion page (page id)
    remote_id: str | None = None
    remote_url: str | None = None

    @property
    def is_synced(self) -> bool:
        return bool(self.remote_id)


class UserSettings(BaseModel):
    """Per-user Notion connection and schema selection."""

    user_id: str
    notion_api_key: str | None = None
    notion_database_id: str | None = None
    active_schema_id: str | None = None
    template_id: str | None = None

    @property
    def has_remote(self) -> bool:
        return bool(self.notion_api_key and self.notion_database_id)


class SyncStats(BaseModel):
    """Statistics from a sync operation."""

    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)


class SyncResult(BaseModel):
    """Outcome of one full sync cycle."""

    records: list[Record] = Field(default_factory=list)
    stats: SyncStats = Field(default_factory=SyncStats)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DeleteOutcome(BaseModel):
    """What a delete actually did in each store."""

    record_id: str
    local_deleted: bool = False
    remote_archived: bool = False


def _plain_text(runs: list[dict] | None) -> str:
    """Concatenate the plain text of a list of rich text runs."""
    return "".join(run.get("plain_text", "") for run in runs or [])


class CreatedPage(BaseModel):
    """Identity of a newly created Notion page."""

    remote_id: str
    remote_url: str | None = None

    @classmethod
    def from_notion_page(cls, page: dict) -> "CreatedPage":
        return cls(remote_id=page["id"], remote_url=page.get("url"))


class RemoteItem(BaseModel):
    """A page or database found through Notion search."""

    id: str
    title: str
    kind: str
    parent: dict[str, Any] | None = None

    @classmethod
    def from_notion(cls, obj: dict) -> "RemoteItem":
        """Parse a search result object (page or database)."""
        kind = obj.get("object", "page")
        if kind == "database":
            title = _plain_text(obj.get("title"))
        else:
            title = ""
            for prop in obj.get("properties", {}).values():
                if prop.get("type") == "title":
                    title = _plain_text(prop.get("title"))
                    break
        return cls(id=obj["id"], title=title or "Untitled", kind=kind, parent=obj.get("parent"))


class DatabaseColumn(BaseModel):
    name: str
    kind: str
    id: str


class DatabaseAnalysis(BaseModel):
    """Title and columns of an existing Notion database."""

    database_id: str
    title: str
    columns: list[DatabaseColumn] = Field(default_factory=list)

    @classmethod
    def from_notion_database(cls, database: dict) -> "DatabaseAnalysis":
        columns = [
            DatabaseColumn(name=name, kind=prop.get("type", "unknown"), id=prop.get("id", ""))
            for name, prop in database.get("properties", {}).items()
        ]
        return cls(
            database_id=database["id"],
            title=_plain_text(database.get("title")) or "Untitled",
            columns=columns,
        )


class OAuthGrant(BaseModel):
    """Result of exchanging a Notion OAuth authorization code."""

    access_token: str
    workspace: str | None = None
    bot_id: str | None = None


class ConnectionStatus(BaseModel):
    is_valid: bool


class ArchiveResult(BaseModel):
    success: bool


class PageNode(BaseModel):
    """Search hit arranged in the workspace page hierarchy."""

    item: RemoteItem
    level: int = 0
    children: list["PageNode"] = Field(default_factory=list)


PageNode.model_rebuild()

