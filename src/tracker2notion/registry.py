"""Schema registry: stores schemas and resolves a user's active one."""

import logging
import re
from typing import Any

from tracker2notion.exceptions import InvalidArgumentError, TemplateNotFoundError
from tracker2notion.models import FieldConfig, Schema, ValueKind, now_ms
from tracker2notion.notion.properties import normalize_values
from tracker2notion.notion.schema import legacy_field_values
from tracker2notion.store import LocalStore
from tracker2notion.templates import get_template

logger = logging.getLogger(__name__)


def _number_from_text(text: str, field: FieldConfig) -> float | None:
    """First number next to the field's name in free text, e.g. "32g protein"."""
    for keyword in dict.fromkeys((field.name.lower(), field.id.replace("_", " "))):
        word = re.escape(keyword)
        for pattern in (rf"{word}[\s:]*(\d+(?:\.\d+)?)", rf"(\d+(?:\.\d+)?)\s*(?:g|mg|kcal)?\s*{word}"):
            match = re.search(pattern, text, re.IGNORECASE)
            if match:
                return float(match.group(1))
    return None

DESCRIPTION_FIELD = FieldConfig(
    id="description",
    name="Description",
    value_kind=ValueKind.TEXT,
    required=True,
    show_in_form=True,
    ai_prompt_hint='What did you eat? (e.g., "Grilled chicken salad with olive oil")',
)


class SchemaRegistry:
    """Per-user schemas on top of the local store."""

    def __init__(self, store: LocalStore):
        self.store = store

    def get_active(self, user_id: str) -> Schema | None:
        """
        Resolve the schema a user's records are tracked with.

        Resolution order:
        1. The schema named in the user's settings
        2. The user's most recently updated schema

        Returns None when the user has no schema; callers then use the
        legacy field set.
        """
        settings = self.store.get_user_settings(user_id)
        if settings and settings.active_schema_id:
            schema = self.store.get_schema(settings.active_schema_id)
            if schema is not None and schema.user_id == user_id:
                return schema
            logger.warning(
                f"Active schema {settings.active_schema_id} for user {user_id} is missing, "
                "falling back to the most recent schema"
            )

        schemas = self.store.list_schemas(user_id)
        return schemas[0] if schemas else None

    def set_active(self, user_id: str, schema_id: str) -> None:
        schema = self.store.get_schema(schema_id)
        if schema is None or schema.user_id != user_id:
            raise InvalidArgumentError(f"Schema not found: {schema_id}")
        self.store.save_user_settings(user_id, active_schema_id=schema_id)
        logger.info(f"Activated schema '{schema.name}' ({schema_id}) for user {user_id}")

    def instantiate_from_template(self, template_id: str, user_id: str, name: str | None = None) -> Schema:
        """Create a user-owned schema from a template.

        Field definitions are deep-copied, so editing the schema later never
        touches the template or other users' schemas.
        """
        template = get_template(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)

        created = now_ms()
        schema_id = f"{user_id}_{template_id}_{created}"
        while self.store.get_schema(schema_id) is not None:
            created += 1
            schema_id = f"{user_id}_{template_id}_{created}"

        schema = Schema(
            id=schema_id,
            user_id=user_id,
            name=name or template.name,
            description=template.description,
            template_id=template.id,
            fields=[field.model_copy(deep=True) for field in template.fields],
            created_at=created,
            updated_at=created,
        )
        self.store.save_schema(schema)
        self.store.save_user_settings(user_id, template_id=template_id)
        logger.info(f"Created schema '{schema.name}' from template {template_id} (v{template.version})")
        return schema

    def create_schema(
        self,
        user_id: str,
        name: str,
        fields: list[FieldConfig],
        description: str | None = None,
    ) -> Schema:
        schema = Schema(user_id=user_id, name=name, description=description, fields=fields)
        return self.store.save_schema(schema)

    def get_schema(self, schema_id: str) -> Schema | None:
        return self.store.get_schema(schema_id)

    def list_schemas(self, user_id: str) -> list[Schema]:
        return self.store.list_schemas(user_id)

    def update_schema(self, schema_id: str, **updates: Any) -> Schema:
        """Apply updates and bump ``updated_at`` (strictly increasing)."""
        existing = self.store.get_schema(schema_id)
        if existing is None:
            raise InvalidArgumentError(f"Schema not found: {schema_id}")

        data = existing.model_dump()
        data.update(updates)
        data["id"] = existing.id
        data["user_id"] = existing.user_id
        data["updated_at"] = max(now_ms(), existing.updated_at + 1)
        schema = Schema.model_validate(data)
        return self.store.save_schema(schema)

    def delete_schema(self, user_id: str, schema_id: str) -> bool:
        schema = self.store.get_schema(schema_id)
        if schema is None or schema.user_id != user_id:
            return False

        settings = self.store.get_user_settings(user_id)
        if settings and settings.active_schema_id == schema_id:
            self.store.save_user_settings(user_id, active_schema_id=None)
        return self.store.delete_schema(schema_id)

    def migrate_to_simplified_form(self, schema_id: str) -> Schema | None:
        """
        Move a schema to the simplified entry form.

        The name field is hidden from the form (it is generated) and a
        required description field is added right after it. Schemas that
        already have both changes are returned untouched.
        """
        schema = self.store.get_schema(schema_id)
        if schema is None:
            logger.error(f"Schema not found: {schema_id}")
            return None

        name_field = schema.get_field("name")
        has_description = schema.get_field("description") is not None
        if has_description and (name_field is None or not name_field.show_in_form):
            logger.info(f"Schema {schema_id} already migrated")
            return schema

        fields = []
        for field in schema.fields:
            if field.id == "name":
                field = field.model_copy(update={"show_in_form": False})
            fields.append(field)

        if not has_description:
            name_index = next((i for i, f in enumerate(fields) if f.id == "name"), None)
            position = 0 if name_index is None else name_index + 1
            fields.insert(position, DESCRIPTION_FIELD.model_copy(deep=True))

        migrated = self.update_schema(schema_id, fields=fields)
        logger.info(f"Migrated schema {schema_id} to the simplified form")
        return migrated

    def backfill_records(self, user_id: str, schema_id: str | None = None) -> int:
        """
        Move records written before schemas existed onto a schema's field ids.

        Records that already belong to a schema are left alone. Legacy
        attributes fold into name/date/summary/photo; number fields the
        schema adds are read from the summary text when it mentions them
        ("32g protein", "calories: 450"), else 0.

        Args:
            user_id: Owner of the records
            schema_id: Target schema, defaults to the active one

        Returns:
            Number of records migrated
        """
        schema = self.store.get_schema(schema_id) if schema_id else self.get_active(user_id)
        if schema is None or schema.user_id != user_id:
            raise InvalidArgumentError(f"Schema not found: {schema_id or 'no active schema'}")

        count = 0
        for record in self.store.list_records(user_id):
            if record.schema_id is not None:
                continue

            values: dict[str, Any] = legacy_field_values(record.field_values, record.timestamp)
            summary = str(values.get("summary") or "")
            for field in schema.fields:
                if field.kind is ValueKind.NUMBER and field.id not in values:
                    values[field.id] = _number_from_text(summary, field) or 0

            migrated = record.model_copy(
                update={
                    "schema_id": schema.id,
                    "field_values": normalize_values(schema.fields, values, record.timestamp),
                }
            )
            self.store.upsert_record(migrated)
            count += 1

        logger.info(f"Backfilled {count} records onto schema '{schema.name}' ({schema.id})")
        return count

    def migrate_user_schemas(self, user_id: str) -> int:
        """Migrate every schema a user owns. Returns how many were processed."""
        schemas = self.store.list_schemas(user_id)
        logger.info(f"Found {len(schemas)} schemas to migrate")
        count = 0
        for schema in schemas:
            if self.migrate_to_simplified_form(schema.id) is not None:
                count += 1
        return count
