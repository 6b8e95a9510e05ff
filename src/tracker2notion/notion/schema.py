"""Legacy Notion database schema, used when a user has no active schema."""

from typing import Any

from tracker2notion.models import FieldConfig, FieldValue, ValueKind

# Database layout created before schemas existed. Property names must stay
# exactly as they are: existing databases were created with them.
LEGACY_SCHEMA = {
    "Name": {"title": {}},
    "Date": {"date": {}},
    "Summary": {"rich_text": {}},
    "Photo": {"url": {}},
}

LEGACY_FIELDS: list[FieldConfig] = [
    FieldConfig(id="name", name="Name", value_kind=ValueKind.TITLE, required=True, show_in_form=False),
    FieldConfig(id="date", name="Date", value_kind=ValueKind.DATE, required=True, show_in_form=False),
    FieldConfig(id="summary", name="Summary", value_kind=ValueKind.TEXT, show_in_form=False),
    FieldConfig(id="photo", name="Photo", value_kind=ValueKind.URL),
]

DEFAULT_DATABASE_TITLE = "Food Log"


def legacy_field_values(values: dict[str, Any], timestamp: int) -> dict[str, FieldValue]:
    """Fold legacy entry attributes into the legacy field ids.

    Legacy entries carried ``title``, ``text``, ``ai_summary`` and ``photo_url``
    instead of field values. The title falls back to the free text, the date
    to the entry timestamp.
    """
    return {
        "name": values.get("name") or values.get("title") or values.get("text") or "",
        "date": values.get("date") or timestamp,
        "summary": values.get("summary") or values.get("ai_summary") or "",
        "photo": values.get("photo") or values.get("photo_url") or "",
    }
