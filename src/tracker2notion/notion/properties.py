"""Mapping between schema field values and Notion property payloads.

Every conversion switches on the field's value kind, never on property
names, so any number of user-defined fields can be synced. Kinds this
version doesn't know are treated as text.
"""

import logging
import math
from datetime import date, datetime, timezone
from typing import Any

from tracker2notion.models import FieldConfig, FieldValue, ValueKind

logger = logging.getLogger(__name__)

_TRUTHY = {"true", "yes", "y", "on", "1", "x"}

_RADIX_PREFIXES = {"0x": 16, "0o": 8, "0b": 2}


def _kind(field: FieldConfig) -> ValueKind:
    return field.kind or ValueKind.TEXT


def _parse_number(text: str) -> int | float | None:
    """Parse a numeric string the way form input is read: decimal, exponent,
    or a 0x/0o/0b literal. Digit separators and signed literals are rejected.
    """
    if not text:
        return 0
    if "_" in text:
        return None
    if text[:2].lower() in _RADIX_PREFIXES:
        try:
            return int(text, _RADIX_PREFIXES[text[:2].lower()])
        except ValueError:
            return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


def to_number(value: Any) -> int | float:
    """Coerce ``value`` to a number, degrading to 0 instead of raising.

    Integral values come back as ``int`` so "35" stays 35, not 35.0.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        number = _parse_number(value.strip())
        if number is None:
            return 0
    else:
        return 0

    if isinstance(number, float):
        if not math.isfinite(number):
            return 0
        if number.is_integer():
            return int(number)
    return number


def to_epoch_ms(value: Any) -> int | None:
    """Convert a timestamp, datetime, date or ISO-8601 string to epoch millis."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            logger.warning(f"Timestamp out of range: {value!r}")
            return None
        return int(value)
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    if isinstance(value, date):
        return int(datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp() * 1000)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lstrip("-").isdigit():
            return to_epoch_ms(int(text))
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable date value: {text!r}")
            return None
        return to_epoch_ms(dt)
    return None


def to_iso(timestamp: int) -> str:
    """Format epoch millis as an ISO-8601 UTC instant (``2024-01-31T12:00:00.000Z``)."""
    dt = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_value(field: FieldConfig, raw: Any) -> FieldValue:
    """Validate a dynamic input value into the type the field's kind expects."""
    kind = _kind(field)

    if kind in (ValueKind.TITLE, ValueKind.TEXT):
        return "" if raw is None else str(raw)
    if kind is ValueKind.NUMBER:
        return to_number(raw)
    if kind is ValueKind.DATE:
        return to_epoch_ms(raw)
    if kind is ValueKind.URL:
        return "" if raw is None else str(raw).strip()
    if kind is ValueKind.SELECT:
        if raw is None:
            return None
        return str(raw).strip() or None
    if kind is ValueKind.MULTI_SELECT:
        if raw is None:
            return []
        if isinstance(raw, str):
            items = raw.split(",")
        elif isinstance(raw, (list, tuple, set)):
            items = list(raw)
        else:
            items = [raw]
        return [str(item).strip() for item in items if str(item).strip()]
    if kind is ValueKind.CHECKBOX:
        if isinstance(raw, str):
            return raw.strip().lower() in _TRUTHY
        return bool(raw)

    raise AssertionError(f"Unhandled value kind: {kind}")


def normalize_values(
    fields: list[FieldConfig],
    values: dict[str, Any],
    timestamp: int | None = None,
) -> dict[str, FieldValue]:
    """Normalize a whole set of field values.

    Missing values take the field's default; date fields without a value
    take ``timestamp`` when one is given. Keys that aren't fields are dropped.
    """
    known = {f.id for f in fields}
    unknown = set(values) - known
    if unknown:
        logger.debug(f"Ignoring values for unknown fields: {sorted(unknown)}")

    normalized: dict[str, FieldValue] = {}
    for field in fields:
        raw = values.get(field.id)
        if raw in (None, "") and field.default_value is not None:
            raw = field.default_value
        if raw in (None, "") and _kind(field) is ValueKind.DATE and timestamp is not None:
            raw = timestamp
        normalized[field.id] = normalize_value(field, raw)
    return normalized


def to_remote_property(field: FieldConfig) -> dict[str, Any]:
    """Notion property definition for a field (used when creating a database)."""
    kind = _kind(field)

    if kind is ValueKind.TITLE:
        return {"title": {}}
    if kind is ValueKind.NUMBER:
        return {"number": {"format": field.number_format or "number"}}
    if kind is ValueKind.DATE:
        return {"date": {}}
    if kind is ValueKind.URL:
        return {"url": {}}
    if kind is ValueKind.SELECT:
        return {"select": {"options": [{"name": o} for o in field.options or []]}}
    if kind is ValueKind.MULTI_SELECT:
        return {"multi_select": {"options": [{"name": o} for o in field.options or []]}}
    if kind is ValueKind.CHECKBOX:
        return {"checkbox": {}}
    return {"rich_text": {}}


def build_database_properties(fields: list[FieldConfig]) -> dict[str, Any]:
    """Property definitions keyed by display name."""
    return {field.name: to_remote_property(field) for field in fields}


def _rich_text(value: str) -> list[dict]:
    if value:
        return [{"text": {"content": value}}]
    return []


def to_remote_value(field: FieldConfig, value: Any) -> dict[str, Any] | None:
    """Notion property value for ``value``.

    Returns None when nothing should be written (an empty url is rejected
    by the Notion API).
    """
    kind = _kind(field)
    value = normalize_value(field, value)

    if kind is ValueKind.TITLE:
        return {"title": _rich_text(value)}
    if kind is ValueKind.NUMBER:
        return {"number": value}
    if kind is ValueKind.DATE:
        if value is None:
            return {"date": None}
        return {"date": {"start": to_iso(value)}}
    if kind is ValueKind.URL:
        if value:
            return {"url": value}
        return None
    if kind is ValueKind.SELECT:
        if value:
            return {"select": {"name": value}}
        return {"select": None}
    if kind is ValueKind.MULTI_SELECT:
        return {"multi_select": [{"name": name} for name in value]}
    if kind is ValueKind.CHECKBOX:
        return {"checkbox": value}
    return {"rich_text": _rich_text(value)}


def to_remote_properties(fields: list[FieldConfig], values: dict[str, Any]) -> dict[str, Any]:
    """Notion ``properties`` payload for the fields present in ``values``."""
    properties: dict[str, Any] = {}
    for field in fields:
        if field.id not in values:
            continue
        payload = to_remote_value(field, values[field.id])
        if payload is not None:
            properties[field.name] = payload
    return properties


def _first_plain_text(runs: list[dict] | None) -> str:
    if not runs:
        return ""
    run = runs[0]
    return run.get("plain_text") or run.get("text", {}).get("content", "") or ""


def from_remote_value(field: FieldConfig, prop: dict[str, Any] | None) -> FieldValue:
    """Field value from a Notion property value (``page["properties"][name]``)."""
    kind = _kind(field)
    prop = prop or {}

    if kind is ValueKind.TITLE:
        return _first_plain_text(prop.get("title"))
    if kind is ValueKind.NUMBER:
        number = prop.get("number")
        return 0 if number is None else to_number(number)
    if kind is ValueKind.DATE:
        date_obj = prop.get("date")
        if date_obj and date_obj.get("start"):
            return to_epoch_ms(date_obj["start"])
        return None
    if kind is ValueKind.URL:
        return prop.get("url") or ""
    if kind is ValueKind.SELECT:
        select_obj = prop.get("select")
        return select_obj.get("name") if select_obj else None
    if kind is ValueKind.MULTI_SELECT:
        return [opt.get("name", "") for opt in prop.get("multi_select") or []]
    if kind is ValueKind.CHECKBOX:
        return bool(prop.get("checkbox", False))
    return _first_plain_text(prop.get("rich_text"))


def from_remote_properties(fields: list[FieldConfig], properties: dict[str, Any]) -> dict[str, FieldValue]:
    """Field values keyed by field id from a page's ``properties``."""
    return {field.id: from_remote_value(field, properties.get(field.name)) for field in fields}
