from __future__ import annotations

from dataclasses import MISSING, asdict, fields
from datetime import datetime
from typing import Any, TypeVar

T = TypeVar("T")


def parse_datetime(value: Any) -> datetime | None:
    """Supabase returns ISO strings; the memory store and backups may hold datetimes."""
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return None


def to_row(entity: Any) -> dict[str, Any]:
    """Entity -> JSON-safe column dict."""
    row = asdict(entity)
    for key, value in row.items():
        if isinstance(value, datetime):
            row[key] = value.isoformat()
    return row


def from_row(cls: type[T], row: dict[str, Any], datetime_fields: tuple[str, ...]) -> T:
    """Build an entity from a row, ignoring unknown columns and defaulting missing ones."""
    known = {f.name: f for f in fields(cls)}  # type: ignore[arg-type]
    required = {
        name for name, f in known.items() if f.default is MISSING and f.default_factory is MISSING
    }
    # NULL columns fall back to the entity default
    data = {k: v for k, v in row.items() if k in known and (v is not None or k in required)}
    for name in datetime_fields:
        if name in data:
            data[name] = parse_datetime(data[name])
    return cls(**data)
