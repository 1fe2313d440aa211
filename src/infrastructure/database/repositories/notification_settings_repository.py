from __future__ import annotations

import os
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from supabase import Client

from src.domain.entities.notification_settings import NotificationSettingsEntity
from src.infrastructure.database.repositories.row_mapping import from_row, to_row
from src.infrastructure.database.supabase_client import with_retry

# module-level in-memory store for disabled mode
_MEM_SETTINGS: dict[str, NotificationSettingsEntity] = {}

_NIL_UUID = "00000000-0000-0000-0000-000000000000"


class NotificationSettingsRepository:
    def __init__(self, client: Client | None) -> None:
        self.client = client
        self.disabled = os.getenv("SUPABASE_DISABLED", "0") == "1"

    @property
    def in_memory(self) -> bool:
        return self.disabled or self.client is None

    def _row_to_entity(self, row: dict[str, Any]) -> NotificationSettingsEntity:
        return from_row(NotificationSettingsEntity, row, ("updated_at",))

    def get(self, user_id: str) -> NotificationSettingsEntity | None:
        if self.in_memory:
            return _MEM_SETTINGS.get(user_id)
        try:  # pragma: no cover - network
            res = with_retry(
                lambda: self.client.table("notification_settings")
                .select("*")
                .eq("user_id", user_id)
                .limit(1)
                .execute(),
                "get notification settings",
            )
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB get notification settings failed: {exc}") from exc
        rows = res.data or []
        return self._row_to_entity(rows[0]) if rows else None

    def get_or_default(self, user_id: str) -> NotificationSettingsEntity:
        return self.get(user_id) or NotificationSettingsEntity(user_id=user_id)

    def upsert(self, settings: NotificationSettingsEntity) -> NotificationSettingsEntity:
        """Save every toggle at once, replacing any previous row for the user."""
        settings = replace(settings, updated_at=datetime.now(UTC))
        if self.in_memory:
            _MEM_SETTINGS[settings.user_id] = settings
            return settings
        try:  # pragma: no cover - network
            res = (
                self.client.table("notification_settings")
                .upsert(to_row(settings), on_conflict="user_id")
                .execute()
            )
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB upsert notification settings failed: {exc}") from exc
        rows = res.data or []
        return self._row_to_entity(rows[0]) if rows else settings

    def delete(self, user_id: str) -> bool:
        if self.in_memory:
            return _MEM_SETTINGS.pop(user_id, None) is not None
        try:  # pragma: no cover - network
            res = self.client.table("notification_settings").delete().eq("user_id", user_id).execute()
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB delete notification settings failed: {exc}") from exc
        return bool(res.data)

    def export_rows(self) -> list[dict[str, Any]]:
        if self.in_memory:
            return [to_row(s) for s in _MEM_SETTINGS.values()]
        try:  # pragma: no cover - network
            res = with_retry(
                lambda: self.client.table("notification_settings").select("*").execute(),
                "export notification settings",
            )
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB export notification settings failed: {exc}") from exc
        return list(res.data or [])

    def import_rows(self, rows: list[dict[str, Any]], replace_existing: bool = False) -> int:
        if self.in_memory:
            if replace_existing:
                _MEM_SETTINGS.clear()
            for row in rows:
                entity = self._row_to_entity(row)
                _MEM_SETTINGS[entity.user_id] = entity
            return len(rows)
        try:  # pragma: no cover - network
            if replace_existing:
                self.client.table("notification_settings").delete().neq("user_id", _NIL_UUID).execute()
            if rows:
                self.client.table("notification_settings").upsert(rows, on_conflict="user_id").execute()
            return len(rows)
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB import notification settings failed: {exc}") from exc


def reset_memory_store() -> None:
    _MEM_SETTINGS.clear()
