from __future__ import annotations

import os
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from supabase import Client

from src.domain.entities.profile import ProfileEntity
from src.domain.errors import NotFoundError
from src.domain.services import tier_policy
from src.infrastructure.database.repositories.row_mapping import from_row, to_row
from src.infrastructure.database.supabase_client import with_retry

# module-level in-memory store for disabled mode
_MEM_PROFILES: dict[str, ProfileEntity] = {}

_NIL_UUID = "00000000-0000-0000-0000-000000000000"
_DATETIME_FIELDS = ("created_at", "updated_at", "subscription_expires_at", "share_reset_date")


class ProfileRepository:
    def __init__(self, client: Client | None) -> None:
        self.client = client
        self.disabled = os.getenv("SUPABASE_DISABLED", "0") == "1"

    @property
    def in_memory(self) -> bool:
        return self.disabled or self.client is None

    def _row_to_entity(self, row: dict[str, Any]) -> ProfileEntity:
        entity = from_row(ProfileEntity, row, _DATETIME_FIELDS)
        tier = tier_policy.normalize_tier(entity.subscription_tier)
        if tier != entity.subscription_tier:
            entity = replace(entity, subscription_tier=tier)
        return entity

    def _first(self, column: str, value: str) -> ProfileEntity | None:
        res = with_retry(
            lambda: self.client.table("profiles").select("*").eq(column, value).limit(1).execute(),
            f"get profile by {column}",
        )
        rows = res.data or []
        return self._row_to_entity(rows[0]) if rows else None

    def get(self, user_id: str) -> ProfileEntity | None:
        if self.in_memory:
            return _MEM_PROFILES.get(user_id)
        try:  # pragma: no cover - network
            return self._first("id", user_id)
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB get profile failed: {exc}") from exc

    def get_by_customer_id(self, customer_id: str) -> ProfileEntity | None:
        if self.in_memory:
            return next(
                (p for p in _MEM_PROFILES.values() if p.stripe_customer_id == customer_id), None
            )
        try:  # pragma: no cover - network
            return self._first("stripe_customer_id", customer_id)
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB get profile by customer failed: {exc}") from exc

    def ensure(self, user_id: str, email: str | None) -> ProfileEntity:
        """Return the profile, creating a free-tier one on first sight of the user."""
        existing = self.get(user_id)
        if existing is not None:
            return existing
        now = datetime.now(UTC)
        entity = ProfileEntity(id=user_id, email=email, created_at=now, updated_at=now)
        if self.in_memory:
            _MEM_PROFILES[user_id] = entity
            return entity
        try:  # pragma: no cover - network
            res = (
                self.client.table("profiles")
                .upsert(to_row(entity), on_conflict="id", ignore_duplicates=True)
                .execute()
            )
            rows = res.data or []
            return self._row_to_entity(rows[0]) if rows else self.get(user_id) or entity
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB create profile failed: {exc}") from exc

    def update(self, user_id: str, **changes: Any) -> ProfileEntity:
        changes["updated_at"] = datetime.now(UTC)
        if self.in_memory:
            current = _MEM_PROFILES.get(user_id)
            if current is None:
                raise NotFoundError(f"Profile {user_id} not found")
            updated = replace(current, **changes)
            _MEM_PROFILES[user_id] = updated
            return updated
        payload = {
            k: v.isoformat() if isinstance(v, datetime) else v for k, v in changes.items()
        }
        try:  # pragma: no cover - network
            res = self.client.table("profiles").update(payload).eq("id", user_id).execute()
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB update profile failed: {exc}") from exc
        rows = res.data or []
        if not rows:
            raise NotFoundError(f"Profile {user_id} not found")
        return self._row_to_entity(rows[0])

    def increment_meal_count(self, user_id: str) -> ProfileEntity:
        current = self.get(user_id)
        if current is None:
            raise NotFoundError(f"Profile {user_id} not found")
        return self.update(user_id, meal_count=current.meal_count + 1)

    def delete(self, user_id: str) -> bool:
        if self.in_memory:
            return _MEM_PROFILES.pop(user_id, None) is not None
        try:  # pragma: no cover - network
            res = self.client.table("profiles").delete().eq("id", user_id).execute()
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB delete profile failed: {exc}") from exc
        return bool(res.data)

    def list_all(self) -> list[ProfileEntity]:
        if self.in_memory:
            return list(_MEM_PROFILES.values())
        try:  # pragma: no cover - network
            res = with_retry(
                lambda: self.client.table("profiles").select("*").execute(), "list profiles"
            )
            return [self._row_to_entity(row) for row in res.data or []]
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB list profiles failed: {exc}") from exc

    def export_rows(self) -> list[dict[str, Any]]:
        return [to_row(p) for p in self.list_all()]

    def import_rows(self, rows: list[dict[str, Any]], replace_existing: bool = False) -> int:
        if self.in_memory:
            if replace_existing:
                _MEM_PROFILES.clear()
            for row in rows:
                entity = self._row_to_entity(row)
                _MEM_PROFILES[entity.id] = entity
            return len(rows)
        try:  # pragma: no cover - network
            if replace_existing:
                self.client.table("profiles").delete().neq("id", _NIL_UUID).execute()
            if rows:
                self.client.table("profiles").upsert(rows, on_conflict="id").execute()
            return len(rows)
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB import profiles failed: {exc}") from exc


def reset_memory_store() -> None:
    _MEM_PROFILES.clear()
