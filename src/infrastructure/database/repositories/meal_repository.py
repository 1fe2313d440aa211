from __future__ import annotations

import os
import uuid
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from supabase import Client

from src.domain.entities.meal import MealEntity
from src.infrastructure.database.repositories.row_mapping import from_row, to_row
from src.infrastructure.database.supabase_client import with_retry

# module-level in-memory store for disabled mode
_MEM_MEALS: dict[str, MealEntity] = {}

_NIL_UUID = "00000000-0000-0000-0000-000000000000"
_DATETIME_FIELDS = ("created_at", "scheduled_deletion_date")


def _iso(value: datetime) -> str:
    return value.isoformat()


class MealRepository:
    def __init__(self, client: Client | None) -> None:
        self.client = client
        self.disabled = os.getenv("SUPABASE_DISABLED", "0") == "1"

    @property
    def in_memory(self) -> bool:
        return self.disabled or self.client is None

    def _row_to_entity(self, row: dict[str, Any]) -> MealEntity:
        return from_row(MealEntity, row, _DATETIME_FIELDS)

    def _select(self, build: Any, context: str) -> list[MealEntity]:
        """Run a select built on the meals table with retries and map the rows."""
        try:
            res = with_retry(lambda: build(self.client.table("meals").select("*")).execute(), context)
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB {context} failed: {exc}") from exc
        return [self._row_to_entity(row) for row in res.data or []]

    def _count(self, build: Any, context: str) -> int:
        try:
            res = with_retry(
                lambda: build(self.client.table("meals").select("id", count="exact")).execute(),
                context,
            )
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB {context} failed: {exc}") from exc
        return res.count or 0

    def create(self, row: dict[str, Any]) -> MealEntity:
        """Insert a meal from a column dict (see NutritionService.meal_row_from_analysis)."""
        if self.in_memory:
            entity = from_row(MealEntity, {**row, "id": str(uuid.uuid4())}, _DATETIME_FIELDS)
            _MEM_MEALS[entity.id] = entity
            return entity
        payload = {k: _iso(v) if isinstance(v, datetime) else v for k, v in row.items()}
        try:  # pragma: no cover - network
            res = with_retry(
                lambda: self.client.table("meals").insert(payload).execute(), "create meal"
            )
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB insert meal failed: {exc}") from exc
        return self._row_to_entity(res.data[0])

    def get(self, meal_id: str) -> MealEntity | None:
        if self.in_memory:
            return _MEM_MEALS.get(meal_id)
        rows = self._select(lambda q: q.eq("id", meal_id).limit(1), "get meal")  # pragma: no cover
        return rows[0] if rows else None  # pragma: no cover

    def list_by_user(
        self, user_id: str, since: datetime | None = None, limit: int | None = None
    ) -> list[MealEntity]:
        """Newest first."""
        if self.in_memory:
            meals = [
                m
                for m in _MEM_MEALS.values()
                if m.user_id == user_id and (since is None or m.created_at >= since)
            ]
            meals.sort(key=lambda m: m.created_at, reverse=True)
            return meals[:limit] if limit else meals

        def build(q: Any) -> Any:  # pragma: no cover - network
            q = q.eq("user_id", user_id)
            if since is not None:
                q = q.gte("created_at", _iso(since))
            q = q.order("created_at", desc=True)
            return q.limit(limit) if limit else q

        return self._select(build, "list meals")  # pragma: no cover

    def list_older_than(self, user_id: str, cutoff: datetime) -> list[MealEntity]:
        if self.in_memory:
            return [m for m in _MEM_MEALS.values() if m.user_id == user_id and m.created_at < cutoff]
        return self._select(  # pragma: no cover
            lambda q: q.eq("user_id", user_id).lt("created_at", _iso(cutoff)), "list old meals"
        )

    def due_for_deletion(self, now: datetime) -> list[MealEntity]:
        if self.in_memory:
            return [
                m
                for m in _MEM_MEALS.values()
                if m.scheduled_deletion_date is not None and m.scheduled_deletion_date <= now
            ]
        return self._select(  # pragma: no cover
            lambda q: q.not_.is_("scheduled_deletion_date", "null").lte(
                "scheduled_deletion_date", _iso(now)
            ),
            "list expired meals",
        )

    def count_since(self, user_id: str | None, since: datetime | None) -> int:
        """Meals created at or after `since`; `user_id=None` counts across users."""
        if self.in_memory:
            return sum(
                1
                for m in _MEM_MEALS.values()
                if (user_id is None or m.user_id == user_id)
                and (since is None or m.created_at >= since)
            )

        def build(q: Any) -> Any:  # pragma: no cover - network
            if user_id is not None:
                q = q.eq("user_id", user_id)
            if since is not None:
                q = q.gte("created_at", _iso(since))
            return q

        return self._count(build, "count meals")  # pragma: no cover

    def count_today(self, user_id: str, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return self.count_since(user_id, start)

    def active_user_ids(self, since: datetime) -> set[str]:
        if self.in_memory:
            return {m.user_id for m in _MEM_MEALS.values() if m.created_at >= since}
        try:  # pragma: no cover - network
            res = with_retry(
                lambda: self.client.table("meals")
                .select("user_id")
                .gte("created_at", _iso(since))
                .execute(),
                "list active users",
            )
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB list active users failed: {exc}") from exc
        return {row["user_id"] for row in res.data or []}

    def update(self, meal_id: str, **changes: Any) -> MealEntity | None:
        if self.in_memory:
            current = _MEM_MEALS.get(meal_id)
            if current is None:
                return None
            updated = replace(current, **changes)
            _MEM_MEALS[meal_id] = updated
            return updated
        payload = {k: _iso(v) if isinstance(v, datetime) else v for k, v in changes.items()}
        try:  # pragma: no cover - network
            res = self.client.table("meals").update(payload).eq("id", meal_id).execute()
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB update meal failed: {exc}") from exc
        rows = res.data or []
        return self._row_to_entity(rows[0]) if rows else None

    def delete(self, meal_id: str) -> bool:
        if self.in_memory:
            return _MEM_MEALS.pop(meal_id, None) is not None
        try:  # pragma: no cover - network
            res = self.client.table("meals").delete().eq("id", meal_id).execute()
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB delete meal failed: {exc}") from exc
        return bool(res.data)

    def export_rows(self) -> list[dict[str, Any]]:
        if self.in_memory:
            return [to_row(m) for m in _MEM_MEALS.values()]
        try:  # pragma: no cover - network
            res = with_retry(lambda: self.client.table("meals").select("*").execute(), "export meals")
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB export meals failed: {exc}") from exc
        return list(res.data or [])

    def import_rows(self, rows: list[dict[str, Any]], replace_existing: bool = False) -> int:
        if self.in_memory:
            if replace_existing:
                _MEM_MEALS.clear()
            for row in rows:
                entity = self._row_to_entity(row)
                _MEM_MEALS[entity.id] = entity
            return len(rows)
        try:  # pragma: no cover - network
            if replace_existing:
                self.client.table("meals").delete().neq("id", _NIL_UUID).execute()
            if rows:
                self.client.table("meals").upsert(rows, on_conflict="id").execute()
            return len(rows)
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB import meals failed: {exc}") from exc


def reset_memory_store() -> None:
    _MEM_MEALS.clear()
