from __future__ import annotations

import logging
import os
import uuid
from datetime import UTC, datetime
from typing import Any

from supabase import Client

from src.domain.entities.audit_log import AuditLogEntity
from src.infrastructure.database.repositories.row_mapping import from_row, to_row
from src.infrastructure.database.supabase_client import with_retry

logger = logging.getLogger(__name__)

# module-level in-memory store for disabled mode
_MEM_AUDIT_LOGS: list[AuditLogEntity] = []

_NIL_UUID = "00000000-0000-0000-0000-000000000000"


class AuditLogRepository:
    def __init__(self, client: Client | None) -> None:
        self.client = client
        self.disabled = os.getenv("SUPABASE_DISABLED", "0") == "1"

    @property
    def in_memory(self) -> bool:
        return self.disabled or self.client is None

    def _row_to_entity(self, row: dict[str, Any]) -> AuditLogEntity:
        return from_row(AuditLogEntity, row, ("timestamp",))

    def record(
        self, action: str, user_id: str | None = None, details: dict[str, Any] | None = None
    ) -> AuditLogEntity:
        entity = AuditLogEntity(
            id=str(uuid.uuid4()),
            action=action,
            timestamp=datetime.now(UTC),
            user_id=user_id,
            details=details or {},
        )
        if self.in_memory:
            _MEM_AUDIT_LOGS.append(entity)
            return entity
        try:  # pragma: no cover - network
            self.client.table("audit_logs").insert(to_row(entity)).execute()
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB insert audit log failed: {exc}") from exc
        return entity

    def try_record(
        self, action: str, user_id: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        """Best-effort variant for error paths, where a logging failure must not mask the original error."""
        try:
            self.record(action, user_id, details)
        except RuntimeError as exc:
            logger.error("Could not write audit log %s: %s", action, exc)

    def list_since(self, since: datetime, action: str | None = None) -> list[AuditLogEntity]:
        if self.in_memory:
            return [
                e
                for e in _MEM_AUDIT_LOGS
                if e.timestamp >= since and (action is None or e.action == action)
            ]

        def query() -> Any:  # pragma: no cover - network
            q = self.client.table("audit_logs").select("*").gte("timestamp", since.isoformat())
            if action is not None:
                q = q.eq("action", action)
            return q.execute()

        try:  # pragma: no cover - network
            res = with_retry(query, "list audit logs")
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB list audit logs failed: {exc}") from exc
        return [self._row_to_entity(row) for row in res.data or []]

    def list_recent(self, user_id: str | None = None, limit: int = 100) -> list[AuditLogEntity]:
        """Newest first, optionally for one user."""
        if self.in_memory:
            # later entries win ties on timestamp
            entries = [e for e in reversed(_MEM_AUDIT_LOGS) if user_id is None or e.user_id == user_id]
            entries.sort(key=lambda e: e.timestamp, reverse=True)
            return entries[:limit]

        def query() -> Any:  # pragma: no cover - network
            q = self.client.table("audit_logs").select("*")
            if user_id is not None:
                q = q.eq("user_id", user_id)
            return q.order("timestamp", desc=True).limit(limit).execute()

        try:  # pragma: no cover - network
            res = with_retry(query, "list recent audit logs")
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB list audit logs failed: {exc}") from exc
        return [self._row_to_entity(row) for row in res.data or []]

    def export_rows(self) -> list[dict[str, Any]]:
        if self.in_memory:
            return [to_row(e) for e in _MEM_AUDIT_LOGS]
        try:  # pragma: no cover - network
            res = with_retry(
                lambda: self.client.table("audit_logs").select("*").execute(), "export audit logs"
            )
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB export audit logs failed: {exc}") from exc
        return list(res.data or [])

    def import_rows(self, rows: list[dict[str, Any]], replace_existing: bool = False) -> int:
        if self.in_memory:
            if replace_existing:
                _MEM_AUDIT_LOGS.clear()
            _MEM_AUDIT_LOGS.extend(self._row_to_entity(row) for row in rows)
            return len(rows)
        try:  # pragma: no cover - network
            if replace_existing:
                self.client.table("audit_logs").delete().neq("id", _NIL_UUID).execute()
            if rows:
                self.client.table("audit_logs").upsert(rows, on_conflict="id").execute()
            return len(rows)
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"DB import audit logs failed: {exc}") from exc


def reset_memory_store() -> None:
    _MEM_AUDIT_LOGS.clear()
