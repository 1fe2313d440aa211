from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from src.domain.errors import NotFoundError
from src.infrastructure.database.repositories.audit_log_repository import AuditLogRepository
from src.infrastructure.database.repositories.meal_repository import MealRepository
from src.infrastructure.database.repositories.notification_settings_repository import (
    NotificationSettingsRepository,
)
from src.infrastructure.database.repositories.profile_repository import ProfileRepository
from src.infrastructure.database.repositories.row_mapping import to_row

logger = logging.getLogger(__name__)

EXPORT_FORMAT = "gdpr_export_v1"


@dataclass
class ExportAccountDataUseCase:
    """Everything stored about one user, as a single JSON document."""

    profiles: ProfileRepository
    meals: MealRepository
    notifications: NotificationSettingsRepository
    audit_logs: AuditLogRepository

    def execute(self, user_id: str) -> dict[str, Any]:
        try:
            profile = self.profiles.get(user_id)
            if profile is None:
                raise NotFoundError(f"Profile {user_id} not found")
            settings = self.notifications.get(user_id)
            export = {
                "profile": to_row(profile),
                "meals": [to_row(m) for m in self.meals.list_by_user(user_id)],
                "notification_settings": to_row(settings) if settings else None,
                "audit_logs": [to_row(e) for e in self.audit_logs.list_recent(user_id, limit=1000)],
                "export_date": datetime.now(UTC).isoformat(),
                "format": EXPORT_FORMAT,
            }
        except (RuntimeError, NotFoundError) as exc:
            self.audit_logs.try_record("gdpr_export", user_id, {"success": False, "error": str(exc)})
            raise
        self.audit_logs.try_record("gdpr_export", user_id, {"success": True, "meals": len(export["meals"])})
        logger.info("Exported account data for %s (%s meals)", user_id, len(export["meals"]))
        return export
