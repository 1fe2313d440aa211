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
from src.infrastructure.storage.supabase_storage import SupabaseStorage

logger = logging.getLogger(__name__)


@dataclass
class DeleteAccountUseCase:
    """Erase a user's data: stored images first, then meals, settings and profile.

    Image deletion failures are logged and reported; rows are removed regardless.
    Audit entries stay behind as the record of the deletion.
    """

    profiles: ProfileRepository
    meals: MealRepository
    notifications: NotificationSettingsRepository
    audit_logs: AuditLogRepository
    storage: SupabaseStorage

    def _remove_files(self, user_id: str, image_paths: list[str]) -> tuple[int, list[str]]:
        removed = 0
        errors: list[str] = []
        for path in image_paths:
            try:
                self.storage.delete_meal_image(path)
                removed += 1
            except RuntimeError as exc:
                logger.warning("Could not delete image %s for %s: %s", path, user_id, exc)
                errors.append(f"{path}: {exc}")
        try:
            removed += self.storage.delete_avatars(user_id)
        except RuntimeError as exc:
            logger.warning("Could not delete avatars for %s: %s", user_id, exc)
            errors.append(f"avatars: {exc}")
        return removed, errors

    def execute(self, user_id: str) -> dict[str, Any]:
        try:
            if self.profiles.get(user_id) is None:
                raise NotFoundError(f"Profile {user_id} not found")
            meals = self.meals.list_by_user(user_id)
            files_deleted, errors = self._remove_files(user_id, [m.image_path for m in meals if m.image_path])
            for meal in meals:
                self.meals.delete(meal.id)
            self.notifications.delete(user_id)
            self.profiles.delete(user_id)
        except (RuntimeError, NotFoundError) as exc:
            self.audit_logs.try_record("gdpr_delete", user_id, {"success": False, "error": str(exc)})
            raise

        result = {
            "success": True,
            "deleted_at": datetime.now(UTC).isoformat(),
            "meals_deleted": len(meals),
            "files_deleted": files_deleted,
            "errors": errors,
        }
        self.audit_logs.try_record("gdpr_delete", user_id, {k: v for k, v in result.items() if k != "deleted_at"})
        logger.info("Deleted account data for %s (%s meals)", user_id, len(meals))
        return result
