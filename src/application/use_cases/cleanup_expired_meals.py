from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from src.domain.entities.meal import MealEntity
from src.infrastructure.database.repositories.meal_repository import MealRepository
from src.infrastructure.storage.supabase_storage import SupabaseStorage

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    deleted: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class CleanupExpiredMealsUseCase:
    """Retention sweep for free-tier meals.

    Each meal's image is removed before its row. Meals are handled one at a
    time; a failure is recorded and the sweep moves on.
    """

    meals: MealRepository
    storage: SupabaseStorage

    def _remove(self, items: list[MealEntity]) -> CleanupReport:
        report = CleanupReport()
        for meal in items:
            try:
                if meal.image_path:
                    self.storage.delete_meal_image(meal.image_path)
                self.meals.delete(meal.id)
                report.deleted += 1
            except RuntimeError as exc:
                logger.error("Failed to delete expired meal %s: %s", meal.id, exc)
                report.errors.append(f"{meal.id}: {exc}")
        return report

    def execute(self, now: datetime | None = None) -> CleanupReport:
        now = now or datetime.now(UTC)
        report = self._remove(self.meals.due_for_deletion(now))
        if report.deleted or report.errors:
            logger.info("Retention sweep deleted %s meals (%s errors)", report.deleted, len(report.errors))
        return report

    def cleanup_old(self, user_id: str, retention_days: int, now: datetime | None = None) -> CleanupReport:
        """Delete a user's meals older than `retention_days`; negative means keep everything."""
        if retention_days < 0:
            return CleanupReport()
        cutoff = (now or datetime.now(UTC)) - timedelta(days=retention_days)
        return self._remove(self.meals.list_older_than(user_id, cutoff))
