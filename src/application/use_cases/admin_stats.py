from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from src.domain.services import tier_policy
from src.infrastructure.database.repositories.meal_repository import MealRepository
from src.infrastructure.database.repositories.profile_repository import ProfileRepository


@dataclass
class AdminStatsUseCase:
    profiles: ProfileRepository
    meals: MealRepository

    def execute(self, now: datetime | None = None) -> dict[str, Any]:
        """Platform-wide counts. Active users are those who saved a meal in the last 7 days."""
        now = now or datetime.now(UTC)
        profiles = self.profiles.list_all()
        total = len(profiles)
        premium = sum(1 for p in profiles if tier_policy.is_premium(p.subscription_tier))
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return {
            "total_users": total,
            "active_users": len(self.meals.active_user_ids(now - timedelta(days=7))),
            "premium_users": premium,
            "free_users": total - premium,
            "total_meals": self.meals.count_since(None, None),
            "meals_today": self.meals.count_since(None, day_start),
            "conversion_rate": premium / total * 100 if total else 0.0,
        }
