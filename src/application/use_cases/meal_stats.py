from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from src.domain.entities.profile import ProfileEntity
from src.domain.services import tier_policy
from src.infrastructure.database.repositories.meal_repository import MealRepository


@dataclass
class MealStatsUseCase:
    meals: MealRepository

    def execute(self, profile: ProfileEntity, now: datetime | None = None) -> dict[str, Any]:
        now = now or datetime.now(UTC)
        tier = tier_policy.normalize_tier(profile.subscription_tier)
        meals = self.meals.list_by_user(profile.id)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_start = now - timedelta(days=7)

        scores = [m.health_score for m in meals if m.health_score is not None]
        calories = [
            (m.basic_nutrition or {}).get("energy_kcal")
            for m in meals
            if (m.basic_nutrition or {}).get("energy_kcal") is not None
        ]
        tags = Counter(tag for m in meals for tag in (m.meal_tags or []))
        expiring = [
            m
            for m in meals
            if (left := tier_policy.days_left(m.scheduled_deletion_date, now)) is not None
            and left <= tier_policy.EXPIRY_WARNING_DAYS
        ]
        meals_today = sum(1 for m in meals if m.created_at >= day_start)

        return {
            "total_meals": len(meals),
            "meals_today": meals_today,
            "meals_this_week": sum(1 for m in meals if m.created_at >= week_start),
            "average_health_score": round(sum(scores) / len(scores), 1) if scores else None,
            "average_calories": round(sum(calories) / len(calories)) if calories else None,
            "top_tags": [tag for tag, _ in tags.most_common(5)],
            "expiring_soon": len(expiring),
            "shares_remaining": tier_policy.shares_remaining(profile, now),
            "analyses_remaining_today": None
            if tier_policy.is_premium(tier)
            else max(0, tier_policy.FREE_DAILY_ANALYSIS_LIMIT - meals_today),
            "tier": tier,
        }
