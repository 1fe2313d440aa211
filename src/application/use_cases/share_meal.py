from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from src.domain.entities.meal import MealEntity
from src.domain.entities.profile import ProfileEntity
from src.domain.errors import LimitExceededError, NotFoundError
from src.domain.services import tier_policy
from src.infrastructure.database.repositories.meal_repository import MealRepository
from src.infrastructure.database.repositories.profile_repository import ProfileRepository

logger = logging.getLogger(__name__)


@dataclass
class ShareMealUseCase:
    """Make a meal public, charging free users one of their monthly shares."""

    meals: MealRepository
    profiles: ProfileRepository

    def execute(
        self, profile: ProfileEntity, meal_id: str, now: datetime | None = None
    ) -> tuple[MealEntity, int | None]:
        """Returns the shared meal and the shares left this month (None = unlimited)."""
        now = now or datetime.now(UTC)
        meal = self.meals.get(meal_id)
        if meal is None or meal.user_id != profile.id:
            raise NotFoundError("Meal not found")
        if meal.is_public:
            return meal, tier_policy.shares_remaining(profile, now)

        if not tier_policy.can_share_publicly(profile, now):
            logger.warning("Monthly share limit reached for user %s", profile.id)
            raise LimitExceededError(
                "Monthly share limit reached. Upgrade to premium for unlimited sharing.",
                payload={
                    "shares_remaining": 0,
                    "limit": tier_policy.FREE_MONTHLY_SHARE_LIMIT,
                    "upgrade_required": True,
                },
            )

        shared = self.meals.update(meal_id, is_public=True)
        if shared is None:
            raise NotFoundError("Meal not found")
        if not tier_policy.is_premium(profile.subscription_tier):
            profile = self.profiles.update(
                profile.id,
                monthly_shares_used=tier_policy.effective_shares_used(profile, now) + 1,
                share_reset_date=now,
            )
        return shared, tier_policy.shares_remaining(profile, now)
