from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from src.domain.entities.profile import ProfileEntity
from src.domain.errors import InvalidImageError, LimitExceededError, ServiceUnavailableError
from src.domain.services import tier_policy
from src.domain.services.image_service import RECOMMENDED_MAX_KB, ImageService
from src.domain.services.nutrition_service import NutritionService
from src.infrastructure.ai import ai_models
from src.infrastructure.ai.openai_vision import ANALYSIS_SEED, FoodVisionClient, VisionRateLimitError
from src.infrastructure.cache.analysis_cache import AnalysisCache
from src.infrastructure.cache.rate_limiter import RateLimiter
from src.infrastructure.database.repositories.audit_log_repository import AuditLogRepository
from src.infrastructure.database.repositories.meal_repository import MealRepository
from src.infrastructure.database.repositories.profile_repository import ProfileRepository
from src.infrastructure.nutrition.usda_client import UsdaClient
from src.infrastructure.storage.supabase_storage import SupabaseStorage

logger = logging.getLogger(__name__)

ENDPOINT = "/analysis"


@dataclass
class AnalyzeMealUseCase:
    """Runs one meal photo through limits, the vision model and persistence."""

    profiles: ProfileRepository
    meals: MealRepository
    audit_logs: AuditLogRepository
    storage: SupabaseStorage
    vision: FoodVisionClient
    usda: UsdaClient
    rate_limiter: RateLimiter
    cache: AnalysisCache

    def _check_limits(self, profile: ProfileEntity, tier: str, now: datetime) -> None:
        rate = self.rate_limiter.check(profile.id, tier)
        if not rate.success:
            logger.warning("Rate limit exceeded for user %s (tier %s)", profile.id, tier)
            raise LimitExceededError(
                "Rate limit exceeded. Upgrade to premium for more analyses.",
                payload={"remaining": rate.remaining, "reset": rate.reset, "limit": rate.limit},
                headers={
                    "X-RateLimit-Limit": str(rate.limit),
                    "X-RateLimit-Remaining": str(rate.remaining),
                    "X-RateLimit-Reset": str(rate.reset),
                },
            )

        if not tier_policy.is_premium(tier):
            try:
                daily = self.meals.count_today(profile.id, now)
            except RuntimeError as exc:
                # counting failures do not block the user
                logger.error("Daily meal count for %s failed: %s", profile.id, exc)
                daily = 0
            if daily >= tier_policy.FREE_DAILY_ANALYSIS_LIMIT:
                logger.warning("Daily meal limit reached for user %s (%s)", profile.id, daily)
                raise LimitExceededError(
                    "Daily meal limit reached. Free users can analyze 3 meals per day.",
                    payload={
                        "daily_count": daily,
                        "limit": tier_policy.FREE_DAILY_ANALYSIS_LIMIT,
                        "upgrade_required": True,
                    },
                )

        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        try:
            monthly = self.meals.count_since(profile.id, month_start)
        except RuntimeError as exc:
            logger.error("Monthly meal count for %s failed: %s", profile.id, exc)
            monthly = 0
        quota = tier_policy.storage_quota(monthly, tier)
        if not quota["can_upload"]:
            logger.warning("Storage quota exceeded for user %s", profile.id)
            raise LimitExceededError("Storage quota exceeded for this month.", payload=quota)

    def _enhance_with_usda(self, analysis: dict[str, Any]) -> None:
        usda = self.usda.lookup(analysis.get("foodName") or "")
        if not usda:
            logger.info("No USDA data for %r, keeping model estimate", analysis.get("foodName"))
            return
        nutrition = dict(analysis.get("nutrition") or {})
        nutrition.update({k: v for k, v in usda.items() if v is not None})
        nutrition["source"] = "USDA Enhanced"
        analysis["nutrition"] = nutrition

    def _store_image(self, user_id: str, data: bytes, mime: str, data_url: str) -> tuple[str, str | None, str | None]:
        try:
            stored = self.storage.upload_meal_image(user_id, data, mime)
        except (RuntimeError, InvalidImageError) as exc:
            logger.warning("Image upload for %s failed, storing data URL instead: %s", user_id, exc)
            return data_url, None, None
        return stored.url, stored.path, stored.thumbnail_url

    def _discard_image(self, path: str) -> None:
        try:
            self.storage.delete_meal_image(path)
        except RuntimeError as exc:
            logger.error("Removing orphaned image %s failed: %s", path, exc)

    def execute(self, profile: ProfileEntity, image_data_url: str, focus: str = "health") -> dict[str, Any]:
        started = time.perf_counter()
        now = datetime.now(UTC)
        tier = tier_policy.normalize_tier(profile.subscription_tier)
        premium = tier_policy.is_premium(tier)

        model = ai_models.get_model_for_tier(tier)
        migration = ai_models.should_migrate_model(model.model_id)
        if migration["should_migrate"]:
            logger.warning("Model %s should be migrated: %s", model.model_id, migration["reason"])

        self._check_limits(profile, tier, now)

        validation = ImageService.validate_image_data_url(image_data_url)
        if not validation.valid:
            raise InvalidImageError(validation.error or "Invalid image format")
        mime, image_bytes = ImageService.parse_data_url(image_data_url)
        if validation.size_kb and validation.size_kb > RECOMMENDED_MAX_KB:
            logger.info("Processing %sKB image for %s, compression recommended", validation.size_kb, profile.id)

        cache_key = self.cache.make_key(profile.id, image_data_url, focus, tier)
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.info("Returning cached analysis for %s", profile.id)
            return {**cached, "metadata": {**cached["metadata"], "cached": True}}

        model_used = model.model_id
        fallback_used = False
        usage: dict[str, int] = {}
        if not self.vision.configured:
            logger.info("OpenAI not configured, using mock analysis")
            raw = NutritionService.mock_analysis(tier, focus)
            model_used = "mock"
        else:
            prompt = NutritionService.build_prompt(tier, focus)
            try:
                result = self.vision.analyze(image_data_url, prompt, model, premium=premium)
            except VisionRateLimitError as exc:
                logger.warning("Vision provider throttled: %s", exc)
                raise ServiceUnavailableError(
                    "Analysis service is busy. Please try again in a moment.", retry_after=10
                ) from exc
            except RuntimeError as exc:
                logger.error("Vision analysis for %s failed: %s", profile.id, exc)
                self.audit_logs.try_record(
                    "error",
                    profile.id,
                    {"type": "ai_analysis", "endpoint": ENDPOINT, "message": str(exc)},
                )
                fallback = NutritionService.fallback_analysis()
                return {
                    "success": True,
                    "meal_id": None,
                    "analysis": NutritionService.tier_view(fallback, tier),
                    "metadata": {"fallback": True, "tier": tier, "cached": False},
                }
            raw = result.analysis
            model_used = result.model_used
            fallback_used = result.fallback_used
            usage = result.usage

        analysis = NutritionService.enhance_analysis(raw)
        if premium and self.vision.configured:
            self._enhance_with_usda(analysis)

        image_url, image_path, thumbnail_url = self._store_image(profile.id, image_bytes, mime, image_data_url)
        row = NutritionService.meal_row_from_analysis(
            analysis,
            user_id=profile.id,
            image_url=image_url,
            image_path=image_path,
            focus=focus,
            created_at=now,
            tier=tier,
            thumbnail_url=thumbnail_url,
        )
        try:
            meal = self.meals.create(row)
        except RuntimeError as exc:
            logger.error("Saving meal for %s failed: %s", profile.id, exc)
            self.audit_logs.try_record(
                "error",
                profile.id,
                {"type": "database", "endpoint": ENDPOINT, "message": str(exc), "severity": "critical"},
            )
            if image_path:
                self._discard_image(image_path)
            raise
        self.profiles.increment_meal_count(profile.id)
        self.audit_logs.try_record(
            "analysis", profile.id, {"meal_id": meal.id, "model": model_used, "tier": tier}
        )

        cost = ai_models.calculate_analysis_cost(
            model, usage.get("prompt_tokens", 0), usage.get("completion_tokens", 0)
        )
        response = {
            "success": True,
            "meal_id": meal.id,
            "analysis": NutritionService.tier_view(analysis, tier),
            "metadata": {
                "processing_time": f"{int((time.perf_counter() - started) * 1000)}ms",
                "model": model_used,
                "model_version": model.display_name,
                "fallback_used": fallback_used,
                "tier": tier,
                "cached": False,
                "seed": ANALYSIS_SEED,
                "temperature": model.temperature,
                "max_tokens": model.max_tokens,
                "image_detail": model.image_detail,
                "estimated_cost": f"${cost:.4f}" if cost else None,
                "usage": usage or None,
                "scheduled_deletion_date": meal.scheduled_deletion_date.isoformat()
                if meal.scheduled_deletion_date
                else None,
            },
        }
        self.cache.set(cache_key, response)
        logger.info("Analyzed meal %s for %s with %s", meal.id, profile.id, model_used)
        return response
