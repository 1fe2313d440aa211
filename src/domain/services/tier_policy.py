from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Any

from src.domain.entities.profile import ProfileEntity

FREE = "free"
PREMIUM_MONTHLY = "premium_monthly"
PREMIUM_YEARLY = "premium_yearly"
TIERS = (FREE, PREMIUM_MONTHLY, PREMIUM_YEARLY)

FREE_DAILY_ANALYSIS_LIMIT = 3
FREE_MONTHLY_SHARE_LIMIT = 3
EXPIRY_WARNING_DAYS = 3

# Analyses per rolling hour window
RATE_LIMITS: dict[str, int] = {
    FREE: 10,
    PREMIUM_MONTHLY: 100,
    PREMIUM_YEARLY: 200,
}
RATE_LIMIT_WINDOW_SECONDS = 60 * 60

STORAGE_CONFIG: dict[str, Any] = {
    "buckets": {
        "meals": "meal-images",
        "avatars": "user-avatars",
        "thumbnails": "meal-thumbnails",
    },
    "limits": {
        "max_file_size": 10 * 1024 * 1024,
        "allowed_types": ["image/jpeg", "image/png", "image/webp"],
        "dimensions": {
            "full": (1200, 1200),
            "medium": (600, 600),
            "thumbnail": (150, 150),
        },
    },
    "policies": {
        FREE: {"max_storage_gb": 1, "max_files_per_month": 50, "retention_days": 14},
        # -1 retention means unlimited
        PREMIUM_MONTHLY: {"max_storage_gb": 10, "max_files_per_month": 500, "retention_days": -1},
        PREMIUM_YEARLY: {"max_storage_gb": 20, "max_files_per_month": 1000, "retention_days": -1},
    },
}

# Used for quota estimation; actual sizes are not tracked per file
AVG_FILE_SIZE_MB = 0.5

_FEATURES: dict[str, list[str]] = {
    FREE: [
        "Basic nutrition analysis",
        "14-day meal storage",
        "3 monthly shares",
    ],
    PREMIUM_MONTHLY: [
        "Advanced nutrition analysis",
        "Unlimited meal storage",
        "Unlimited shares",
        "6 analysis focus modes",
        "USDA-enhanced nutrition data",
    ],
    PREMIUM_YEARLY: [
        "Advanced nutrition analysis",
        "Unlimited meal storage",
        "Unlimited shares",
        "6 analysis focus modes",
        "USDA-enhanced nutrition data",
        "Highest accuracy vision model",
    ],
}


def normalize_tier(value: str | None) -> str:
    """Map stored tier values onto the three known tiers.

    Older rows carry a plain "premium"; those are treated as monthly.
    """
    if not value:
        return FREE
    value = value.lower()
    if value == "premium":
        return PREMIUM_MONTHLY
    return value if value in TIERS else FREE


def is_premium(tier: str | None) -> bool:
    return normalize_tier(tier) in (PREMIUM_MONTHLY, PREMIUM_YEARLY)


def policy_for(tier: str | None) -> dict[str, Any]:
    return STORAGE_CONFIG["policies"][normalize_tier(tier)]


def features_for(tier: str | None) -> list[str]:
    return list(_FEATURES[normalize_tier(tier)])


def tier_for_plan(plan_type: str | None) -> str:
    return PREMIUM_YEARLY if plan_type == "yearly" else PREMIUM_MONTHLY


def billing_cycle_for_tier(tier: str | None) -> str:
    tier = normalize_tier(tier)
    if tier == PREMIUM_YEARLY:
        return "yearly"
    if tier == PREMIUM_MONTHLY:
        return "monthly"
    return "free"


def scheduled_deletion_date(created_at: datetime, tier: str | None) -> datetime | None:
    retention = policy_for(tier)["retention_days"]
    if retention < 0:
        return None
    return created_at + timedelta(days=retention)


def days_left(deletion_date: datetime | None, now: datetime) -> int | None:
    if deletion_date is None:
        return None
    seconds = (deletion_date - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def storage_quota(files_this_month: int, tier: str | None) -> dict[str, Any]:
    """Estimated usage for the current month; sizes are approximated per file."""
    policy = policy_for(tier)
    used_gb = files_this_month * AVG_FILE_SIZE_MB / 1024
    return {
        "can_upload": files_this_month < policy["max_files_per_month"]
        and used_gb < policy["max_storage_gb"],
        "used_gb": used_gb,
        "limit_gb": policy["max_storage_gb"],
        "files_this_month": files_this_month,
        "files_limit": policy["max_files_per_month"],
    }


def _same_month(a: datetime, b: datetime) -> bool:
    return a.year == b.year and a.month == b.month


def effective_shares_used(profile: ProfileEntity, now: datetime) -> int:
    """Shares used in the current month; the counter resets when the month rolls over."""
    if profile.share_reset_date is None or not _same_month(profile.share_reset_date, now):
        return 0
    return profile.monthly_shares_used


def shares_remaining(profile: ProfileEntity, now: datetime) -> int | None:
    if is_premium(profile.subscription_tier):
        return None
    return max(0, FREE_MONTHLY_SHARE_LIMIT - effective_shares_used(profile, now))


def can_share_publicly(profile: ProfileEntity, now: datetime) -> bool:
    remaining = shares_remaining(profile, now)
    return remaining is None or remaining > 0
