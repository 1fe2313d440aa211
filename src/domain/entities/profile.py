from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class ProfileEntity:
    id: str  # user id from Supabase auth
    email: str | None
    created_at: datetime | None = None
    full_name: str | None = None
    avatar_url: str | None = None
    subscription_tier: str = "free"
    subscription_status: str | None = None
    subscription_expires_at: datetime | None = None
    billing_cycle: str = "free"  # free | monthly | yearly
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    meal_count: int = 0
    monthly_shares_used: int = 0
    share_reset_date: datetime | None = None
    updated_at: datetime | None = None
