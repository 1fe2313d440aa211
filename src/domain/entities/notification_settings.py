from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime


@dataclass(frozen=True)
class NotificationSettingsEntity:
    user_id: str
    email_meal_reminders: bool = True
    email_weekly_summary: bool = True
    email_premium_features: bool = False
    push_meal_analysis_complete: bool = True
    push_sharing_activity: bool = True
    push_achievement_unlocked: bool = True
    push_premium_tips: bool = False
    updated_at: datetime | None = None

    @classmethod
    def toggle_names(cls) -> list[str]:
        return [f.name for f in fields(cls) if f.name not in ("user_id", "updated_at")]
