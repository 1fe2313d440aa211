from __future__ import annotations

from pydantic import BaseModel, Field


class NotificationSettingsDTO(BaseModel):
    """All toggles are sent and stored together."""
    email_meal_reminders: bool = Field(True, description="Daily reminder to log meals")
    email_weekly_summary: bool = Field(True, description="Weekly nutrition summary email")
    email_premium_features: bool = Field(False, description="Premium feature announcements")
    push_meal_analysis_complete: bool = Field(True, description="Push when an analysis finishes")
    push_sharing_activity: bool = Field(True, description="Push on activity on shared meals")
    push_achievement_unlocked: bool = Field(True, description="Push on achievements")
    push_premium_tips: bool = Field(False, description="Push with premium tips")
