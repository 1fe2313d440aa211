from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OpsActionRequest(BaseModel):
    """Body of an ops call: an action name plus action-specific fields.

    Extra fields (`type`, `backupId`, `options`, `migration`, ...) are passed
    through to the action unchanged.
    """
    model_config = ConfigDict(extra="allow")

    action: str = Field(..., description="Action to run", example="create_backup")

    def params(self) -> dict[str, Any]:
        return self.model_dump(exclude={"action"})


class OpsServiceDescription(BaseModel):
    name: str = Field(..., example="mealappeal-backup")
    version: str = Field(..., example="1.0.0")
    description: str
    actions: list[str]


class AdminStatsResponse(BaseModel):
    total_users: int = Field(..., ge=0)
    active_users: int = Field(..., description="Users who saved a meal in the last 7 days", ge=0)
    premium_users: int = Field(..., ge=0)
    free_users: int = Field(..., ge=0)
    total_meals: int = Field(..., ge=0)
    meals_today: int = Field(..., ge=0)
    conversion_rate: float = Field(..., description="Premium users as a percentage of all users", example=12.5)


class CleanupRequest(BaseModel):
    user_id: str | None = Field(None, description="Only clean this user's meals older than retention_days")
    retention_days: int | None = Field(None, description="Required with user_id; negative keeps everything")


class CleanupResponse(BaseModel):
    deleted: int = Field(..., ge=0)
    errors: list[str] = Field(default_factory=list)
