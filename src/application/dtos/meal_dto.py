from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

FocusMode = Literal["health", "fitness", "cultural", "chef", "science", "budget"]


class AnalyzeMealRequest(BaseModel):
    """Request model for meal analysis."""
    image_data_url: str = Field(
        ...,
        description="Meal photo as a base64 data URL (jpeg, png or webp)",
        example="data:image/jpeg;base64,/9j/4AAQSkZJRg...",
    )
    focus: FocusMode = Field("health", description="Analysis focus; the premium section of the prompt is only added for premium tiers", example="health")


class AnalyzeMealResponse(BaseModel):
    """Result of one meal analysis."""
    success: bool = Field(True, description="Always true on 200")
    meal_id: str | None = Field(None, description="Id of the saved meal; null when a fallback was returned")
    analysis: dict[str, Any] = Field(..., description="Nutrition analysis, trimmed to the caller's tier")
    metadata: dict[str, Any] = Field(..., description="Model, cost, cache and timing details")


class MealResponse(BaseModel):
    """A saved meal."""
    id: str = Field(..., description="Unique identifier of the meal")
    user_id: str = Field(..., description="Owner of the meal")
    title: str = Field(..., description="Meal title", example="Grilled chicken salad")
    description: str | None = Field(None, description="Short description")
    image_url: str = Field(..., description="Public URL of the full image")
    thumbnail_url: str | None = Field(None, description="Public URL of the 150px thumbnail")
    basic_nutrition: dict[str, float] = Field(
        default_factory=dict,
        description="Core macros",
        example={"energy_kcal": 420, "protein_g": 35, "carbs_g": 18, "fat_g": 22},
    )
    analysis: dict[str, Any] = Field(default_factory=dict, description="Full stored analysis")
    health_score: int | None = Field(None, description="0-100", example=78)
    meal_tags: list[str] = Field(default_factory=list, description="Tags", example=["high-protein"])
    ingredients: list[str] = Field(default_factory=list, description="Detected ingredients")
    focus: str | None = Field(None, description="Focus the meal was analyzed with")
    is_public: bool = Field(False, description="Shared publicly")
    ai_confidence_score: float | None = Field(None, description="Model confidence 0-1", example=0.85)
    scheduled_deletion_date: datetime | None = Field(None, description="When a free-tier meal is removed")
    days_left: int | None = Field(None, description="Days until deletion; null when kept indefinitely")
    created_at: datetime = Field(..., description="When the meal was analyzed")


class ListMealsResponse(BaseModel):
    meals: list[MealResponse] = Field(..., description="Meals, newest first")
    total: int = Field(..., description="Meals in the window, regardless of `limit`", ge=0)
    days: int | None = Field(None, description="Window in days that was applied")


class MealStatsResponse(BaseModel):
    """Dashboard counters for the calling user."""
    total_meals: int = Field(..., ge=0)
    meals_today: int = Field(..., ge=0)
    meals_this_week: int = Field(..., ge=0)
    average_health_score: float | None = None
    average_calories: int | None = None
    top_tags: list[str] = Field(default_factory=list)
    expiring_soon: int = Field(..., description="Meals deleted within the warning window", ge=0)
    shares_remaining: int | None = None
    analyses_remaining_today: int | None = None
    tier: str


class ShareMealResponse(BaseModel):
    meal: MealResponse
    share_url: str = Field(..., description="Public link to the meal")
    shares_remaining: int | None = Field(None, description="Shares left this month; null means unlimited")


class MealImageUrlsResponse(BaseModel):
    signed_url: str = Field(..., description="Time-limited URL of the full image")
    expires_in: int = Field(..., description="Lifetime of the signed URL in seconds", example=3600)
    variants: dict[str, Any] = Field(
        ...,
        description="Progressive sizes: placeholder, thumbnail, medium, full and their WEBP versions",
    )
