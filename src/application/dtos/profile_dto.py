from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class ValidateTokenResponse(BaseModel):
    """Response model for token validation."""
    user_id: str = Field(..., description="Unique identifier of the authenticated user")
    email: str | None = Field(None, description="Email address of the authenticated user", example="user@example.com")
    subscription_tier: str = Field(..., description="Current subscription tier", example="free")


class ProfileResponse(BaseModel):
    """Full profile of the calling user, including derived tier information."""
    id: str = Field(..., description="Unique identifier of the user")
    email: str | None = Field(None, description="Email address of the user", example="user@example.com")
    full_name: str | None = Field(None, description="Display name", example="Jane Doe")
    avatar_url: str | None = Field(None, description="Public URL of the avatar image")
    subscription_tier: str = Field(..., description="free, premium_monthly or premium_yearly", example="free")
    subscription_status: str | None = Field(None, description="Stripe subscription status", example="active")
    subscription_expires_at: datetime | None = Field(None, description="End of the current billing period")
    billing_cycle: str = Field(..., description="free, monthly or yearly", example="free")
    is_premium: bool = Field(..., description="True for either premium tier")
    meal_count: int = Field(..., description="Meals analyzed so far", example=12, ge=0)
    shares_remaining: int | None = Field(
        None, description="Public shares left this month; null means unlimited", example=3
    )
    features: list[str] = Field(..., description="Features included in the current tier")
    created_at: datetime | None = Field(None, description="When the profile was created")


class UpdateProfileBody(BaseModel):
    """Request model for updating user profile."""
    full_name: str = Field(..., min_length=1, max_length=100, description="Display name for the user", example="Jane Doe")


class UpdateTierBody(BaseModel):
    """Testing-only tier switch."""
    tier: Literal["free", "premium_monthly", "premium_yearly"] = Field(
        ..., description="Tier to switch to", example="premium_monthly"
    )


class AccountExportResponse(BaseModel):
    """Portable copy of everything stored about the caller."""
    profile: dict[str, Any] = Field(..., description="Profile row")
    meals: list[dict[str, Any]] = Field(..., description="Meal rows, newest first")
    notification_settings: dict[str, Any] | None = Field(None, description="Saved notification toggles, if any")
    audit_logs: list[dict[str, Any]] = Field(..., description="Audit entries about the caller, newest first")
    export_date: str = Field(..., description="ISO timestamp of the export")
    format: str = Field(..., description="Export format version", example="gdpr_export_v1")


class AccountDeletionResponse(BaseModel):
    success: bool = Field(..., example=True)
    deleted_at: str = Field(..., description="ISO timestamp of the deletion")
    meals_deleted: int = Field(..., ge=0)
    files_deleted: int = Field(..., description="Meal images and avatars removed from storage", ge=0)
    errors: list[str] = Field(default_factory=list, description="Storage objects that could not be removed")
