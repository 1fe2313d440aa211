from __future__ import annotations

import logging
import os
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from src.application.dtos.profile_dto import (
    AccountDeletionResponse,
    AccountExportResponse,
    ProfileResponse,
    UpdateProfileBody,
    UpdateTierBody,
    ValidateTokenResponse,
)
from src.application.use_cases.delete_account import DeleteAccountUseCase
from src.application.use_cases.export_account_data import ExportAccountDataUseCase
from src.application.use_cases.upload_avatar import UploadAvatarUseCase
from src.domain.entities.profile import ProfileEntity
from src.domain.services import tier_policy
from src.infrastructure.api.dependencies import (
    RequestContext,
    get_audit_log_repo,
    get_meal_repo,
    get_notification_repo,
    get_profile_repo,
    get_request_context,
    get_storage,
)
from src.infrastructure.database.repositories.audit_log_repository import AuditLogRepository
from src.infrastructure.database.repositories.meal_repository import MealRepository
from src.infrastructure.database.repositories.notification_settings_repository import (
    NotificationSettingsRepository,
)
from src.infrastructure.database.repositories.profile_repository import ProfileRepository
from src.infrastructure.storage.supabase_storage import SupabaseStorage

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"],
    responses={
        401: {"description": "Unauthorized - Invalid or missing authentication token"},
        422: {"description": "Validation Error - Invalid request format"}
    }
)


def profile_response(prof: ProfileEntity) -> ProfileResponse:
    tier = tier_policy.normalize_tier(prof.subscription_tier)
    return ProfileResponse(
        id=prof.id,
        email=prof.email,
        full_name=prof.full_name,
        avatar_url=prof.avatar_url,
        subscription_tier=tier,
        subscription_status=prof.subscription_status,
        subscription_expires_at=prof.subscription_expires_at,
        billing_cycle=prof.billing_cycle,
        is_premium=tier_policy.is_premium(tier),
        meal_count=prof.meal_count,
        shares_remaining=tier_policy.shares_remaining(prof, datetime.now(UTC)),
        features=tier_policy.features_for(tier),
        created_at=prof.created_at,
    )


@router.post(
    "/validate",
    response_model=ValidateTokenResponse,
    status_code=status.HTTP_200_OK,
    summary="Validate Authentication Token",
    description="""
    Validate the provided Supabase access token and ensure the user profile exists.

    This endpoint:
    - Verifies the access token in the Authorization header
    - Creates a free-tier profile on first sign-in
    - Returns basic user information

    **Authentication required**: Yes (Bearer token)
    """,
    response_description="User information confirming valid authentication"
)
def validate_token(ctx: RequestContext = Depends(get_request_context)):
    """Validate the token and ensure the user profile exists."""
    return {
        "user_id": ctx.profile.id,
        "email": ctx.profile.email,
        "subscription_tier": tier_policy.normalize_tier(ctx.profile.subscription_tier),
    }


@router.get(
    "/me",
    response_model=ProfileResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Current User Profile",
    description="""
    Retrieve the profile of the currently authenticated user.

    Besides the stored fields this returns:
    - Whether the user is premium and the features of their tier
    - Public shares left this month (null for premium)

    **Authentication required**: Yes (Bearer token)
    """,
    response_description="Complete user profile information"
)
def get_me(ctx: RequestContext = Depends(get_request_context)):
    """Get current user's profile information."""
    return profile_response(ctx.profile)


@router.patch(
    "/profile",
    response_model=ProfileResponse,
    status_code=status.HTTP_200_OK,
    summary="Update User Profile",
    description="""
    Update the display name for the currently authenticated user.

    **Request Requirements:**
    - Display name must be between 1 and 100 characters
    - Display name cannot be empty or whitespace only

    **Authentication required**: Yes (Bearer token)
    """,
    response_description="Updated user profile information",
    responses={
        400: {"description": "Bad Request - Invalid name provided"}
    }
)
def update_profile(
    body: UpdateProfileBody,
    ctx: RequestContext = Depends(get_request_context),
    profiles: ProfileRepository = Depends(get_profile_repo),
):
    """Update the current user's display name."""
    if not body.full_name.strip():
        raise HTTPException(status_code=400, detail="Display name cannot be empty")
    prof = profiles.update(ctx.profile.id, full_name=body.full_name.strip())
    return profile_response(prof)


@router.post(
    "/profile/avatar",
    response_model=ProfileResponse,
    summary="Upload Avatar",
    description="""
    Upload a new avatar image (JPEG, PNG or WEBP, up to 10 MB).

    The image is resized to 400x400, stored as WEBP in the avatars bucket and
    the profile's `avatar_url` is updated.

    **Authentication required**: Yes (Bearer token)
    """,
    responses={400: {"description": "Bad Request - Invalid image file or unsupported format"}},
)
def upload_avatar(
    file: UploadFile = File(..., description="Avatar image file"),
    ctx: RequestContext = Depends(get_request_context),
    storage: SupabaseStorage = Depends(get_storage),
    profiles: ProfileRepository = Depends(get_profile_repo),
):
    data = file.file.read()
    uc = UploadAvatarUseCase(storage=storage, profiles=profiles)
    prof = uc.execute(ctx.profile.id, data, file.content_type or "application/octet-stream")
    return profile_response(prof)


@router.post(
    "/profile/tier",
    response_model=ProfileResponse,
    summary="Switch Tier (testing)",
    description="""
    Switch the caller's subscription tier without going through Stripe.

    Only available when `ENABLE_TIER_TESTING=1`; otherwise returns 404.
    """,
    responses={404: {"description": "Not Found - Tier testing is disabled"}},
)
def switch_tier(
    body: UpdateTierBody,
    ctx: RequestContext = Depends(get_request_context),
    profiles: ProfileRepository = Depends(get_profile_repo),
):
    if os.getenv("ENABLE_TIER_TESTING", "0") != "1":
        raise HTTPException(status_code=404, detail="Not Found")
    logger.info("Tier testing: switching %s to %s", ctx.profile.id, body.tier)
    prof = profiles.update(
        ctx.profile.id,
        subscription_tier=body.tier,
        billing_cycle=tier_policy.billing_cycle_for_tier(body.tier),
        subscription_status="active" if tier_policy.is_premium(body.tier) else None,
    )
    return profile_response(prof)


@router.get(
    "/account/export",
    response_model=AccountExportResponse,
    summary="Export Account Data",
    description="""
    Download everything stored about the caller: profile, meals, notification
    settings and audit entries. The export itself is recorded in the audit log.

    **Authentication required**: Yes (Bearer token)
    """,
)
def export_account(
    ctx: RequestContext = Depends(get_request_context),
    profiles: ProfileRepository = Depends(get_profile_repo),
    meals: MealRepository = Depends(get_meal_repo),
    notifications: NotificationSettingsRepository = Depends(get_notification_repo),
    audit_logs: AuditLogRepository = Depends(get_audit_log_repo),
):
    uc = ExportAccountDataUseCase(
        profiles=profiles, meals=meals, notifications=notifications, audit_logs=audit_logs
    )
    return uc.execute(ctx.profile.id)


@router.delete(
    "/account",
    response_model=AccountDeletionResponse,
    summary="Delete Account Data",
    description="""
    Permanently delete the caller's stored images, meals, notification settings
    and profile. Signing in again afterwards starts a fresh free profile.

    Billing is not touched: cancel any subscription through the billing portal first.

    **Authentication required**: Yes (Bearer token)
    """,
)
def delete_account(
    ctx: RequestContext = Depends(get_request_context),
    profiles: ProfileRepository = Depends(get_profile_repo),
    meals: MealRepository = Depends(get_meal_repo),
    notifications: NotificationSettingsRepository = Depends(get_notification_repo),
    audit_logs: AuditLogRepository = Depends(get_audit_log_repo),
    storage: SupabaseStorage = Depends(get_storage),
):
    logger.warning("Account deletion requested by %s", ctx.profile.id)
    uc = DeleteAccountUseCase(
        profiles=profiles, meals=meals, notifications=notifications, audit_logs=audit_logs, storage=storage
    )
    return uc.execute(ctx.profile.id)
