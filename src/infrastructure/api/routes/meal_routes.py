from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.application.dtos.common_dto import LimitErrorResponse, SuccessResponse
from src.application.dtos.meal_dto import (
    ListMealsResponse,
    MealImageUrlsResponse,
    MealResponse,
    MealStatsResponse,
    ShareMealResponse,
)
from src.application.use_cases.delete_meal import DeleteMealUseCase
from src.application.use_cases.meal_stats import MealStatsUseCase
from src.application.use_cases.share_meal import ShareMealUseCase
from src.domain.entities.meal import MealEntity
from src.domain.services import tier_policy
from src.infrastructure.api.dependencies import (
    RequestContext,
    get_meal_repo,
    get_profile_repo,
    get_request_context,
    get_storage,
)
from src.infrastructure.database.repositories.meal_repository import MealRepository
from src.infrastructure.database.repositories.profile_repository import ProfileRepository
from src.infrastructure.storage.supabase_storage import BUCKETS, SupabaseStorage

SIGNED_URL_TTL = 3600

router = APIRouter(
    prefix="/meals",
    tags=["Meals"],
    responses={
        401: {"description": "Unauthorized - Invalid or missing authentication token"},
        404: {"description": "Not Found - Meal does not exist or user doesn't have access"},
        422: {"description": "Validation Error - Invalid request format"},
    },
)


def meal_response(meal: MealEntity, now: datetime | None = None) -> MealResponse:
    return MealResponse(
        id=meal.id,
        user_id=meal.user_id,
        title=meal.title,
        description=meal.description,
        image_url=meal.image_url,
        thumbnail_url=meal.thumbnail_url,
        basic_nutrition=meal.basic_nutrition,
        analysis=meal.analysis,
        health_score=meal.health_score,
        meal_tags=meal.meal_tags,
        ingredients=meal.ingredients,
        focus=meal.focus,
        is_public=meal.is_public,
        ai_confidence_score=meal.ai_confidence_score,
        scheduled_deletion_date=meal.scheduled_deletion_date,
        days_left=tier_policy.days_left(meal.scheduled_deletion_date, now or datetime.now(UTC)),
        created_at=meal.created_at,
    )


@router.get(
    "",
    response_model=ListMealsResponse,
    summary="List Meals",
    description="""
    List the caller's meals, newest first.

    **Query parameters:**
    - `days`: only meals from the last N days (omit for all)
    - `limit`: maximum number of meals returned

    Free-tier meals include `days_left` until their scheduled deletion.

    **Authentication required**: Yes (Bearer token)
    """,
)
def list_meals(
    days: int | None = Query(None, ge=1, le=3650, description="Only meals from the last N days"),
    limit: int = Query(50, ge=1, le=200, description="Maximum number of meals to return"),
    ctx: RequestContext = Depends(get_request_context),
    meals: MealRepository = Depends(get_meal_repo),
):
    now = datetime.now(UTC)
    since = now - timedelta(days=days) if days else None
    items = meals.list_by_user(ctx.profile.id, since=since, limit=limit)
    total = meals.count_since(ctx.profile.id, since)
    return ListMealsResponse(meals=[meal_response(m, now) for m in items], total=total, days=days)


@router.get(
    "/stats",
    response_model=MealStatsResponse,
    summary="Meal Statistics",
    description="""
    Dashboard counters for the caller: totals, averages, top tags, meals about
    to expire, and what is left of the free daily and monthly allowances.

    **Authentication required**: Yes (Bearer token)
    """,
)
def meal_stats(
    ctx: RequestContext = Depends(get_request_context),
    meals: MealRepository = Depends(get_meal_repo),
):
    return MealStatsUseCase(meals=meals).execute(ctx.profile)


@router.get(
    "/{meal_id}",
    response_model=MealResponse,
    summary="Get Meal",
    description="""
    Retrieve one meal. Owners can always read their meals; other users only
    see meals that were shared publicly.
    """,
)
def get_meal(
    meal_id: str,
    ctx: RequestContext = Depends(get_request_context),
    meals: MealRepository = Depends(get_meal_repo),
):
    meal = meals.get(meal_id)
    if meal is None or (meal.user_id != ctx.profile.id and not meal.is_public):
        raise HTTPException(status_code=404, detail="Meal not found")
    return meal_response(meal)


@router.get(
    "/{meal_id}/image-urls",
    response_model=MealImageUrlsResponse,
    summary="Get Meal Image URLs",
    description="""
    A signed URL for the full image plus progressive size variants
    (placeholder, thumbnail, medium, full) for lazy loading.

    Only available to the owner, and only for meals whose image is in storage.
    """,
)
def get_meal_image_urls(
    meal_id: str,
    ctx: RequestContext = Depends(get_request_context),
    meals: MealRepository = Depends(get_meal_repo),
    storage: SupabaseStorage = Depends(get_storage),
):
    meal = meals.get(meal_id)
    if meal is None or meal.user_id != ctx.profile.id or not meal.image_path:
        raise HTTPException(status_code=404, detail="Meal image not found")
    return MealImageUrlsResponse(
        signed_url=storage.signed_url(BUCKETS["meals"], meal.image_path, SIGNED_URL_TTL),
        expires_in=SIGNED_URL_TTL,
        variants=storage.progressive_urls(meal.image_path),
    )


@router.delete(
    "/{meal_id}",
    response_model=SuccessResponse,
    status_code=status.HTTP_200_OK,
    summary="Delete Meal",
    description="""
    Permanently delete a meal together with its stored image and thumbnail.

    **Warning**: This action cannot be undone.
    """,
)
def delete_meal(
    meal_id: str,
    ctx: RequestContext = Depends(get_request_context),
    meals: MealRepository = Depends(get_meal_repo),
    storage: SupabaseStorage = Depends(get_storage),
):
    DeleteMealUseCase(meals=meals, storage=storage).execute(ctx.profile.id, meal_id)
    return SuccessResponse(ok=True, message="Meal deleted")


@router.post(
    "/{meal_id}/share",
    response_model=ShareMealResponse,
    summary="Share Meal",
    description="""
    Make a meal public and return its share link.

    Free users can share 3 meals per calendar month; premium sharing is
    unlimited. Sharing an already public meal does not use a share.
    """,
    responses={429: {"model": LimitErrorResponse, "description": "Monthly share limit reached"}},
)
def share_meal(
    meal_id: str,
    ctx: RequestContext = Depends(get_request_context),
    meals: MealRepository = Depends(get_meal_repo),
    profiles: ProfileRepository = Depends(get_profile_repo),
):
    meal, remaining = ShareMealUseCase(meals=meals, profiles=profiles).execute(ctx.profile, meal_id)
    base = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")
    return ShareMealResponse(
        meal=meal_response(meal),
        share_url=f"{base}/share/{meal.id}",
        shares_remaining=remaining,
    )
