from __future__ import annotations

from fastapi import APIRouter, Depends, status

from src.application.dtos.common_dto import LimitErrorResponse
from src.application.dtos.meal_dto import AnalyzeMealRequest, AnalyzeMealResponse
from src.application.use_cases.analyze_meal import AnalyzeMealUseCase
from src.infrastructure.api.dependencies import (
    RequestContext,
    get_analyze_meal_use_case,
    get_request_context,
)

router = APIRouter(
    prefix="/analysis",
    tags=["Meal Analysis"],
    responses={
        401: {"description": "Unauthorized - Invalid or missing authentication token"},
        422: {"description": "Validation Error - Invalid request format"},
    },
)


@router.post(
    "",
    response_model=AnalyzeMealResponse,
    status_code=status.HTTP_200_OK,
    summary="Analyze Meal Photo",
    description="""
    Run a meal photo through the vision model and save the result as a meal.

    **Limits:**
    - Hourly rate limit per tier (10 / 100 / 200); `X-RateLimit-*` headers on 429
    - Free users: 3 analyses per day, 429 with `upgrade_required`
    - Monthly storage quota per tier

    **Behaviour:**
    - Identical photos with the same focus and tier are answered from cache
    - Without an OpenAI key a mock analysis is returned (and saved)
    - On model errors a generic fallback analysis is returned and nothing is saved
    - Premium users get USDA-enhanced nutrition and the full analysis

    **Authentication required**: Yes (Bearer token)
    """,
    response_description="Tier-trimmed analysis plus processing metadata",
    responses={
        400: {"description": "Bad Request - Invalid image"},
        429: {"model": LimitErrorResponse, "description": "Too Many Requests - A limit was reached"},
        503: {"description": "Service Unavailable - The vision provider is throttling"},
    },
)
def analyze_meal(
    body: AnalyzeMealRequest,
    ctx: RequestContext = Depends(get_request_context),
    uc: AnalyzeMealUseCase = Depends(get_analyze_meal_use_case),
):
    """Analyze one meal photo."""
    return uc.execute(ctx.profile, body.image_data_url, focus=body.focus)
