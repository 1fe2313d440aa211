from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from src.application.dtos.notification_dto import NotificationSettingsDTO
from src.domain.entities.notification_settings import NotificationSettingsEntity
from src.infrastructure.api.dependencies import (
    RequestContext,
    get_notification_repo,
    get_request_context,
)
from src.infrastructure.database.repositories.notification_settings_repository import (
    NotificationSettingsRepository,
)

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"],
    responses={401: {"description": "Unauthorized - Invalid or missing authentication token"}},
)


def _to_dto(entity: NotificationSettingsEntity) -> NotificationSettingsDTO:
    values = asdict(entity)
    return NotificationSettingsDTO(**{name: values[name] for name in entity.toggle_names()})


@router.get(
    "/settings",
    response_model=NotificationSettingsDTO,
    summary="Get Notification Settings",
    description="Return the caller's notification toggles, or the defaults when none were saved.",
)
def get_settings(
    ctx: RequestContext = Depends(get_request_context),
    repo: NotificationSettingsRepository = Depends(get_notification_repo),
):
    return _to_dto(repo.get_or_default(ctx.profile.id))


@router.put(
    "/settings",
    response_model=NotificationSettingsDTO,
    summary="Save Notification Settings",
    description="Replace all notification toggles for the caller in one upsert.",
)
def save_settings(
    body: NotificationSettingsDTO,
    ctx: RequestContext = Depends(get_request_context),
    repo: NotificationSettingsRepository = Depends(get_notification_repo),
):
    saved = repo.upsert(NotificationSettingsEntity(user_id=ctx.profile.id, **body.model_dump()))
    return _to_dto(saved)
