from __future__ import annotations

import logging
from typing import Any, Callable

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.application.dtos.ops_dto import (
    AdminStatsResponse,
    CleanupRequest,
    CleanupResponse,
    OpsActionRequest,
    OpsServiceDescription,
)
from src.application.use_cases.admin_stats import AdminStatsUseCase
from src.application.use_cases.cleanup_expired_meals import CleanupExpiredMealsUseCase
from src.application.use_cases.delete_account import DeleteAccountUseCase
from src.application.use_cases.export_account_data import ExportAccountDataUseCase
from src.infrastructure.api.dependencies import (
    get_audit_log_repo,
    get_backup_service,
    get_meal_repo,
    get_monitoring_service,
    get_notification_repo,
    get_profile_repo,
    get_storage,
    require_admin,
)
from src.infrastructure.database.repositories.audit_log_repository import AuditLogRepository
from src.infrastructure.database.repositories.meal_repository import MealRepository
from src.infrastructure.database.repositories.notification_settings_repository import (
    NotificationSettingsRepository,
)
from src.infrastructure.database.repositories.profile_repository import ProfileRepository
from src.infrastructure.database.repositories.row_mapping import to_row
from src.infrastructure.ops import backup_service, monitoring_service
from src.infrastructure.ops.backup_service import BackupService
from src.infrastructure.ops.monitoring_service import MonitoringService
from src.infrastructure.storage.supabase_storage import SupabaseStorage

logger = logging.getLogger(__name__)

COMPLIANCE_ACTIONS = ("gdpr_export", "gdpr_delete", "get_audit_logs")
AUDIT_LOG_PAGE = 100

router = APIRouter(
    tags=["Admin & Operations"],
    dependencies=[Depends(require_admin)],
    responses={
        401: {"description": "Unauthorized - Invalid or missing authentication token"},
        403: {"description": "Forbidden - Caller is not an admin"},
    },
)


def _dispatch(
    name: str, actions: tuple[str, ...], run: Callable[[str, dict[str, Any]], Any], body: OpsActionRequest
):
    if body.action not in actions:
        logger.warning("Unknown %s action: %s", name, body.action)
        return JSONResponse(status_code=400, content={"error": "Unknown action"})
    try:
        return run(body.action, body.params())
    except RuntimeError as exc:
        logger.error("%s action %s failed: %s", name, body.action, exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})


@router.get(
    "/admin/stats",
    response_model=AdminStatsResponse,
    summary="Platform Statistics",
    description="User, subscription and meal counts for the admin dashboard.",
)
def admin_stats(
    profiles: ProfileRepository = Depends(get_profile_repo),
    meals: MealRepository = Depends(get_meal_repo),
):
    return AdminStatsUseCase(profiles=profiles, meals=meals).execute()


@router.get(
    "/ops/backup",
    response_model=OpsServiceDescription,
    summary="Backup Service Description",
)
def describe_backup():
    return OpsServiceDescription(
        name="mealappeal-backup",
        version="1.0.0",
        description="Database backup, restore, migration tracking and disaster recovery checks",
        actions=list(backup_service.ACTIONS),
    )


@router.post(
    "/ops/backup",
    summary="Run Backup Action",
    description="""
    Run one backup action by name: `create_backup`, `restore_backup`,
    `list_backups`, `track_migration`, `rollback_migration`,
    `monitor_performance`, `monitor_storage`, `test_disaster_recovery`.

    Unknown actions return 400 `{"error": "Unknown action"}`.
    """,
    responses={400: {"description": "Unknown action"}, 500: {"description": "Action failed"}},
)
def run_backup_action(body: OpsActionRequest, service: BackupService = Depends(get_backup_service)):
    return _dispatch("backup", backup_service.ACTIONS, service.dispatch, body)


@router.get(
    "/ops/monitoring",
    response_model=OpsServiceDescription,
    summary="Monitoring Service Description",
)
def describe_monitoring():
    return OpsServiceDescription(
        name="mealappeal-monitoring",
        version="1.0.0",
        description="Uptime, dependency health, error tracking and incidents",
        actions=list(monitoring_service.ACTIONS),
    )


@router.post(
    "/ops/monitoring",
    summary="Run Monitoring Action",
    description="""
    Run one monitoring action by name: `check_uptime`, `check_api_health`,
    `track_errors`, `get_incidents`, `get_metrics`.

    Unknown actions return 400 `{"error": "Unknown action"}`.
    """,
    responses={400: {"description": "Unknown action"}, 500: {"description": "Action failed"}},
)
def run_monitoring_action(
    body: OpsActionRequest, service: MonitoringService = Depends(get_monitoring_service)
):
    return _dispatch("monitoring", monitoring_service.ACTIONS, service.dispatch, body)


@router.post(
    "/ops/cleanup",
    response_model=CleanupResponse,
    summary="Run Retention Cleanup",
    description="""
    Without a body field this deletes every meal past its scheduled deletion
    date. With `user_id` and `retention_days` it deletes that user's meals
    older than the given number of days. Images are removed before rows.
    """,
)
def run_cleanup(
    body: CleanupRequest,
    meals: MealRepository = Depends(get_meal_repo),
    storage: SupabaseStorage = Depends(get_storage),
):
    uc = CleanupExpiredMealsUseCase(meals=meals, storage=storage)
    if body.user_id is not None:
        if body.retention_days is None:
            return JSONResponse(status_code=400, content={"error": "retention_days is required with user_id"})
        report = uc.cleanup_old(body.user_id, body.retention_days)
    else:
        report = uc.execute()
    return CleanupResponse(deleted=report.deleted, errors=report.errors)


@router.get(
    "/ops/compliance",
    response_model=OpsServiceDescription,
    summary="Compliance Service Description",
)
def describe_compliance():
    return OpsServiceDescription(
        name="mealappeal-compliance",
        version="1.0.0",
        description="Data export and erasure requests plus the audit trail",
        actions=list(COMPLIANCE_ACTIONS),
    )


@router.post(
    "/ops/compliance",
    summary="Run Compliance Action",
    description="""
    Run one compliance action by name:

    - `gdpr_export` with `userId`: the user's profile, meals, settings and audit entries
    - `gdpr_delete` with `userId`: erase the user's images, meals, settings and profile
    - `get_audit_logs`, optionally with `userId`: the latest 100 audit entries

    Unknown actions return 400 `{"error": "Unknown action"}`.
    """,
    responses={
        400: {"description": "Unknown action or missing userId"},
        404: {"description": "No profile for userId"},
        500: {"description": "Action failed"},
    },
)
def run_compliance_action(
    body: OpsActionRequest,
    profiles: ProfileRepository = Depends(get_profile_repo),
    meals: MealRepository = Depends(get_meal_repo),
    notifications: NotificationSettingsRepository = Depends(get_notification_repo),
    audit_logs: AuditLogRepository = Depends(get_audit_log_repo),
    storage: SupabaseStorage = Depends(get_storage),
):
    def run(action: str, params: dict[str, Any]) -> Any:
        user_id = params.get("userId")
        if action == "get_audit_logs":
            return [to_row(e) for e in audit_logs.list_recent(user_id, limit=AUDIT_LOG_PAGE)]
        if not user_id:
            return JSONResponse(status_code=400, content={"error": "userId is required"})
        if action == "gdpr_export":
            return ExportAccountDataUseCase(profiles, meals, notifications, audit_logs).execute(user_id)
        return DeleteAccountUseCase(profiles, meals, notifications, audit_logs, storage).execute(user_id)

    return _dispatch("compliance", COMPLIANCE_ACTIONS, run, body)
