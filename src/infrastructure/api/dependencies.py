from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.application.use_cases.analyze_meal import AnalyzeMealUseCase
from src.domain.entities.profile import ProfileEntity
from src.infrastructure.ai.openai_vision import FoodVisionClient
from src.infrastructure.billing.stripe_gateway import StripeGateway
from src.infrastructure.cache.analysis_cache import AnalysisCache
from src.infrastructure.cache.rate_limiter import RateLimiter
from src.infrastructure.database.postgres_client import get_postgres_client
from src.infrastructure.database.repositories.audit_log_repository import AuditLogRepository
from src.infrastructure.database.repositories.meal_repository import MealRepository
from src.infrastructure.database.repositories.notification_settings_repository import (
    NotificationSettingsRepository,
)
from src.infrastructure.database.repositories.profile_repository import ProfileRepository
from src.infrastructure.database.supabase_client import (
    SupabaseAuthAdapter,
    UserInfo,
    get_supabase_client,
)
from src.infrastructure.nutrition.usda_client import UsdaClient
from src.infrastructure.ops.backup_service import BackupService
from src.infrastructure.ops.monitoring_service import MonitoringService
from src.infrastructure.storage.supabase_storage import SupabaseStorage

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

# Process-wide state shared by all requests
_RATE_LIMITER = RateLimiter()
_ANALYSIS_CACHE = AnalysisCache()
_MONITORING: MonitoringService | None = None
_BACKUP: BackupService | None = None
_OPS_LOCK = threading.Lock()


@dataclass(frozen=True)
class RequestContext:
    """The authenticated caller and their profile, resolved once per request."""

    user: UserInfo
    profile: ProfileEntity


def get_auth_adapter() -> SupabaseAuthAdapter:
    return SupabaseAuthAdapter()


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(_bearer_scheme)] = None,
    auth: Annotated[SupabaseAuthAdapter, Depends(get_auth_adapter)] = None,
) -> UserInfo:
    if not credentials or not credentials.scheme or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = credentials.credentials
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    try:
        user = auth.validate_token(token)
        return user
    except ValueError as exc:
        logger.warning("Rejected bearer token: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))


def get_storage() -> SupabaseStorage:
    client = get_supabase_client()
    return SupabaseStorage(client)


def get_profile_repo() -> ProfileRepository:
    return ProfileRepository(get_supabase_client())


def get_meal_repo() -> MealRepository:
    return MealRepository(get_supabase_client())


def get_notification_repo() -> NotificationSettingsRepository:
    return NotificationSettingsRepository(get_supabase_client())


def get_audit_log_repo() -> AuditLogRepository:
    return AuditLogRepository(get_supabase_client())


def get_request_context(
    user: UserInfo = Depends(get_current_user),
    profiles: ProfileRepository = Depends(get_profile_repo),
) -> RequestContext:
    """Load the caller's profile, creating a free one on first contact."""
    try:
        profile = profiles.ensure(user.id, user.email)
    except RuntimeError as exc:
        logger.error("Loading profile for %s failed: %s", user.id, exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Profile unavailable")
    return RequestContext(user=user, profile=profile)


def admin_emails() -> set[str]:
    raw = os.getenv("ADMIN_EMAILS", "")
    return {e.strip().lower() for e in raw.split(",") if e.strip()}


def require_admin(user: UserInfo = Depends(get_current_user)) -> UserInfo:
    if not user.email or user.email.lower() not in admin_emails():
        logger.warning("Non-admin %s attempted an admin operation", user.id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return user


def get_rate_limiter() -> RateLimiter:
    return _RATE_LIMITER


def get_analysis_cache() -> AnalysisCache:
    return _ANALYSIS_CACHE


def get_stripe_gateway() -> StripeGateway:
    return StripeGateway()


def get_analyze_meal_use_case(
    profiles: ProfileRepository = Depends(get_profile_repo),
    meals: MealRepository = Depends(get_meal_repo),
    audit_logs: AuditLogRepository = Depends(get_audit_log_repo),
    storage: SupabaseStorage = Depends(get_storage),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    cache: AnalysisCache = Depends(get_analysis_cache),
) -> AnalyzeMealUseCase:
    return AnalyzeMealUseCase(
        profiles=profiles,
        meals=meals,
        audit_logs=audit_logs,
        storage=storage,
        vision=FoodVisionClient(),
        usda=UsdaClient(),
        rate_limiter=rate_limiter,
        cache=cache,
    )


def get_backup_service() -> BackupService:
    """Tracked migrations and their rollback SQL live on one instance per process."""
    global _BACKUP
    with _OPS_LOCK:
        if _BACKUP is None:
            _BACKUP = BackupService(
                tables={
                    "profiles": get_profile_repo(),
                    "meals": get_meal_repo(),
                    "audit_logs": get_audit_log_repo(),
                    "notification_settings": get_notification_repo(),
                },
                postgres=get_postgres_client(),
            )
        return _BACKUP


def _ping_supabase() -> None:  # pragma: no cover - network
    client = get_supabase_client()
    if client is None:
        raise RuntimeError("Supabase not configured")
    try:
        client.table("profiles").select("id").limit(1).execute()
    except Exception as exc:
        raise RuntimeError(f"Supabase ping failed: {exc}") from exc


def get_monitoring_service() -> MonitoringService:
    """Incidents and metrics live on one instance per process."""
    global _MONITORING
    with _OPS_LOCK:
        if _MONITORING is None:
            _MONITORING = MonitoringService(
                audit_logs=get_audit_log_repo(),
                supabase_check=_ping_supabase if get_supabase_client() is not None else None,
            )
        return _MONITORING


def reset_process_state() -> None:
    """Clear limiter windows, cached analyses and ops service state."""
    global _MONITORING, _BACKUP
    _RATE_LIMITER.reset()
    _ANALYSIS_CACHE.clear()
    with _OPS_LOCK:
        _MONITORING = None
        _BACKUP = None
