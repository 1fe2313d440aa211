from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool

from src.application.dtos.common_dto import DetailedHealthResponse, HealthResponse, RootResponse
from src.application.use_cases.cleanup_expired_meals import CleanupExpiredMealsUseCase
from src.domain.errors import (
    AccessDeniedError,
    BillingError,
    InvalidImageError,
    LimitExceededError,
    NotFoundError,
    ServiceUnavailableError,
)
from src.infrastructure.api.dependencies import get_meal_repo, get_profile_repo, get_storage
from src.infrastructure.api.middlewares import add_default_middlewares
from src.infrastructure.api.routes.admin_routes import router as admin_router
from src.infrastructure.api.routes.analysis_routes import router as analysis_router
from src.infrastructure.api.routes.auth_routes import router as auth_router
from src.infrastructure.api.routes.billing_routes import router as billing_router
from src.infrastructure.api.routes.meal_routes import router as meal_router
from src.infrastructure.api.routes.notification_routes import router as notification_router
from src.infrastructure.database.supabase_client import supabase_disabled

logger = logging.getLogger(__name__)

REQUIRED_ENV = ("SUPABASE_URL", "SUPABASE_ANON_KEY")


def _configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run_retention_sweep() -> int:
    uc = CleanupExpiredMealsUseCase(meals=get_meal_repo(), storage=get_storage())
    return uc.execute().deleted


async def _retention_loop(interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(run_retention_sweep)
        except RuntimeError as exc:
            logger.error("Retention sweep failed: %s", exc)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    interval = int(os.getenv("RETENTION_SWEEP_INTERVAL", "0"))
    task = None
    if interval > 0:
        logger.info("Retention sweep every %s seconds", interval)
        task = asyncio.create_task(_retention_loop(interval))
    yield
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


def _register_error_handlers(app: FastAPI) -> None:
    def _detail(status_code: int):
        async def handler(request: Request, exc: Exception) -> JSONResponse:
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})

        return handler

    app.add_exception_handler(NotFoundError, _detail(404))
    app.add_exception_handler(AccessDeniedError, _detail(403))
    app.add_exception_handler(InvalidImageError, _detail(400))
    app.add_exception_handler(BillingError, _detail(400))

    @app.exception_handler(LimitExceededError)
    async def limit_exceeded(request: Request, exc: LimitExceededError) -> JSONResponse:
        return JSONResponse(
            status_code=429, content={"error": str(exc), **exc.payload}, headers=exc.headers
        )

    @app.exception_handler(ServiceUnavailableError)
    async def unavailable(request: Request, exc: ServiceUnavailableError) -> JSONResponse:
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
        return JSONResponse(
            status_code=503,
            content={"detail": str(exc), "retry_after": exc.retry_after},
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def _check_environment() -> dict:
    if supabase_disabled():
        return {"status": "healthy", "mode": "supabase-disabled"}
    missing = [name for name in REQUIRED_ENV if not os.getenv(name)]
    if missing:
        return {"status": "unhealthy", "missing": missing}
    return {"status": "healthy"}


def _check_database() -> dict:
    profiles = get_profile_repo()
    if profiles.in_memory:
        return {"status": "healthy", "mode": "memory"}
    try:  # pragma: no cover - network
        profiles.get("00000000-0000-0000-0000-000000000000")
    except RuntimeError as exc:  # pragma: no cover - network
        return {"status": "unhealthy", "error": str(exc)}
    return {"status": "healthy", "mode": "supabase"}  # pragma: no cover


def _check_openai() -> dict:
    if not os.getenv("OPENAI_API_KEY"):
        return {"status": "degraded", "error": "OPENAI_API_KEY not configured, serving mock analyses"}
    return {"status": "healthy"}


def create_app() -> FastAPI:
    _configure_logging()
    app = FastAPI(
        title="MealAppeal Backend",
        version="0.1.0",
        lifespan=lifespan,
        description="""
        ## MealAppeal Backend API

        FastAPI backend for AI meal photo analysis with Clean Architecture,
        Supabase for auth, database and storage, OpenAI for vision and Stripe
        for subscriptions.

        ### Features
        - **Authentication**: Supabase access tokens; profiles are created on first contact
        - **Meal Analysis**: Nutrition, health score and ingredients from a meal photo
        - **Meals**: History, statistics, public sharing and free-tier retention
        - **Billing**: Stripe checkout, billing portal and subscription webhooks
        - **Operations**: Backups, monitoring and retention cleanup for admins

        ### Authentication
        All endpoints (except root, health and the Stripe webhook) require
        authentication via Bearer token in the Authorization header:
        ```
        Authorization: Bearer your-access-token
        ```

        ### Error Responses
        - **400 Bad Request**: Invalid image, billing precondition or unknown ops action
        - **401 Unauthorized**: Missing or invalid authentication token
        - **403 Forbidden**: Admin-only endpoint or foreign checkout session
        - **404 Not Found**: Requested resource does not exist or user doesn't have access
        - **422 Unprocessable Entity**: Validation error in request body
        - **429 Too Many Requests**: Rate limit, daily analysis or monthly share limit
        - **503 Service Unavailable**: Vision provider throttling
        - **500 Internal Server Error**: Unexpected server error
        """,
        contact={
            "name": "MealAppeal Team",
            "email": "support@mealappeal.app",
        },
    )
    add_default_middlewares(app)
    _register_error_handlers(app)

    @app.get(
        "/",
        response_model=RootResponse,
        summary="API Root",
        description="Get basic information about the MealAppeal API",
        response_description="API information including status and version",
    )
    def root():
        """Get API root information."""
        return {"status": "ok", "service": "mealappeal-backend", "version": app.version}

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Health Check",
        description="Check if the API service is running and healthy",
        response_description="Health status of the API service",
    )
    def health():
        """Check API health status."""
        return {"status": "healthy"}

    @app.get(
        "/health/detailed",
        response_model=DetailedHealthResponse,
        summary="Detailed Health Check",
        description="Check configuration, database and OpenAI. Returns 503 when any check is unhealthy.",
        responses={503: {"description": "At least one dependency is unhealthy"}},
    )
    def health_detailed():
        checks = {
            "environment": _check_environment(),
            "database": _check_database(),
            "openai": _check_openai(),
        }
        unhealthy = any(c["status"] == "unhealthy" for c in checks.values())
        body = {
            "status": "unhealthy" if unhealthy else "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": checks,
        }
        return JSONResponse(status_code=503 if unhealthy else 200, content=body)

    app.include_router(auth_router)
    app.include_router(analysis_router)
    app.include_router(meal_router)
    app.include_router(notification_router)
    app.include_router(billing_router)
    app.include_router(admin_router)

    storage = get_storage()
    if storage.local:
        app.mount("/local-storage", StaticFiles(directory=storage.local_dir, check_dir=False), name="local-storage")
    return app


app = create_app()
