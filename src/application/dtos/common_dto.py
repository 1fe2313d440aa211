"""Common DTOs for API responses and error handling."""
from __future__ import annotations

from pydantic import BaseModel, Field
from typing import Optional


class ErrorResponse(BaseModel):
    """Standard error response model."""
    detail: str = Field(..., description="Error message describing what went wrong")


class LimitErrorResponse(BaseModel):
    """Returned with 429 when a tier limit or the rate limit is hit."""
    error: str = Field(..., description="Human readable reason", example="Daily meal limit reached")
    upgrade_required: Optional[bool] = Field(None, description="True when upgrading lifts the limit")


class SuccessResponse(BaseModel):
    """Standard success response model."""
    ok: bool = Field(True, description="Indicates the operation was successful")
    message: Optional[str] = Field(None, description="Optional success message")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Health status", example="healthy")


class DetailedHealthResponse(BaseModel):
    """Per-dependency health report."""
    status: str = Field(..., description="healthy or unhealthy", example="healthy")
    timestamp: str = Field(..., description="ISO timestamp of the check")
    checks: dict[str, dict] = Field(
        ...,
        description="Result per dependency",
        example={
            "environment": {"status": "healthy"},
            "database": {"status": "healthy", "mode": "memory"},
            "openai": {"status": "degraded", "error": "OPENAI_API_KEY not configured"},
        },
    )


class RootResponse(BaseModel):
    """Root endpoint response model."""
    status: str = Field(..., description="API status", example="ok")
    service: str = Field(..., description="Service name", example="mealappeal-backend")
    version: str = Field(..., description="API version", example="0.1.0")
