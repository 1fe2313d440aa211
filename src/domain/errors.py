from __future__ import annotations

from typing import Any


class MealAppealError(Exception):
    """Base class for domain errors raised by use cases."""


class NotFoundError(MealAppealError):
    pass


class AccessDeniedError(MealAppealError):
    pass


class InvalidImageError(MealAppealError):
    pass


class BillingError(MealAppealError):
    pass


class ServiceUnavailableError(MealAppealError):
    def __init__(self, message: str, retry_after: int | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class LimitExceededError(MealAppealError):
    """A tier limit was hit. `payload` is returned to the client as-is."""

    def __init__(
        self,
        message: str,
        payload: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.payload = payload or {}
        self.headers = headers or {}
