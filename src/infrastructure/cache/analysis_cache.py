from __future__ import annotations

import hashlib
import threading
import time
from typing import Any

from src.domain.services.nutrition_service import NutritionService

CACHE_TTL_SECONDS = 5 * 60
EXTENDED_CACHE_TTL_SECONDS = 30 * 60


class AnalysisCache:
    """In-process cache of analysis responses, keyed by user, tier, focus and image hash."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[float, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def make_key(user_id: str, data_url: str, focus: str, tier: str) -> str:
        digest = hashlib.sha256(data_url.encode("utf-8")).hexdigest()
        return f"{user_id}-{tier}-{focus}-{digest}"

    @staticmethod
    def ttl_for(response: dict[str, Any]) -> int:
        food_name = (response.get("analysis") or {}).get("foodName")
        if NutritionService.is_common_food(food_name):
            return EXTENDED_CACHE_TTL_SECONDS
        return CACHE_TTL_SECONDS

    def get(self, key: str, now: float | None = None) -> dict[str, Any] | None:
        now = time.monotonic() if now is None else now
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, response = entry
            if now - stored_at >= self.ttl_for(response):
                del self._entries[key]
                return None
            return response

    def set(self, key: str, response: dict[str, Any], now: float | None = None) -> None:
        now = time.monotonic() if now is None else now
        with self._lock:
            self._entries[key] = (now, response)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
