from __future__ import annotations

import logging
import os
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)

USDA_SEARCH_URL = "https://api.nal.usda.gov/fdc/v1/foods/search"
USDA_CACHE_TTL_SECONDS = 24 * 60 * 60

# FoodData Central nutrient ids
NUTRIENT_IDS: dict[str, int] = {
    "calories": 1008,
    "protein": 1003,
    "carbs": 1005,
    "fat": 1004,
    "fiber": 1079,
    "sugar": 2000,
    "sodium": 1093,
    "cholesterol": 1253,
    "saturatedFat": 1258,
    "transFat": 1257,
}

_USDA_CACHE: dict[str, tuple[float, dict[str, float | None]]] = {}


def _nutrient_value(nutrients: list[dict[str, Any]], nutrient_id: int) -> float | None:
    for nutrient in nutrients:
        if nutrient.get("nutrientId") == nutrient_id and isinstance(nutrient.get("value"), (int, float)):
            return round(float(nutrient["value"]), 2)
    return None


class UsdaClient:
    """FoodData Central lookup used to refine premium nutrition numbers."""

    def __init__(self, http: httpx.Client | None = None, timeout: float = 10.0) -> None:
        self.api_key = os.getenv("USDA_API_KEY", "DEMO_KEY")
        self._http = http
        self.timeout = timeout

    def _search(self, food_name: str) -> dict[str, Any]:
        params = {
            "query": food_name,
            "dataType": "Foundation,SR Legacy",
            "pageSize": 1,
            "api_key": self.api_key,
        }
        if self._http is not None:
            response = self._http.get(USDA_SEARCH_URL, params=params, timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(USDA_SEARCH_URL, params=params)
        response.raise_for_status()
        return response.json()

    def lookup(self, food_name: str) -> dict[str, float | None] | None:
        """Nutrients of the best match, or None when there is none or the API fails."""
        key = (food_name or "").lower().strip()
        if not key:
            return None
        cached = _USDA_CACHE.get(key)
        if cached and time.monotonic() - cached[0] < USDA_CACHE_TTL_SECONDS:
            return cached[1]

        try:
            data = self._search(food_name)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("USDA lookup for %r failed: %s", food_name, exc)
            return None

        foods = data.get("foods") or []
        if not foods:
            return None
        nutrients = foods[0].get("foodNutrients") or []
        nutrition = {name: _nutrient_value(nutrients, nid) for name, nid in NUTRIENT_IDS.items()}
        _USDA_CACHE[key] = (time.monotonic(), nutrition)
        return nutrition


def clear_cache() -> None:
    _USDA_CACHE.clear()
