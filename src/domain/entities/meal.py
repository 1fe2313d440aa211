from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class MealEntity:
    id: str
    user_id: str
    title: str
    image_url: str
    created_at: datetime
    description: str | None = None
    image_path: str | None = None  # storage path {user_id}/meal_{ts}.webp
    thumbnail_url: str | None = None
    basic_nutrition: dict[str, float] = field(default_factory=dict)
    analysis: dict[str, Any] = field(default_factory=dict)
    health_score: int | None = None
    meal_tags: list[str] = field(default_factory=list)
    ingredients: list[str] = field(default_factory=list)
    focus: str | None = None
    is_public: bool = False
    ai_confidence_score: float | None = None
    # Free-tier retention; None means the meal is kept indefinitely
    scheduled_deletion_date: datetime | None = None
