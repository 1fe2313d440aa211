from __future__ import annotations

from dataclasses import dataclass

from src.domain.errors import NotFoundError
from src.infrastructure.database.repositories.meal_repository import MealRepository
from src.infrastructure.storage.supabase_storage import SupabaseStorage


@dataclass
class DeleteMealUseCase:
    meals: MealRepository
    storage: SupabaseStorage

    def execute(self, user_id: str, meal_id: str) -> None:
        """Remove the stored image (and thumbnail) first, then the row."""
        meal = self.meals.get(meal_id)
        if meal is None or meal.user_id != user_id:
            raise NotFoundError("Meal not found")
        if meal.image_path:
            self.storage.delete_meal_image(meal.image_path)
        self.meals.delete(meal_id)
