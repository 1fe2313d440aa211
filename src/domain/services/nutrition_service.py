from __future__ import annotations

import copy
import re
from datetime import datetime
from typing import Any

from src.domain.services import tier_policy

FOCUS_MODES = ("health", "fitness", "cultural", "chef", "science", "budget")

COMMON_ALLERGENS = [
    "milk", "eggs", "fish", "shellfish", "tree nuts", "peanuts",
    "wheat", "soybeans", "sesame", "gluten", "lactose",
]

# Cached analyses of these foods live longer
COMMON_FOODS = [
    "pizza", "burger", "salad", "pasta", "sandwich",
    "chicken", "rice", "soup", "steak", "fish",
]

_COMMON_PORTIONS = {
    "salad": (150, "1 bowl"),
    "sandwich": (200, "1 sandwich"),
    "pasta": (250, "1 plate"),
    "pizza": (150, "1 slice"),
    "burger": (250, "1 burger"),
}

SYSTEM_PROMPT = (
    "You are an expert nutritionist and food analyst. "
    "Provide accurate, detailed food analysis in valid JSON format only."
)

_FOCUS_INSTRUCTIONS = {
    "health": "Focus on nutritional density, micronutrients, antioxidants, and overall health impact. "
    "Analyze vitamins, minerals, and phytonutrients.",
    "fitness": "Analyze for pre/post workout suitability, muscle recovery, protein quality, "
    "glycemic index, and athletic performance optimization.",
    "cultural": "Identify cultural origins, traditional preparation methods, regional variations, "
    "and cultural significance of ingredients and cooking style.",
    "chef": "Evaluate cooking techniques, ingredient quality, plating aesthetics, flavor profiles, "
    "texture combinations, and culinary skill level.",
    "science": "Provide biochemical analysis, metabolic pathways, nutrient bioavailability, "
    "food chemistry, and molecular gastronomy aspects.",
    "budget": "Assess ingredient costs, seasonal pricing, nutritional value per dollar, "
    "cost-saving substitutions, and meal prep efficiency.",
}

_BASE_PROMPT = """Analyze this food image and provide nutritional information. Return ONLY valid JSON matching this EXACT structure with NO additional text or formatting:

{
  "foodName": "Specific name of the food item",
  "confidence": 0.95,
  "ingredients": ["ingredient1", "ingredient2", "ingredient3"],
  "nutrition": {
    "calories": 250,
    "protein": 12,
    "carbs": 35,
    "fat": 8,
    "fiber": 4,
    "sugar": 8,
    "sodium": 450
  },
  "portion": {
    "estimatedWeight": 200,
    "unit": "grams",
    "servingSize": "1 plate",
    "servingsDetected": 1
  },
  "allergens": {
    "detected": ["wheat", "milk"],
    "possible": ["eggs"],
    "confidence": 0.9
  },
  "healthInsights": {
    "score": 75,
    "positives": ["High in protein", "Good fiber content"],
    "concerns": ["High sodium"],
    "recommendations": ["Add more vegetables"],
    "dietaryInfo": ["vegetarian-friendly"]
  },
  "description": "Brief description of the food",
  "tags": ["healthy", "protein-rich", "homemade"]"""

_PREMIUM_PROMPT = """,
  "premiumAnalysis": {
    "%(focus)sMode": {
      "score": 85,
      "insights": [
        "Detailed %(focus)s-specific insight 1",
        "Detailed %(focus)s-specific insight 2",
        "Detailed %(focus)s-specific insight 3"
      ],
      "metrics": {
        "key1": "value with unit",
        "key2": "value with unit",
        "key3": "value with unit"
      },
      "recommendations": [
        "Specific actionable recommendation 1",
        "Specific actionable recommendation 2"
      ],
      "deepAnalysis": "Comprehensive %(focus)s-focused analysis paragraph"
    }
  }"""


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _clamp(value: Any, low: float, high: float) -> float:
    return max(low, min(high, _number(value)))


class NutritionService:
    """Prompting and post-processing of AI food analyses.

    Analyses are plain dicts in the camelCase shape the vision model is asked
    to return (see build_prompt).
    """

    @staticmethod
    def build_prompt(tier: str, focus: str) -> str:
        premium = ""
        if tier_policy.is_premium(tier):
            premium = _PREMIUM_PROMPT % {"focus": focus}
        instructions = _FOCUS_INSTRUCTIONS.get(focus, _FOCUS_INSTRUCTIONS["health"])
        return (
            f"{_BASE_PROMPT}{premium}\n}}\n\n{instructions}\n\n"
            "Be accurate with portion estimation based on visual cues. Identify all visible "
            "ingredients. Check for common allergens carefully. Provide realistic nutritional values."
        )

    @staticmethod
    def sanitize_html(text: str) -> str:
        text = re.sub(r"[<>]", "", text)
        text = re.sub(r"javascript:", "", text, flags=re.IGNORECASE)
        text = re.sub(r"on\w+=", "", text, flags=re.IGNORECASE)
        return text.strip()

    @staticmethod
    def detect_allergens(ingredients: list[str]) -> dict[str, Any]:
        detected: list[str] = []
        possible: list[str] = []
        text = " ".join(ingredients).lower()
        for allergen in COMMON_ALLERGENS:
            if allergen in text:
                detected.append(allergen)
            elif allergen[:3] in text:
                possible.append(allergen)
        return {
            "detected": detected,
            "possible": possible,
            "confidence": 0.9 if detected else 0.7,
        }

    @staticmethod
    def calculate_health_insights(nutrition: dict[str, Any]) -> dict[str, Any]:
        positives: list[str] = []
        concerns: list[str] = []
        recommendations: list[str] = []

        protein = _number(nutrition.get("protein"))
        fiber = _number(nutrition.get("fiber"))
        calories = _number(nutrition.get("calories"))

        if protein > 20:
            positives.append("High in protein")
        if fiber > 5:
            positives.append("Excellent fiber source")
        if calories < 300:
            positives.append("Low calorie option")

        if _number(nutrition.get("sodium")) > 1000:
            concerns.append("High sodium content")
        if _number(nutrition.get("saturatedFat")) > 10:
            concerns.append("High in saturated fat")
        if _number(nutrition.get("sugar")) > 20:
            concerns.append("High sugar content")

        score = 70 + len(positives) * 5 - len(concerns) * 10
        score = max(0, min(100, score))

        if fiber and fiber < 3:
            recommendations.append("Add more fiber-rich foods")
        if protein < 10:
            recommendations.append("Consider adding a protein source")

        return {
            "score": score,
            "positives": positives,
            "concerns": concerns,
            "recommendations": recommendations,
            "dietaryInfo": [],
        }

    @staticmethod
    def estimate_portion(food_name: str) -> dict[str, Any]:
        lower = (food_name or "").lower()
        for key, (weight, size) in _COMMON_PORTIONS.items():
            if key in lower:
                return {
                    "estimatedWeight": weight,
                    "unit": "grams",
                    "servingSize": size,
                    "servingsDetected": 1,
                }
        return {
            "estimatedWeight": 200,
            "unit": "grams",
            "servingSize": "1 serving",
            "servingsDetected": 1,
        }

    @classmethod
    def enhance_analysis(cls, analysis: dict[str, Any]) -> dict[str, Any]:
        """Fill in fields the model left out."""
        out = copy.deepcopy(analysis)
        out["foodName"] = out.get("foodName") or "Analyzed Meal"
        out["confidence"] = out.get("confidence") or 0.85
        ingredients = out.get("ingredients")
        out["ingredients"] = [str(i) for i in ingredients if i] if isinstance(ingredients, list) else []
        out["tags"] = out.get("tags") or []
        if not isinstance(out.get("nutrition"), dict):
            out["nutrition"] = {}
        if not out.get("allergens"):
            out["allergens"] = cls.detect_allergens(out["ingredients"])
        insights = out.get("healthInsights")
        if not (isinstance(insights, dict) and insights.get("score")):
            out["healthInsights"] = cls.calculate_health_insights(out["nutrition"])
        if not out.get("portion"):
            out["portion"] = cls.estimate_portion(out["foodName"])
        return out

    @staticmethod
    def is_common_food(food_name: str | None) -> bool:
        lower = (food_name or "").lower()
        return any(food in lower for food in COMMON_FOODS)

    @classmethod
    def meal_row_from_analysis(
        cls,
        analysis: dict[str, Any],
        user_id: str,
        image_url: str,
        image_path: str | None,
        focus: str,
        created_at: datetime,
        tier: str,
        thumbnail_url: str | None = None,
    ) -> dict[str, Any]:
        nutrition = analysis.get("nutrition") or {}
        description = analysis.get("description")
        health_score = (analysis.get("healthInsights") or {}).get("score") or 75
        return {
            "user_id": user_id,
            "title": cls.sanitize_html(analysis.get("foodName") or "Analyzed Meal")[:200],
            "description": cls.sanitize_html(description)[:1000] if description else None,
            "image_url": image_url,
            "image_path": image_path,
            "thumbnail_url": thumbnail_url,
            "basic_nutrition": {
                "energy_kcal": _clamp(nutrition.get("calories"), 0, 9999),
                "protein_g": _clamp(nutrition.get("protein"), 0, 999),
                "carbs_g": _clamp(nutrition.get("carbs"), 0, 999),
                "fat_g": _clamp(nutrition.get("fat"), 0, 999),
            },
            "analysis": analysis,
            "health_score": int(_clamp(health_score, 0, 100)),
            "meal_tags": [cls.sanitize_html(str(t)) for t in analysis.get("tags") or []][:20],
            "ingredients": [
                cls.sanitize_html(str(i).strip().lower()) for i in analysis.get("ingredients") or []
            ],
            "focus": focus,
            "ai_confidence_score": analysis.get("confidence"),
            "scheduled_deletion_date": tier_policy.scheduled_deletion_date(created_at, tier),
            "created_at": created_at,
        }

    @staticmethod
    def tier_view(analysis: dict[str, Any], tier: str) -> dict[str, Any]:
        premium = tier_policy.is_premium(tier)
        allergens = analysis.get("allergens") or {"detected": [], "possible": [], "confidence": 0.0}
        return {
            "foodName": analysis.get("foodName"),
            "description": analysis.get("description"),
            "confidence": analysis.get("confidence"),
            "nutrition": analysis.get("nutrition"),
            "ingredients": analysis.get("ingredients", []) if premium else analysis.get("ingredients", [])[:3],
            "portion": analysis.get("portion"),
            "allergens": allergens
            if premium
            else {
                "detected": allergens.get("detected", []),
                "possible": [],
                "confidence": allergens.get("confidence"),
            },
            "healthInsights": analysis.get("healthInsights"),
            "tags": analysis.get("tags", []),
            "premiumAnalysis": analysis.get("premiumAnalysis") if premium else None,
            "tier": tier,
        }

    @staticmethod
    def mock_analysis(tier: str, focus: str) -> dict[str, Any]:
        premium = tier_policy.is_premium(tier)
        analysis: dict[str, Any] = {
            "foodName": "Grilled Chicken Salad",
            "confidence": 0.95,
            "nutrition": {
                "calories": 320,
                "protein": 35,
                "carbs": 12,
                "fat": 15,
                "fiber": 4,
                "sugar": 6,
                "sodium": 580,
                "source": "USDA Enhanced (dev mode)" if premium else "Smart estimate (dev mode)",
            },
            "ingredients": [
                "grilled chicken breast", "mixed greens", "cherry tomatoes",
                "cucumber", "feta cheese", "olive oil", "lemon",
            ]
            if premium
            else ["chicken", "vegetables", "cheese"],
            "portion": {
                "estimatedWeight": 350,
                "unit": "grams",
                "servingSize": "1 large bowl",
                "servingsDetected": 1,
            },
            "allergens": {
                "detected": ["milk"],
                "possible": ["eggs"] if premium else [],
                "confidence": 0.85,
            },
            "healthInsights": {
                "score": 88,
                "positives": ["High protein", "Low carb", "Rich in vitamins"],
                "concerns": ["Moderate sodium"],
                "recommendations": [
                    "Add whole grains for sustained energy",
                    "Include more colorful vegetables",
                ]
                if premium
                else ["Healthy choice!"],
                "dietaryInfo": ["gluten-free", "keto-friendly"],
            },
            "description": "A nutritious grilled chicken salad with fresh vegetables and a light dressing.",
            "tags": ["healthy", "high-protein", "low-carb", "salad"],
        }
        if premium:
            analysis["premiumAnalysis"] = {
                f"{focus}Mode": {
                    "score": 92,
                    "insights": [
                        "Excellent protein-to-calorie ratio for muscle maintenance",
                        "Antioxidant-rich vegetables support recovery",
                        "Balanced macros for sustained energy",
                    ],
                    "metrics": {
                        "proteinQuality": "Complete amino acid profile",
                        "glycemicIndex": "Low (< 40)",
                        "satietyScore": "High (8/10)",
                    },
                    "recommendations": [
                        "Add quinoa for post-workout carb replenishment",
                        "Include avocado for healthy fats and satiety",
                    ],
                    "deepAnalysis": "This meal provides an optimal balance of lean protein and micronutrients.",
                }
            }
        return analysis

    @staticmethod
    def fallback_analysis() -> dict[str, Any]:
        return {
            "foodName": "Analyzed Meal",
            "confidence": 0.7,
            "nutrition": {
                "calories": 400,
                "protein": 20,
                "carbs": 45,
                "fat": 15,
                "source": "Fallback estimate",
            },
            "ingredients": ["various ingredients"],
            "portion": {
                "estimatedWeight": 250,
                "unit": "grams",
                "servingSize": "1 serving",
                "servingsDetected": 1,
            },
            "allergens": {
                "detected": [],
                "possible": ["Please review ingredients"],
                "confidence": 0.5,
            },
            "healthInsights": {
                "score": 70,
                "positives": ["Balanced meal"],
                "concerns": [],
                "recommendations": ["Analysis limited - please try again"],
                "dietaryInfo": [],
            },
            "description": "Unable to perform detailed analysis. Please try again for accurate results.",
            "tags": ["meal"],
        }
