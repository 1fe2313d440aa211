from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace

from src.domain.services import tier_policy

logger = logging.getLogger(__name__)

GPT_4O_MINI = "gpt-4o-mini-2024-07-18"
GPT_4O_LATEST = "gpt-4o-2024-05-13"
GPT_41_MINI = "gpt-4.1-mini"
GPT_41 = "gpt-4.1"
GPT_4O = "gpt-4o-2024-08-06"  # deprecated


@dataclass(frozen=True)
class ModelConfig:
    model_id: str
    display_name: str
    max_tokens: int
    temperature: float
    image_detail: str  # low | high | auto
    input_cost_per_million: float
    output_cost_per_million: float
    features: dict[str, bool] = field(default_factory=dict)
    deprecated: bool = False
    deprecation_date: str | None = None
    fallback_model: str | None = None


_STANDARD = {"premiumAnalysis": False, "enhancedAccuracy": False, "longContext": False}
_ENHANCED = {"premiumAnalysis": True, "enhancedAccuracy": True, "longContext": False}
_FULL = {"premiumAnalysis": True, "enhancedAccuracy": True, "longContext": True}

AI_MODELS: dict[str, ModelConfig] = {
    GPT_4O_MINI: ModelConfig(GPT_4O_MINI, "GPT-4o Mini", 500, 0.3, "low", 0.15, 0.60, _STANDARD),
    GPT_41_MINI: ModelConfig(GPT_41_MINI, "GPT-4.1 Mini", 1000, 0.3, "high", 0.15, 0.60, _ENHANCED),
    GPT_41: ModelConfig(GPT_41, "GPT-4.1", 2000, 0.3, "high", 0.30, 1.20, _FULL),
    GPT_4O_LATEST: ModelConfig(GPT_4O_LATEST, "GPT-4o Latest", 2000, 0.3, "high", 5.00, 15.00, _FULL),
    GPT_4O: ModelConfig(
        GPT_4O,
        "GPT-4o",
        1500,
        0.3,
        "high",
        2.50,
        10.00,
        _ENHANCED,
        deprecated=True,
        deprecation_date="2024-08-06",
        fallback_model=GPT_4O_LATEST,
    ),
}

TIER_MODEL_CONFIG: dict[str, ModelConfig] = {
    tier_policy.FREE: replace(AI_MODELS[GPT_4O_MINI], max_tokens=500, image_detail="low"),
    tier_policy.PREMIUM_MONTHLY: replace(
        AI_MODELS[GPT_4O_MINI], max_tokens=1000, image_detail="high", features=_ENHANCED
    ),
    tier_policy.PREMIUM_YEARLY: replace(
        AI_MODELS[GPT_4O_LATEST], max_tokens=2000, image_detail="high", features=_FULL
    ),
}


def get_model_for_tier(tier: str) -> ModelConfig:
    """Resolve the vision model for a tier.

    `OPENAI_MODEL_<TIER>` overrides the default when it names a known model.
    Deprecated models are swapped for their fallback.
    """
    tier = tier_policy.normalize_tier(tier)
    override = os.getenv(f"OPENAI_MODEL_{tier.upper()}")
    if override and override in AI_MODELS:
        logger.info("Using model override %s for tier %s", override, tier)
        return AI_MODELS[override]
    config = TIER_MODEL_CONFIG[tier]
    if config.deprecated and config.fallback_model:
        logger.warning(
            "Model %s is deprecated, using fallback %s", config.model_id, config.fallback_model
        )
        return AI_MODELS.get(config.fallback_model, config)
    return config


def available_models() -> list[ModelConfig]:
    return [m for m in AI_MODELS.values() if not m.deprecated]


def calculate_analysis_cost(model: ModelConfig, input_tokens: int, output_tokens: int) -> float:
    input_cost = input_tokens / 1_000_000 * model.input_cost_per_million
    output_cost = output_tokens / 1_000_000 * model.output_cost_per_million
    return input_cost + output_cost


def should_migrate_model(model_id: str) -> dict[str, object]:
    model = AI_MODELS.get(model_id)
    if model is None:
        return {
            "should_migrate": True,
            "reason": "Model not found in configuration",
            "suggested_model": GPT_4O_MINI,
        }
    if model.deprecated:
        reason = "Model deprecated"
        if model.deprecation_date:
            reason += f" on {model.deprecation_date}"
        return {
            "should_migrate": True,
            "reason": reason,
            "suggested_model": model.fallback_model or GPT_4O_MINI,
        }
    return {"should_migrate": False}
