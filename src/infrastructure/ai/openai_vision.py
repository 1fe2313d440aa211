from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

import openai
from openai import OpenAI

from src.domain.services.nutrition_service import SYSTEM_PROMPT
from src.infrastructure.ai.ai_models import ModelConfig

logger = logging.getLogger(__name__)

ANALYSIS_SEED = 42


class VisionRateLimitError(RuntimeError):
    """The upstream model provider is throttling requests."""


@dataclass
class VisionResult:
    analysis: dict[str, Any]
    model_used: str
    fallback_used: bool = False
    usage: dict[str, int] = field(default_factory=dict)


def _is_model_not_found(exc: openai.APIStatusError) -> bool:
    return exc.status_code == 404 or getattr(exc, "code", None) == "model_not_found"


class FoodVisionClient:
    """Chat Completions wrapper that sends one meal photo and parses a JSON answer."""

    def __init__(self, client: OpenAI | None = None) -> None:
        api_key = os.getenv("OPENAI_API_KEY")
        if client is None and api_key:
            client = OpenAI(api_key=api_key)
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None

    def _create(self, model: str, prompt: str, data_url: str, detail: str, max_tokens: int, temperature: float) -> Any:
        assert self._client is not None
        return self._client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": data_url, "detail": detail}},
                    ],
                },
            ],
            max_tokens=max_tokens,
            temperature=temperature,
            seed=ANALYSIS_SEED,
            response_format={"type": "json_object"},
        )

    def analyze(self, data_url: str, prompt: str, model: ModelConfig, premium: bool = False) -> VisionResult:
        """Run the analysis and return the parsed JSON object.

        A missing model is retried once with `model.fallback_model`. Provider
        throttling raises VisionRateLimitError; any other failure RuntimeError.
        """
        if self._client is None:
            raise RuntimeError("OpenAI API not configured")

        model_used = model.model_id
        fallback_used = False
        try:
            try:
                response = self._create(
                    model.model_id, prompt, data_url, model.image_detail, model.max_tokens, model.temperature
                )
            except openai.APIStatusError as exc:
                if not _is_model_not_found(exc) or not model.fallback_model:
                    raise
                logger.warning(
                    "Model %s not available (%s), falling back to %s",
                    model.model_id,
                    exc,
                    model.fallback_model,
                )
                model_used = model.fallback_model
                fallback_used = True
                response = self._create(
                    model.fallback_model,
                    prompt,
                    data_url,
                    "high" if premium else "low",
                    2000 if premium else 500,
                    0.3,
                )
        except openai.RateLimitError as exc:
            raise VisionRateLimitError(f"OpenAI rate limit exceeded: {exc}") from exc
        except openai.OpenAIError as exc:
            raise RuntimeError(f"OpenAI analysis failed: {exc}") from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise RuntimeError("No analysis content received from AI")
        try:
            analysis = json.loads(content)
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"Failed to parse AI response: {exc}") from exc
        if not isinstance(analysis, dict):
            raise RuntimeError(f"AI response is a JSON {type(analysis).__name__}, expected an object")

        usage: dict[str, int] = {}
        if response.usage is not None:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens or 0,
                "completion_tokens": response.usage.completion_tokens or 0,
                "total_tokens": response.usage.total_tokens or 0,
            }
        return VisionResult(analysis=analysis, model_used=model_used, fallback_used=fallback_used, usage=usage)
