import json
import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from src.infrastructure.ai import ai_models
from src.infrastructure.ai.openai_vision import FoodVisionClient, VisionRateLimitError
from src.infrastructure.cache.analysis_cache import AnalysisCache
from src.infrastructure.cache.rate_limiter import RateLimiter
from src.infrastructure.database import supabase_client
from src.infrastructure.database.supabase_client import SupabaseAuthAdapter, with_retry
from src.infrastructure.nutrition.usda_client import UsdaClient


def test_with_retry_backs_off_then_succeeds(monkeypatch):
    sleeps = []
    monkeypatch.setattr(supabase_client.time, "sleep", sleeps.append)
    monkeypatch.setattr(supabase_client.random, "uniform", lambda a, b: 0.0)
    calls = {"n": 0}

    def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise ConnectionError("boom")
        return "ok"

    assert with_retry(flaky, "flaky op", base_delay=0.5) == "ok"
    assert sleeps == [0.5, 1.0]


def test_with_retry_reraises_last_error(monkeypatch):
    monkeypatch.setattr(supabase_client.time, "sleep", lambda _: None)
    op = MagicMock(side_effect=TimeoutError("slow"))
    with pytest.raises(TimeoutError):
        with_retry(op, "slow op")
    assert op.call_count == 3


def test_fake_auth_is_deterministic_and_reads_email_tokens():
    auth = SupabaseAuthAdapter()
    a = auth.validate_token("token-a")
    assert a.id == auth.validate_token("token-a").id
    assert a.id != auth.validate_token("token-b").id
    assert a.email is None
    assert auth.validate_token("me@example.com").email == "me@example.com"
    with pytest.raises(ValueError):
        auth.validate_token("")


def test_rate_limiter_fixed_window():
    limiter = RateLimiter(window_seconds=60)
    before_ms = int(time.time() * 1000)
    results = [limiter.check("u1", "free") for _ in range(11)]
    assert all(r.success for r in results[:10])
    assert [r.remaining for r in results[:3]] == [9, 8, 7]
    assert not results[10].success
    assert results[10].remaining == 0
    assert results[9].limit == 10
    assert before_ms < results[10].reset <= before_ms + 61_000

    # windows are per tier and per user
    assert limiter.check("u1", "premium_monthly").limit == 100
    assert limiter.check("u2", "free").success

    limiter.reset()
    assert limiter.check("u1", "free").remaining == 9


def test_analysis_cache_ttl_depends_on_food():
    cache = AnalysisCache()
    common = {"analysis": {"foodName": "Pepperoni Pizza"}, "metadata": {}}
    rare = {"analysis": {"foodName": "Mystery stew"}, "metadata": {}}
    cache.set("a", common, now=0)
    cache.set("b", rare, now=0)

    assert cache.get("a", now=600) is common
    assert cache.get("b", now=600) is None
    assert cache.get("a", now=1800) is None


def test_analysis_cache_key_is_scoped_per_user():
    k1 = AnalysisCache.make_key("u1", "data:image/jpeg;base64,AAAA", "health", "free")
    k2 = AnalysisCache.make_key("u2", "data:image/jpeg;base64,AAAA", "health", "free")
    assert k1 != k2
    assert k1.startswith("u1-free-health-")


def test_model_for_tier_and_override(monkeypatch):
    monkeypatch.delenv("OPENAI_MODEL_FREE", raising=False)
    assert ai_models.get_model_for_tier("free").model_id == ai_models.GPT_4O_MINI
    assert ai_models.get_model_for_tier("premium").max_tokens == 1000
    assert ai_models.get_model_for_tier("premium_yearly").model_id == ai_models.GPT_4O_LATEST

    monkeypatch.setenv("OPENAI_MODEL_FREE", ai_models.GPT_41)
    assert ai_models.get_model_for_tier("free").model_id == ai_models.GPT_41
    monkeypatch.setenv("OPENAI_MODEL_FREE", "not-a-model")
    assert ai_models.get_model_for_tier("free").model_id == ai_models.GPT_4O_MINI


def test_model_migration_and_cost():
    assert ai_models.should_migrate_model(ai_models.GPT_4O)["suggested_model"] == ai_models.GPT_4O_LATEST
    assert ai_models.should_migrate_model("gpt-unknown")["should_migrate"]
    assert not ai_models.should_migrate_model(ai_models.GPT_41)["should_migrate"]
    assert all(not m.deprecated for m in ai_models.available_models())

    cost = ai_models.calculate_analysis_cost(ai_models.AI_MODELS[ai_models.GPT_4O_MINI], 1_000_000, 1_000_000)
    assert cost == pytest.approx(0.75)


def _completion(payload: dict) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=json.dumps(payload)))],
        usage=SimpleNamespace(prompt_tokens=100, completion_tokens=50, total_tokens=150),
    )


def test_vision_client_parses_json_and_usage():
    fake = MagicMock()
    fake.chat.completions.create.return_value = _completion({"foodName": "Ramen"})
    client = FoodVisionClient(client=fake)

    result = client.analyze("data:image/jpeg;base64,AAAA", "prompt", ai_models.get_model_for_tier("free"))
    assert result.analysis == {"foodName": "Ramen"}
    assert result.usage["prompt_tokens"] == 100
    kwargs = fake.chat.completions.create.call_args.kwargs
    assert kwargs["seed"] == 42
    assert kwargs["response_format"] == {"type": "json_object"}


def test_vision_client_falls_back_when_model_missing():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    missing = openai.NotFoundError(
        "model not found", response=httpx.Response(404, request=request), body=None
    )
    fake = MagicMock()
    fake.chat.completions.create.side_effect = [missing, _completion({"foodName": "Soup"})]
    client = FoodVisionClient(client=fake)

    result = client.analyze("data:x", "prompt", ai_models.AI_MODELS[ai_models.GPT_4O], premium=True)
    assert result.fallback_used
    assert result.model_used == ai_models.GPT_4O_LATEST


def test_vision_client_maps_rate_limits():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    throttled = openai.RateLimitError(
        "slow down", response=httpx.Response(429, request=request), body=None
    )
    fake = MagicMock()
    fake.chat.completions.create.side_effect = throttled
    with pytest.raises(VisionRateLimitError):
        FoodVisionClient(client=fake).analyze("data:x", "p", ai_models.get_model_for_tier("free"))


def test_vision_client_rejects_non_json():
    fake = MagicMock()
    fake.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="not json"))], usage=None
    )
    with pytest.raises(RuntimeError):
        FoodVisionClient(client=fake).analyze("data:x", "p", ai_models.get_model_for_tier("free"))


def test_vision_client_rejects_non_object_json():
    fake = MagicMock()
    fake.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="[1, 2]"))], usage=None
    )
    with pytest.raises(RuntimeError, match="expected an object"):
        FoodVisionClient(client=fake).analyze("data:x", "p", ai_models.get_model_for_tier("free"))


def test_usda_lookup_extracts_nutrients_and_caches():
    hits = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        hits["n"] += 1
        assert request.url.params["query"] == "Banana"
        return httpx.Response(
            200,
            json={
                "foods": [
                    {
                        "foodNutrients": [
                            {"nutrientId": 1008, "value": 89},
                            {"nutrientId": 1003, "value": 1.094},
                        ]
                    }
                ]
            },
        )

    client = UsdaClient(http=httpx.Client(transport=httpx.MockTransport(handler)))
    first = client.lookup("Banana")
    assert first["calories"] == 89
    assert first["protein"] == 1.09
    assert first["fat"] is None
    assert client.lookup("banana ") == first
    assert hits["n"] == 1


def test_usda_lookup_returns_none_on_errors():
    client = UsdaClient(
        http=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    )
    assert client.lookup("Kale") is None
    empty = UsdaClient(
        http=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"foods": []})))
    )
    assert empty.lookup("Kale") is None
