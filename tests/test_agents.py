"""Tests for the remote classifier, safety filter and model client."""

import asyncio

import pytest
from pydantic_ai.messages import ModelResponse, TextPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from agents.classifier import RemoteClassifier, build_image_prompt, build_text_prompt
from agents.client import ModelClient, ModelUnavailableError, RemoteModelError, create_model_client
from agents.safety import FAIL_OPEN_VERDICT, SafetyFilter
from config import Config
from conftest import FakeModelClient, category_json, safety_json
from models.classification import SafetyVerdict
from models.taxonomy import CATEGORY_NAMES, MainCategory


# === Prompts ===


def test_image_prompt_lists_every_category():
    prompt = build_image_prompt()
    for name in CATEGORY_NAMES:
        assert name in prompt
    assert "isPhoto" in prompt


def test_text_prompt_escapes_quotes():
    prompt = build_text_prompt('the sign says "no dumping"')
    assert '\\"no dumping\\"' in prompt


# === RemoteClassifier ===


@pytest.mark.asyncio
async def test_classify_image_applies_confidence_bonus(config, jpeg_bytes):
    """A confident, specific photo result gets +0.1"""
    client = FakeModelClient(image=category_json("Road & Infrastructure", 0.75, "pothole", is_photo=True))
    result = await RemoteClassifier(client, config).classify_image(jpeg_bytes)
    assert result.main_category == MainCategory.ROAD
    assert result.confidence == pytest.approx(0.85)
    assert result.source == "image"


@pytest.mark.asyncio
async def test_classify_image_bonus_is_capped(config, jpeg_bytes):
    client = FakeModelClient(image=category_json("Waste Management", 0.95, is_photo=True))
    result = await RemoteClassifier(client, config).classify_image(jpeg_bytes)
    assert result.confidence == 1.0


@pytest.mark.asyncio
async def test_classify_image_no_bonus_at_threshold(config, jpeg_bytes):
    client = FakeModelClient(image=category_json("Street Lighting & Electrical", 0.6, is_photo=True))
    result = await RemoteClassifier(client, config).classify_image(jpeg_bytes)
    assert result.confidence == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_classify_image_non_photo_penalty(config, jpeg_bytes):
    """Screenshots and drawings keep 30% of their confidence"""
    client = FakeModelClient(image=category_json("Road & Infrastructure", 0.9, is_photo=False))
    result = await RemoteClassifier(client, config).classify_image(jpeg_bytes)
    assert result.is_photo is False
    assert result.confidence == pytest.approx(0.27)


@pytest.mark.asyncio
async def test_classify_image_prose_reply(config, jpeg_bytes):
    """Prose without JSON or a Category/Confidence pair goes to keywords"""
    client = FakeModelClient(image="I can see a garbage pile near the bus stop.")
    result = await RemoteClassifier(client, config).classify_image(jpeg_bytes)
    assert result.main_category == MainCategory.WASTE
    assert result.source == "image"
    assert result.is_photo is None
    assert result.raw == "I can see a garbage pile near the bus stop."


@pytest.mark.asyncio
async def test_classify_text_voice_source(config):
    client = FakeModelClient(text=category_json("Water & Sewerage", 0.7, "water leak"))
    result = await RemoteClassifier(client, config).classify_text("water everywhere", source="voice")
    assert result.main_category == MainCategory.WATER
    assert result.source == "voice"


@pytest.mark.asyncio
async def test_classifier_without_client_raises(config):
    classifier = RemoteClassifier(None, config)
    assert classifier.available is False
    with pytest.raises(ModelUnavailableError):
        await classifier.classify_text("anything")


@pytest.mark.asyncio
async def test_classifier_propagates_model_errors(config):
    client = FakeModelClient(text=RemoteModelError("quota exceeded"))
    with pytest.raises(RemoteModelError):
        await RemoteClassifier(client, config).classify_text("anything")


# === SafetyFilter ===


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "confidence, blocked",
    [(0.79, False), (0.8, True), (0.81, True)],
)
async def test_safety_threshold(config, jpeg_bytes, confidence, blocked):
    """Only confident 'inappropriate' verdicts block"""
    client = FakeModelClient(safety=safety_json(False, confidence, "Graphic content"))
    safety = SafetyFilter(client, config)
    verdict = await safety.check_safety(jpeg_bytes)
    assert verdict.is_appropriate is False
    assert safety.is_blocked(verdict) is blocked


@pytest.mark.asyncio
async def test_safety_appropriate_never_blocks(config, jpeg_bytes):
    client = FakeModelClient(safety=safety_json(True, 0.99))
    safety = SafetyFilter(client, config)
    assert safety.is_blocked(await safety.check_safety(jpeg_bytes)) is False


@pytest.mark.asyncio
async def test_safety_fails_open_on_error(config, jpeg_bytes):
    client = FakeModelClient(safety=asyncio.TimeoutError())
    verdict = await SafetyFilter(client, config).check_safety(jpeg_bytes)
    assert verdict == FAIL_OPEN_VERDICT
    assert verdict.is_appropriate is True


@pytest.mark.asyncio
async def test_safety_unreadable_response(config, jpeg_bytes):
    client = FakeModelClient(safety="I cannot determine that.")
    verdict = await SafetyFilter(client, config).check_safety(jpeg_bytes)
    assert verdict.is_appropriate is True
    assert verdict.confidence == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_safety_missing_confidence_defaults(config, jpeg_bytes):
    client = FakeModelClient(safety='{"isAppropriate": false, "reason": "Private space"}')
    safety = SafetyFilter(client, config)
    verdict = await safety.check_safety(jpeg_bytes)
    assert verdict.confidence == pytest.approx(0.8)
    assert verdict.reason == "Private space"
    assert safety.is_blocked(verdict) is True


@pytest.mark.asyncio
async def test_safety_without_model_or_image(config, jpeg_bytes):
    assert await SafetyFilter(None, config).check_safety(jpeg_bytes) == SafetyVerdict()
    client = FakeModelClient()
    assert await SafetyFilter(client, config).check_safety(None) == SafetyVerdict()
    assert client.calls == []


# === ModelClient over a pydantic-ai FunctionModel ===


def _function_model(reply: str) -> FunctionModel:
    def respond(messages, info: AgentInfo) -> ModelResponse:
        return ModelResponse(parts=[TextPart(reply)])

    return FunctionModel(respond)


@pytest.mark.asyncio
async def test_model_client_returns_text(config):
    reply = category_json("Waste Management", 0.77, "overflowing bin")
    client = ModelClient(_function_model(reply), name="function", timeout=5)
    result = await RemoteClassifier(client, config).classify_text("bins overflowing on main st")
    assert result.main_category == MainCategory.WASTE
    assert result.confidence == pytest.approx(0.77)


@pytest.mark.asyncio
async def test_model_client_wraps_errors():
    def explode(messages, info: AgentInfo) -> ModelResponse:
        raise ValueError("boom")

    client = ModelClient(FunctionModel(explode), name="function", timeout=5)
    with pytest.raises(RemoteModelError, match="boom"):
        await client.generate("hello")


@pytest.mark.asyncio
async def test_model_client_timeout():
    async def slow(messages, info: AgentInfo) -> ModelResponse:
        await asyncio.sleep(1)
        return ModelResponse(parts=[TextPart("late")])

    client = ModelClient(FunctionModel(slow), name="function", timeout=0.05)
    with pytest.raises(asyncio.TimeoutError):
        await client.generate("hello")


# === create_model_client ===


def test_create_model_client_disabled(config):
    config.use_ai = False
    assert create_model_client(config) is None


def test_create_model_client_skips_bad_candidates(config):
    """The first candidate that initializes wins"""
    config.ai_models = ["no-such-provider:model", "openai:tiny@http://127.0.0.1:9/v1"]
    client = create_model_client(config)
    assert client is not None
    assert client.name == "openai:tiny@http://127.0.0.1:9/v1"


def test_create_model_client_all_fail(config):
    config.ai_models = ["no-such-provider:model"]
    assert create_model_client(config) is None
