"""
Unit tests for reply parsing, the OpenRouter client and the inference service gate.
"""

import json

import httpx
import pytest

from src.core.exceptions import (
    ExternalAPIError,
    InferenceAuthError,
    InferenceResponseError,
    InferenceTimeoutError,
    RateLimitExceededError,
    ServiceNotConfiguredError,
)
from src.engines.admission.limiter import TrafficClass
from src.engines.inference.client import OpenRouterClient
from src.engines.inference.parsing import load_json_reply, parse_meal_analysis, parse_zoning
from src.engines.inference.prompts import image_analysis_messages, MULTI_IMAGE_NOTE
from src.modules.foods.models import Zone
from src.pipeline.container import build_services
from tests.helpers import ScriptedInferenceClient


def completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def client_for(handler, api_key="test-key"):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenRouterClient(api_key=api_key, api_url="https://inference.test/v1/chat", http_client=http)


# =============================================================================
# Parsing
# =============================================================================

class TestParsing:

    def test_fenced_json_is_accepted(self):
        text = 'Here you go:\n```json\n{"ingredients": []}\n```'
        assert load_json_reply(text, "ingredient-zoning") == {"ingredients": []}

    def test_non_json_raises(self):
        with pytest.raises(InferenceResponseError):
            load_json_reply("I cannot see any food here.", "image-analysis")

    def test_meal_analysis_normalizes_and_dedupes(self):
        reply = json.dumps({
            "meal_summary": "  Oatmeal with berries ",
            "ingredients": [
                {"name": " Oats ", "organic": True},
                {"name": "oats"},
                {"name": "Blueberries", "isOrganic": "yes"},
                {"name": ""},
                {"name": 42},
                "banana",
            ],
        })

        analysis = parse_meal_analysis(reply)

        assert analysis.meal_summary == "Oatmeal with berries"
        assert [(i.name, i.organic, i.zone) for i in analysis.ingredients] == [
            ("oats", True, Zone.UNZONED),
            ("blueberries", False, Zone.UNZONED),
        ]

    def test_meal_analysis_requires_summary(self):
        with pytest.raises(InferenceResponseError):
            parse_meal_analysis(json.dumps({"ingredients": []}))

    def test_zoning_normalizes_zones(self):
        reply = json.dumps({
            "ingredients": [
                {"name": "Kale", "zone": "GREEN", "category": "vegetable", "foodGroup": "leafy greens"},
                {"name": "wine", "zone": " Red "},
                {"name": "tofu", "zone": "blue"},
                {"name": "rice"},
            ]
        })

        zoned = parse_zoning(reply)

        assert [(i.name, i.zone) for i in zoned] == [
            ("Kale", Zone.GREEN),
            ("wine", Zone.RED),
            ("tofu", Zone.UNZONED),
            ("rice", Zone.UNZONED),
        ]
        assert zoned[0].group == "leafy greens"

    def test_stray_items_are_skipped_not_fatal(self):
        meal = parse_meal_analysis('{"mealSummary":"fruit","ingredients":[{"name":"apple"},"banana",null,7]}')
        zoned = parse_zoning('{"ingredients":["kale",{"name":"pear","zone":"green"},["x"]]}')

        assert [i.name for i in meal.ingredients] == ["apple"]
        assert [(i.name, i.zone) for i in zoned] == [("pear", Zone.GREEN)]

    def test_multi_image_prompt(self):
        single = image_analysis_messages(["data:a"])[0]["content"]
        multi = image_analysis_messages(["data:a", "data:b"])[0]["content"]

        assert MULTI_IMAGE_NOTE not in single[0]["text"]
        assert MULTI_IMAGE_NOTE in multi[0]["text"]
        assert [part["image_url"]["url"] for part in multi[1:]] == ["data:a", "data:b"]


# =============================================================================
# HTTP client
# =============================================================================

class TestOpenRouterClient:

    @pytest.mark.asyncio
    async def test_returns_first_choice_content(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion('{"ok": true}'))

        client = client_for(handler)

        content = await client.complete(
            "ingredient-zoning", "some/model", [{"role": "user", "content": "hi"}],
            response_format={"type": "json_object"}
        )

        assert content == '{"ok": true}'
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"]["model"] == "some/model"
        assert seen["body"]["response_format"] == {"type": "json_object"}
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error_type", [
        (401, InferenceAuthError),
        (403, InferenceAuthError),
        (429, ExternalAPIError),
        (502, ExternalAPIError),
    ])
    async def test_http_errors_are_mapped(self, status, error_type):
        client = client_for(lambda request: httpx.Response(status, text="nope"))

        with pytest.raises(error_type) as exc_info:
            await client.complete("image-analysis", "m", [])

        assert exc_info.value.status_code == 503
        await client.aclose()

    @pytest.mark.asyncio
    async def test_timeout_is_mapped(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = client_for(handler)

        with pytest.raises(InferenceTimeoutError):
            await client.complete("image-analysis", "m", [])
        await client.aclose()

    @pytest.mark.asyncio
    async def test_connection_error_is_mapped(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = client_for(handler)

        with pytest.raises(ExternalAPIError):
            await client.complete("image-analysis", "m", [])
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"choices": []}, {"error": "x"}, completion(""), completion(None)])
    async def test_unusable_payload(self, body):
        client = client_for(lambda request: httpx.Response(200, json=body))

        with pytest.raises(InferenceResponseError):
            await client.complete("image-analysis", "m", [])
        await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_key(self):
        client = OpenRouterClient(api_key="")

        assert not client.configured
        with pytest.raises(ServiceNotConfiguredError):
            await client.complete("image-analysis", "m", [])


# =============================================================================
# Inference service
# =============================================================================

class TestInferenceService:

    @pytest.mark.asyncio
    async def test_empty_classification_makes_no_call(self, services, inference_client):
        assert await services.inference.classify_ingredients("1.2.3.4", []) == []
        assert inference_client.calls == []

    @pytest.mark.asyncio
    async def test_unconfigured_client_fails_before_admission(self, clock, repository):
        services = build_services(repository=repository, client=ScriptedInferenceClient(configured=False), clock=clock)

        with pytest.raises(ServiceNotConfiguredError):
            await services.inference.analyze_meal("1.2.3.4", ["data:image/jpeg;base64,AAAA"])

        # No quota was consumed
        decision = await services.admission.admit("1.2.3.4", TrafficClass.VISION_ANALYSIS)
        assert decision.remaining == decision.limit - 1

    @pytest.mark.asyncio
    async def test_parse_failure_is_recorded_as_failed_call(self, services, inference_client):
        inference_client.queue("image-analysis", "not json at all")

        with pytest.raises(InferenceResponseError):
            await services.inference.analyze_meal("1.2.3.4", ["data:image/jpeg;base64,AAAA"])

        stats = services.monitor.get_service_stats("image-analysis")
        assert stats["failedRequests"] == 1

    @pytest.mark.asyncio
    async def test_rejected_call_never_reaches_provider(self, services, inference_client):
        for _ in range(10):
            await services.inference.analyze_meal("1.2.3.4", ["data:image/jpeg;base64,AAAA"])

        with pytest.raises(RateLimitExceededError):
            await services.inference.analyze_meal("1.2.3.4", ["data:image/jpeg;base64,AAAA"])

        assert len(inference_client.calls_for("image-analysis")) == 10
        assert services.monitor.get_service_stats("image-analysis")["totalRequests"] == 10
