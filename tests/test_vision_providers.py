"""Unit tests for the vision provider adapters."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest
from langchain_core.messages import AIMessage

from conftest import TINY_PNG_BASE64, TINY_PNG_DATA_URL
from meal_vision_api.core.config import Settings, VisionProvider
from meal_vision_api.services.vision_provider import (
    OllamaVisionProvider,
    OpenAIVisionProvider,
    ProviderError,
    ProviderErrorKind,
    clear_provider_cache,
    get_vision_provider,
)
from meal_vision_api.services.vision_provider.openai_provider import extract_token_usage

ANALYZE_KWARGS = dict(
    model="gpt-4o",
    system_prompt="You are a nutrition expert.",
    user_text="Analyze this meal.",
    image_data_url=TINY_PNG_DATA_URL,
    max_tokens=500,
    temperature=0.2,
)


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def api_request() -> httpx.Request:
    return httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def api_response(status_code: int) -> httpx.Response:
    return httpx.Response(status_code, request=api_request())


class TestProviderErrorKind:
    """HTTP status classification."""

    @pytest.mark.parametrize(
        "status,expected",
        [
            (401, ProviderErrorKind.AUTH),
            (403, ProviderErrorKind.AUTH),
            (429, ProviderErrorKind.RATE_LIMIT),
            (400, ProviderErrorKind.BAD_REQUEST),
            (413, ProviderErrorKind.BAD_REQUEST),
            (500, ProviderErrorKind.TRANSPORT),
            (503, ProviderErrorKind.TRANSPORT),
            (418, ProviderErrorKind.PROVIDER),
        ],
    )
    def test_from_status(self, status, expected):
        assert ProviderErrorKind.from_status(status) == expected


class TestOpenAIProvider:
    """Tests for OpenAIVisionProvider."""

    @pytest.mark.asyncio
    async def test_list_models(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(
                200, json={"data": [{"id": "gpt-4o"}, {"id": "gpt-4o-mini"}, {"object": "model"}]}
            )

        provider = OpenAIVisionProvider(
            api_key="sk-test", base_url="https://gateway.test/v1/", http_client=mock_client(handler)
        )

        models = await provider.list_models()

        assert models == ["gpt-4o", "gpt-4o-mini"]
        assert seen["url"] == "https://gateway.test/v1/models"
        assert seen["auth"] == "Bearer sk-test"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,expected",
        [
            (401, ProviderErrorKind.AUTH),
            (429, ProviderErrorKind.RATE_LIMIT),
            (502, ProviderErrorKind.TRANSPORT),
        ],
    )
    async def test_list_models_status_errors(self, status, expected):
        provider = OpenAIVisionProvider(
            api_key="sk-test",
            http_client=mock_client(lambda request: httpx.Response(status, text="nope")),
        )

        with pytest.raises(ProviderError) as exc_info:
            await provider.list_models()

        assert exc_info.value.kind == expected
        assert exc_info.value.status_code == status
        assert exc_info.value.provider == "openai"

    @pytest.mark.asyncio
    async def test_list_models_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = OpenAIVisionProvider(api_key="sk-test", http_client=mock_client(handler))

        with pytest.raises(ProviderError) as exc_info:
            await provider.list_models()

        assert exc_info.value.kind == ProviderErrorKind.TRANSPORT

    @pytest.mark.asyncio
    async def test_list_models_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        provider = OpenAIVisionProvider(api_key="sk-test", http_client=mock_client(handler))

        with pytest.raises(ProviderError) as exc_info:
            await provider.list_models()

        assert exc_info.value.kind == ProviderErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_analyze(self):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(
            return_value=AIMessage(
                content='{"description": "Toast"}',
                response_metadata={"model_name": "gpt-4o-2024-08-06"},
                usage_metadata={"input_tokens": 900, "output_tokens": 120, "total_tokens": 1020},
            )
        )
        provider = OpenAIVisionProvider(api_key="sk-test", http_client=mock_client(None))

        with patch.object(provider, "_build_chat_model", return_value=llm) as build:
            response = await provider.analyze(**ANALYZE_KWARGS)

        build.assert_called_once_with("gpt-4o", 500, 0.2)
        assert response.text == '{"description": "Toast"}'
        assert response.model == "gpt-4o-2024-08-06"
        assert response.provider == "openai"
        assert response.usage.total_tokens == 1020

        system, human = llm.ainvoke.call_args.args[0]
        assert system.content == "You are a nutrition expert."
        assert human.content[1]["image_url"] == {"url": TINY_PNG_DATA_URL, "detail": "high"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,expected",
        [
            (
                openai.AuthenticationError("bad key", response=api_response(401), body=None),
                ProviderErrorKind.AUTH,
            ),
            (
                openai.RateLimitError("slow down", response=api_response(429), body=None),
                ProviderErrorKind.RATE_LIMIT,
            ),
            (
                openai.BadRequestError("bad image", response=api_response(400), body=None),
                ProviderErrorKind.BAD_REQUEST,
            ),
            (
                openai.InternalServerError("oops", response=api_response(500), body=None),
                ProviderErrorKind.TRANSPORT,
            ),
            (openai.APITimeoutError(request=api_request()), ProviderErrorKind.TIMEOUT),
            (openai.APIConnectionError(request=api_request()), ProviderErrorKind.TRANSPORT),
        ],
    )
    async def test_analyze_error_mapping(self, error, expected):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=error)
        provider = OpenAIVisionProvider(api_key="sk-test", http_client=mock_client(None))

        with patch.object(provider, "_build_chat_model", return_value=llm):
            with pytest.raises(ProviderError) as exc_info:
                await provider.analyze(**ANALYZE_KWARGS)

        assert exc_info.value.kind == expected

    def test_extract_token_usage_from_response_metadata(self):
        message = AIMessage(
            content="x",
            response_metadata={"token_usage": {"prompt_tokens": 10, "completion_tokens": 4}},
        )

        usage = extract_token_usage(message)

        assert usage.total_tokens == 14


class TestOllamaProvider:
    """Tests for OllamaVisionProvider."""

    @pytest.mark.asyncio
    async def test_list_models(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/tags"
            return httpx.Response(
                200, json={"models": [{"name": "llava:7b"}, {"name": "bakllava:latest"}]}
            )

        provider = OllamaVisionProvider(http_client=mock_client(handler))

        assert await provider.list_models() == ["llava:7b", "bakllava:latest"]

    @pytest.mark.parametrize(
        "desired,listed,expected",
        [
            ("llava:7b", "llava:7b", True),
            ("llava:7b", "llava:7b-v1.6", True),
            ("llava", "llava:13b", True),
            ("llava:7b", "llava:13b", False),
            ("llava", "bakllava:latest", False),
        ],
    )
    def test_model_matches(self, desired, listed, expected):
        assert OllamaVisionProvider().model_matches(desired, listed) is expected

    @pytest.mark.asyncio
    async def test_analyze(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured.update(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "model": "llava:7b",
                    "response": '{"description": "Rice"}',
                    "prompt_eval_count": 600,
                    "eval_count": 80,
                },
            )

        provider = OllamaVisionProvider(http_client=mock_client(handler))

        response = await provider.analyze(**{**ANALYZE_KWARGS, "model": "llava:7b"})

        assert captured["images"] == [TINY_PNG_BASE64]
        assert captured["stream"] is False
        assert captured["options"] == {"temperature": 0.2, "num_predict": 500}
        assert response.text == '{"description": "Rice"}'
        assert response.usage.total_tokens == 680
        assert response.provider == "ollama"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [[], {"response": None}, {"model": "llava:7b"}])
    async def test_analyze_malformed_body(self, body):
        provider = OllamaVisionProvider(
            http_client=mock_client(lambda request: httpx.Response(200, json=body))
        )

        with pytest.raises(ProviderError) as exc_info:
            await provider.analyze(**ANALYZE_KWARGS)

        assert exc_info.value.kind == ProviderErrorKind.PROVIDER

    @pytest.mark.asyncio
    async def test_analyze_server_error(self):
        provider = OllamaVisionProvider(
            http_client=mock_client(lambda request: httpx.Response(500, text="model crashed"))
        )

        with pytest.raises(ProviderError) as exc_info:
            await provider.analyze(**ANALYZE_KWARGS)

        assert exc_info.value.kind == ProviderErrorKind.TRANSPORT
        assert exc_info.value.details["body"] == "model crashed"


class TestProviderFactory:
    """Tests for get_vision_provider."""

    @pytest.mark.parametrize(
        "kind,expected",
        [(VisionProvider.OPENAI, OpenAIVisionProvider), (VisionProvider.OLLAMA, OllamaVisionProvider)],
    )
    def test_selects_configured_provider(self, kind, expected):
        settings = Settings(_env_file=None, vision_provider=kind, openai_api_key="sk-test")
        clear_provider_cache()
        try:
            with patch(
                "meal_vision_api.services.vision_provider.factory.get_settings",
                return_value=settings,
            ):
                provider = get_vision_provider()
            assert isinstance(provider, expected)
            assert get_vision_provider() is provider
        finally:
            clear_provider_cache()
