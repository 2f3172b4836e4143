"""Pytest configuration and fixtures."""

import base64
import json
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from meal_vision_api.api.dependencies import get_meal_saver, get_pipeline
from meal_vision_api.core.config import Settings, VisionProvider
from meal_vision_api.main import create_app
from meal_vision_api.models.analysis import RawModelResponse, TokenUsage
from meal_vision_api.services.pipeline import PipelineOrchestrator
from meal_vision_api.services.vision_provider.base import VisionModelProvider


# Sample test image (1x1 red pixel PNG)
TINY_PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8DwHwAFBQIAX8jx0gAAAABJRU5ErkJggg=="
)
TINY_PNG_BYTES = base64.b64decode(TINY_PNG_BASE64)
TINY_PNG_DATA_URL = f"data:image/png;base64,{TINY_PNG_BASE64}"

GOOD_ANALYSIS = {
    "description": "Grilled salmon with quinoa and steamed broccoli. A balanced plate.",
    "nutrients": {
        "calories": 540,
        "protein": 38,
        "carbs": 42,
        "fat": 22,
        "fiber": 7,
        "sodium": 480,
    },
    "feedback": ["Good source of lean protein", "High in omega-3 fats"],
    "suggestions": ["Add a leafy green salad for extra fiber"],
    "detailedIngredients": [
        {"name": "salmon", "category": "protein", "confidence": 0.92},
        {"name": "quinoa", "category": "carbohydrate", "confidence": 0.81},
        {"name": "broccoli", "category": "vegetable", "confidence": 0.88},
    ],
    "goalScore": {"overall": 8, "specific": {"Heart Health": 9}},
    "confidence": 0.86,
}


class FakeVisionProvider(VisionModelProvider):
    """In-memory provider recording every call."""

    def __init__(
        self,
        models: list[str] | None = None,
        response_text: str | None = None,
        list_error: Exception | None = None,
        analyze_error: Exception | None = None,
    ):
        self.models = models if models is not None else ["gpt-4o", "gpt-4o-mini"]
        self.response_text = (
            response_text if response_text is not None else json.dumps(GOOD_ANALYSIS)
        )
        self.list_error = list_error
        self.analyze_error = analyze_error
        self.list_calls = 0
        self.analyze_calls: list[dict] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    async def list_models(self) -> list[str]:
        self.list_calls += 1
        if self.list_error:
            raise self.list_error
        return list(self.models)

    async def analyze(self, **kwargs) -> RawModelResponse:
        self.analyze_calls.append(kwargs)
        if self.analyze_error:
            raise self.analyze_error
        return RawModelResponse(
            text=self.response_text,
            model=kwargs["model"],
            provider=self.provider_name,
            usage=TokenUsage(input_tokens=900, output_tokens=300, total_tokens=1200),
            latency_ms=42,
        )


@pytest.fixture
def settings() -> Settings:
    """Settings pinned for tests (independent of the environment)."""
    return Settings(
        _env_file=None,
        vision_provider=VisionProvider.OPENAI,
        openai_api_key="sk-test",
        openai_vision_model="gpt-4o",
        openai_fallback_models=["gpt-4o-mini"],
        force_vision_model=True,
        analysis_timeout_seconds=2.0,
        availability_timeout_seconds=1.0,
        save_timeout_seconds=1.0,
    )


@pytest.fixture
def provider() -> FakeVisionProvider:
    return FakeVisionProvider()


@pytest.fixture
def pipeline(provider: FakeVisionProvider, settings: Settings) -> PipelineOrchestrator:
    return PipelineOrchestrator(provider, settings)


@pytest.fixture
def app(pipeline: PipelineOrchestrator):
    """App with the pipeline bound to the fake provider and saving disabled."""
    application = create_app()
    application.dependency_overrides[get_pipeline] = lambda: pipeline
    application.dependency_overrides[get_meal_saver] = lambda: None
    return application


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """
    Create async test client.

    Usage:
        async def test_endpoint(client: AsyncClient):
            response = await client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
