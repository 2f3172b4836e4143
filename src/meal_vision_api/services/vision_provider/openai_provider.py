"""
OpenAI-compatible provider for meal image analysis.

The model catalog is read with httpx (``GET {base}/models``); completions go
through LangChain's ``ChatOpenAI`` with an image content part.
"""

import logging
import time

import httpx
import openai
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from meal_vision_api.models.analysis import RawModelResponse, TokenUsage

from .base import ProviderError, ProviderErrorKind, VisionModelProvider

logger = logging.getLogger(__name__)


def extract_token_usage(response) -> TokenUsage:
    """
    Extract token usage from a LangChain chat response.

    Args:
        response: LangChain AIMessage or similar response object

    Returns:
        TokenUsage (zeros when the provider reported nothing)
    """
    input_tokens = 0
    output_tokens = 0

    if getattr(response, "usage_metadata", None):
        metadata = response.usage_metadata
        if isinstance(metadata, dict):
            input_tokens = metadata.get("input_tokens", 0) or metadata.get("prompt_tokens", 0)
            output_tokens = metadata.get("output_tokens", 0) or metadata.get("completion_tokens", 0)

    elif getattr(response, "response_metadata", None):
        metadata = response.response_metadata
        if isinstance(metadata, dict) and "token_usage" in metadata:
            usage = metadata["token_usage"] or {}
            input_tokens = usage.get("prompt_tokens", 0)
            output_tokens = usage.get("completion_tokens", 0)

    return TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
    )


class OpenAIVisionProvider(VisionModelProvider):
    """Vision analysis against an OpenAI-compatible API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize OpenAI provider.

        Args:
            api_key: API key sent as a Bearer token
            base_url: API base URL (OpenAI or a compatible gateway)
            timeout: Request timeout in seconds
            http_client: Optional pre-built client (tests inject a mock transport)
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def provider_name(self) -> str:
        return "openai"

    async def list_models(self) -> list[str]:
        """List model ids from ``GET /models``."""
        try:
            response = await self._client.get(
                f"{self.base_url}/models",
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.TimeoutException as e:
            raise ProviderError(
                message=f"Timed out listing OpenAI models: {e}",
                kind=ProviderErrorKind.TIMEOUT,
                provider=self.provider_name,
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(
                message=f"Failed to connect to OpenAI: {e}",
                kind=ProviderErrorKind.TRANSPORT,
                provider=self.provider_name,
            ) from e

        if response.status_code != 200:
            raise ProviderError(
                message=f"OpenAI models API error: {response.status_code}",
                kind=ProviderErrorKind.from_status(response.status_code),
                provider=self.provider_name,
                status_code=response.status_code,
                details={"body": response.text[:500]},
            )

        try:
            payload = response.json()
            return [item["id"] for item in payload.get("data", []) if item.get("id")]
        except (ValueError, AttributeError, KeyError, TypeError) as e:
            raise ProviderError(
                message=f"Unreadable OpenAI model catalog: {e}",
                kind=ProviderErrorKind.TRANSPORT,
                provider=self.provider_name,
            ) from e

    def _build_chat_model(
        self, model: str, max_tokens: int, temperature: float
    ) -> ChatOpenAI:
        return ChatOpenAI(
            model=model,
            api_key=self.api_key,
            base_url=self.base_url,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=self.timeout,
            max_retries=0,
        )

    async def analyze(
        self,
        *,
        model: str,
        system_prompt: str,
        user_text: str,
        image_data_url: str,
        max_tokens: int,
        temperature: float,
    ) -> RawModelResponse:
        """Send the image as a high-detail ``image_url`` content part."""
        start_time = time.time()
        llm = self._build_chat_model(model, max_tokens, temperature)
        messages = [
            SystemMessage(content=system_prompt),
            HumanMessage(
                content=[
                    {"type": "text", "text": user_text},
                    {
                        "type": "image_url",
                        "image_url": {"url": image_data_url, "detail": "high"},
                    },
                ]
            ),
        ]

        logger.info(f"Sending meal analysis request to OpenAI ({model})")

        try:
            response = await llm.ainvoke(messages)
        except openai.APIError as e:
            raise self._map_error(e) from e

        content = response.content
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part)
                for part in content
            )

        metadata = getattr(response, "response_metadata", None) or {}
        return RawModelResponse(
            text=content or "",
            model=metadata.get("model_name") or model,
            provider=self.provider_name,
            usage=extract_token_usage(response),
            latency_ms=int((time.time() - start_time) * 1000),
        )

    def _map_error(self, error: openai.APIError) -> ProviderError:
        """Translate an openai SDK exception into a ProviderError."""
        # APITimeoutError subclasses APIConnectionError
        if isinstance(error, openai.APITimeoutError):
            kind = ProviderErrorKind.TIMEOUT
        elif isinstance(error, openai.APIConnectionError):
            kind = ProviderErrorKind.TRANSPORT
        elif isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
            kind = ProviderErrorKind.AUTH
        elif isinstance(error, openai.RateLimitError):
            kind = ProviderErrorKind.RATE_LIMIT
        elif isinstance(error, (openai.BadRequestError, openai.NotFoundError)):
            kind = ProviderErrorKind.BAD_REQUEST
        elif isinstance(error, openai.APIStatusError):
            kind = ProviderErrorKind.from_status(error.status_code)
        else:
            kind = ProviderErrorKind.PROVIDER

        return ProviderError(
            message=f"OpenAI API error: {error}",
            kind=kind,
            provider=self.provider_name,
            status_code=getattr(error, "status_code", None),
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
