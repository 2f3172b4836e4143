"""
Ollama provider for meal image analysis.

Uses a local Ollama instance with a LLaVA-style vision model.
"""

import logging
import time

import httpx

from meal_vision_api.models.analysis import RawModelResponse, TokenUsage

from .base import ProviderError, ProviderErrorKind, VisionModelProvider

logger = logging.getLogger(__name__)


class OllamaVisionProvider(VisionModelProvider):
    """
    Vision analysis using Ollama's generate API.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize Ollama provider.

        Args:
            base_url: Ollama API base URL
            timeout: Request timeout in seconds
            http_client: Optional pre-built client (tests inject a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def provider_name(self) -> str:
        return "ollama"

    async def list_models(self) -> list[str]:
        """List locally pulled models from ``GET /api/tags``."""
        response = await self._request("GET", "/api/tags")
        try:
            tags = response.json()
            return [m.get("name", "") for m in tags.get("models", []) if m.get("name")]
        except (ValueError, AttributeError, TypeError) as e:
            raise ProviderError(
                message=f"Unreadable Ollama tag list: {e}",
                kind=ProviderErrorKind.TRANSPORT,
                provider=self.provider_name,
            ) from e

    def model_matches(self, desired: str, listed: str) -> bool:
        """
        Tag-aware match.

        "llava:7b" matches "llava:7b" and "llava:7b-v1.6"; an untagged
        "llava" matches any "llava:<tag>".
        """
        if listed == desired or listed.startswith(f"{desired}-"):
            return True
        if ":" not in desired:
            return listed.split(":", 1)[0] == desired
        return False

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
        """Send the image as raw base64 to ``POST /api/generate``."""
        start_time = time.time()

        # Ollama takes bare base64 without the data URL prefix
        _, _, image_b64 = image_data_url.partition("base64,")

        request_body = {
            "model": model,
            "system": system_prompt,
            "prompt": user_text,
            "images": [image_b64 or image_data_url],
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }

        logger.info(f"Sending meal analysis request to Ollama ({model})")

        response = await self._request("POST", "/api/generate", json=request_body)
        try:
            result_data = response.json()
        except ValueError as e:
            raise ProviderError(
                message=f"Ollama returned a non-JSON body: {e}",
                kind=ProviderErrorKind.PROVIDER,
                provider=self.provider_name,
            ) from e

        if not isinstance(result_data, dict) or not isinstance(result_data.get("response"), str):
            raise ProviderError(
                message="Ollama response body has no text 'response' field",
                kind=ProviderErrorKind.PROVIDER,
                provider=self.provider_name,
                details={"body": response.text[:500]},
            )

        raw_response = result_data["response"]
        logger.debug(f"Raw Ollama response: {raw_response[:500]}...")

        input_tokens = int(result_data.get("prompt_eval_count") or 0)
        output_tokens = int(result_data.get("eval_count") or 0)

        return RawModelResponse(
            text=raw_response,
            model=result_data.get("model") or model,
            provider=self.provider_name,
            usage=TokenUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            latency_ms=int((time.time() - start_time) * 1000),
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderError(
                message=f"Ollama request timed out: {e}",
                kind=ProviderErrorKind.TIMEOUT,
                provider=self.provider_name,
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(
                message=f"Failed to connect to Ollama: {e}",
                kind=ProviderErrorKind.TRANSPORT,
                provider=self.provider_name,
            ) from e

        if response.status_code != 200:
            raise ProviderError(
                message=f"Ollama API error: {response.status_code}",
                kind=ProviderErrorKind.from_status(response.status_code),
                provider=self.provider_name,
                status_code=response.status_code,
                details={"body": response.text[:500]},
            )
        return response

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
