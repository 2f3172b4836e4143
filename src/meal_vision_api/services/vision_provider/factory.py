"""
Factory for creating vision model provider instances.

Reads configuration from settings and returns the appropriate provider.
"""

import logging
from functools import lru_cache

from meal_vision_api.core.config import VisionProvider, get_settings

from .base import ProviderError, ProviderErrorKind, VisionModelProvider
from .ollama_provider import OllamaVisionProvider
from .openai_provider import OpenAIVisionProvider

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_vision_provider() -> VisionModelProvider:
    """
    Get the configured vision model provider.

    Returns:
        Configured VisionModelProvider instance

    Raises:
        ProviderError: If the provider is not supported
    """
    settings = get_settings()
    provider = settings.vision_provider

    logger.info(f"Initializing vision provider: {provider.value}")

    if provider == VisionProvider.OPENAI:
        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY is not set; model catalog calls will fail with 401")
        return OpenAIVisionProvider(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.analysis_timeout_seconds,
        )

    if provider == VisionProvider.OLLAMA:
        logger.info(f"Configuring Ollama provider: {settings.ollama_base_url}")
        return OllamaVisionProvider(
            base_url=settings.ollama_base_url,
            timeout=settings.analysis_timeout_seconds,
        )

    raise ProviderError(
        message=f"Unknown vision provider: {provider}",
        kind=ProviderErrorKind.BAD_REQUEST,
        provider=str(provider),
        details={"supported_providers": [p.value for p in VisionProvider]},
    )


def clear_provider_cache():
    """Clear the cached provider instance (useful for testing)."""
    get_vision_provider.cache_clear()
