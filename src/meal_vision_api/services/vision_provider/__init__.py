"""
Vision model providers - facade over OpenAI-compatible and Ollama APIs.
"""

from .base import ProviderError, ProviderErrorKind, VisionModelProvider
from .factory import clear_provider_cache, get_vision_provider
from .ollama_provider import OllamaVisionProvider
from .openai_provider import OpenAIVisionProvider

__all__ = [
    "VisionModelProvider",
    "ProviderError",
    "ProviderErrorKind",
    "OpenAIVisionProvider",
    "OllamaVisionProvider",
    "get_vision_provider",
    "clear_provider_cache",
]
