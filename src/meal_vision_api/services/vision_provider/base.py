"""
Base classes for vision model providers.

Defines the abstract interface every provider must implement plus the
error type adapters raise at the seam.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from meal_vision_api.models.analysis import RawModelResponse


class ProviderErrorKind(str, Enum):
    """Classification of provider failures."""

    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    BAD_REQUEST = "bad_request"
    PROVIDER = "provider"

    @classmethod
    def from_status(cls, status_code: int) -> "ProviderErrorKind":
        """Map an HTTP status code to an error kind."""
        if status_code in (401, 403):
            return cls.AUTH
        if status_code == 429:
            return cls.RATE_LIMIT
        if status_code in (400, 404, 413, 422):
            return cls.BAD_REQUEST
        if status_code >= 500:
            return cls.TRANSPORT
        return cls.PROVIDER


class ProviderError(Exception):
    """Error raised by a vision provider adapter."""

    def __init__(
        self,
        message: str,
        kind: ProviderErrorKind = ProviderErrorKind.PROVIDER,
        provider: str = "unknown",
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.provider = provider
        self.status_code = status_code
        self.details = details or {}


class VisionModelProvider(ABC):
    """
    Abstract base class for vision model providers.

    All providers (OpenAI-compatible, Ollama) must implement this interface.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of this provider."""
        ...

    @abstractmethod
    async def list_models(self) -> list[str]:
        """
        List model identifiers visible to the configured credentials.

        Returns:
            Model ids in catalog order

        Raises:
            ProviderError: If the catalog cannot be read
        """
        ...

    def model_matches(self, desired: str, listed: str) -> bool:
        """Whether a catalog entry satisfies the desired model id."""
        return desired == listed

    @abstractmethod
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
        """
        Run one vision completion over a meal image.

        Args:
            model: Model id to invoke
            system_prompt: System instructions
            user_text: User message text accompanying the image
            image_data_url: ``data:image/...;base64,...`` URL
            max_tokens: Completion token budget
            temperature: Sampling temperature

        Returns:
            RawModelResponse with the unparsed completion text

        Raises:
            ProviderError: If the call fails
        """
        ...

    async def close(self) -> None:
        """Release any held connections."""
        return None
