"""Application configuration using Pydantic Settings."""

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class VisionProvider(str, Enum):
    """Supported vision model providers."""
    OPENAI = "openai"
    OLLAMA = "ollama"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    db_name: str = "meal_vision_db"

    # Vision Provider Selection
    vision_provider: VisionProvider = VisionProvider.OPENAI

    # OpenAI Configuration
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_vision_model: str = "gpt-4o"
    openai_fallback_models: list[str] = ["gpt-4o-mini", "gpt-4-turbo"]

    # Ollama Configuration
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llava:7b"
    ollama_fallback_models: list[str] = ["llava:13b", "bakllava"]

    # Model policy: when forced, the preferred model is never substituted
    force_vision_model: bool = True

    # Timeouts (seconds)
    analysis_timeout_seconds: float = 30.0
    availability_timeout_seconds: float = 10.0
    save_timeout_seconds: float = 5.0

    # Generation
    analysis_max_tokens: int = 2000
    analysis_temperature: float = 0.2
    retry_on_transport_error: bool = False

    # Input / parsing limits
    max_image_bytes: int = 10 * 1024 * 1024  # 10 MB
    repair_max_chars: int = 200_000

    # Confidence classification (empirical thresholds)
    label_confidence_threshold: float = 0.65
    label_score_min: float = 3.0
    label_score_max: float = 8.0
    fallback_goal_score: float = 3.0
    low_confidence_threshold: float = 0.5

    # Persistence
    save_meals: bool = True

    # App
    debug: bool = False
    log_level: str = "INFO"
    app_name: str = "Meal Vision API"
    api_version: str = "1.0.0"

    @property
    def preferred_vision_model(self) -> str:
        """Model id the pipeline asks for first."""
        if self.vision_provider == VisionProvider.OLLAMA:
            return self.ollama_model
        return self.openai_vision_model

    @property
    def fallback_vision_models(self) -> list[str]:
        """Ordered fallback candidates for the selected provider."""
        if self.vision_provider == VisionProvider.OLLAMA:
            return list(self.ollama_fallback_models)
        return list(self.openai_fallback_models)

    @property
    def is_provider_configured(self) -> bool:
        """Check if the selected vision provider is configured."""
        if self.vision_provider == VisionProvider.OPENAI:
            return bool(self.openai_api_key)
        elif self.vision_provider == VisionProvider.OLLAMA:
            return bool(self.ollama_base_url)
        return False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
