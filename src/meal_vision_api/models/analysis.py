"""Pydantic models for the meal analysis pipeline contract.

Defines the immutable records threaded between pipeline stages and the
canonical ``NormalizedAnalysis`` returned to every caller.

Wire names are camelCase (``goalScore``, ``lowConfidence``...) so the JSON
contract matches the web client; Python attributes stay snake_case.
"""

import base64
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


class ContractModel(BaseModel):
    """Frozen base model serialized with camelCase aliases."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


# =============================================================================
# Enums
# =============================================================================


class ConfidenceLevel(str, Enum):
    """Confidence level categories."""

    HIGH = "high"      # 0.8+
    MEDIUM = "medium"  # 0.5-0.8
    LOW = "low"        # <0.5

    @classmethod
    def from_score(cls, score: float) -> "ConfidenceLevel":
        """Map a 0-1 confidence score to its tier."""
        if score >= 0.8:
            return cls.HIGH
        if score >= 0.5:
            return cls.MEDIUM
        return cls.LOW


class AvailabilityFailureKind(str, Enum):
    """Why the model catalog could not confirm a usable model."""

    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TRANSPORT = "transport"
    NONE_AVAILABLE = "none_available"


# =============================================================================
# Request / selection records
# =============================================================================


class AnalysisRequest(ContractModel):
    """One incoming analysis call, immutable for its lifetime."""

    image_payload: bytes | None = Field(None, description="Decoded image bytes")
    image_mime_type: str = Field("image/jpeg", description="MIME type of the payload")
    health_goals: tuple[str, ...] = Field(
        ("General Health",), description="Ordered user health goals"
    )
    dietary_preferences: frozenset[str] = Field(
        default_factory=frozenset, description="Allergies and avoidances"
    )
    request_id: str = Field(..., description="Opaque request identifier")

    @property
    def image_data_url(self) -> str | None:
        """Image payload as a ``data:`` URL, or None when absent."""
        if not self.image_payload:
            return None
        encoded = base64.b64encode(self.image_payload).decode("ascii")
        return f"data:{self.image_mime_type};base64,{encoded}"


class ModelSelection(ContractModel):
    """Model choice for one request; the single source of truth for invocation."""

    preferred_model: str
    force_mode: bool
    resolved_model: str | None = None
    used_fallback_model: bool = False
    unavailable_reason: str | None = None
    availability_failure: AvailabilityFailureKind | None = None


class TokenUsage(ContractModel):
    """Token accounting reported by the provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class RawModelResponse(ContractModel):
    """Unparsed completion text plus usage metadata."""

    text: str
    model: str
    provider: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    latency_ms: int = Field(0, ge=0)


# =============================================================================
# Canonical analysis record
# =============================================================================


class Nutrient(ContractModel):
    """A single nutrient line in canonical array form."""

    name: str
    value: float = Field(0.0, ge=0)
    unit: str = ""
    is_highlight: bool = False


class DetailedIngredient(ContractModel):
    """An identified ingredient with a derived confidence tier."""

    name: str
    category: str = "unknown"
    confidence: float = Field(0.5, ge=0.0, le=1.0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def confidence_tier(self) -> ConfidenceLevel:
        return ConfidenceLevel.from_score(self.confidence)


class GoalScore(ContractModel):
    """How well the meal fits the user's goals, on a 0-10 scale."""

    overall: float = Field(5.0, ge=0.0, le=10.0)
    specific: dict[str, float] = Field(default_factory=dict)


class ModelInfo(ContractModel):
    """Which model produced the analysis."""

    model: str = "none"
    provider: str = "unknown"
    used_fallback: bool = False
    force_mode: bool = False


class NormalizedAnalysis(ContractModel):
    """
    Canonical analysis output.

    Always structurally complete: every field exists with its stated type.
    Only ``fallback`` and ``low_confidence`` signal reduced trust.
    Copy-on-change via ``model_copy(update=...)``.
    """

    description: str = Field(..., min_length=1)
    nutrients: tuple[Nutrient, ...] = ()
    feedback: tuple[str, ...] = Field(..., min_length=1)
    suggestions: tuple[str, ...] = Field(..., min_length=1)
    detailed_ingredients: tuple[DetailedIngredient, ...] = ()
    goal_score: GoalScore = Field(default_factory=GoalScore)
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    fallback: bool = False
    low_confidence: bool = False
    reasoning_logs: tuple[str, ...] = ()
    model_info: ModelInfo = Field(default_factory=ModelInfo)
    meal_id: str | None = None


# =============================================================================
# HTTP response models
# =============================================================================


class DebugInfo(ContractModel):
    """Diagnostic trail returned alongside the analysis."""

    processing_steps: list[str] = Field(default_factory=list)
    stages: list[str] = Field(default_factory=list)
    model_used: str | None = None
    used_fallback_model: bool = False
    force_mode: bool = False


class AnalyzeImageResponse(ContractModel):
    """Response body for ``POST /analyze-image``; always HTTP 200."""

    success: bool
    request_id: str
    analysis: NormalizedAnalysis
    errors: list[str] = Field(default_factory=list)
    debug: DebugInfo = Field(default_factory=DebugInfo)
    meal_saved: bool = False
    meal_id: str | None = None
    image_url: str | None = None
    save_error: str | None = None
