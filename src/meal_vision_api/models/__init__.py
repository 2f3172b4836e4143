"""Pydantic models for API schemas."""

from .analysis import (
    AnalysisRequest,
    AnalyzeImageResponse,
    AvailabilityFailureKind,
    ConfidenceLevel,
    DebugInfo,
    DetailedIngredient,
    GoalScore,
    ModelInfo,
    ModelSelection,
    NormalizedAnalysis,
    Nutrient,
    RawModelResponse,
    TokenUsage,
)
from .meal import MealDocument

__all__ = [
    # Analysis contract
    "NormalizedAnalysis",
    "Nutrient",
    "DetailedIngredient",
    "GoalScore",
    "ModelInfo",
    "ConfidenceLevel",
    # Pipeline records
    "AnalysisRequest",
    "ModelSelection",
    "AvailabilityFailureKind",
    "RawModelResponse",
    "TokenUsage",
    # HTTP
    "AnalyzeImageResponse",
    "DebugInfo",
    # Persistence
    "MealDocument",
]
