"""Business logic services."""

from .meal_saver import MealSaver, SaveOutcome
from .pipeline import PipelineOrchestrator, PipelineResult, PipelineStage

__all__ = [
    "MealSaver",
    "PipelineOrchestrator",
    "PipelineResult",
    "PipelineStage",
    "SaveOutcome",
]
