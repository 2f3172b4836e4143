"""
Meal analysis pipeline.

Drives one request through extraction, model selection, invocation,
repair, validation, normalization and classification. Every path ends in
a complete NormalizedAnalysis; failures short-circuit to normalization
with no input rather than raising.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from meal_vision_api.core.config import Settings, get_settings
from meal_vision_api.models.analysis import (
    AnalysisRequest,
    ModelInfo,
    ModelSelection,
    NormalizedAnalysis,
)

from .analysis_invoker import AnalysisInvoker, InvocationOutcome
from .confidence import ClassifierThresholds, ConfidenceClassifier
from .image_extraction import ImageAbsence, ImageExtractor
from .model_availability import ModelAvailabilityChecker, resolve_model_selection
from .response_repair import RepairStrategy, ResponseRepairer
from .result_normalizer import create_empty_fallback, normalize_with_report
from .result_validator import ResultValidator
from .vision_provider.base import VisionModelProvider

logger = logging.getLogger(__name__)

DEFAULT_HEALTH_GOALS = ("General Health",)


class PipelineStage(str, Enum):
    """Pipeline states, in order."""

    IDLE = "idle"
    EXTRACTING = "extracting"
    CHECKING_AVAILABILITY = "checking_availability"
    INVOKING = "invoking"
    REPAIRING = "repairing"
    VALIDATING = "validating"
    NORMALIZING = "normalizing"
    CLASSIFYING = "classifying"
    DONE = "done"


@dataclass(frozen=True)
class PipelineResult:
    """Everything the caller needs to respond and persist."""

    success: bool
    request_id: str
    analysis: NormalizedAnalysis
    errors: tuple[str, ...] = ()
    processing_steps: tuple[str, ...] = ()
    stages: tuple[PipelineStage, ...] = ()
    selection: ModelSelection | None = None
    request: AnalysisRequest | None = None
    model_used: str | None = None


@dataclass
class _Trace:
    """Per-run bookkeeping; lives on the stack, never on the orchestrator."""

    request_id: str
    stages: list[PipelineStage] = field(default_factory=lambda: [PipelineStage.IDLE])
    steps: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def enter(self, stage: PipelineStage) -> None:
        self.stages.append(stage)
        logger.debug(f"[{self.request_id}] -> {stage.value}")

    def step(self, message: str) -> None:
        self.steps.append(message)
        logger.info(f"[{self.request_id}] {message}")

    def error(self, message: str) -> None:
        self.errors.append(message)
        self.steps.append(f"Error: {message}")
        logger.warning(f"[{self.request_id}] {message}")


class PipelineOrchestrator:
    """
    Runs the meal analysis pipeline.

    Holds only configuration and stateless collaborators, so one instance
    serves concurrent requests.
    """

    def __init__(
        self,
        provider: VisionModelProvider,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.provider = provider
        self.extractor = ImageExtractor(max_image_bytes=self.settings.max_image_bytes)
        self.availability = ModelAvailabilityChecker(
            provider, timeout_seconds=self.settings.availability_timeout_seconds
        )
        self.invoker = AnalysisInvoker(
            provider,
            timeout_seconds=self.settings.analysis_timeout_seconds,
            max_tokens=self.settings.analysis_max_tokens,
            temperature=self.settings.analysis_temperature,
            retry_on_transport_error=self.settings.retry_on_transport_error,
        )
        self.repairer = ResponseRepairer(max_chars=self.settings.repair_max_chars)
        self.validator = ResultValidator()
        self.classifier = ConfidenceClassifier(
            ClassifierThresholds.from_settings(self.settings)
        )

    async def run(
        self,
        body: Any,
        *,
        health_goals: list[str] | tuple[str, ...] = (),
        dietary_preferences: list[str] | tuple[str, ...] = (),
        request_id: str,
    ) -> PipelineResult:
        """
        Analyze the meal image in ``body``.

        Args:
            body: Form mapping, JSON object, raw string or bytes
            health_goals: Ordered user goals (defaults to General Health)
            dietary_preferences: Allergies and avoidances
            request_id: Request id used to tag logs and the result

        Returns:
            PipelineResult; never raises except on task cancellation
        """
        trace = _Trace(request_id)
        try:
            return await self._run(body, health_goals, dietary_preferences, trace)
        except Exception as e:
            logger.exception(f"[{request_id}] Unexpected pipeline error")
            trace.error(f"Unexpected error: {e}")
            trace.enter(PipelineStage.DONE)
            return PipelineResult(
                success=False,
                request_id=request_id,
                analysis=create_empty_fallback(f"Unexpected error: {e}"),
                errors=tuple(trace.errors),
                processing_steps=tuple(trace.steps),
                stages=tuple(trace.stages),
            )

    async def _run(
        self,
        body: Any,
        health_goals,
        dietary_preferences,
        trace: _Trace,
    ) -> PipelineResult:
        request_id = trace.request_id
        settings = self.settings

        trace.enter(PipelineStage.EXTRACTING)
        extracted = self.extractor.extract(body, request_id)
        if isinstance(extracted, ImageAbsence):
            trace.error(extracted.reason)
            return self._finish(trace, None, reason=extracted.reason)

        trace.step(
            f"Image extracted ({extracted.mime_type}, {len(extracted.payload)} bytes, "
            f"{extracted.source_kind.value})"
        )
        request = AnalysisRequest(
            image_payload=extracted.payload,
            image_mime_type=extracted.mime_type,
            health_goals=tuple(health_goals) or DEFAULT_HEALTH_GOALS,
            dietary_preferences=frozenset(dietary_preferences),
            request_id=request_id,
        )

        trace.enter(PipelineStage.CHECKING_AVAILABILITY)
        preferred = settings.preferred_vision_model
        availability = await self.availability.check(
            preferred, settings.fallback_vision_models, request_id
        )
        selection = resolve_model_selection(
            preferred, settings.force_vision_model, availability
        )
        if selection.resolved_model is None:
            trace.error(selection.unavailable_reason or f"Model {preferred} is unavailable")
            return self._finish(
                trace, None, reason=selection.unavailable_reason,
                selection=selection, request=request,
            )
        trace.step(
            f"Using model {selection.resolved_model}"
            + (" (fallback)" if selection.used_fallback_model else "")
            + (" (forced)" if selection.force_mode else "")
        )

        trace.enter(PipelineStage.INVOKING)
        outcome = await self.invoker.invoke(selection, request)
        if not outcome.ok:
            message = f"Analysis failed ({outcome.failure.value}): {outcome.error}"
            trace.error(message)
            return self._finish(
                trace, None, reason=message, selection=selection,
                request=request, outcome=outcome,
            )
        trace.step(
            f"Model responded in {outcome.response.latency_ms} ms "
            f"({outcome.response.usage.total_tokens} tokens)"
        )

        trace.enter(PipelineStage.REPAIRING)
        repaired = self.repairer.repair(outcome.response.text, request_id)
        trace.step(f"Response parsed ({repaired.strategy.value})")
        if repaired.strategy == RepairStrategy.MINIMAL:
            trace.error(repaired.error or "Model response could not be parsed")

        trace.enter(PipelineStage.VALIDATING)
        report = self.validator.validate(repaired.data, request_id)
        if report.recommended_missing:
            trace.step(f"Missing recommended fields: {', '.join(report.recommended_missing)}")
        if not report.accepted:
            trace.error("Analysis is missing all recommended fields")

        success = repaired.strategy != RepairStrategy.MINIMAL and report.accepted
        return self._finish(
            trace,
            repaired.data,
            reason=repaired.error,
            selection=selection,
            request=request,
            outcome=outcome,
            success=success,
        )

    def _finish(
        self,
        trace: _Trace,
        data: Any,
        *,
        reason: str | None = None,
        selection: ModelSelection | None = None,
        request: AnalysisRequest | None = None,
        outcome: InvocationOutcome | None = None,
        success: bool = False,
    ) -> PipelineResult:
        """Normalize and classify whatever the run produced."""
        model_used = None
        if outcome is not None and outcome.response is not None:
            model_used = outcome.response.model
        elif selection is not None:
            model_used = selection.resolved_model

        model_info = ModelInfo(
            model=model_used or "none",
            provider=self.provider.provider_name,
            used_fallback=bool(selection and selection.used_fallback_model),
            force_mode=selection.force_mode if selection else self.settings.force_vision_model,
        )

        trace.enter(PipelineStage.NORMALIZING)
        normalized = normalize_with_report(data, model_info=model_info, reason=reason)
        if normalized.synthesized:
            trace.step(f"Synthesized fields: {', '.join(normalized.synthesized)}")

        trace.enter(PipelineStage.CLASSIFYING)
        analysis = self.classifier.classify(normalized, trace.request_id)
        trace.step(
            f"Classified (fallback={analysis.fallback}, lowConfidence={analysis.low_confidence})"
        )

        trace.enter(PipelineStage.DONE)
        return PipelineResult(
            success=success,
            request_id=trace.request_id,
            analysis=analysis,
            errors=tuple(trace.errors),
            processing_steps=tuple(trace.steps),
            stages=tuple(trace.stages),
            selection=selection,
            request=request,
            model_used=model_used,
        )
