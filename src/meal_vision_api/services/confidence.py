"""
Confidence classification for normalized meal analyses.

Decides the ``fallback`` and ``low_confidence`` flags from coverage,
the model's own confidence and an optional label-detection signal.
"""

import logging
from dataclasses import dataclass

from meal_vision_api.core.config import Settings
from meal_vision_api.models.analysis import NormalizedAnalysis

from .result_normalizer import NormalizationOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassifierThresholds:
    """Empirical thresholds for confidence classification."""

    label_confidence: float = 0.65  # label signal strong enough to trust
    label_score_min: float = 3.0
    label_score_max: float = 8.0
    fallback_goal_score: float = 3.0
    low_confidence: float = 0.5

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClassifierThresholds":
        return cls(
            label_confidence=settings.label_confidence_threshold,
            label_score_min=settings.label_score_min,
            label_score_max=settings.label_score_max,
            fallback_goal_score=settings.fallback_goal_score,
            low_confidence=settings.low_confidence_threshold,
        )


class ConfidenceClassifier:
    """
    Classifies a normalization outcome into trusted or fallback results.

    Never clears a ``fallback`` flag that is already set.
    """

    def __init__(self, thresholds: ClassifierThresholds | None = None):
        self.thresholds = thresholds or ClassifierThresholds()

    def graduated_score(self, label_confidence: float) -> float:
        """Map a label confidence above threshold linearly onto the score band."""
        t = self.thresholds
        span = (t.label_score_max - t.label_score_min) / (1 - t.label_confidence)
        score = t.label_score_min + (label_confidence - t.label_confidence) * span
        return min(max(score, t.label_score_min), t.label_score_max)

    def classify(
        self, outcome: NormalizationOutcome, request_id: str = "-"
    ) -> NormalizedAnalysis:
        """
        Set ``fallback`` and ``low_confidence`` on the outcome's analysis.

        Args:
            outcome: Result of ``normalize_with_report``
            request_id: Request id used to tag log lines

        Returns:
            A new NormalizedAnalysis with flags and reasoning logs updated
        """
        analysis = outcome.analysis
        t = self.thresholds
        logs = list(analysis.reasoning_logs)

        if outcome.flags_asserted:
            fallback = analysis.fallback or outcome.synthesized_critical
            low_confidence = analysis.low_confidence or fallback
            logs.append(
                f"Kept upstream flags: fallback={fallback}, lowConfidence={low_confidence}"
            )
            logger.info(f"[{request_id}] Kept asserted flags (fallback={fallback})")
            return analysis.model_copy(
                update={
                    "fallback": fallback,
                    "low_confidence": low_confidence,
                    "reasoning_logs": tuple(logs),
                }
            )

        update = {}
        coverage_gaps = []
        if not analysis.nutrients:
            coverage_gaps.append("no nutrients")
        if not analysis.detailed_ingredients:
            coverage_gaps.append("no ingredients")

        label = outcome.label_confidence
        strong_label = label is not None and label >= t.label_confidence

        fallback = analysis.fallback or outcome.synthesized_critical
        if coverage_gaps and not strong_label:
            fallback = True
            logs.append(f"Fallback: {', '.join(coverage_gaps)}")

        if strong_label:
            score = self.graduated_score(label)
            update["goal_score"] = analysis.goal_score.model_copy(update={"overall": score})
            logs.append(f"Label detection confidence {label:.2f}; goal score set to {score:.1f}")
        elif fallback and "goalScore" in outcome.synthesized:
            update["goal_score"] = analysis.goal_score.model_copy(
                update={"overall": t.fallback_goal_score}
            )
            logs.append(f"Fallback goal score {t.fallback_goal_score:g}")

        reasons = []
        if fallback:
            reasons.append("fallback")
        if analysis.confidence < t.low_confidence:
            reasons.append(f"confidence {analysis.confidence:.2f} < {t.low_confidence:g}")
        if not analysis.detailed_ingredients:
            reasons.append("no ingredients")
        low_confidence = bool(reasons)
        if low_confidence:
            logs.append(f"Low confidence: {', '.join(reasons)}")

        logger.info(
            f"[{request_id}] Classified analysis: fallback={fallback}, "
            f"lowConfidence={low_confidence}, confidence={analysis.confidence:.2f}"
        )

        update.update(
            fallback=fallback,
            low_confidence=low_confidence,
            reasoning_logs=tuple(logs),
        )
        return analysis.model_copy(update=update)
