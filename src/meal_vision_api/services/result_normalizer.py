"""
Normalization of parsed analysis objects into NormalizedAnalysis.

Total over its input: anything that is not a mapping becomes the canonical
empty-fallback record, and every field of a mapping is coerced or
synthesized so the result is always structurally complete. Running the
normalizer over a dumped NormalizedAnalysis returns an equal record.
"""

import logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from meal_vision_api.models.analysis import (
    DetailedIngredient,
    GoalScore,
    ModelInfo,
    NormalizedAnalysis,
    Nutrient,
)

logger = logging.getLogger(__name__)

EMPTY_FALLBACK_DESCRIPTION = (
    "We couldn't analyze this meal properly. Please try again with a clearer photo."
)
DEFAULT_FEEDBACK = ("Unable to analyze the image.",)
DEFAULT_SUGGESTIONS = (
    "Try taking the photo with better lighting and make sure the food is clearly visible.",
)
DEFAULT_CONFIDENCE = 0.5
NEUTRAL_GOAL_SCORE = 5.0
EMPTY_FALLBACK_GOAL_SCORE = 3.0

CRITICAL_SYNTHESIS = ("description", "nutrients")

# (canonical name, unit, accepted keys after _key() folding)
_CORE_NUTRIENTS = (
    ("Calories", "kcal", ("calories", "calorie", "kcal", "energy")),
    ("Protein", "g", ("protein", "proteins")),
    ("Carbohydrates", "g", ("carbs", "carb", "carbohydrates", "carbohydrate", "totalcarbs")),
    ("Fat", "g", ("fat", "fats", "totalfat")),
)
_EXTRA_NUTRIENTS = {
    "fiber": ("Fiber", "g"),
    "fibre": ("Fiber", "g"),
    "sugar": ("Sugar", "g"),
    "sugars": ("Sugar", "g"),
    "sodium": ("Sodium", "mg"),
    "potassium": ("Potassium", "mg"),
    "cholesterol": ("Cholesterol", "mg"),
    "saturatedfat": ("Saturated Fat", "g"),
}
_CORE_NAMES = {name.lower() for name, _, _ in _CORE_NUTRIENTS} | {
    key for _, _, keys in _CORE_NUTRIENTS for key in keys
}

_QUANTITY_RE = re.compile(
    r"^\s*([-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?)\s*([a-zA-Zµμ%]+)?\s*$"
)


@dataclass(frozen=True)
class NormalizationOutcome:
    """Normalized record plus what the normalizer had to invent."""

    analysis: NormalizedAnalysis
    synthesized: tuple[str, ...] = ()
    flags_asserted: bool = False
    label_confidence: float | None = None

    @property
    def synthesized_critical(self) -> bool:
        return any(field in self.synthesized for field in CRITICAL_SYNTHESIS)


# =============================================================================
# Coercion helpers
# =============================================================================


def _key(name: Any) -> str:
    return re.sub(r"[\s_\-]", "", str(name)).lower()


def _get(data: Mapping[str, Any], *names: str) -> Any:
    """First non-None value among alternative spellings of a field."""
    for name in names:
        value = data.get(name)
        if value is not None:
            return value
    return None


def parse_quantity(value: Any) -> tuple[float | None, str | None]:
    """
    Parse a number, optionally followed by a unit (``"12.5 g"``).

    Returns (None, None) for anything that is not a finite number.
    """
    if isinstance(value, bool):
        return None, None
    if isinstance(value, (int, float)):
        number = float(value)
        return (number, None) if math.isfinite(number) else (None, None)
    if isinstance(value, str):
        match = _QUANTITY_RE.match(value.replace(",", ""))
        if match:
            number = float(match.group(1))
            if math.isfinite(number):
                return number, match.group(2)
    return None, None


def coerce_number(value: Any) -> float:
    """Coerce to a non-negative finite float; junk becomes 0."""
    number, _ = parse_quantity(value)
    if number is None:
        return 0.0
    return max(number, 0.0)


def _scale_fraction(value: Any) -> float | None:
    """
    Rescale a 0-1, 1-10 or 0-100 confidence to 0-1.

    Values just above 1 are overshoot on the 0-1 scale and clamp to 1.0.
    """
    number, _ = parse_quantity(value)
    if number is None:
        return None
    if number <= 1:
        return max(number, 0.0)
    if number < 2:
        return 1.0
    if number <= 10:
        return number / 10
    if number <= 100:
        return number / 100
    return 1.0


def _scale_score(value: Any) -> float | None:
    """Rescale a 0-10 or 0-100 score to 0-10."""
    number, _ = parse_quantity(value)
    if number is None:
        return None
    if number > 10:
        number = number / 10
    return min(max(number, 0.0), 10.0)


def _string_list(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return ()
    items = []
    for item in value:
        if item is None:
            continue
        text = item if isinstance(item, str) else str(item)
        if text.strip():
            items.append(text.strip())
    return tuple(items)


# =============================================================================
# Field normalizers
# =============================================================================


def _nutrient_from_item(item: Any) -> Nutrient | None:
    if not isinstance(item, Mapping):
        return None
    name = _get(item, "name", "nutrient", "label")
    if not isinstance(name, str) or not name.strip():
        return None
    name = name.strip()

    raw_value = _get(item, "value", "amount", "quantity")
    number, parsed_unit = parse_quantity(raw_value)
    unit = item.get("unit")
    if not isinstance(unit, str):
        unit = parsed_unit or ""

    highlight = _get(item, "isHighlight", "is_highlight")
    if not isinstance(highlight, bool):
        highlight = _key(name) in _CORE_NAMES

    return Nutrient(
        name=name,
        value=max(number, 0.0) if number is not None else 0.0,
        unit=unit,
        is_highlight=highlight,
    )


def _keyed_value(value: Any) -> tuple[float, str | None]:
    if isinstance(value, Mapping):
        value, unit = _get(value, "value", "amount"), value.get("unit")
        number, parsed_unit = parse_quantity(value)
        return (max(number, 0.0) if number is not None else 0.0,
                unit if isinstance(unit, str) else parsed_unit)
    number, parsed_unit = parse_quantity(value)
    return (max(number, 0.0) if number is not None else 0.0), parsed_unit


def normalize_nutrients(value: Any) -> tuple[Nutrient, ...]:
    """
    Normalize nutrients from array or keyed-object form.

    Keyed objects are ordered calories, protein, carbohydrates, fat, then
    any extras in source order.
    """
    if isinstance(value, (list, tuple)):
        nutrients = []
        for item in value:
            nutrient = _nutrient_from_item(item)
            if nutrient is None:
                logger.debug(f"Dropping unreadable nutrient entry: {item!r}")
                continue
            nutrients.append(nutrient)
        return tuple(nutrients)

    if not isinstance(value, Mapping):
        return ()

    folded = {_key(k): (k, v) for k, v in value.items()}
    used: set[str] = set()
    nutrients = []

    for name, unit, keys in _CORE_NUTRIENTS:
        for key in keys:
            if key in folded and folded[key][0] not in used:
                original, raw = folded[key]
                number, _ = _keyed_value(raw)
                nutrients.append(Nutrient(name=name, value=number, unit=unit, is_highlight=True))
                used.add(original)
                break

    for original, raw in value.items():
        if original in used:
            continue
        number, parsed_unit = _keyed_value(raw)
        known = _EXTRA_NUTRIENTS.get(_key(original))
        if known:
            name, unit = known
        else:
            name = str(original).replace("_", " ").strip().title()
            unit = parsed_unit or ""
        if not name:
            continue
        nutrients.append(Nutrient(name=name, value=number, unit=unit, is_highlight=False))

    return tuple(nutrients)


def normalize_ingredients(value: Any) -> tuple[DetailedIngredient, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    ingredients = []
    for item in value:
        if isinstance(item, str):
            if item.strip():
                ingredients.append(DetailedIngredient(name=item.strip()))
            continue
        if not isinstance(item, Mapping):
            continue
        name = _get(item, "name", "ingredient", "label")
        if not isinstance(name, str) or not name.strip():
            continue
        category = item.get("category")
        confidence = _scale_fraction(item.get("confidence"))
        ingredients.append(
            DetailedIngredient(
                name=name.strip(),
                category=category.strip().lower() if isinstance(category, str) and category.strip() else "unknown",
                confidence=DEFAULT_CONFIDENCE if confidence is None else confidence,
            )
        )
    return tuple(ingredients)


def normalize_goal_score(value: Any) -> GoalScore | None:
    """Number or ``{overall, specific}``; None when absent or unreadable."""
    if isinstance(value, Mapping):
        overall = _scale_score(_get(value, "overall", "score"))
        specific = {}
        raw_specific = value.get("specific")
        if isinstance(raw_specific, Mapping):
            for goal, score in raw_specific.items():
                scaled = _scale_score(score)
                if scaled is not None:
                    specific[str(goal)] = scaled
        if overall is None:
            if not specific:
                return None
            overall = sum(specific.values()) / len(specific)
        return GoalScore(overall=overall, specific=specific)

    overall = _scale_score(value)
    return GoalScore(overall=overall) if overall is not None else None


def _model_info(value: Any) -> ModelInfo | None:
    if not isinstance(value, Mapping):
        return None
    model = value.get("model")
    provider = value.get("provider")
    return ModelInfo(
        model=model if isinstance(model, str) and model else "none",
        provider=provider if isinstance(provider, str) and provider else "unknown",
        used_fallback=_get(value, "usedFallback", "used_fallback") is True,
        force_mode=_get(value, "forceMode", "force_mode") is True,
    )


def _label_confidence(data: Mapping[str, Any]) -> float | None:
    label = _get(data, "labelDetection", "label_detection")
    raw = label.get("confidence") if isinstance(label, Mapping) else None
    if raw is None:
        raw = _get(data, "labelConfidence", "label_confidence")
    return _scale_fraction(raw) if raw is not None else None


# =============================================================================
# Public API
# =============================================================================


def create_empty_fallback(
    reason: str | None = None, model_info: ModelInfo | None = None
) -> NormalizedAnalysis:
    """The canonical record used when there is nothing to normalize."""
    return NormalizedAnalysis(
        description=EMPTY_FALLBACK_DESCRIPTION,
        nutrients=(),
        feedback=DEFAULT_FEEDBACK,
        suggestions=DEFAULT_SUGGESTIONS,
        detailed_ingredients=(),
        goal_score=GoalScore(overall=EMPTY_FALLBACK_GOAL_SCORE),
        confidence=0.0,
        fallback=True,
        low_confidence=True,
        reasoning_logs=(reason,) if reason else (),
        model_info=model_info or ModelInfo(used_fallback=True),
    )


def normalize_with_report(
    data: Any,
    *,
    model_info: ModelInfo | None = None,
    reason: str | None = None,
) -> NormalizationOutcome:
    """
    Normalize ``data`` and report what had to be synthesized.

    Args:
        data: Parsed analysis object (or anything else)
        model_info: Overrides any ``modelInfo`` carried by the source
        reason: Optional note appended to ``reasoning_logs``

    Returns:
        NormalizationOutcome wrapping a complete NormalizedAnalysis
    """
    if not isinstance(data, Mapping):
        return NormalizationOutcome(
            analysis=create_empty_fallback(reason, model_info),
            synthesized=CRITICAL_SYNTHESIS + ("feedback", "suggestions", "goalScore"),
            flags_asserted=True,
        )

    synthesized = []
    logs = list(_string_list(_get(data, "reasoningLogs", "reasoning_logs")))

    description = data.get("description")
    if isinstance(description, str) and description.strip():
        description = description.strip()
    else:
        description = EMPTY_FALLBACK_DESCRIPTION
        synthesized.append("description")

    raw_nutrients = data.get("nutrients")
    if raw_nutrients is None:
        synthesized.append("nutrients")
    nutrients = normalize_nutrients(raw_nutrients)

    feedback = _string_list(data.get("feedback"))
    if not feedback:
        feedback = DEFAULT_FEEDBACK
        synthesized.append("feedback")

    suggestions = _string_list(data.get("suggestions"))
    if not suggestions:
        suggestions = DEFAULT_SUGGESTIONS
        synthesized.append("suggestions")

    ingredients = normalize_ingredients(
        _get(data, "detailedIngredients", "detailed_ingredients", "ingredients")
    )

    goal_score = normalize_goal_score(_get(data, "goalScore", "goal_score"))
    if goal_score is None:
        goal_score = GoalScore(overall=NEUTRAL_GOAL_SCORE)
        synthesized.append("goalScore")

    confidence = _scale_fraction(data.get("confidence"))
    if confidence is None:
        confidence = DEFAULT_CONFIDENCE
        synthesized.append("confidence")

    raw_fallback = data.get("fallback")
    raw_low = _get(data, "lowConfidence", "low_confidence")
    flags_asserted = isinstance(raw_fallback, bool) or isinstance(raw_low, bool)
    fallback = raw_fallback is True
    low_confidence = raw_low is True

    if any(field in CRITICAL_SYNTHESIS for field in synthesized):
        if not fallback:
            logs.append(f"Marked as fallback: synthesized {', '.join(synthesized)}")
        fallback = True
    if fallback:
        low_confidence = True

    if reason and reason not in logs:
        logs.append(reason)

    meal_id = _get(data, "mealId", "meal_id")

    analysis = NormalizedAnalysis(
        description=description,
        nutrients=nutrients,
        feedback=feedback,
        suggestions=suggestions,
        detailed_ingredients=ingredients,
        goal_score=goal_score,
        confidence=confidence,
        fallback=fallback,
        low_confidence=low_confidence,
        reasoning_logs=tuple(logs),
        model_info=model_info or _model_info(_get(data, "modelInfo", "model_info")) or ModelInfo(),
        meal_id=meal_id if isinstance(meal_id, str) else None,
    )
    return NormalizationOutcome(
        analysis=analysis,
        synthesized=tuple(synthesized),
        flags_asserted=flags_asserted,
        label_confidence=_label_confidence(data),
    )


def normalize(
    data: Any,
    *,
    model_info: ModelInfo | None = None,
    reason: str | None = None,
) -> NormalizedAnalysis:
    """Normalize any input into a complete NormalizedAnalysis."""
    return normalize_with_report(data, model_info=model_info, reason=reason).analysis
