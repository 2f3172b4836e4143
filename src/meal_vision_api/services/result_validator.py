"""Structural validation of parsed analysis objects."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

CRITICAL_FIELDS = ("description", "nutrients")
RECOMMENDED_FIELDS = ("feedback", "suggestions", "detailedIngredients", "modelInfo")

_FALLBACK_MODEL_IDS = {"none", "error"}


@dataclass(frozen=True)
class ValidationReport:
    """What the parsed object contains and whether it is usable."""

    critical_present: tuple[str, ...]
    critical_missing: tuple[str, ...]
    recommended_present: tuple[str, ...]
    recommended_missing: tuple[str, ...]
    shape_warnings: tuple[str, ...]
    is_fallback_result: bool
    accepted: bool


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def _model_ids(data: Mapping[str, Any]) -> list[str]:
    ids = []
    model_info = data.get("modelInfo")
    if isinstance(model_info, Mapping):
        ids.append(model_info.get("model"))
    ids.append(data.get("modelUsed"))
    metadata = data.get("metadata")
    if isinstance(metadata, Mapping):
        ids.append(metadata.get("modelUsed"))
    return [str(i).lower() for i in ids if isinstance(i, str) and i]


def is_fallback_result(data: Mapping[str, Any]) -> bool:
    """Whether the source marks itself as a fallback or error record."""
    if data.get("fallback") is True or data.get("lowConfidence") is True:
        return True
    for model_id in _model_ids(data):
        if model_id in _FALLBACK_MODEL_IDS or "fallback" in model_id or "error" in model_id:
            return True
    return False


class ResultValidator:
    """Checks a parsed object for critical and recommended fields."""

    def validate(self, data: Any, request_id: str = "-") -> ValidationReport:
        """
        Validate a parsed analysis object.

        Critical fields can always be synthesized by the normalizer, so
        acceptance depends on recommended coverage or a fallback marker.
        """
        if not isinstance(data, Mapping):
            logger.warning(f"[{request_id}] Validation input is not an object")
            return ValidationReport(
                critical_present=(),
                critical_missing=CRITICAL_FIELDS,
                recommended_present=(),
                recommended_missing=RECOMMENDED_FIELDS,
                shape_warnings=(f"top level is {type(data).__name__}, expected object",),
                is_fallback_result=False,
                accepted=False,
            )

        critical_present = tuple(f for f in CRITICAL_FIELDS if _is_present(data.get(f)))
        critical_missing = tuple(f for f in CRITICAL_FIELDS if f not in critical_present)
        recommended_present = tuple(f for f in RECOMMENDED_FIELDS if _is_present(data.get(f)))
        recommended_missing = tuple(f for f in RECOMMENDED_FIELDS if f not in recommended_present)

        warnings = []
        description = data.get("description")
        if description is not None and not isinstance(description, str):
            warnings.append(f"description is {type(description).__name__}, expected string")
        nutrients = data.get("nutrients")
        if nutrients is not None and not isinstance(nutrients, (list, tuple, Mapping)):
            warnings.append(f"nutrients is {type(nutrients).__name__}, expected array or object")
        for name in ("feedback", "suggestions"):
            value = data.get(name)
            if value is not None and not isinstance(value, (list, tuple, str)):
                warnings.append(f"{name} is {type(value).__name__}, expected array")
        ingredients = data.get("detailedIngredients")
        if ingredients is not None and not isinstance(ingredients, (list, tuple)):
            warnings.append(f"detailedIngredients is {type(ingredients).__name__}, expected array")

        fallback = is_fallback_result(data)
        accepted = bool(recommended_present) or fallback

        if critical_missing:
            logger.warning(f"[{request_id}] Missing critical fields: {', '.join(critical_missing)}")
        if recommended_missing:
            logger.info(
                f"[{request_id}] Missing recommended fields: {', '.join(recommended_missing)}"
            )
        for warning in warnings:
            logger.info(f"[{request_id}] Shape warning: {warning}")

        return ValidationReport(
            critical_present=critical_present,
            critical_missing=critical_missing,
            recommended_present=recommended_present,
            recommended_missing=recommended_missing,
            shape_warnings=tuple(warnings),
            is_fallback_result=fallback,
            accepted=accepted,
        )
