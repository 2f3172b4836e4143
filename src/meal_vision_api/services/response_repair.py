"""
Tolerant parsing of model output into a JSON object.

Model responses arrive wrapped in Markdown fences, prefixed with prose,
truncated mid-object or with trailing commas. ``ResponseRepairer.repair``
always returns a mapping, escalating through four strategies.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_DESCRIPTION_RE = re.compile(r'"description"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)

MINIMAL_DESCRIPTION = "The analysis response could not be read."


class RepairStrategy(str, Enum):
    """Which strategy produced the parsed object, strongest first."""

    STRICT = "strict"
    EXTRACTED = "extracted"
    SALVAGED = "salvaged"
    MINIMAL = "minimal"


@dataclass(frozen=True)
class RepairResult:
    """Parsed object plus how it was obtained."""

    data: dict[str, Any]
    strategy: RepairStrategy
    error: str | None = None


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence if present."""
    match = _FENCE_RE.match(text)
    return match.group(1).strip() if match else text.strip()


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, RecursionError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


class ResponseRepairer:
    """Parses raw model text into a dict; never raises."""

    def __init__(self, max_chars: int = 200_000):
        self.max_chars = max_chars

    def repair(self, text: str | None, request_id: str = "-") -> RepairResult:
        """
        Parse ``text`` with escalating strategies.

        Args:
            text: Raw completion text (may be None or empty)
            request_id: Request id used to tag log lines

        Returns:
            RepairResult whose ``data`` is always a dict
        """
        if not text or not text.strip():
            logger.warning(f"[{request_id}] Empty model response")
            return self._minimal("Model returned an empty response")

        stripped = strip_code_fences(text)

        data = _loads_object(stripped)
        if data is not None:
            return RepairResult(data=data, strategy=RepairStrategy.STRICT)

        logger.warning(f"[{request_id}] Strict JSON parse failed; attempting extraction")

        bounded = stripped[: self.max_chars]
        if len(stripped) > self.max_chars:
            logger.warning(
                f"[{request_id}] Response of {len(stripped)} chars cut to {self.max_chars}"
            )

        data = self._extract(bounded)
        if data is not None:
            logger.info(f"[{request_id}] Recovered JSON object by extraction")
            return RepairResult(
                data=data,
                strategy=RepairStrategy.EXTRACTED,
                error="Response was not strict JSON",
            )

        match = _DESCRIPTION_RE.search(bounded)
        if match:
            try:
                description = json.loads(f'"{match.group(1)}"')
            except json.JSONDecodeError:
                description = match.group(1)
            if description.strip():
                logger.info(f"[{request_id}] Salvaged description from broken JSON")
                return RepairResult(
                    data={"description": description},
                    strategy=RepairStrategy.SALVAGED,
                    error="Only the description could be recovered",
                )

        logger.error(f"[{request_id}] Could not parse model response: {bounded[:500]}")
        return self._minimal("Model response could not be parsed as JSON")

    @staticmethod
    def _extract(text: str) -> dict[str, Any] | None:
        """Parse the outermost brace region, then retry without trailing commas."""
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            return None

        candidate = text[start : end + 1]
        data = _loads_object(candidate)
        if data is not None:
            return data
        return _loads_object(_TRAILING_COMMA_RE.sub(r"\1", candidate))

    @staticmethod
    def _minimal(error: str) -> RepairResult:
        return RepairResult(
            data={
                "description": MINIMAL_DESCRIPTION,
                "nutrients": [],
                "feedback": [],
                "suggestions": [],
                "detailedIngredients": [],
            },
            strategy=RepairStrategy.MINIMAL,
            error=error,
        )
