"""
Best-effort persistence of analyzed meals.

Runs after the pipeline returns: uploads the image to GridFS, then stores
the analysis document. Failures and timeouts are reported, never raised,
and never change the analysis itself.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from pymongo.errors import PyMongoError

from meal_vision_api.core.exceptions import StorageError
from meal_vision_api.db.repositories.meals import MealRepository
from meal_vision_api.models.analysis import NormalizedAnalysis

from .gridfs_storage import ImageStorage
from .pipeline import PipelineResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaveOutcome:
    """Result of a save attempt; ``analysis`` carries the meal id when saved."""

    saved: bool
    analysis: NormalizedAnalysis
    meal_id: str | None = None
    image_url: str | None = None
    error: str | None = None
    timed_out: bool = False


def auto_meal_name(description: str, now: datetime | None = None) -> str:
    """First sentence of the description, or a dated default."""
    first_sentence = description.split(".", 1)[0].strip()
    if first_sentence:
        return first_sentence[:120]
    now = now or datetime.now(timezone.utc)
    return f"Meal on {now.strftime('%Y-%m-%d')}"


class MealSaver:
    """Saves meals for signed-in users under a time limit."""

    def __init__(
        self,
        storage: ImageStorage,
        repository: MealRepository,
        timeout_seconds: float = 5.0,
    ):
        self.storage = storage
        self.repository = repository
        self.timeout_seconds = timeout_seconds

    async def save(
        self,
        result: PipelineResult,
        *,
        user_id: str | None,
        meal_name: str | None = None,
    ) -> SaveOutcome:
        """
        Persist a pipeline result if it is worth keeping.

        Args:
            result: Completed pipeline result
            user_id: Owner; anonymous requests are never saved
            meal_name: Optional user-supplied name

        Returns:
            SaveOutcome describing what happened
        """
        request_id = result.request_id
        analysis = result.analysis

        if not user_id:
            return SaveOutcome(
                saved=False, analysis=analysis,
                error="Authentication required to save meals",
            )
        if not result.success or analysis.fallback:
            return SaveOutcome(
                saved=False, analysis=analysis,
                error="Cannot save insufficient analysis results",
            )
        if not analysis.nutrients:
            return SaveOutcome(
                saved=False, analysis=analysis,
                error="Cannot save analysis without nutrients",
            )

        try:
            meal_id, image_url = await asyncio.wait_for(
                self._persist(result, user_id, meal_name),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = f"Meal save timed out after {self.timeout_seconds:g}s"
            logger.warning(f"[{request_id}] {error}")
            return SaveOutcome(saved=False, analysis=analysis, error=error, timed_out=True)
        except PyMongoError as e:
            logger.error(f"[{request_id}] Meal save failed: {e}")
            return SaveOutcome(saved=False, analysis=analysis, error=f"Meal save failed: {e}")

        logger.info(f"[{request_id}] Saved meal {meal_id} for user {user_id}")
        return SaveOutcome(
            saved=True,
            analysis=analysis.model_copy(update={"meal_id": meal_id}),
            meal_id=meal_id,
            image_url=image_url,
        )

    async def _persist(
        self, result: PipelineResult, user_id: str, meal_name: str | None
    ) -> tuple[str, str | None]:
        request_id = result.request_id
        image_url = None
        request = result.request
        if request is not None and request.image_payload:
            try:
                image_url = await self.storage.upload_image(
                    request.image_payload,
                    request_id,
                    request.image_mime_type,
                    user_id=user_id,
                )
            except StorageError as e:
                logger.warning(f"[{request_id}] Image upload failed, saving without image: {e}")

        meal_id = await self.repository.create_meal(
            user_id=user_id,
            request_id=request_id,
            meal_name=meal_name or auto_meal_name(result.analysis.description),
            analysis=result.analysis.model_dump(mode="json", by_alias=True),
            image_url=image_url,
        )
        return meal_id, image_url
