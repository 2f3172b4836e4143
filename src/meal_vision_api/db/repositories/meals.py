"""Repository for saved meals."""

from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection

from meal_vision_api.models.meal import MealDocument

from .base import BaseRepository

MEALS_COLLECTION = "meals"


class MealRepository(BaseRepository[MealDocument]):
    """
    Repository for analyzed meals.

    Stored in the `meals` collection, one document per saved analysis.
    """

    model_class = MealDocument

    def __init__(self, collection: AsyncIOMotorCollection):
        super().__init__(collection)

    async def create_meal(
        self,
        user_id: str,
        request_id: str,
        meal_name: str,
        analysis: dict[str, Any],
        image_url: str | None = None,
    ) -> str:
        """
        Insert a meal document.

        Args:
            user_id: Owner of the meal
            request_id: Analysis request id
            meal_name: Display name for the meal
            analysis: NormalizedAnalysis dumped in wire (camelCase) form
            image_url: Stored image URL, if the upload succeeded

        Returns:
            Inserted document ID
        """
        goal_score = analysis.get("goalScore") or {}
        document = {
            "user_id": user_id,
            "request_id": request_id,
            "image_url": image_url,
            "meal_name": meal_name,
            "analysis": analysis,
            "goal_score": goal_score.get("overall") if isinstance(goal_score, dict) else None,
        }
        return await self.insert_one(document)
