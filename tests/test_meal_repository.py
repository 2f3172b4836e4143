"""Unit tests for the meal repository against a mocked collection."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId

from meal_vision_api.db.repositories.meals import MealRepository
from meal_vision_api.models.meal import MealDocument


@pytest.fixture
def collection():
    collection = MagicMock()
    collection.insert_one = AsyncMock(
        return_value=MagicMock(inserted_id=ObjectId("65f0000000000000000000aa"))
    )
    collection.find_one = AsyncMock(return_value=None)
    return collection


class TestMealRepository:
    """Tests for MealRepository."""

    @pytest.mark.asyncio
    async def test_create_meal(self, collection):
        repository = MealRepository(collection)

        meal_id = await repository.create_meal(
            user_id="user_1",
            request_id="req_1",
            meal_name="Lunch",
            analysis={"description": "Salad", "goalScore": {"overall": 7.5, "specific": {}}},
            image_url="/images/abc",
        )

        assert meal_id == "65f0000000000000000000aa"
        document = collection.insert_one.await_args.args[0]
        assert document["goal_score"] == 7.5
        assert document["image_url"] == "/images/abc"
        assert document["created_at"] == document["updated_at"]

    @pytest.mark.asyncio
    async def test_find_by_id_returns_model(self, collection):
        object_id = ObjectId("65f0000000000000000000aa")
        collection.find_one.return_value = {
            "_id": object_id,
            "user_id": "user_1",
            "request_id": "req_1",
            "meal_name": "Lunch",
            "analysis": {"description": "Salad"},
        }
        repository = MealRepository(collection)

        meal = await repository.find_by_id(str(object_id))

        assert isinstance(meal, MealDocument)
        assert meal.id == str(object_id)
        collection.find_one.assert_awaited_once_with({"_id": object_id})

    @pytest.mark.asyncio
    async def test_find_by_malformed_id(self, collection):
        repository = MealRepository(collection)

        assert await repository.find_by_id("not-an-object-id") is None
        collection.find_one.assert_not_awaited()
