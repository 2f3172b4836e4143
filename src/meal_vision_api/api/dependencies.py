"""FastAPI dependency injection factories."""

from typing import Annotated

from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from meal_vision_api.core.config import Settings, get_settings
from meal_vision_api.db.mongo import MongoDB
from meal_vision_api.db.repositories.meals import MEALS_COLLECTION, MealRepository
from meal_vision_api.services.gridfs_storage import ImageStorage
from meal_vision_api.services.meal_saver import MealSaver
from meal_vision_api.services.pipeline import PipelineOrchestrator
from meal_vision_api.services.vision_provider import VisionModelProvider, get_vision_provider


def get_database() -> AsyncIOMotorDatabase:
    """
    Get the MongoDB database instance.

    Returns:
        Motor database instance
    """
    settings = get_settings()
    return MongoDB.get_database(settings.db_name)


def get_provider() -> VisionModelProvider:
    """Get the shared vision model provider."""
    return get_vision_provider()


def get_pipeline(
    provider: VisionModelProvider = Depends(get_provider),
    settings: Settings = Depends(get_settings),
) -> PipelineOrchestrator:
    """
    Get a PipelineOrchestrator.

    Args:
        provider: Injected vision provider
        settings: Injected settings

    Returns:
        PipelineOrchestrator bound to the provider
    """
    return PipelineOrchestrator(provider, settings)


def get_image_storage(db: AsyncIOMotorDatabase = Depends(get_database)) -> ImageStorage:
    return ImageStorage(db)


def get_meal_saver(settings: Settings = Depends(get_settings)) -> MealSaver | None:
    """Get a MealSaver, or None when saving is disabled or MongoDB is not connected."""
    if not settings.save_meals or not MongoDB.is_connected():
        return None
    db = MongoDB.get_database(settings.db_name)
    return MealSaver(
        storage=ImageStorage(db),
        repository=MealRepository(db[MEALS_COLLECTION]),
        timeout_seconds=settings.save_timeout_seconds,
    )


# Type aliases for service dependencies
PipelineDep = Annotated[PipelineOrchestrator, Depends(get_pipeline)]
ImageStorageDep = Annotated[ImageStorage, Depends(get_image_storage)]
MealSaverDep = Annotated[MealSaver | None, Depends(get_meal_saver)]
