"""Stored meal image routes."""

import logging

from fastapi import APIRouter, Response

from meal_vision_api.api.dependencies import ImageStorageDep

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/images/{file_id}")
async def get_image(file_id: str, storage: ImageStorageDep) -> Response:
    """
    Stream a stored meal image.

    Raises:
        NotFoundError: If no image has this id (rendered as 404)
    """
    data, content_type = await storage.download_image(file_id)
    return Response(
        content=data,
        media_type=content_type,
        headers={"Cache-Control": "private, max-age=86400"},
    )
