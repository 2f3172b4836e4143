"""GridFS storage for meal images.

Stores uploaded meal photos in MongoDB GridFS and serves them back by id.
"""

import logging
from datetime import datetime, timezone

from bson import ObjectId
from bson.errors import InvalidId
from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorGridFSBucket

from meal_vision_api.core.exceptions import NotFoundError, StorageError

logger = logging.getLogger(__name__)

# Default bucket name for meal images
GRIDFS_BUCKET_NAME = "meal_images"

IMAGE_URL_PREFIX = "/images/"


class ImageStorage:
    """
    Stores and retrieves meal images using MongoDB GridFS.

    Usage:
        storage = ImageStorage(db)
        url = await storage.upload_image(data, "req_123", "image/jpeg")
        data, content_type = await storage.download_image(file_id)
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        bucket_name: str = GRIDFS_BUCKET_NAME,
    ):
        """
        Initialize GridFS image storage.

        Args:
            db: Motor database instance
            bucket_name: Name of the GridFS bucket
        """
        self._db = db
        self._bucket_name = bucket_name
        self._bucket: AsyncIOMotorGridFSBucket | None = None

    @property
    def bucket(self) -> AsyncIOMotorGridFSBucket:
        """Get or create the GridFS bucket (lazy initialization)."""
        if self._bucket is None:
            self._bucket = AsyncIOMotorGridFSBucket(
                self._db,
                bucket_name=self._bucket_name,
            )
        return self._bucket

    @staticmethod
    def image_url(file_id: ObjectId | str) -> str:
        """Public URL served by ``GET /images/{file_id}``."""
        return f"{IMAGE_URL_PREFIX}{file_id}"

    async def upload_image(
        self,
        data: bytes,
        request_id: str,
        content_type: str = "image/jpeg",
        user_id: str | None = None,
    ) -> str:
        """
        Upload an image to GridFS.

        Args:
            data: Binary image data
            request_id: Analysis request the image belongs to
            content_type: MIME type of the image
            user_id: Owner of the image, if known

        Returns:
            Image URL (/images/{file_id})

        Raises:
            StorageError: If upload fails
        """
        extension = content_type.rsplit("/", 1)[-1]
        metadata = {
            "request_id": request_id,
            "content_type": content_type,
            "uploaded_at": datetime.now(timezone.utc),
        }
        if user_id:
            metadata["user_id"] = user_id

        try:
            file_id = await self.bucket.upload_from_stream(
                f"{request_id}.{extension}",
                data,
                metadata=metadata,
            )
        except Exception as e:
            logger.error(f"GridFS upload failed: {e}")
            raise StorageError(
                message=f"Failed to upload image: {e}",
                details={"request_id": request_id, "size": len(data)},
            ) from e

        url = self.image_url(file_id)
        logger.info(f"[{request_id}] Uploaded image: {len(data)} bytes -> {url}")
        return url

    async def download_image(self, file_id: str) -> tuple[bytes, str]:
        """
        Download an image from GridFS.

        Args:
            file_id: GridFS file ID as string

        Returns:
            Tuple of (image bytes, content type)

        Raises:
            NotFoundError: If the id is malformed or no such file exists
            StorageError: If the download fails
        """
        try:
            object_id = ObjectId(file_id)
        except (InvalidId, TypeError) as e:
            raise NotFoundError("Image", file_id) from e

        try:
            grid_out = await self.bucket.open_download_stream(object_id)
            data = await grid_out.read()
        except NoFile as e:
            raise NotFoundError("Image", file_id) from e
        except Exception as e:
            logger.error(f"GridFS download failed for {file_id}: {e}")
            raise StorageError(
                message=f"Failed to download image: {e}",
                details={"file_id": file_id},
            ) from e

        metadata = grid_out.metadata or {}
        content_type = metadata.get("content_type", "image/jpeg")
        logger.debug(f"Downloaded GridFS file {file_id}: {len(data)} bytes")
        return data, content_type
