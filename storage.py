"""
Profile photo storage (GridFS in the app database)
"""
import logging
from typing import Optional, Tuple

import gridfs
from gridfs.errors import NoFile
from pymongo.errors import PyMongoError

from errors import TransientIOFailure, ValidationFailure

logger = logging.getLogger(__name__)

PHOTO_PREFIX = "profile-photos"
MAX_FILE_SIZE = 5 * 1024 * 1024  # 5MB
ALLOWED_FILE_TYPES = ("image/jpeg", "image/png", "image/jpg")


def photo_key(user_id: str) -> str:
    return f"{PHOTO_PREFIX}/{user_id}"


def photo_url(user_id: str) -> str:
    return f"/api/photos/{user_id}"


def validate_photo(content_type: Optional[str], size: int) -> None:
    if content_type not in ALLOWED_FILE_TYPES:
        raise ValidationFailure("Please upload a valid image file (JPEG, JPG, or PNG)")
    if size > MAX_FILE_SIZE:
        raise ValidationFailure("Image size should be less than 5MB")


class BlobStore:
    def __init__(self, database):
        self.database = database
        self._fs = None

    @property
    def fs(self) -> gridfs.GridFS:
        if self._fs is None:
            self._fs = gridfs.GridFS(self.database)
        return self._fs

    def upload_profile_photo(self, user_id: str, content_type: Optional[str], data: bytes) -> str:
        validate_photo(content_type, len(data))
        key = photo_key(user_id)
        try:
            old = [f._id for f in self.fs.find({"filename": key})]
            self.fs.put(data, filename=key, metadata={"contentType": content_type, "userId": user_id})
            for file_id in old:
                self.fs.delete(file_id)
        except PyMongoError as e:
            logger.error("Photo upload for %s failed: %s", user_id, e)
            raise TransientIOFailure("Failed to upload photo") from e
        logger.info("Stored profile photo for %s (%d bytes)", user_id, len(data))
        return photo_url(user_id)

    def open_profile_photo(self, user_id: str) -> Optional[Tuple[bytes, str]]:
        try:
            grid_out = self.fs.get_last_version(photo_key(user_id))
        except NoFile:
            return None
        metadata = grid_out.metadata or {}
        return grid_out.read(), metadata.get("contentType", "image/jpeg")
