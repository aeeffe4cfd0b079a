"""
Image storage

Uploaded profile photos and product images are handed to an ImageStorage
implementation which returns the public URL to store on the document.
"""
import os
import shutil
import uuid
from abc import ABC, abstractmethod

import boto3
from fastapi import HTTPException, UploadFile

from logging_config import get_logger
from settings import settings

logger = get_logger("shopsmart.storage")

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}


class ImageStorage(ABC):
    """Abstract base class for image stores."""

    @staticmethod
    def build_key(folder: str, filename: str) -> str:
        _, ext = os.path.splitext(filename or "")
        return f"{folder}/{uuid.uuid4().hex}{ext.lower()}"

    def save(self, upload: UploadFile, folder: str) -> str:
        """Validate and store an upload, returning its URL."""
        if upload.content_type not in ALLOWED_CONTENT_TYPES:
            raise HTTPException(status_code=400, detail="Only JPEG, PNG, WEBP or GIF images are allowed")
        key = self.build_key(folder, upload.filename)
        url = self._put(upload, key)
        logger.info("Stored image", key=key)
        return url

    @abstractmethod
    def _put(self, upload: UploadFile, key: str) -> str:
        pass


class LocalImageStorage(ImageStorage):
    """Stores images on the local filesystem. Meant for development."""

    def __init__(self, base_dir: str):
        self.base_dir = os.path.abspath(base_dir)
        os.makedirs(self.base_dir, exist_ok=True)

    def _put(self, upload: UploadFile, key: str) -> str:
        destination = os.path.join(self.base_dir, key)
        os.makedirs(os.path.dirname(destination), exist_ok=True)
        upload.file.seek(0)
        with open(destination, "wb") as out:
            shutil.copyfileobj(upload.file, out)
        return f"/uploads/{key}"


class S3ImageStorage(ImageStorage):
    """Stores images in an S3 bucket and returns the public object URL."""

    def __init__(self, bucket_name: str, region: str):
        self.bucket_name = bucket_name
        self.region = region
        self.client = boto3.client("s3", region_name=region)

    def _put(self, upload: UploadFile, key: str) -> str:
        upload.file.seek(0)
        self.client.upload_fileobj(
            upload.file,
            self.bucket_name,
            key,
            ExtraArgs={"ContentType": upload.content_type},
        )
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{key}"


def create_image_storage() -> ImageStorage:
    """Pick the storage implementation from STORAGE_PROVIDER."""
    if settings.STORAGE_PROVIDER.lower() == "s3":
        return S3ImageStorage(bucket_name=settings.S3_BUCKET, region=settings.S3_REGION)
    return LocalImageStorage(settings.LOCAL_UPLOAD_DIR)


_storage = None


def get_storage() -> ImageStorage:
    global _storage
    if _storage is None:
        _storage = create_image_storage()
    return _storage
