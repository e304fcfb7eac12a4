"""Catalog image uploads (service and inventory photos) sent as base64 from the dashboard"""

import base64
import binascii
import logging
import uuid
from typing import Optional

from fastapi import HTTPException
from pydantic import BaseModel

from .. import storage

logger = logging.getLogger(__name__)


class ImageFile(BaseModel):
    fileName: Optional[str] = None
    fileBase64: Optional[str] = None
    fileType: Optional[str] = None


def decode_base64_file(value: str) -> bytes:
    """
    Decode base64 file content, with or without a data: URL prefix.

    Raises:
        ValueError: when the content is not valid base64
    """
    if value.startswith("data:"):
        value = value.split(",", 1)[-1]
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as e:
        raise ValueError("Invalid base64 data") from e


def validate_images(images: Optional[list[ImageFile]], max_images: int):
    if not images:
        raise HTTPException(status_code=400, detail="images array is required")
    if len(images) > max_images:
        raise HTTPException(status_code=400, detail=f"Maximum {max_images} images allowed")
    for image in images:
        if not image.fileName or not image.fileBase64 or not image.fileType:
            raise HTTPException(status_code=400, detail="Each image must have fileName, fileBase64, and fileType")
        if not image.fileType.startswith("image/"):
            raise HTTPException(status_code=400, detail="Only image files are allowed")


def store_images(agent_prefix: str, base_path: str, images: list[ImageFile], max_images: int) -> list[str]:
    """
    Upload validated images under {agent_prefix}/{base_path}/{uuid}.{ext}.

    Returns the public URLs in request order.
    """
    validate_images(images, max_images)

    urls = []
    for image in images:
        try:
            content = decode_base64_file(image.fileBase64)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid image data: {image.fileName}") from e

        extension = image.fileName.rsplit(".", 1)[-1].lower() if "." in image.fileName else "jpg"
        key = f"{agent_prefix}/{base_path}/{uuid.uuid4()}.{extension}"
        try:
            urls.append(storage.upload_media(agent_prefix, content, image.fileName, image.fileType, key=key))
        except storage.StorageError as e:
            raise HTTPException(status_code=500, detail=f"Upload failed: {e}") from e

    logger.info(f"Uploaded {len(urls)} images to {agent_prefix}/{base_path}")
    return urls
