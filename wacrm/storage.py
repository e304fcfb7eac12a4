"""
Object storage on Cloudflare R2.
Media mirrored from WhatsApp, invoice PDFs, invoice backgrounds and
catalogue images all live here under a per-agent key prefix.
"""

import logging
import mimetypes
import time
import uuid
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import (
    R2_ACCESS_KEY_ID,
    R2_ACCOUNT_ID,
    R2_BUCKET_NAME,
    R2_PUBLIC_URL,
    R2_SECRET_ACCESS_KEY,
)

logger = logging.getLogger(__name__)

# Extensions mimetypes gets wrong or does not know
_EXTENSION_OVERRIDES = {
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/aac": "aac",
    "audio/amr": "amr",
    "video/mp4": "mp4",
    "video/3gpp": "3gp",
    "application/pdf": "pdf",
    "text/plain": "txt",
}


class StorageError(Exception):
    """Raised when an object cannot be written to or read from R2"""


def get_r2_client():
    """Get configured boto3 client for Cloudflare R2"""
    return boto3.client(
        "s3",
        endpoint_url=f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=R2_ACCESS_KEY_ID,
        aws_secret_access_key=R2_SECRET_ACCESS_KEY,
        config=Config(signature_version="s3v4"),
        region_name="auto",
    )


def extension_for(content_type: Optional[str], filename: Optional[str] = None) -> str:
    """File extension for a MIME type, falling back to the filename's"""
    if filename and "." in filename:
        return filename.rsplit(".", 1)[-1].lower()
    base_type = (content_type or "").split(";")[0].strip().lower()
    if base_type in _EXTENSION_OVERRIDES:
        return _EXTENSION_OVERRIDES[base_type]
    guessed = mimetypes.guess_extension(base_type) if base_type else None
    if guessed:
        return guessed.lstrip(".")
    return "bin"


def build_media_key(agent_prefix: str, folder: str, extension: str) -> str:
    """{prefix}/{folder}/{timestamp_ms}_{uuid}.{ext}"""
    timestamp_ms = int(time.time() * 1000)
    return f"{agent_prefix}/{folder}/{timestamp_ms}_{uuid.uuid4()}.{extension}"


def public_url_for(key: str) -> str:
    return f"{R2_PUBLIC_URL}/{key}"


def key_from_public_url(url: Optional[str]) -> Optional[str]:
    """Reverse public_url_for. None for URLs that are not ours."""
    if not url:
        return None
    if R2_PUBLIC_URL and url.startswith(R2_PUBLIC_URL + "/"):
        return url[len(R2_PUBLIC_URL) + 1 :]
    return None


def upload_media(
    agent_prefix: str,
    data: bytes,
    filename: Optional[str] = None,
    content_type: str = "application/octet-stream",
    folder: str = "incoming",
    key: Optional[str] = None,
) -> str:
    """
    Upload bytes to R2 and return the public URL.

    Args:
        agent_prefix: Owner of the object, first key segment
        data: File content
        filename: Original name, used only for its extension
        content_type: MIME type stored with the object
        folder: incoming (from customers), outgoing (to customers), ...
        key: Explicit key, overrides the generated one
    """
    if key is None:
        key = build_media_key(agent_prefix, folder, extension_for(content_type, filename))

    try:
        get_r2_client().put_object(
            Bucket=R2_BUCKET_NAME,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
    except (ClientError, BotoCoreError) as e:
        logger.error(f"R2 upload failed for {key}: {e}")
        raise StorageError(f"Failed to upload {key}") from e

    logger.info(f"Uploaded {len(data)} bytes to R2: {key}")
    return public_url_for(key)


def download_object(key: str) -> bytes:
    try:
        response = get_r2_client().get_object(Bucket=R2_BUCKET_NAME, Key=key)
        return response["Body"].read()
    except (ClientError, BotoCoreError) as e:
        logger.error(f"R2 download failed for {key}: {e}")
        raise StorageError(f"Failed to download {key}") from e


def delete_object(key: str) -> bool:
    """Best-effort delete, returns False instead of raising"""
    try:
        get_r2_client().delete_object(Bucket=R2_BUCKET_NAME, Key=key)
        logger.info(f"Deleted R2 object: {key}")
        return True
    except (ClientError, BotoCoreError) as e:
        logger.warning(f"Failed to delete R2 object {key}: {e}")
        return False


def delete_public_urls(urls) -> int:
    """Delete every object behind a list of public URLs, returns how many went"""
    deleted = 0
    for url in urls or []:
        key = key_from_public_url(url)
        if key and delete_object(key):
            deleted += 1
    return deleted
