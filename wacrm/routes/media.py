import base64
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_agent, get_current_user
from ..database import get_db
from ..models import Agent, User
from ..services.messaging_context import ensure_sender_access, get_active_config
from ..services.whatsapp_service import WhatsAppAPIError, WhatsAppClient, media_format_for_mime

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Media"])

MB = 1024 * 1024
# Cloud API upload limits per media family
MAX_MEDIA_SIZE = {"image": 5 * MB, "video": 16 * MB, "audio": 16 * MB, "document": 100 * MB}


class MediaPreviewRequest(BaseModel):
    media_id: Optional[str] = None
    user_id: Optional[str] = None


def whatsapp_client_for(db: Session, user_id: str) -> WhatsAppClient:
    config = get_active_config(db, user_id)
    if not config:
        raise HTTPException(status_code=404, detail="WhatsApp configuration not found")
    if not config.api_key or not config.phone_number_id:
        raise HTTPException(status_code=400, detail="Invalid WhatsApp configuration")
    return WhatsAppClient.from_config(config)


async def media_preview(media_id: Optional[str], user_id: Optional[str], current_user: User, db: Session) -> dict:
    if not media_id:
        raise HTTPException(status_code=400, detail="media_id is required")
    owner_id = user_id or current_user.id
    ensure_sender_access(current_user, owner_id)

    client = whatsapp_client_for(db, owner_id)
    try:
        content, content_type = await client.download_media(media_id)
    except WhatsAppAPIError as e:
        logger.error(f"Media preview failed for {media_id}: {e}")
        raise HTTPException(
            status_code=500, detail={"error": "Failed to fetch media", "details": e.payload or str(e)}
        ) from e
    except httpx.HTTPError as e:
        raise HTTPException(status_code=500, detail={"error": "Failed to download media", "details": str(e)}) from e

    encoded = base64.b64encode(content).decode("ascii")
    return {
        "success": True,
        "data": encoded,
        "base64": encoded,
        "content_type": content_type,
        "media_id": media_id,
    }


@router.get("/get-media-preview")
async def get_media_preview(
    media_id: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """WhatsApp media as base64 for the dashboard preview"""
    return await media_preview(media_id, user_id, current_user, db)


@router.post("/get-media-preview")
async def post_media_preview(
    data: MediaPreviewRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return await media_preview(data.media_id, data.user_id, current_user, db)


@router.post("/upload-media")
async def upload_media(
    files: list[UploadFile] = File(...),
    caption: Optional[str] = Form(None),
    current_user: User = Depends(get_current_user),
    agent: Agent = Depends(get_current_agent),
    db: Session = Depends(get_db),
):
    """Upload files to WhatsApp media storage so they can be sent by media id"""
    if not files:
        raise HTTPException(status_code=400, detail="No files provided")

    client = whatsapp_client_for(db, current_user.id)
    uploaded = []
    errors = []
    for upload in files:
        filename = upload.filename or "upload"
        mime_type = upload.content_type or "application/octet-stream"
        try:
            media_type = media_format_for_mime(mime_type)
        except ValueError as e:
            errors.append({"filename": filename, "error": str(e)})
            continue

        content = await upload.read()
        if len(content) > MAX_MEDIA_SIZE[media_type]:
            errors.append(
                {"filename": filename, "error": f"File exceeds the {MAX_MEDIA_SIZE[media_type] // MB}MB {media_type} limit"}
            )
            continue

        try:
            media_id = await client.upload_media(content, filename, mime_type, media_type)
        except (WhatsAppAPIError, httpx.HTTPError) as e:
            logger.error(f"WhatsApp media upload failed for {filename}: {e}")
            errors.append({"filename": filename, "error": str(e)})
            continue

        uploaded.append(
            {"media_id": media_id, "filename": filename, "type": media_type, "mime_type": mime_type, "size": len(content)}
        )

    if not uploaded:
        raise HTTPException(status_code=400, detail={"error": "No files uploaded", "errors": errors})

    logger.info(f"Agent {agent.id} uploaded {len(uploaded)}/{len(files)} media files")
    return {
        "success": True,
        "media_id": uploaded[0]["media_id"],
        "uploaded": len(uploaded),
        "total": len(files),
        "media": uploaded,
        "caption": caption or "",
        "errors": errors,
    }
