import logging
from typing import Any, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from .. import storage
from ..auth import ensure_agent_access, get_current_user
from ..cache import BOT_CONTEXT_TTL, bot_context_key, cache
from ..config import CHATBOT_SECRET
from ..database import get_db
from ..models import User
from ..models_tenant import get_tenant_tables, row_to_dict
from ..security_utils import constant_time_compare
from ..services.message_store import log_whatsapp_message, publish_message, store_message
from ..services.messaging_context import ensure_sender_access, load_messaging_context
from ..services.outbound import (
    OutboundMessageService,
    validate_media_header,
    validate_template_button,
    validate_template_parameter,
)
from ..services.whatsapp_service import WhatsAppAPIError, first_message_id, normalize_phone

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Messages"])

CHATBOT_MESSAGE_TYPES = ("text", "image", "document")


class SendMessageRequest(BaseModel):
    user_id: Optional[str] = None
    customer_phone: Optional[str] = None
    message: Optional[str] = None
    type: str = "text"
    category: str = "utility"
    is_promotional: bool = False
    template_name: Optional[str] = None
    template_params: Optional[list[Any]] = None
    header_params: Optional[list[Any]] = None
    template_buttons: Optional[list[Any]] = None
    media_header: Optional[Any] = None
    media_id: Optional[str] = None
    media_ids: Optional[list[str]] = None
    caption: Optional[str] = None
    filename: Optional[str] = None

    def media_to_send(self) -> list[str]:
        if self.media_ids:
            return self.media_ids
        return [self.media_id] if self.media_id else []


class ChatbotReplyRequest(BaseModel):
    secret: Optional[str] = None
    user_id: Optional[str] = None
    customer_phone: Optional[str] = None
    message: Optional[str] = None
    type: str = "text"
    media_id: Optional[str] = None
    caption: Optional[str] = None


# ==================== Agent messages ====================

@router.post("/send-whatsapp-message")
async def send_whatsapp_message(
    data: SendMessageRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Send text, media or a template to a customer on behalf of an agent"""
    if data.type == "text":
        missing_field, has_content = "message", bool(data.message)
    elif data.type == "template":
        missing_field, has_content = "template_name", bool(data.template_name)
    else:
        missing_field, has_content = "media_id or media_ids", bool(data.media_to_send())
    if not data.user_id or not data.customer_phone or not has_content:
        raise HTTPException(
            status_code=400, detail=f"Missing required fields: user_id, customer_phone, {missing_field}"
        )

    if data.type == "template":
        validate_media_header(data.media_header)
        for param in data.header_params or []:
            validate_template_parameter(param, header=True)
        for param in data.template_params or []:
            validate_template_parameter(param)
        for button in data.template_buttons or []:
            validate_template_button(button)

    ensure_sender_access(current_user, data.user_id)
    context = load_messaging_context(db, data.user_id)

    return await OutboundMessageService(db, context).send(
        data.customer_phone,
        message_type=data.type,
        message=data.message,
        category=data.category,
        is_promotional=data.is_promotional,
        template_name=data.template_name,
        template_params=data.template_params,
        header_params=data.header_params,
        template_buttons=data.template_buttons,
        media_header=data.media_header,
        media_ids=data.media_to_send(),
        caption=data.caption,
        filename=data.filename,
    )


# ==================== Chatbot ====================

@router.post("/chatbot-reply")
async def chatbot_reply(data: ChatbotReplyRequest, db: Session = Depends(get_db)):
    """Reply sent by the AI chatbot, authenticated with the shared chatbot secret"""
    if not data.secret or not constant_time_compare(data.secret, CHATBOT_SECRET):
        logger.warning("🚫 Chatbot reply rejected: invalid secret")
        raise HTTPException(status_code=401, detail="Unauthorized")

    if (
        not data.user_id
        or not data.customer_phone
        or (data.type == "text" and not data.message)
        or (data.type != "text" and not data.media_id)
    ):
        raise HTTPException(
            status_code=400, detail="Missing required fields: user_id, customer_phone, message or media_id"
        )
    if data.type not in CHATBOT_MESSAGE_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported message type: {data.type}")

    context = load_messaging_context(db, data.user_id)
    customer = context.find_customer(db, data.customer_phone)
    try:
        to = normalize_phone(customer["phone"])
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid phone number format") from e

    client = context.client()
    stored_media_url = None
    if data.type != "text":
        try:
            content, mime_type = await client.download_media(data.media_id)
            stored_media_url = storage.upload_media(
                context.agent.agent_prefix, content, None, mime_type, folder="outgoing"
            )
        except (WhatsAppAPIError, httpx.HTTPError, storage.StorageError) as e:
            logger.warning(f"Chatbot media {data.media_id} not mirrored: {e}")

    try:
        if data.type == "text":
            result = await client.send_text(to, data.message)
        else:
            result = await client.send_media(to, data.type, data.media_id, caption=data.caption)
    except (WhatsAppAPIError, httpx.HTTPError) as e:
        logger.error(f"Chatbot reply to {data.customer_phone} failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to send message to WhatsApp") from e

    message_id = first_message_id(result)
    stored = store_message(
        db,
        context.tables,
        customer["id"],
        data.message or f"[{data.type.upper()}] Media file",
        "outbound",
        media_type="none" if data.type == "text" else data.type,
        media_url=stored_media_url,
        caption=data.caption,
        is_read=True,
        sent_by="chatbot",
        whatsapp_message_id=message_id,
    )
    if message_id:
        log_whatsapp_message(
            db,
            context.user.id,
            context.agent.id,
            data.customer_phone,
            data.type,
            category="chatbot",
            whatsapp_message_id=message_id,
        )
    await publish_message(context.agent.id, customer["id"], {**stored, "sender_type": "chatbot"})

    logger.info(f"🤖 Chatbot reply {message_id} sent to customer {customer['id']}")
    return {"success": True, "message_id": message_id}


@router.get("/bot-context/{customer_id}")
async def get_bot_context(
    customer_id: int,
    agentId: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """AI state of one customer, for the chatbot"""
    agent = ensure_agent_access(agentId, current_user, db)
    customers = get_tenant_tables(agent.agent_prefix).customers
    customer = row_to_dict(
        db.execute(
            select(customers).where(customers.c.id == customer_id, customers.c.agent_id == agent.id)
        ).first()
    )
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")

    key = bot_context_key(agent.id, customer_id)
    cached = cache.get(key)
    if cached:
        return cached

    context = {
        "aiEnabled": bool(customer.get("ai_enabled")),
        "leadStage": customer.get("lead_stage"),
        "interestStage": customer.get("interest_stage"),
        "conversionStage": customer.get("conversion_stage"),
    }
    cache.set(key, context, ttl=BOT_CONTEXT_TTL)
    return context
