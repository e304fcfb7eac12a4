"""
Outbound WhatsApp messaging
Validates agent send requests, picks between free-form and template delivery,
sends through the Cloud API and records the result
"""

import json
import logging
from typing import Any, Optional

import httpx
from fastapi import HTTPException
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .. import storage
from ..config import TEMPLATE_MESSAGE_COST
from ..models import Agent
from ..models_tenant import row_to_dict
from .message_store import log_whatsapp_message, publish_message, store_message
from .messaging_context import MessagingContext
from .realtime import manager
from .whatsapp_service import (
    WhatsAppAPIError,
    first_message_id,
    is_within_free_form_window,
    media_format_for_mime,
    normalize_phone,
)

logger = logging.getLogger(__name__)

PARAMETER_TYPES = ("text", "currency", "date_time")
BUTTON_SUB_TYPES = ("quick_reply", "cta_phone", "cta_url")
MEDIA_HEADER_TYPES = ("image", "video", "document")
FREE_FORM_MEDIA_TYPES = ("image", "video", "audio", "document")


# ==================== Template validation ====================

def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=400, detail=detail)


def validate_template_parameter(param: Any, header: bool = False):
    """Raise 400 unless param is a well formed text, currency or date_time parameter"""
    label = "header parameter" if header else "parameter"
    param_type = param.get("type") if isinstance(param, dict) else None
    if param_type not in PARAMETER_TYPES:
        raise _bad_request(f"Invalid {label} type: {param_type}")

    if param_type == "currency":
        currency = param.get("currency")
        amount = currency.get("amount_1000") if isinstance(currency, dict) else None
        if (
            not isinstance(currency, dict)
            or not currency.get("code")
            or not isinstance(amount, (int, float))
            or isinstance(amount, bool)
            or not currency.get("fallback_value")
        ):
            raise _bad_request(f"currency {label} missing required fields (fallback_value, code, amount_1000)")

    if param_type == "date_time":
        date_time = param.get("date_time")
        if not isinstance(date_time, dict) or not date_time.get("fallback_value"):
            raise _bad_request(f"date_time {label} missing fallback_value")

    if param_type == "text" and not param.get("text"):
        raise _bad_request(f"text {label} missing text value")


def validate_template_button(button: Any):
    index = button.get("index") if isinstance(button, dict) else None
    if (
        not isinstance(button, dict)
        or button.get("sub_type") not in BUTTON_SUB_TYPES
        or not isinstance(index, (int, float))
        or isinstance(index, bool)
    ):
        raise _bad_request(f"Invalid button configuration: {json.dumps(button)}")

    sub_type = button["sub_type"]
    if sub_type == "quick_reply" and not button.get("payload"):
        raise _bad_request("quick_reply button missing payload")
    if sub_type == "cta_phone" and not button.get("phone_number"):
        raise _bad_request("cta_phone button missing phone_number")
    if sub_type == "cta_url" and not button.get("url"):
        raise _bad_request("cta_url button missing url")


def validate_media_header(media_header: Any):
    if media_header is None:
        return
    if (
        not isinstance(media_header, dict)
        or not media_header.get("type")
        or not (media_header.get("id") or media_header.get("link"))
    ):
        raise _bad_request("media_header must specify type and either id or link")


# ==================== Template components ====================

def template_parameter(param: dict) -> dict:
    """Graph API representation of a validated parameter"""
    if param["type"] == "text":
        return {"type": "text", "text": param["text"]}
    if param["type"] == "currency":
        currency = param["currency"]
        return {
            "type": "currency",
            "currency": {
                "fallback_value": currency["fallback_value"],
                "code": currency["code"],
                "amount_1000": currency["amount_1000"],
            },
        }
    return {"type": "date_time", "date_time": {"fallback_value": param["date_time"]["fallback_value"]}}


def button_component(button: dict) -> dict:
    sub_type = button["sub_type"]
    if sub_type == "quick_reply":
        parameter = {"type": "payload", "payload": button["payload"]}
    elif sub_type == "cta_phone":
        parameter = {"type": "phone_number", "phone_number": button["phone_number"]}
    else:
        parameter = {"type": "url", "url": button["url"]}
    return {"type": "button", "sub_type": sub_type, "index": button["index"], "parameters": [parameter]}


def build_template_components(
    template_params: Optional[list] = None,
    header_params: Optional[list] = None,
    media_header: Optional[dict] = None,
    buttons: Optional[list] = None,
) -> list[dict]:
    """Body, header (text params and media) and button components for a template send"""
    components = []
    if template_params:
        components.append({"type": "body", "parameters": [template_parameter(p) for p in template_params]})

    header = None
    if header_params:
        header = {"type": "header", "parameters": [template_parameter(p) for p in header_params]}
        components.append(header)

    if media_header and media_header.get("type") in MEDIA_HEADER_TYPES:
        if header is None:
            header = {"type": "header", "parameters": []}
            components.append(header)
        media_type = media_header["type"]
        reference = {key: media_header[key] for key in ("id", "link") if media_header.get(key)}
        header["parameters"].append({"type": media_type, media_type: reference})

    for button in buttons or []:
        components.append(button_component(button))
    return components


# ==================== Sending ====================

class OutboundMessageService:
    """Send one agent request: free-form text or media, or a template"""

    def __init__(self, db: Session, context: MessagingContext):
        self.db = db
        self.context = context
        self.client = context.client()

    def find_window_template(self, category: str) -> dict:
        """Active template of the category, required once the free-form window has closed"""
        templates = self.context.tables.templates
        row = self.db.execute(
            select(templates)
            .where(
                templates.c.agent_id == self.context.agent.id,
                templates.c.category == category,
                templates.c.is_active.is_(True),
            )
            .limit(1)
        ).first()
        if row is None:
            raise _bad_request("Template required after 24h window, none available")
        return row_to_dict(row)

    def ensure_credits(self):
        agent = self.db.query(Agent).filter(Agent.id == self.context.agent.id).first()
        if agent is None or (agent.credits or 0) < TEMPLATE_MESSAGE_COST:
            raise _bad_request("Insufficient credits for template message")

    async def deduct_credits(self):
        agent_id = self.context.agent.id
        self.db.execute(
            update(Agent)
            .where(Agent.id == agent_id)
            .values(credits=Agent.credits - TEMPLATE_MESSAGE_COST)
        )
        self.db.commit()
        credits = self.db.query(Agent.credits).filter(Agent.id == agent_id).scalar()
        await manager.emit_agent_status(agent_id, {"type": "credits_updated", "credits": credits})
        logger.info(f"Charged {TEMPLATE_MESSAGE_COST} credits to agent {agent_id}, balance {credits}")

    async def process_media(self, media_id: str) -> dict:
        """Resolve the media format through the Graph API and mirror the file to our storage"""
        try:
            content, mime_type = await self.client.download_media(media_id)
        except WhatsAppAPIError as e:
            raise _bad_request(str(e)) from e
        except httpx.HTTPError as e:
            raise HTTPException(status_code=502, detail="Failed to download media for storage") from e

        try:
            media_format = media_format_for_mime(mime_type)
        except ValueError as e:
            raise _bad_request(str(e)) from e

        stored_url = None
        try:
            stored_url = storage.upload_media(
                self.context.agent.agent_prefix, content, None, mime_type, folder="outgoing"
            )
        except storage.StorageError as e:
            logger.warning(f"Outgoing media {media_id} not mirrored: {e}")

        return {"media_id": media_id, "stored_url": stored_url, "format": media_format}

    async def _deliver(self, send_coroutine) -> dict:
        try:
            return await send_coroutine
        except WhatsAppAPIError as e:
            raise HTTPException(
                status_code=500,
                detail={"error": "Failed to send message", "details": e.payload or str(e)},
            ) from e
        except httpx.HTTPError as e:
            raise HTTPException(
                status_code=500, detail={"error": "Failed to send message", "details": str(e)}
            ) from e

    async def send(
        self,
        customer_phone: str,
        message_type: str = "text",
        message: Optional[str] = None,
        category: str = "utility",
        is_promotional: bool = False,
        template_name: Optional[str] = None,
        template_params: Optional[list] = None,
        header_params: Optional[list] = None,
        template_buttons: Optional[list] = None,
        media_header: Optional[dict] = None,
        media_ids: Optional[list[str]] = None,
        caption: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> dict:
        customer = self.context.find_customer(self.db, customer_phone)
        try:
            to = normalize_phone(customer["phone"])
        except ValueError as e:
            raise _bad_request("Invalid phone number format") from e

        window_template = None
        use_template = bool(is_promotional) or message_type == "template"
        if not use_template and not is_within_free_form_window(customer.get("last_user_message_time")):
            window_template = self.find_window_template(category or "utility")
            use_template = True

        if use_template and window_template is None and not template_name:
            raise _bad_request("template_name required")
        if use_template:
            self.ensure_credits()

        media_ids = [m for m in (media_ids or []) if m]
        processed = []
        if media_ids:
            if use_template:
                raise _bad_request(
                    "Media messages cannot be sent using templates. "
                    "Ensure you're within the 24-hour messaging window."
                )
            if len(media_ids) > 1 and message_type != "image":
                raise _bad_request("Multiple media sending is only supported for images.")
            processed = [await self.process_media(media_id) for media_id in media_ids]

            formats = {item["format"] for item in processed}
            if len(formats) > 1:
                raise _bad_request("Mixed media formats not supported in a single request")
            actual = formats.pop()
            if actual != message_type:
                raise _bad_request(f"Media format mismatch: expected {message_type}, got {actual}")

        results = []
        if use_template:
            if window_template is not None:
                body = window_template.get("body") or {}
                name = body.get("name") or window_template["name"]
                components = []
            else:
                name = template_name
                components = build_template_components(
                    template_params, header_params, media_header, template_buttons
                )
            results.append(await self._deliver(self.client.send_template(to, name, "en", components)))
            stored_text = [name]
        elif message_type == "text":
            results.append(await self._deliver(self.client.send_text(to, message)))
            stored_text = [message]
        elif message_type in FREE_FORM_MEDIA_TYPES:
            if not processed:
                raise _bad_request(f"No media provided for {message_type} message")
            effective_caption = (caption or message or "").strip() or None
            for item in processed:
                if message_type in ("image", "video"):
                    send = self.client.send_media(to, message_type, item["media_id"], caption=effective_caption)
                elif message_type == "document":
                    send = self.client.send_media(to, "document", item["media_id"], filename=filename)
                else:
                    send = self.client.send_media(to, "audio", item["media_id"])
                results.append(await self._deliver(send))
            stored_text = [caption or "" for _ in processed]
        else:
            raise _bad_request(f"Unsupported message type: {message_type}")

        message_ids = []
        stored = []
        agent = self.context.agent
        for index, result in enumerate(results):
            wamid = first_message_id(result)
            message_ids.append(wamid)
            media = processed[index] if processed and not use_template else None
            row = store_message(
                self.db,
                self.context.tables,
                customer["id"],
                stored_text[index],
                "outbound",
                media_type=message_type if media else "none",
                media_url=media["stored_url"] if media else None,
                caption=caption if media else None,
                is_read=True,
                sent_by="agent",
                whatsapp_message_id=wamid,
            )
            stored.append(row)
            log_whatsapp_message(
                self.db,
                self.context.user.id,
                agent.id,
                customer_phone,
                "template" if use_template else message_type,
                category=category,
                whatsapp_message_id=wamid,
                commit=False,
            )
        self.db.commit()

        for row in stored:
            await publish_message(agent.id, customer["id"], {**row, "sender_type": "agent"})

        if use_template:
            await self.deduct_credits()

        logger.info(
            f"Sent {len(results)} {'template' if use_template else message_type} message(s) "
            f"to customer {customer['id']} for agent {agent.id}"
        )
        return {
            "success": True,
            "message_ids": message_ids,
            "stored_messages": len(stored),
            "details": results,
        }
