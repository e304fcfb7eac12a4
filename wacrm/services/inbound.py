"""
Inbound WhatsApp processing
Turns webhook message and status callbacks into conversation history,
mirrored media, dashboard events and AI chatbot hand-offs
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from .. import storage
from ..config import WHATSAPP_HTTP_TIMEOUT_SECONDS
from ..models import Agent, WhatsAppConfiguration
from ..models_tenant import TenantTables, get_tenant_tables, row_to_dict
from ..security_utils import create_access_token
from .message_store import publish_message, store_message, update_delivery_status
from .whatsapp_service import WhatsAppAPIError, WhatsAppClient

logger = logging.getLogger(__name__)

MEDIA_MESSAGE_TYPES = ("image", "video", "audio", "document")
AI_EVENT_MESSAGE_RECEIVED = "message_received"


def message_timestamp(message: dict) -> datetime:
    """Naive UTC datetime for a webhook message's epoch seconds"""
    try:
        return datetime.fromtimestamp(int(message["timestamp"]), tz=timezone.utc).replace(tzinfo=None)
    except (KeyError, TypeError, ValueError):
        return datetime.utcnow()


def describe_message(message: dict) -> tuple[str, str, Optional[str]]:
    """
    Text stored for an inbound message.

    Returns (text, media_type, caption). Media content itself is mirrored
    separately.
    """
    message_type = message.get("type") or "unknown"

    if message_type == "text":
        return (message.get("text") or {}).get("body", ""), "none", None

    if message_type in MEDIA_MESSAGE_TYPES:
        caption = (message.get(message_type) or {}).get("caption") or None
        return caption or f"[{message_type.upper()}] Media file", message_type, caption

    if message_type == "sticker":
        return "[STICKER] Sticker message", "sticker", None

    if message_type == "button":
        button = message.get("button") or {}
        reply = button.get("reply") or {}
        text = reply.get("title") or reply.get("id") or button.get("text") or button.get("payload")
        return text or "Button clicked", "none", None

    if message_type == "interactive":
        interactive = message.get("interactive") or {}
        kind = interactive.get("type")
        if kind in ("button_reply", "list_reply"):
            title = (interactive.get(kind) or {}).get("title")
            if title:
                return title, "none", None
            if kind == "button_reply":
                return "Button clicked", "none", None
        return f"[INTERACTIVE_{(kind or 'unknown').upper()}] Interactive message", "none", None

    return f"[{message_type.upper()}] Unsupported message type", "none", None


class InboundProcessor:
    """Handles the `value` objects of one webhook delivery"""

    def __init__(self, db: Session):
        self.db = db

    def _resolve_agent(self, phone_number_id: Optional[str]):
        config = (
            self.db.query(WhatsAppConfiguration)
            .filter(
                WhatsAppConfiguration.phone_number_id == phone_number_id,
                WhatsAppConfiguration.is_active.is_(True),
            )
            .first()
        )
        if not config:
            logger.warning(f"No active WhatsApp configuration for phone_number_id {phone_number_id}")
            return None, None
        agent = self.db.query(Agent).filter(Agent.user_id == config.user_id).first()
        if not agent:
            logger.warning(f"No agent for WhatsApp configuration of user {config.user_id}")
            return config, None
        return config, agent

    def _find_or_create_customer(self, tables: TenantTables, agent: Agent, phone: str, profile_name: Optional[str]):
        customers = tables.customers
        customer = row_to_dict(self.db.execute(select(customers).where(customers.c.phone == phone)).first())
        now = datetime.utcnow()
        if customer is None:
            result = self.db.execute(
                insert(customers).values(
                    agent_id=agent.id,
                    name=profile_name or phone,
                    phone=phone,
                    lead_stage="New Lead",
                    language="en",
                    ai_enabled=True,
                    last_user_message_time=now,
                    created_at=now,
                    updated_at=now,
                )
            )
            customer_id = result.inserted_primary_key[0]
            logger.info(f"👤 New customer {customer_id} from {phone} for agent {agent.id}")
        else:
            customer_id = customer["id"]
            self.db.execute(update(customers).where(customers.c.id == customer_id).values(last_user_message_time=now))
        self.db.commit()
        return row_to_dict(self.db.execute(select(customers).where(customers.c.id == customer_id)).first())

    async def _mirror_media(self, config: WhatsAppConfiguration, agent: Agent, message: dict) -> Optional[str]:
        """Copy the message's media into our storage, None when it cannot be fetched"""
        message_type = message.get("type")
        media = message.get(message_type) or {}
        if not media.get("id") or not config.api_key:
            return None

        try:
            content, mime_type = await WhatsAppClient.from_config(config).download_media(media["id"])
        except (WhatsAppAPIError, httpx.HTTPError) as e:
            logger.warning(f"Could not download inbound {message_type} {media['id']}: {e}")
            return None
        if not content:
            return None

        if message_type == "sticker":
            mime_type, filename = "image/webp", "sticker.webp"
        else:
            mime_type = media.get("mime_type") or mime_type
            filename = media.get("filename")

        try:
            return storage.upload_media(agent.agent_prefix, content, filename, mime_type, folder="incoming")
        except storage.StorageError as e:
            logger.warning(f"Inbound media not stored: {e}")
            return None

    async def process_message(self, message: dict, phone_number_id: Optional[str], profile_name: Optional[str]):
        config, agent = self._resolve_agent(phone_number_id)
        if not agent:
            return None

        tables = get_tenant_tables(agent.agent_prefix)
        from_phone = message.get("from")
        if not from_phone:
            logger.warning("Inbound message without sender ignored")
            return None

        customer = self._find_or_create_customer(tables, agent, from_phone, profile_name)
        text, media_type, caption = describe_message(message)

        media_url = None
        if media_type != "none":
            media_url = await self._mirror_media(config, agent, message)

        stored = store_message(
            self.db,
            tables,
            customer["id"],
            text,
            "inbound",
            media_type=media_type,
            media_url=media_url,
            caption=caption,
            is_read=False,
            whatsapp_message_id=message.get("id"),
            timestamp=message_timestamp(message),
        )
        logger.info(f"📩 Inbound {message.get('type')} from {from_phone} stored as message {stored['id']}")

        await publish_message(
            agent.id,
            customer["id"],
            {
                **stored,
                "customer_name": customer["name"],
                "customer_phone": from_phone,
                "sender_type": "customer",
            },
        )

        if customer.get("ai_enabled") and config.webhook_url:
            await self.forward_to_ai(config, agent, customer, stored, phone_number_id)
        return stored

    async def forward_to_ai(
        self,
        config: WhatsAppConfiguration,
        agent: Agent,
        customer: dict,
        stored: dict,
        phone_number_id: Optional[str],
    ) -> bool:
        """POST the message to the agent's chatbot webhook. Failures are logged only."""
        token = create_access_token(config.user_id)
        payload = {
            "event": AI_EVENT_MESSAGE_RECEIVED,
            "jwt_token": token,
            "data": {
                **stored,
                "timestamp": stored["timestamp"].isoformat() if stored.get("timestamp") else None,
                "customer_phone": customer["phone"],
                "customer_name": customer["name"],
                "customer_language": customer.get("language") or "en",
                "agent_prefix": agent.agent_prefix,
                "agent_user_id": config.user_id,
                "phone_number_id": phone_number_id,
            },
        }
        try:
            async with httpx.AsyncClient(timeout=WHATSAPP_HTTP_TIMEOUT_SECONDS) as client:
                response = await client.post(
                    config.webhook_url, json=payload, headers={"Authorization": f"Bearer {token}"}
                )
        except httpx.HTTPError as e:
            logger.error(f"AI webhook request failed for customer {customer['id']}: {e}")
            return False

        if response.status_code >= 400:
            logger.error(f"AI webhook failed: HTTP {response.status_code} - {response.text[:200]}")
            return False
        logger.info(f"🤖 Message {stored['id']} forwarded to AI webhook")
        return True

    def process_status(self, status: dict) -> int:
        errors = status.get("errors") or []
        error_message = errors[0].get("title") if errors and isinstance(errors[0], dict) else None
        return update_delivery_status(self.db, status.get("id"), status.get("status"), error_message)

    async def process_value(self, value: dict) -> dict:
        """Process one change value. Returns counts of handled messages and statuses."""
        phone_number_id = (value.get("metadata") or {}).get("phone_number_id")
        contacts = value.get("contacts") or []
        names = {
            contact.get("wa_id"): (contact.get("profile") or {}).get("name")
            for contact in contacts
            if isinstance(contact, dict)
        }
        fallback_name = (contacts[0].get("profile") or {}).get("name") if contacts else None

        handled = {"messages": 0, "statuses": 0}
        for message in value.get("messages") or []:
            try:
                if await self.process_message(message, phone_number_id, names.get(message.get("from"), fallback_name)):
                    handled["messages"] += 1
            except Exception as e:
                self.db.rollback()
                logger.error(f"Failed to process inbound message {message.get('id')}: {e}", exc_info=True)

        for status in value.get("statuses") or []:
            handled["statuses"] += self.process_status(status)
        return handled
