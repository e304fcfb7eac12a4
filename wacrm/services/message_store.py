"""
Message history
Persists conversation messages and delivery logs, then tells caches and dashboards
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from ..cache import invalidate_conversation_cache
from ..models import WhatsAppMessageLog
from ..models_tenant import TenantTables, row_to_dict
from .realtime import manager

logger = logging.getLogger(__name__)


def store_message(
    db: Session,
    tables: TenantTables,
    customer_id: int,
    message: Optional[str],
    direction: str,
    media_type: Optional[str] = "none",
    media_url: Optional[str] = None,
    caption: Optional[str] = None,
    is_read: Optional[bool] = None,
    sent_by: Optional[str] = None,
    whatsapp_message_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
    commit: bool = True,
) -> dict:
    """
    Insert one conversation message and return it.

    Outbound messages are stored as read; inbound ones unread unless stated.
    """
    if is_read is None:
        is_read = direction == "outbound"
    values = {
        "customer_id": customer_id,
        "message": message,
        "direction": direction,
        "timestamp": timestamp or datetime.utcnow(),
        "is_read": is_read,
        "media_type": media_type or "none",
        "media_url": media_url,
        "caption": caption,
        "sent_by": sent_by,
        "whatsapp_message_id": whatsapp_message_id,
    }
    result = db.execute(insert(tables.messages).values(**values))
    if commit:
        db.commit()
    row = db.execute(select(tables.messages).where(tables.messages.c.id == result.inserted_primary_key[0])).first()
    return row_to_dict(row)


def log_whatsapp_message(
    db: Session,
    user_id: str,
    agent_id: Optional[int],
    customer_phone: str,
    message_type: str,
    category: Optional[str] = None,
    whatsapp_message_id: Optional[str] = None,
    status: str = "sent",
    error_message: Optional[str] = None,
    commit: bool = True,
) -> WhatsAppMessageLog:
    entry = WhatsAppMessageLog(
        user_id=user_id,
        agent_id=agent_id,
        customer_phone=customer_phone,
        message_type=message_type,
        category=category,
        status=status,
        whatsapp_message_id=whatsapp_message_id,
        error_message=error_message,
    )
    db.add(entry)
    if commit:
        db.commit()
    return entry


def update_delivery_status(db: Session, whatsapp_message_id: str, status: str, error_message: Optional[str] = None) -> int:
    """Apply a status callback (sent, delivered, read, failed) to the delivery log"""
    if not whatsapp_message_id or not status:
        return 0
    values = {"status": status, "updated_at": datetime.utcnow()}
    if error_message:
        values["error_message"] = error_message
    result = db.execute(
        update(WhatsAppMessageLog)
        .where(WhatsAppMessageLog.whatsapp_message_id == whatsapp_message_id)
        .values(**values)
    )
    db.commit()
    if result.rowcount:
        logger.info(f"Message {whatsapp_message_id} marked {status}")
    return result.rowcount


async def publish_message(agent_id: int, customer_id: int, message: dict):
    """Invalidate cached conversation data and push the message to open dashboards"""
    invalidate_conversation_cache(agent_id, customer_id)
    await manager.emit_new_message(agent_id, customer_id, message)
