import json
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from ..auth import ensure_agent_access, get_current_user
from ..cache import (
    CHAT_LIST_TTL,
    RECENT_MESSAGES_TTL,
    cache,
    chat_list_key,
    invalidate_conversation_cache,
    recent_messages_key,
)
from ..database import get_db
from ..models import Agent, User
from ..models_tenant import TenantTables, get_tenant_tables, row_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["Conversations"])

DISPLAY_TIME_FORMAT = "%d %b, %H:%M"


def looks_like_template(text: str) -> bool:
    """Template sends are stored as their JSON payload"""
    if not text.startswith(("{", "[")):
        return False
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def display_text(raw: Optional[str], media_type: Optional[str], caption: Optional[str], detect_template: bool = True) -> str:
    """Preview text for a stored message"""
    text = (raw or "").strip()
    if text:
        return "[TEMPLATE]" if detect_template and looks_like_template(text) else text
    if media_type and media_type != "none":
        return caption or f"[{media_type.upper()}]"
    return "No message content"


def epoch_ms(value: Optional[datetime]) -> int:
    if value is None:
        return 0
    return int((value - datetime(1970, 1, 1)).total_seconds() * 1000)


def display_time(value: Optional[datetime]) -> Optional[str]:
    return value.strftime(DISPLAY_TIME_FORMAT) if value else None


def load_agent_customer(db: Session, agent: Agent, tables: TenantTables, customer_id: int) -> dict:
    customers = tables.customers
    customer = row_to_dict(
        db.execute(
            select(customers).where(customers.c.id == customer_id, customers.c.agent_id == agent.id)
        ).first()
    )
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


def latest_messages(db: Session, tables: TenantTables, customer_ids: list[int]) -> dict[int, dict]:
    """Most recent message per customer"""
    if not customer_ids:
        return {}
    messages = tables.messages
    position = (
        func.row_number()
        .over(
            partition_by=messages.c.customer_id,
            order_by=(messages.c.timestamp.desc(), messages.c.id.desc()),
        )
        .label("position")
    )
    ranked = (
        select(
            messages.c.customer_id,
            messages.c.message,
            messages.c.media_type,
            messages.c.caption,
            messages.c.timestamp,
            position,
        )
        .where(messages.c.customer_id.in_(customer_ids))
        .subquery()
    )
    rows = db.execute(select(ranked).where(ranked.c.position == 1))
    return {row.customer_id: dict(row._mapping) for row in rows}


def unread_counts(db: Session, tables: TenantTables, customer_ids: list[int]) -> dict[int, int]:
    if not customer_ids:
        return {}
    messages = tables.messages
    rows = db.execute(
        select(messages.c.customer_id, func.count(messages.c.id))
        .where(
            messages.c.customer_id.in_(customer_ids),
            messages.c.direction == "inbound",
            or_(messages.c.is_read.is_(False), messages.c.is_read.is_(None)),
        )
        .group_by(messages.c.customer_id)
    )
    return {customer_id: count for customer_id, count in rows}


# ==================== Conversations ====================

@router.get("")
async def list_conversations(
    agentId: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Chat list: one entry per customer, most recent activity first"""
    agent = ensure_agent_access(agentId, current_user, db)
    key = chat_list_key(agent.id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    tables = get_tenant_tables(agent.agent_prefix)
    customers = [
        row_to_dict(row)
        for row in db.execute(select(tables.customers).where(tables.customers.c.agent_id == agent.id))
    ]
    customer_ids = [c["id"] for c in customers]
    latest = latest_messages(db, tables, customer_ids)
    unread = unread_counts(db, tables, customer_ids)

    conversations = []
    for customer in customers:
        last = latest.get(customer["id"])
        last_time = last["timestamp"] if last else customer.get("created_at")
        conversations.append(
            {
                "id": customer["id"],
                "customerId": customer["id"],
                "customerName": customer["name"],
                "customerPhone": customer["phone"],
                "lastUserMessageTime": customer.get("last_user_message_time"),
                "aiEnabled": bool(customer.get("ai_enabled")),
                "leadStage": customer.get("lead_stage"),
                "interestStage": customer.get("interest_stage"),
                "conversionStage": customer.get("conversion_stage"),
                "lastMessage": (
                    display_text(last["message"], last["media_type"], last["caption"]) if last else "No messages yet"
                ),
                "lastMessageTime": display_time(last_time),
                "rawLastTimestamp": epoch_ms(last_time),
                "unreadCount": unread.get(customer["id"], 0),
            }
        )

    conversations.sort(key=lambda c: c["rawLastTimestamp"], reverse=True)
    cache.set(key, conversations, ttl=CHAT_LIST_TTL)
    return conversations


@router.get("/{customer_id}/messages")
async def get_conversation_messages(
    customer_id: int,
    agentId: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Full message history of one customer, oldest first"""
    agent = ensure_agent_access(agentId, current_user, db)
    tables = get_tenant_tables(agent.agent_prefix)
    load_agent_customer(db, agent, tables, customer_id)

    key = recent_messages_key(agent.id, customer_id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    messages = tables.messages
    rows = db.execute(
        select(messages)
        .where(messages.c.customer_id == customer_id)
        .order_by(messages.c.timestamp.asc(), messages.c.id.asc())
    )
    history = []
    for row in rows:
        message = row_to_dict(row)
        outbound = message["direction"] != "inbound"
        is_read = message["is_read"]
        history.append(
            {
                "id": message["id"],
                "text": display_text(
                    message["message"], message["media_type"], message["caption"], detect_template=outbound
                ),
                "sender": "agent" if outbound else "customer",
                "sent_by": message.get("sent_by"),
                "timestamp": display_time(message["timestamp"]),
                "rawTimestamp": epoch_ms(message["timestamp"]),
                "isRead": outbound if is_read is None else bool(is_read),
                "media_type": message["media_type"] or "none",
                "media_url": message["media_url"] or None,
                "caption": message["caption"] or None,
            }
        )

    cache.set(key, history, ttl=RECENT_MESSAGES_TTL)
    return history


@router.post("/{customer_id}/mark-read")
async def mark_messages_read(
    customer_id: int,
    agentId: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    agent = ensure_agent_access(agentId, current_user, db)
    tables = get_tenant_tables(agent.agent_prefix)
    load_agent_customer(db, agent, tables, customer_id)

    messages = tables.messages
    result = db.execute(
        update(messages)
        .where(
            messages.c.customer_id == customer_id,
            messages.c.direction == "inbound",
            messages.c.is_read.isnot(True),
        )
        .values(is_read=True)
    )
    db.commit()

    invalidate_conversation_cache(agent.id, customer_id)
    if result.rowcount:
        logger.info(f"Marked {result.rowcount} messages read for customer {customer_id}")
    return {"success": True, "messagesMarkedRead": result.rowcount}
