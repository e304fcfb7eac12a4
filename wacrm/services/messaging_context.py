"""Lookups shared by every flow that sends WhatsApp messages on behalf of an agent"""

import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import Agent, User, WhatsAppConfiguration
from ..models_tenant import TenantTables, get_tenant_tables, row_to_dict
from .whatsapp_service import WhatsAppClient

logger = logging.getLogger(__name__)


class MessagingContext:
    """User, active WhatsApp configuration and agent for one sender"""

    def __init__(self, user: User, config: WhatsAppConfiguration, agent: Agent):
        self.user = user
        self.config = config
        self.agent = agent
        self.tables: TenantTables = get_tenant_tables(agent.agent_prefix)

    def client(self) -> WhatsAppClient:
        return WhatsAppClient.from_config(self.config)

    def find_customer(self, db: Session, phone: str) -> dict:
        customers = self.tables.customers
        row = db.execute(select(customers).where(customers.c.phone == phone)).first()
        if row is None:
            raise HTTPException(status_code=404, detail="Customer not found")
        return row_to_dict(row)


def get_active_config(db: Session, user_id: str) -> Optional[WhatsAppConfiguration]:
    return (
        db.query(WhatsAppConfiguration)
        .filter(WhatsAppConfiguration.user_id == user_id, WhatsAppConfiguration.is_active.is_(True))
        .first()
    )


def load_messaging_context(db: Session, user_id: str) -> MessagingContext:
    """Resolve the sender or raise 404 for the first missing piece"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    config = get_active_config(db, user_id)
    if not config:
        raise HTTPException(status_code=404, detail="WhatsApp configuration not found")

    agent = db.query(Agent).filter(Agent.user_id == user_id).first()
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")

    return MessagingContext(user, config, agent)


def ensure_sender_access(caller: User, user_id: str):
    """Agents may only send as themselves, admins as anyone"""
    if caller.role != "admin" and str(caller.id) != str(user_id):
        logger.warning(f"User {caller.id} tried to send messages as {user_id}")
        raise HTTPException(status_code=403, detail="Access denied")
