"""Customer service - Business logic for customer operations"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...cache import invalidate_customer_cache
from ...models import Agent
from ...models_tenant import get_tenant_tables
from .repository import CustomerRepository
from .schemas import (
    CONVERSION_STAGES,
    INTEREST_STAGES,
    LANGUAGES,
    LEAD_STAGES,
    CustomerCreate,
    CustomerUpdate,
)

logger = logging.getLogger(__name__)


def validate_stages(
    lead_stage: Optional[str],
    interest_stage: Optional[str],
    conversion_stage: Optional[str],
    language: Optional[str],
):
    if lead_stage and lead_stage not in LEAD_STAGES:
        raise HTTPException(status_code=400, detail="Invalid lead stage")
    if interest_stage and interest_stage not in INTEREST_STAGES:
        raise HTTPException(status_code=400, detail="Invalid interest stage")
    if conversion_stage and conversion_stage not in CONVERSION_STAGES:
        raise HTTPException(status_code=400, detail="Invalid conversion stage")
    if language and language not in LANGUAGES:
        raise HTTPException(status_code=400, detail="Invalid language")


def _strip_or_none(value: Optional[str]) -> Optional[str]:
    return value.strip() if value else None


class CustomerService:
    """Service layer for customer business logic"""

    def __init__(self, db: Session, agent: Agent):
        self.db = db
        self.agent = agent
        self.tables = get_tenant_tables(agent.agent_prefix)
        self.repo = CustomerRepository()

    def list_customers(self, search: Optional[str], limit: int, offset: int) -> list[dict]:
        return self.repo.list_customers(self.db, self.tables, search, limit, offset)

    def create_customer(self, data: CustomerCreate) -> dict:
        if not data.name or not data.name.strip():
            raise HTTPException(status_code=400, detail="Customer name is required")
        if not data.phone or not data.phone.strip():
            raise HTTPException(status_code=400, detail="Customer phone is required")
        validate_stages(data.lead_stage, data.interest_stage, data.conversion_stage, data.language)

        customer = self.repo.create_customer(
            self.db,
            self.tables,
            agent_id=self.agent.id,
            name=data.name.strip(),
            phone=data.phone.strip(),
            email=_strip_or_none(data.email),
            address=_strip_or_none(data.address),
            lead_stage=data.lead_stage or "New Lead",
            interest_stage=data.interest_stage or None,
            conversion_stage=data.conversion_stage or None,
            language=data.language or "en",
            ai_enabled=data.ai_enabled if data.ai_enabled is not None else True,
            last_user_message_time=datetime.utcnow(),
        )
        logger.info(f"Customer {customer['id']} created for agent {self.agent.id}")
        return customer

    def update_customer(self, data: CustomerUpdate) -> dict:
        if not isinstance(data.id, int) or isinstance(data.id, bool) or not data.id:
            raise HTTPException(status_code=400, detail="Customer ID is required")
        validate_stages(data.lead_stage, data.interest_stage, data.conversion_stage, data.language)

        updates = data.model_dump(exclude_unset=True, exclude={"id"})
        for field in ("name", "phone"):
            if field in updates and updates[field] is not None:
                updates[field] = updates[field].strip()
        for field in ("email", "address"):
            if field in updates:
                updates[field] = _strip_or_none(updates[field])

        if not updates:
            raise HTTPException(status_code=400, detail="No fields to update")

        customer = self.repo.update_customer(self.db, self.tables, data.id, **updates)
        if not customer:
            raise HTTPException(status_code=404, detail="Customer not found")

        invalidate_customer_cache(self.agent.id, data.id)
        return customer

    def delete_customer(self, customer_id: Optional[str]):
        if not customer_id or not str(customer_id).isdigit():
            raise HTTPException(status_code=400, detail="Valid customer ID is required")

        customer_pk = int(customer_id)
        if not self.repo.delete_customer(self.db, self.tables, customer_pk):
            raise HTTPException(status_code=404, detail="Customer not found")

        invalidate_customer_cache(self.agent.id, customer_pk)
        logger.info(f"Customer {customer_pk} deleted for agent {self.agent.id}")
