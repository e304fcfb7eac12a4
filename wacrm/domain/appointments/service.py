"""Appointment service - Business logic for appointment operations"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import Agent
from ...models_tenant import get_tenant_tables
from ..customers.repository import CustomerRepository
from .repository import AppointmentRepository
from .schemas import APPOINTMENT_STATUSES, AppointmentCreate, AppointmentUpdate

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 60


def parse_appointment_date(value: str) -> datetime:
    """
    Parse an ISO 8601 date into a naive UTC datetime.

    Raises:
        ValueError: when the value is not a valid date
    """
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - (parsed.utcoffset() or timedelta(0))
    return parsed


class AppointmentService:
    """Service layer for appointment business logic"""

    def __init__(self, db: Session, agent: Agent):
        self.db = db
        self.agent = agent
        self.tables = get_tenant_tables(agent.agent_prefix)
        self.repo = AppointmentRepository()

    def list_appointments(
        self, customer_id: Optional[int], status: Optional[str], search: Optional[str], limit: int, offset: int
    ) -> list[dict]:
        return self.repo.list_appointments(self.db, self.tables, customer_id, status, search, limit, offset)

    def create_appointment(self, data: AppointmentCreate) -> dict:
        if not isinstance(data.customer_id, int) or isinstance(data.customer_id, bool) or data.customer_id <= 0:
            raise HTTPException(status_code=400, detail="Valid customer ID is required")
        if not isinstance(data.title, str) or not data.title.strip():
            raise HTTPException(status_code=400, detail="Appointment title is required")
        if not data.appointment_date:
            raise HTTPException(status_code=400, detail="Appointment date is required")

        try:
            appointment_date = parse_appointment_date(data.appointment_date)
        except ValueError:
            appointment_date = None
        if appointment_date is None or appointment_date <= datetime.utcnow():
            raise HTTPException(status_code=400, detail="Appointment date must be in the future")

        if not CustomerRepository.get_customer(self.db, self.tables, data.customer_id):
            raise HTTPException(status_code=404, detail="Customer not found")

        appointment = self.repo.create_appointment(
            self.db,
            self.tables,
            customer_id=data.customer_id,
            title=data.title.strip(),
            appointment_date=appointment_date,
            duration_minutes=data.duration_minutes or DEFAULT_DURATION_MINUTES,
            status="scheduled",
            notes=data.notes.strip() if data.notes else None,
        )
        logger.info(f"Appointment {appointment['id']} scheduled for customer {data.customer_id}")
        return appointment

    def update_appointment(self, data: AppointmentUpdate) -> dict:
        if not isinstance(data.id, int) or isinstance(data.id, bool) or not data.id:
            raise HTTPException(status_code=400, detail="Appointment ID is required")
        if data.status and data.status not in APPOINTMENT_STATUSES:
            raise HTTPException(status_code=400, detail="Invalid appointment status")

        updates = data.model_dump(exclude_unset=True, exclude={"id"})
        if updates.get("appointment_date"):
            try:
                updates["appointment_date"] = parse_appointment_date(updates["appointment_date"])
            except ValueError as e:
                raise HTTPException(status_code=400, detail="Invalid appointment date") from e
        elif "appointment_date" in updates:
            del updates["appointment_date"]

        for field in ("title", "notes"):
            if field in updates:
                updates[field] = updates[field].strip() if updates[field] else None
        if "title" in updates and not updates["title"]:
            raise HTTPException(status_code=400, detail="Appointment title is required")

        appointment = self.repo.update_appointment(self.db, self.tables, data.id, **updates)
        if not appointment:
            raise HTTPException(status_code=404, detail="Appointment not found")
        return appointment

    def delete_appointment(self, appointment_id: Optional[str]):
        if not appointment_id or not str(appointment_id).isdigit():
            raise HTTPException(status_code=400, detail="Valid appointment ID is required")
        if not self.repo.delete_appointment(self.db, self.tables, int(appointment_id)):
            raise HTTPException(status_code=404, detail="Appointment not found")
        logger.info(f"Appointment {appointment_id} deleted for agent {self.agent.id}")
