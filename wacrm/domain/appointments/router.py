"""Appointment router - FastAPI endpoints for appointment operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_agent
from ...database import get_db
from ...models import Agent
from .schemas import AppointmentCreate, AppointmentUpdate
from .service import AppointmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/manage-appointments", tags=["Appointments"])


def get_appointment_service(
    db: Session = Depends(get_db),
    agent: Agent = Depends(get_current_agent),
) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db, agent)


@router.get("")
async def list_appointments(
    customer_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    limit: int = Query(50),
    offset: int = Query(0),
    service: AppointmentService = Depends(get_appointment_service),
):
    return {
        "success": True,
        "appointments": service.list_appointments(customer_id, status, search, limit, offset),
    }


@router.post("", status_code=201)
async def create_appointment(
    data: AppointmentCreate,
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.create_appointment(data)
    return {"success": True, "message": "Appointment created successfully", "appointment": appointment}


@router.put("")
async def update_appointment(
    data: AppointmentUpdate,
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.update_appointment(data)
    return {"success": True, "message": "Appointment updated successfully", "appointment": appointment}


@router.delete("")
async def delete_appointment(
    id: Optional[str] = Query(None),
    service: AppointmentService = Depends(get_appointment_service),
):
    service.delete_appointment(id)
    return {"success": True, "message": "Appointment deleted successfully"}
