"""Appointment domain schemas - Pydantic models for validation"""

from typing import Any, Optional

from pydantic import BaseModel

APPOINTMENT_STATUSES = ["scheduled", "confirmed", "completed", "cancelled", "no_show"]


class AppointmentCreate(BaseModel):
    customer_id: Any = None
    title: Any = None
    appointment_date: Optional[str] = None
    duration_minutes: Optional[int] = None
    notes: Optional[str] = None


class AppointmentUpdate(BaseModel):
    id: Any = None
    title: Optional[str] = None
    appointment_date: Optional[str] = None
    duration_minutes: Optional[int] = None
    status: Optional[str] = None
    notes: Optional[str] = None
