"""Appointment repository - Database operations on an agent's appointments"""

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, insert, or_, select, update
from sqlalchemy.orm import Session

from ...models_tenant import TenantTables, row_to_dict


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def _appointment_query(tables: TenantTables):
        appointments = tables.appointments
        customers = tables.customers
        return select(
            appointments,
            customers.c.name.label("customer_name"),
            customers.c.phone.label("customer_phone"),
        ).select_from(appointments.outerjoin(customers, appointments.c.customer_id == customers.c.id))

    @staticmethod
    def _with_customer(row) -> Optional[dict]:
        appointment = row_to_dict(row)
        if appointment is None:
            return None
        name = appointment.pop("customer_name")
        phone = appointment.pop("customer_phone")
        appointment["customer"] = (
            {"id": appointment["customer_id"], "name": name, "phone": phone} if name or phone else None
        )
        return appointment

    @staticmethod
    def list_appointments(
        db: Session,
        tables: TenantTables,
        customer_id: Optional[int] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict]:
        """Appointments ordered by date, earliest first"""
        appointments = tables.appointments
        query = AppointmentRepository._appointment_query(tables)
        if customer_id is not None:
            query = query.where(appointments.c.customer_id == customer_id)
        if status:
            query = query.where(appointments.c.status == status)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    appointments.c.title.ilike(pattern),
                    appointments.c.notes.ilike(pattern),
                    tables.customers.c.name.ilike(pattern),
                    tables.customers.c.phone.ilike(pattern),
                )
            )
        query = query.order_by(appointments.c.appointment_date.asc(), appointments.c.id.asc())
        if limit > 0:
            query = query.limit(limit)
        if offset > 0:
            query = query.offset(offset)
        return [AppointmentRepository._with_customer(row) for row in db.execute(query)]

    @staticmethod
    def get_appointment(db: Session, tables: TenantTables, appointment_id: int) -> Optional[dict]:
        query = AppointmentRepository._appointment_query(tables).where(tables.appointments.c.id == appointment_id)
        return AppointmentRepository._with_customer(db.execute(query).first())

    @staticmethod
    def create_appointment(db: Session, tables: TenantTables, **values) -> dict:
        now = datetime.utcnow()
        result = db.execute(insert(tables.appointments).values(created_at=now, updated_at=now, **values))
        db.commit()
        return AppointmentRepository.get_appointment(db, tables, result.inserted_primary_key[0])

    @staticmethod
    def update_appointment(db: Session, tables: TenantTables, appointment_id: int, **updates) -> Optional[dict]:
        updates["updated_at"] = datetime.utcnow()
        result = db.execute(
            update(tables.appointments).where(tables.appointments.c.id == appointment_id).values(**updates)
        )
        db.commit()
        if result.rowcount == 0:
            return None
        return AppointmentRepository.get_appointment(db, tables, appointment_id)

    @staticmethod
    def delete_appointment(db: Session, tables: TenantTables, appointment_id: int) -> bool:
        result = db.execute(delete(tables.appointments).where(tables.appointments.c.id == appointment_id))
        db.commit()
        return result.rowcount > 0
