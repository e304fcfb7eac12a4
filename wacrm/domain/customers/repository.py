"""Customer repository - Database operations on an agent's customer table"""

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.orm import Session

from ...models_tenant import TenantTables, row_to_dict


class CustomerRepository:
    """Repository for customer database operations"""

    @staticmethod
    def list_customers(
        db: Session, tables: TenantTables, search: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> list[dict]:
        """Customers newest first, each with the number of orders it has"""
        customers = tables.customers
        orders = tables.orders

        order_counts = (
            select(orders.c.customer_id, func.count().label("order_count"))
            .group_by(orders.c.customer_id)
            .subquery()
        )
        query = (
            select(customers, func.coalesce(order_counts.c.order_count, 0).label("order_count"))
            .select_from(customers.outerjoin(order_counts, customers.c.id == order_counts.c.customer_id))
        )
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(customers.c.name.ilike(pattern), customers.c.phone.ilike(pattern)))

        query = query.order_by(customers.c.created_at.desc(), customers.c.id.desc())
        if limit > 0:
            query = query.limit(limit)
        if offset > 0:
            query = query.offset(offset)

        return [row_to_dict(row) for row in db.execute(query)]

    @staticmethod
    def get_customer(db: Session, tables: TenantTables, customer_id: int) -> Optional[dict]:
        row = db.execute(select(tables.customers).where(tables.customers.c.id == customer_id)).first()
        return row_to_dict(row)

    @staticmethod
    def get_customer_by_phone(db: Session, tables: TenantTables, phone: str) -> Optional[dict]:
        row = db.execute(select(tables.customers).where(tables.customers.c.phone == phone)).first()
        return row_to_dict(row)

    @staticmethod
    def create_customer(db: Session, tables: TenantTables, **values) -> dict:
        now = datetime.utcnow()
        values.setdefault("created_at", now)
        values.setdefault("updated_at", now)
        result = db.execute(insert(tables.customers).values(**values))
        db.commit()
        return CustomerRepository.get_customer(db, tables, result.inserted_primary_key[0])

    @staticmethod
    def update_customer(db: Session, tables: TenantTables, customer_id: int, **updates) -> Optional[dict]:
        updates["updated_at"] = datetime.utcnow()
        result = db.execute(
            update(tables.customers).where(tables.customers.c.id == customer_id).values(**updates)
        )
        db.commit()
        if result.rowcount == 0:
            return None
        return CustomerRepository.get_customer(db, tables, customer_id)

    @staticmethod
    def delete_customer(db: Session, tables: TenantTables, customer_id: int) -> bool:
        """Delete a customer and every record hanging off it"""
        order_ids = select(tables.orders.c.id).where(tables.orders.c.customer_id == customer_id)
        db.execute(delete(tables.order_items).where(tables.order_items.c.order_id.in_(order_ids)))
        db.execute(delete(tables.invoices).where(tables.invoices.c.order_id.in_(order_ids)))
        db.execute(delete(tables.orders).where(tables.orders.c.customer_id == customer_id))
        db.execute(delete(tables.messages).where(tables.messages.c.customer_id == customer_id))
        db.execute(delete(tables.appointments).where(tables.appointments.c.customer_id == customer_id))
        result = db.execute(delete(tables.customers).where(tables.customers.c.id == customer_id))
        db.commit()
        return result.rowcount > 0
