"""Order repository - Database operations on an agent's orders and order items"""

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, insert, or_, select, update
from sqlalchemy.orm import Session

from ...models_tenant import TenantTables, row_to_dict


class OrderRepository:
    """Repository for order database operations"""

    @staticmethod
    def _customer_summary(row: dict) -> Optional[dict]:
        name = row.pop("customer_name", None)
        phone = row.pop("customer_phone", None)
        if name is None and phone is None:
            return None
        return {"id": row["customer_id"], "name": name, "phone": phone}

    @staticmethod
    def get_items(db: Session, tables: TenantTables, order_ids: list[int]) -> dict[int, list[dict]]:
        """Items grouped by order id"""
        grouped: dict[int, list[dict]] = {order_id: [] for order_id in order_ids}
        if not order_ids:
            return grouped
        rows = db.execute(
            select(tables.order_items)
            .where(tables.order_items.c.order_id.in_(order_ids))
            .order_by(tables.order_items.c.id)
        )
        for row in rows:
            item = row_to_dict(row)
            grouped.setdefault(item["order_id"], []).append(item)
        return grouped

    @staticmethod
    def _order_query(tables: TenantTables):
        orders = tables.orders
        customers = tables.customers
        return select(
            orders,
            customers.c.name.label("customer_name"),
            customers.c.phone.label("customer_phone"),
        ).select_from(orders.outerjoin(customers, orders.c.customer_id == customers.c.id))

    @staticmethod
    def list_orders(
        db: Session,
        tables: TenantTables,
        search: Optional[str] = None,
        customer_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict]:
        """Orders newest first with customer summary and items"""
        query = OrderRepository._order_query(tables)
        if customer_id is not None:
            query = query.where(tables.orders.c.customer_id == customer_id)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(tables.orders.c.notes.ilike(pattern), tables.customers.c.name.ilike(pattern)))
        query = query.order_by(tables.orders.c.created_at.desc(), tables.orders.c.id.desc())
        if limit > 0:
            query = query.limit(limit)
        if offset > 0:
            query = query.offset(offset)

        orders = [row_to_dict(row) for row in db.execute(query)]
        items = OrderRepository.get_items(db, tables, [o["id"] for o in orders])
        for order in orders:
            order["customer"] = OrderRepository._customer_summary(order)
            order["items"] = items.get(order["id"], [])
        return orders

    @staticmethod
    def get_order(db: Session, tables: TenantTables, order_id: int) -> Optional[dict]:
        row = db.execute(OrderRepository._order_query(tables).where(tables.orders.c.id == order_id)).first()
        order = row_to_dict(row)
        if order is None:
            return None
        order["customer"] = OrderRepository._customer_summary(order)
        order["items"] = OrderRepository.get_items(db, tables, [order_id])[order_id]
        return order

    @staticmethod
    def create_order(db: Session, tables: TenantTables, order_values: dict, items: list[dict]) -> dict:
        """Insert the order and its items in one transaction"""
        now = datetime.utcnow()
        try:
            result = db.execute(
                insert(tables.orders).values(created_at=now, updated_at=now, **order_values)
            )
            order_id = result.inserted_primary_key[0]
            for item in items:
                db.execute(insert(tables.order_items).values(order_id=order_id, created_at=now, **item))
            db.commit()
        except Exception:
            db.rollback()
            raise
        return OrderRepository.get_order(db, tables, order_id)

    @staticmethod
    def update_order(db: Session, tables: TenantTables, order_id: int, **updates) -> Optional[dict]:
        updates["updated_at"] = datetime.utcnow()
        result = db.execute(update(tables.orders).where(tables.orders.c.id == order_id).values(**updates))
        db.commit()
        if result.rowcount == 0:
            return None
        return OrderRepository.get_order(db, tables, order_id)

    @staticmethod
    def delete_order(db: Session, tables: TenantTables, order_id: int) -> bool:
        """Delete an order with its items and invoices"""
        db.execute(delete(tables.order_items).where(tables.order_items.c.order_id == order_id))
        db.execute(delete(tables.invoices).where(tables.invoices.c.order_id == order_id))
        result = db.execute(delete(tables.orders).where(tables.orders.c.id == order_id))
        db.commit()
        return result.rowcount > 0
