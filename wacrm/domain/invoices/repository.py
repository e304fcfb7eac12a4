"""Invoice repository - Database operations on an agent's invoices"""

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.orm import Session

from ...models_tenant import TenantTables, row_to_dict
from ...services.invoice_pdf import calculate_totals, format_order_number
from ..orders.repository import OrderRepository


class InvoiceRepository:
    """Repository for invoice database operations"""

    @staticmethod
    def list_invoices(db: Session, tables: TenantTables) -> list[dict]:
        """Invoices newest first with order totals and customer details"""
        invoices = tables.invoices
        orders = tables.orders
        customers = tables.customers

        query = (
            select(
                invoices,
                orders.c.status.label("order_status"),
                orders.c.created_at.label("order_date"),
                customers.c.name.label("customer_name"),
                customers.c.phone.label("customer_phone"),
                customers.c.email.label("customer_email"),
            )
            .select_from(
                invoices.outerjoin(orders, invoices.c.order_id == orders.c.id).outerjoin(
                    customers, orders.c.customer_id == customers.c.id
                )
            )
            .order_by(invoices.c.generated_at.desc(), invoices.c.id.desc())
        )
        rows = [row_to_dict(row) for row in db.execute(query)]

        items_by_order = OrderRepository.get_items(db, tables, [row["order_id"] for row in rows if row["order_id"]])
        for row in rows:
            subtotal, discount_amount, total = calculate_totals(
                items_by_order.get(row["order_id"], []), row["discount_percentage"]
            )
            row["subtotal"] = subtotal
            row["discount_amount"] = discount_amount
            row["total_amount"] = total
            row["order_number"] = format_order_number(row["order_id"]) if row["order_id"] else None
            row["customer_name"] = row["customer_name"] or "Unknown Customer"
        return rows

    @staticmethod
    def get_invoice(db: Session, tables: TenantTables, invoice_id: int) -> Optional[dict]:
        row = db.execute(select(tables.invoices).where(tables.invoices.c.id == invoice_id)).first()
        return row_to_dict(row)

    @staticmethod
    def create_invoice(db: Session, tables: TenantTables, **values) -> dict:
        result = db.execute(insert(tables.invoices).values(**values))
        db.commit()
        return InvoiceRepository.get_invoice(db, tables, result.inserted_primary_key[0])

    @staticmethod
    def update_status(db: Session, tables: TenantTables, invoice_id: int, status: str) -> Optional[dict]:
        result = db.execute(
            update(tables.invoices)
            .where(tables.invoices.c.id == invoice_id)
            .values(status=status, updated_at=datetime.utcnow())
        )
        db.commit()
        if not result.rowcount:
            return None
        return InvoiceRepository.get_invoice(db, tables, invoice_id)

    @staticmethod
    def delete_invoice(db: Session, tables: TenantTables, invoice_id: int) -> bool:
        result = db.execute(delete(tables.invoices).where(tables.invoices.c.id == invoice_id))
        db.commit()
        return result.rowcount > 0
