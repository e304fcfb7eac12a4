"""Order service - Business logic for order operations"""

import logging
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import Agent
from ...models_tenant import get_tenant_tables
from ..customers.repository import CustomerRepository
from .repository import OrderRepository
from .schemas import ORDER_STATUSES, OrderCreate, OrderItemCreate, OrderUpdate

logger = logging.getLogger(__name__)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_item(item: OrderItemCreate) -> dict:
    """Check one order line and return the row to insert"""
    if not isinstance(item.name, str) or not item.name.strip():
        raise HTTPException(status_code=400, detail="Item name is required")
    if not is_number(item.quantity) or item.quantity <= 0:
        raise HTTPException(status_code=400, detail="Valid item quantity is required")
    if not is_number(item.price) or item.price < 0:
        raise HTTPException(status_code=400, detail="Valid item price is required")
    return {
        "name": item.name.strip(),
        "quantity": item.quantity,
        "price": item.price,
        "total": item.quantity * item.price,
        "package_id": item.package_id,
    }


class OrderService:
    """Service layer for order business logic"""

    def __init__(self, db: Session, agent: Agent):
        self.db = db
        self.agent = agent
        self.tables = get_tenant_tables(agent.agent_prefix)
        self.repo = OrderRepository()

    def list_orders(self, search: Optional[str], customer_id: Optional[int], limit: int, offset: int) -> list[dict]:
        return self.repo.list_orders(self.db, self.tables, search, customer_id, limit, offset)

    def get_order(self, order_id: int) -> dict:
        order = self.repo.get_order(self.db, self.tables, order_id)
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")
        return order

    def create_order(self, data: OrderCreate) -> dict:
        if not is_number(data.customer_id) or not isinstance(data.customer_id, int) or data.customer_id <= 0:
            raise HTTPException(status_code=400, detail="Valid customer ID is required")
        if not data.items:
            raise HTTPException(status_code=400, detail="Order must have at least one item")

        rows = [validate_item(item) for item in data.items]

        if not CustomerRepository.get_customer(self.db, self.tables, data.customer_id):
            raise HTTPException(status_code=404, detail="Customer not found")

        order_values = {
            "customer_id": data.customer_id,
            "total_amount": sum(row["total"] for row in rows),
            "status": "pending",
            "notes": data.notes.strip() if data.notes else None,
            "shipping_address": data.shipping_address.strip() if data.shipping_address else None,
        }
        order = self.repo.create_order(self.db, self.tables, order_values, rows)
        logger.info(f"Order {order['id']} created for agent {self.agent.id} ({len(rows)} items)")
        return order

    def update_order(self, data: OrderUpdate) -> dict:
        if not isinstance(data.id, int) or isinstance(data.id, bool) or not data.id:
            raise HTTPException(status_code=400, detail="Order ID is required")
        if "status" in data.model_fields_set and data.status not in ORDER_STATUSES:
            raise HTTPException(status_code=400, detail="Invalid order status")

        updates = data.model_dump(exclude_unset=True, exclude={"id"})
        for field in ("notes", "shipping_address"):
            if field in updates:
                updates[field] = updates[field].strip() if updates[field] else None

        order = self.repo.update_order(self.db, self.tables, data.id, **updates)
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")
        return order

    def delete_order(self, order_id: Optional[str]):
        if not order_id or not str(order_id).isdigit():
            raise HTTPException(status_code=400, detail="Valid order ID is required")
        if not self.repo.delete_order(self.db, self.tables, int(order_id)):
            raise HTTPException(status_code=404, detail="Order not found")
        logger.info(f"Order {order_id} deleted for agent {self.agent.id}")
