"""Order domain schemas - Pydantic models for validation"""

from typing import Any, Optional

from pydantic import BaseModel

ORDER_STATUSES = ["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]


class OrderItemCreate(BaseModel):
    """One order line. Values stay raw so the service can report which one is wrong."""

    name: Any = None
    quantity: Any = None
    price: Any = None
    package_id: Optional[str] = None


class OrderCreate(BaseModel):
    customer_id: Any = None
    items: Optional[list[OrderItemCreate]] = None
    notes: Optional[str] = None
    shipping_address: Optional[str] = None


class OrderUpdate(BaseModel):
    id: Any = None
    status: Optional[str] = None
    notes: Optional[str] = None
    shipping_address: Optional[str] = None
