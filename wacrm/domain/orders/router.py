"""Order router - FastAPI endpoints for order operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_agent
from ...database import get_db
from ...models import Agent
from .schemas import OrderCreate, OrderUpdate
from .service import OrderService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/manage-orders", tags=["Orders"])


def get_order_service(
    db: Session = Depends(get_db),
    agent: Agent = Depends(get_current_agent),
) -> OrderService:
    """Dependency injection for OrderService"""
    return OrderService(db, agent)


@router.get("")
async def list_orders(
    search: Optional[str] = Query(None),
    customer_id: Optional[int] = Query(None),
    limit: int = Query(50),
    offset: int = Query(0),
    service: OrderService = Depends(get_order_service),
):
    """Orders with customer summary and line items, newest first"""
    return {"success": True, "orders": service.list_orders(search, customer_id, limit, offset)}


@router.post("", status_code=201)
async def create_order(
    data: OrderCreate,
    service: OrderService = Depends(get_order_service),
):
    order = service.create_order(data)
    return {"success": True, "message": "Order created successfully", "order": order}


@router.put("")
async def update_order(
    data: OrderUpdate,
    service: OrderService = Depends(get_order_service),
):
    order = service.update_order(data)
    return {"success": True, "message": "Order updated successfully", "order": order}


@router.delete("")
async def delete_order(
    id: Optional[str] = Query(None),
    service: OrderService = Depends(get_order_service),
):
    service.delete_order(id)
    return {"success": True, "message": "Order deleted successfully"}
