"""Customer router - FastAPI endpoints for customer operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_agent
from ...database import get_db
from ...models import Agent
from .schemas import CustomerCreate, CustomerUpdate
from .service import CustomerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/manage-customers", tags=["Customers"])


def get_customer_service(
    db: Session = Depends(get_db),
    agent: Agent = Depends(get_current_agent),
) -> CustomerService:
    """Dependency injection for CustomerService"""
    return CustomerService(db, agent)


@router.get("")
async def list_customers(
    search: Optional[str] = Query(None),
    limit: int = Query(50),
    offset: int = Query(0),
    service: CustomerService = Depends(get_customer_service),
):
    """List customers with their order counts"""
    return {"success": True, "customers": service.list_customers(search, limit, offset)}


@router.post("", status_code=201)
async def create_customer(
    data: CustomerCreate,
    service: CustomerService = Depends(get_customer_service),
):
    customer = service.create_customer(data)
    return {"success": True, "message": "Customer created successfully", "customer": customer}


@router.put("")
async def update_customer(
    data: CustomerUpdate,
    service: CustomerService = Depends(get_customer_service),
):
    customer = service.update_customer(data)
    return {"success": True, "message": "Customer updated successfully", "customer": customer}


@router.delete("")
async def delete_customer(
    id: Optional[str] = Query(None),
    service: CustomerService = Depends(get_customer_service),
):
    service.delete_customer(id)
    return {"success": True, "message": "Customer deleted successfully"}
