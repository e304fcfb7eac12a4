"""Inventory router - FastAPI endpoints for categories, items and item images"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import get_current_agent
from ...database import get_db
from ...models import Agent
from .schemas import InventoryImagesUpload, InventoryWrite
from .service import InventoryService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Inventory"])


def get_inventory_service(
    db: Session = Depends(get_db),
    agent: Agent = Depends(get_current_agent),
) -> InventoryService:
    """Dependency injection for InventoryService"""
    return InventoryService(db, agent)


def is_category(entity_type: Optional[str]) -> bool:
    return entity_type in ("category", "categories")


@router.get("/manage-inventory")
async def list_inventory(
    type: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    limit: int = Query(50),
    offset: int = Query(0),
    service: InventoryService = Depends(get_inventory_service),
):
    """Categories when type=categories, items otherwise"""
    if is_category(type):
        return {"categories": service.list_categories(search, limit, offset)}
    return {"items": service.list_items(category, search, limit, offset)}


@router.post("/manage-inventory", status_code=201)
async def create_inventory(
    data: InventoryWrite,
    type: Optional[str] = Query(None),
    service: InventoryService = Depends(get_inventory_service),
):
    if is_category(type or data.type):
        return service.create_category(data)
    return service.create_item(data)


@router.put("/manage-inventory")
async def update_inventory(
    data: InventoryWrite,
    type: Optional[str] = Query(None),
    service: InventoryService = Depends(get_inventory_service),
):
    if is_category(data.type or type):
        return service.update_category(data)
    return service.update_item(data)


@router.delete("/manage-inventory")
async def delete_inventory(
    type: Optional[str] = Query(None),
    id: Optional[str] = Query(None),
    service: InventoryService = Depends(get_inventory_service),
):
    if not id or not id.isdigit():
        raise HTTPException(status_code=400, detail="Valid ID is required")
    if is_category(type):
        return service.delete_category(int(id))
    return service.delete_item(int(id))


@router.post("/upload-inventory-images")
async def upload_inventory_images(
    data: InventoryImagesUpload,
    service: InventoryService = Depends(get_inventory_service),
):
    return {"success": True, "urls": service.upload_images(data)}
