"""Inventory service - Business logic for inventory categories, items and item images"""

import logging
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ... import storage
from ...models import Agent
from ...models_tenant import get_tenant_tables
from ...services.image_uploads import store_images
from .repository import InventoryRepository
from .schemas import (
    CATEGORY_NAME_MAX_LENGTH,
    CATEGORY_NAME_PATTERN,
    COLOR_PATTERN,
    MAX_INVENTORY_IMAGES,
    InventoryImagesUpload,
    InventoryWrite,
)

logger = logging.getLogger(__name__)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def validate_category_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip() or len(name.strip()) > CATEGORY_NAME_MAX_LENGTH:
        raise HTTPException(status_code=400, detail="Category name is required and must be 1-50 characters")
    if not CATEGORY_NAME_PATTERN.match(name.strip()):
        raise HTTPException(status_code=400, detail="Category name must be alphanumeric with spaces")
    return name.strip()


def validate_color(color: Optional[str]):
    if color and not COLOR_PATTERN.match(color):
        raise HTTPException(status_code=400, detail="Invalid color format (use hex #RRGGBB or #RGB)")


def validate_amounts(quantity: Any, price: Any):
    if quantity is not None and (not is_number(quantity) or quantity < 0):
        raise HTTPException(status_code=400, detail="Quantity must be a non-negative number")
    if price is not None and (not is_number(price) or price < 0):
        raise HTTPException(status_code=400, detail="Price must be a non-negative number")


class InventoryService:
    """Service layer for inventory business logic"""

    def __init__(self, db: Session, agent: Agent):
        self.db = db
        self.agent = agent
        self.tables = get_tenant_tables(agent.agent_prefix)
        self.repo = InventoryRepository()

    def _ensure_category(self, category_id: Any):
        if category_id is None:
            return
        if not is_positive_int(category_id):
            raise HTTPException(status_code=400, detail="Category ID must be a positive integer")
        if not self.repo.get_category(self.db, self.tables, category_id):
            raise HTTPException(status_code=404, detail="Category not found")

    # ==================== Categories ====================

    def list_categories(self, search: Optional[str], limit: int, offset: int) -> list[dict]:
        return self.repo.list_categories(self.db, self.tables, search, limit, offset)

    def create_category(self, data: InventoryWrite) -> dict:
        name = validate_category_name(data.name)
        validate_color(data.color)
        if self.repo.find_category_by_name(self.db, self.tables, name):
            raise HTTPException(status_code=400, detail="Category name already exists")

        category_id = self.repo.create_category(
            self.db, self.tables, name=name, description=data.description or None, color=data.color or None
        )
        logger.info(f"Inventory category {category_id} created for agent {self.agent.id}")
        return {"success": True, "category_id": category_id, "message": "Category created successfully"}

    def update_category(self, data: InventoryWrite) -> dict:
        if not is_positive_int(data.id):
            raise HTTPException(status_code=400, detail="Category ID is required and must be a positive integer")

        values = {}
        fields = data.model_fields_set
        if "name" in fields and data.name is not None:
            values["name"] = validate_category_name(data.name)
            existing = self.repo.find_category_by_name(self.db, self.tables, values["name"])
            if existing and existing["id"] != data.id:
                raise HTTPException(status_code=400, detail="Category name already exists")
        if "description" in fields:
            values["description"] = data.description or None
        if "color" in fields:
            validate_color(data.color)
            values["color"] = data.color or None
        if not values:
            raise HTTPException(status_code=400, detail="No fields to update")

        if not self.repo.update_category(self.db, self.tables, data.id, **values):
            raise HTTPException(status_code=404, detail="Category not found")
        return {"success": True, "message": "Category updated successfully"}

    def delete_category(self, category_id: int) -> dict:
        if not self.repo.get_category(self.db, self.tables, category_id):
            raise HTTPException(status_code=404, detail="Category not found")
        if self.repo.count_category_items(self.db, self.tables, category_id):
            raise HTTPException(status_code=400, detail="Cannot delete category that has items")
        self.repo.delete_category(self.db, self.tables, category_id)
        logger.info(f"Inventory category {category_id} deleted for agent {self.agent.id}")
        return {"success": True, "message": "Category deleted successfully"}

    # ==================== Items ====================

    def list_items(self, category: Optional[str], search: Optional[str], limit: int, offset: int) -> list[dict]:
        return self.repo.list_items(self.db, self.tables, category, search, limit, offset)

    def create_item(self, data: InventoryWrite) -> dict:
        if not isinstance(data.name, str) or not data.name.strip():
            raise HTTPException(status_code=400, detail="Item name is required")
        validate_amounts(data.quantity, data.price)
        self._ensure_category(data.category_id)

        item_id = self.repo.create_item(
            self.db,
            self.tables,
            name=data.name.strip(),
            quantity=data.quantity or 0,
            price=data.price or 0,
            category_id=data.category_id,
            description=data.description or None,
            sku=data.sku or None,
            image_urls=data.image_urls or [],
        )
        logger.info(f"Inventory item {item_id} created for agent {self.agent.id}")
        return {"success": True, "item_id": item_id, "message": "Item created successfully"}

    def update_item(self, data: InventoryWrite) -> dict:
        if not is_positive_int(data.id):
            raise HTTPException(status_code=400, detail="Item ID is required")
        validate_amounts(data.quantity, data.price)
        category_id = data.category_id if data.category_id is not None else data.category
        self._ensure_category(category_id)

        item = self.repo.get_item(self.db, self.tables, data.id)
        if not item:
            raise HTTPException(status_code=404, detail="Item not found")

        values = {}
        if isinstance(data.name, str) and data.name.strip():
            values["name"] = data.name.strip()
        for field in ("quantity", "price", "description", "sku"):
            if getattr(data, field) is not None:
                values[field] = getattr(data, field)
        if category_id is not None:
            values["category_id"] = category_id

        removed = [url for url in data.removed_image_urls or [] if isinstance(url, str)]
        if data.image_urls is not None or removed:
            urls = data.image_urls if data.image_urls is not None else list(item.get("image_urls") or [])
            values["image_urls"] = [url for url in urls if url not in removed]

        if not values:
            raise HTTPException(status_code=400, detail="No fields to update")

        self.repo.update_item(self.db, self.tables, data.id, **values)
        if removed:
            deleted = storage.delete_public_urls(removed)
            logger.info(f"Removed {deleted} images from inventory item {data.id}")
        return {"success": True, "message": "Item updated successfully"}

    def delete_item(self, item_id: int) -> dict:
        item = self.repo.get_item(self.db, self.tables, item_id)
        if not item:
            raise HTTPException(status_code=404, detail="Item not found")
        self.repo.delete_item(self.db, self.tables, item_id)
        storage.delete_public_urls(item.get("image_urls") or [])
        logger.info(f"🗑️ Inventory item {item_id} deleted for agent {self.agent.id}")
        return {"success": True, "message": "Item deleted successfully"}

    # ==================== Images ====================

    def upload_images(self, data: InventoryImagesUpload) -> list[str]:
        if data.agentId not in (None, "") and str(data.agentId) != str(self.agent.id):
            raise HTTPException(status_code=403, detail="Access denied")
        if not data.productId:
            raise HTTPException(status_code=400, detail="productId is required")
        return store_images(
            self.agent.agent_prefix, f"inventory/{data.productId}", data.images, MAX_INVENTORY_IMAGES
        )
