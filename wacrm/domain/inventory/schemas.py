"""Inventory domain schemas - Pydantic models for validation"""

import re
from typing import Any, Optional

from pydantic import BaseModel

from ...services.image_uploads import ImageFile

CATEGORY_NAME_MAX_LENGTH = 50
CATEGORY_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9 ]+$")
COLOR_PATTERN = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")
MAX_INVENTORY_IMAGES = 5


class InventoryWrite(BaseModel):
    """Body of POST/PUT /manage-inventory for either a category or an item"""

    type: Optional[str] = None
    id: Any = None
    name: Any = None
    description: Optional[str] = None
    color: Optional[str] = None
    quantity: Any = None
    price: Any = None
    category_id: Any = None
    category: Any = None
    sku: Optional[str] = None
    image_urls: Optional[list[str]] = None
    removed_image_urls: Optional[list[str]] = None


class InventoryImagesUpload(BaseModel):
    agentId: Optional[Any] = None
    productId: Optional[Any] = None
    images: Optional[list[ImageFile]] = None
