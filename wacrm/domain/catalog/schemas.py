"""Service catalog schemas - Pydantic models for validation"""

from typing import Any, Optional

from pydantic import BaseModel

from ...services.image_uploads import ImageFile

SERVICE_OPERATIONS = ["create", "get", "update", "delete"]
SORT_FIELDS = ["price", "created_at"]
SORT_ORDERS = ["asc", "desc"]
UPDATE_TYPES = ["service", "package"]
MAX_SERVICE_IMAGES = 10

SERVICE_UPDATE_FIELDS = ("service_name", "description", "is_active", "image_urls")
PACKAGE_UPDATE_FIELDS = ("package_name", "price", "currency", "discount", "description", "is_active")


class ServiceOperation(BaseModel):
    """
    One /manage-services call. Fields used depend on operation:

    create: service_name, description, packages, image_urls
    get: service_name, package_name, sort_by, sort_order
    update: type, id, updates, removed_image_urls
    delete: id
    """

    operation: Optional[str] = None
    service_name: Optional[Any] = None
    description: Optional[str] = None
    packages: Optional[Any] = None
    image_urls: Optional[list[str]] = None
    package_name: Optional[str] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    type: Optional[str] = None
    id: Optional[Any] = None
    updates: Optional[Any] = None
    removed_image_urls: Optional[list[str]] = None


class ServiceImagesUpload(BaseModel):
    agentId: Optional[Any] = None
    serviceId: Optional[str] = None
    images: Optional[list[ImageFile]] = None
