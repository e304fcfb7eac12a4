"""Service catalog service - Business logic for services, their packages and images"""

import logging
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ... import storage
from ...models import Agent
from ...models_tenant import get_tenant_tables
from ...services.image_uploads import store_images
from .repository import CatalogRepository
from .schemas import (
    MAX_SERVICE_IMAGES,
    PACKAGE_UPDATE_FIELDS,
    SERVICE_UPDATE_FIELDS,
    SORT_FIELDS,
    SORT_ORDERS,
    UPDATE_TYPES,
    ServiceImagesUpload,
    ServiceOperation,
)

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "LKR"


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_package(package: Any) -> dict:
    """Check one package definition and return the row to insert"""
    if not isinstance(package, dict):
        raise HTTPException(status_code=400, detail="Each package must be an object")
    name = package.get("package_name")
    if not isinstance(name, str) or not name.strip():
        raise HTTPException(status_code=400, detail="package_name is required for every package")
    if not is_number(package.get("price")) or package["price"] < 0:
        raise HTTPException(status_code=400, detail="Valid package price is required")
    discount = package.get("discount")
    if discount is not None and (not is_number(discount) or discount < 0):
        raise HTTPException(status_code=400, detail="Invalid package discount")
    return {
        "package_name": name.strip(),
        "price": package["price"],
        "currency": package.get("currency") or DEFAULT_CURRENCY,
        "discount": discount,
        "description": package.get("description"),
        "is_active": package.get("is_active", True),
    }


def merge_image_urls(current: Optional[list], change: Any, removed: Optional[list]) -> list[str]:
    """
    New image list for a service.

    change is either a full replacement list or {"add": [...], "remove": [...]}.
    """
    urls = list(current or [])
    if isinstance(change, list):
        urls = list(change)
    elif isinstance(change, dict):
        urls.extend(url for url in change.get("add") or [] if url not in urls)
        removed = list(removed or []) + list(change.get("remove") or [])
    removed_set = set(removed or [])
    return [url for url in urls if url not in removed_set]


class CatalogService:
    """Service layer for the agent's service catalog"""

    def __init__(self, db: Session, agent: Agent):
        self.db = db
        self.agent = agent
        self.tables = get_tenant_tables(agent.agent_prefix)
        self.repo = CatalogRepository()

    def handle(self, data: ServiceOperation) -> tuple[int, dict]:
        """Dispatch one operation. Returns (status_code, body)."""
        if data.operation == "create":
            return 201, self.create_service(data)
        if data.operation == "get":
            return 200, self.list_services(data)
        if data.operation == "update":
            return 200, self.update(data)
        if data.operation == "delete":
            return 200, self.delete_service(data.id)
        raise HTTPException(status_code=400, detail='operation must be "create", "get", "update", or "delete"')

    # ==================== Create ====================

    def create_service(self, data: ServiceOperation) -> dict:
        if not isinstance(data.service_name, str) or not data.service_name.strip():
            raise HTTPException(status_code=400, detail="service_name is required")
        if not isinstance(data.packages, list) or not data.packages:
            raise HTTPException(status_code=400, detail="packages array is required and must not be empty")

        name = data.service_name.strip()
        packages = [validate_package(package) for package in data.packages]
        if self.repo.find_service_by_name(self.db, self.tables, self.agent.id, name):
            raise HTTPException(status_code=409, detail="Service name already exists")

        service_id = self.repo.create_service(
            self.db,
            self.tables,
            {
                "agent_id": self.agent.id,
                "service_name": name,
                "description": data.description or None,
                "image_urls": data.image_urls or [],
                "is_active": True,
            },
            packages,
        )
        logger.info(f"Service {service_id} created for agent {self.agent.id} with {len(packages)} packages")
        return {
            "status": "success",
            "message": "Service created successfully",
            "data": self.repo.get_service(self.db, self.tables, self.agent.id, service_id),
        }

    # ==================== Read ====================

    def list_services(self, data: ServiceOperation) -> dict:
        if data.sort_by not in SORT_FIELDS:
            raise HTTPException(status_code=400, detail="Invalid sort_by parameter. Use price or created_at")
        if data.sort_order not in SORT_ORDERS:
            raise HTTPException(status_code=400, detail="Invalid sort_order parameter. Use asc or desc")

        services = self.repo.list_services(self.db, self.tables, self.agent.id, data.service_name or None)
        if data.package_name:
            needle = data.package_name.lower()
            for service in services:
                service["packages"] = [p for p in service["packages"] if needle in p["package_name"].lower()]
            services = [service for service in services if service["packages"]]

        reverse = data.sort_order == "desc"
        if data.sort_by == "price":
            for service in services:
                service["packages"].sort(key=lambda p: p["price"] or 0, reverse=reverse)
            priced = [s for s in services if s["packages"]]
            unpriced = [s for s in services if not s["packages"]]
            priced.sort(key=lambda s: min(p["price"] or 0 for p in s["packages"]), reverse=reverse)
            services = priced + unpriced
        else:
            services.sort(key=lambda s: (s["created_at"] is not None, s["created_at"] or 0), reverse=reverse)

        return {"status": "success", "message": "Services fetched successfully", "data": services}

    # ==================== Update ====================

    def update(self, data: ServiceOperation) -> dict:
        if data.type not in UPDATE_TYPES:
            raise HTTPException(status_code=400, detail='type must be "service" or "package"')
        if not isinstance(data.id, str) or not data.id:
            raise HTTPException(status_code=400, detail="id is required")
        if not isinstance(data.updates, dict) or not data.updates:
            raise HTTPException(status_code=400, detail="updates object is required and must not be empty")

        if data.type == "service":
            result = self.update_service(data.id, data.updates, data.removed_image_urls)
        else:
            result = self.update_package(data.id, data.updates)
        return {"status": "success", "message": f"{data.type.capitalize()} updated successfully", "data": result}

    def update_service(self, service_id: str, updates: dict, removed_image_urls: Optional[list[str]]) -> dict:
        service = self.repo.get_service(self.db, self.tables, self.agent.id, service_id)
        if not service:
            raise HTTPException(status_code=404, detail="Service not found")

        values = {key: updates[key] for key in SERVICE_UPDATE_FIELDS if key in updates}
        if "service_name" in values:
            name = values["service_name"]
            if not isinstance(name, str) or not name.strip():
                raise HTTPException(status_code=400, detail="service_name cannot be empty")
            values["service_name"] = name.strip()
            existing = self.repo.find_service_by_name(self.db, self.tables, self.agent.id, values["service_name"])
            if existing and existing["id"] != service_id:
                raise HTTPException(status_code=409, detail="Service name already exists")

        removed = []
        if "image_urls" in values or removed_image_urls:
            new_urls = merge_image_urls(service.get("image_urls"), values.get("image_urls"), removed_image_urls)
            removed = [url for url in service.get("image_urls") or [] if url not in new_urls]
            values["image_urls"] = new_urls

        if not values:
            raise HTTPException(status_code=400, detail="No valid fields to update")

        self.repo.update_service(self.db, self.tables, service_id, **values)
        if removed:
            storage.delete_public_urls(removed)
        return self.repo.get_service(self.db, self.tables, self.agent.id, service_id)

    def update_package(self, package_id: str, updates: dict) -> dict:
        if not self.repo.get_package(self.db, self.tables, self.agent.id, package_id):
            raise HTTPException(status_code=404, detail="Package not found")

        values = {key: updates[key] for key in PACKAGE_UPDATE_FIELDS if key in updates}
        if not values:
            raise HTTPException(status_code=400, detail="No valid fields to update")
        if "package_name" in values and (
            not isinstance(values["package_name"], str) or not values["package_name"].strip()
        ):
            raise HTTPException(status_code=400, detail="package_name cannot be empty")
        if "price" in values and (not is_number(values["price"]) or values["price"] < 0):
            raise HTTPException(status_code=400, detail="Valid package price is required")

        self.repo.update_package(self.db, self.tables, package_id, **values)
        return self.repo.get_package(self.db, self.tables, self.agent.id, package_id)

    # ==================== Delete ====================

    def delete_service(self, service_id: Any) -> dict:
        if not isinstance(service_id, str) or not service_id:
            raise HTTPException(status_code=400, detail="id is required")
        service = self.repo.get_service(self.db, self.tables, self.agent.id, service_id)
        if not service:
            raise HTTPException(status_code=404, detail="Service not found")

        if self.repo.count_order_references(self.db, self.tables, service_id):
            raise HTTPException(status_code=403, detail="Cannot delete: service has dependencies")

        deleted_packages = self.repo.delete_service(self.db, self.tables, service_id)
        deleted_images = storage.delete_public_urls(service.get("image_urls") or [])
        logger.info(f"🗑️ Service {service_id} deleted for agent {self.agent.id}")
        return {
            "status": "success",
            "message": "Service permanently deleted successfully",
            "data": {"id": service_id, "deleted_packages": deleted_packages, "deleted_images": deleted_images},
        }

    # ==================== Images ====================

    def upload_images(self, data: ServiceImagesUpload) -> list[str]:
        if data.agentId not in (None, "") and str(data.agentId) != str(self.agent.id):
            raise HTTPException(status_code=403, detail="Access denied")
        base_path = f"services/{data.serviceId}" if data.serviceId else "services"
        return store_images(self.agent.agent_prefix, base_path, data.images, MAX_SERVICE_IMAGES)
