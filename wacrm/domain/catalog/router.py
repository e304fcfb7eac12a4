"""Service catalog router - FastAPI endpoints for services and packages"""

import logging

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ...auth import get_current_agent
from ...database import get_db
from ...models import Agent
from .schemas import ServiceImagesUpload, ServiceOperation
from .service import CatalogService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Services"])


def get_catalog_service(
    db: Session = Depends(get_db),
    agent: Agent = Depends(get_current_agent),
) -> CatalogService:
    """Dependency injection for CatalogService"""
    return CatalogService(db, agent)


@router.post("/manage-services")
async def manage_services(
    data: ServiceOperation,
    service: CatalogService = Depends(get_catalog_service),
):
    """Create, list, update or delete services depending on `operation`"""
    status_code, body = service.handle(data)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


@router.post("/upload-service-images")
async def upload_service_images(
    data: ServiceImagesUpload,
    service: CatalogService = Depends(get_catalog_service),
):
    return {"success": True, "urls": service.upload_images(data)}
