import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_agent, get_current_user
from ..database import get_db
from ..models import Agent, User
from ..models_tenant import get_tenant_tables
from ..services.messaging_context import get_active_config
from ..services.whatsapp_service import WhatsAppAPIError, WhatsAppClient
from ..services.whatsapp_setup import (
    get_config,
    seed_default_templates,
    serialize_config,
    upsert_whatsapp_config,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["WhatsApp Configuration"])


class WhatsAppConfigRequest(BaseModel):
    user_id: Optional[str] = None
    whatsapp_number: Optional[str] = None
    webhook_url: Optional[str] = None
    api_key: Optional[str] = None
    business_account_id: Optional[str] = None
    phone_number_id: Optional[str] = None
    whatsapp_app_secret: Optional[str] = None
    verify_token: Optional[str] = None
    is_active: Optional[bool] = None


def verify_config_access(user_id: Optional[str], current_user: User, db: Session) -> User:
    """Admins manage any configuration, everyone else only their own"""
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id is required")
    if current_user.role != "admin" and current_user.id != user_id:
        logger.warning(f"🚫 Access denied: User {current_user.id} tried to manage config of {user_id}")
        raise HTTPException(status_code=403, detail="Access denied")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("/setup-whatsapp-config")
async def setup_whatsapp_config(
    data: WhatsAppConfigRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create or replace an agent's WhatsApp credentials and seed default templates"""
    if not data.user_id:
        raise HTTPException(status_code=400, detail="user_id is required")
    if not data.whatsapp_number or not data.webhook_url:
        raise HTTPException(status_code=400, detail="whatsapp_number and webhook_url are required for WhatsApp setup")

    user = verify_config_access(data.user_id, current_user, db)
    agent = db.query(Agent).filter(Agent.user_id == user.id).first()
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found for user")

    fields = data.model_dump(exclude={"user_id"}, exclude_none=True)
    fields.setdefault("is_active", True)
    config = upsert_whatsapp_config(db, user.id, **fields)
    seeded = seed_default_templates(db, get_tenant_tables(agent.agent_prefix), agent.id)

    return {
        "success": True,
        "message": "WhatsApp configuration set up successfully",
        "whatsapp_config": serialize_config(config),
        "templates_created": seeded,
        "user_id": user.id,
    }


@router.get("/get-whatsapp-config")
async def get_whatsapp_config(
    user_id: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = verify_config_access(user_id, current_user, db)
    config = get_config(db, user.id)
    return {
        "success": True,
        "message": "WhatsApp configuration found" if config else "No WhatsApp configuration set up for this user",
        "user": {"id": user.id, "email": user.email},
        "whatsapp_config": serialize_config(config),
        "user_id": user.id,
    }


@router.put("/update-whatsapp-config")
async def update_whatsapp_config(
    data: WhatsAppConfigRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = verify_config_access(data.user_id, current_user, db)
    if get_config(db, user.id) is None:
        raise HTTPException(status_code=404, detail="WhatsApp configuration not found")

    fields = data.model_dump(exclude={"user_id"}, exclude_none=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")

    config = upsert_whatsapp_config(db, user.id, **fields)
    return {
        "success": True,
        "message": "WhatsApp configuration updated successfully",
        "whatsapp_config": serialize_config(config),
        "user_id": user.id,
    }


@router.delete("/delete-whatsapp-config")
async def delete_whatsapp_config(
    user_id: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = verify_config_access(user_id, current_user, db)
    config = get_config(db, user.id)
    if config is None:
        raise HTTPException(status_code=404, detail="WhatsApp configuration not found")

    db.delete(config)
    db.commit()
    logger.info(f"WhatsApp configuration deleted for user {user.id}")
    return {"success": True, "message": "WhatsApp configuration deleted successfully", "user_id": user.id}


@router.get("/get-whatsapp-profile-pic")
async def get_whatsapp_profile_pic(
    phone: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    _agent: Agent = Depends(get_current_agent),
    db: Session = Depends(get_db),
):
    """Customer profile picture from WhatsApp, when the customer shares one"""
    if not phone:
        raise HTTPException(status_code=400, detail="Phone number is required")

    config = get_active_config(db, current_user.id)
    if not config or not config.api_key:
        raise HTTPException(status_code=400, detail="WhatsApp not configured")

    try:
        url = await WhatsAppClient.from_config(config).get_profile_picture_url(phone)
    except WhatsAppAPIError as e:
        logger.error(f"Profile picture lookup failed for {phone}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch profile picture") from e

    if not url:
        return {"success": False, "message": "Profile picture not available"}
    return {"success": True, "profile_image_url": url}
