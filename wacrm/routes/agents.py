import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .. import storage
from ..auth import get_current_agent, get_current_user, require_admin
from ..cache import cache
from ..database import engine, get_db
from ..domain.invoices.service import template_image_cache_key
from ..models import Agent, User, WhatsAppMessageLog, generate_user_id
from ..models_tenant import create_tenant_tables, drop_tenant_tables
from ..security_utils import MIN_PASSWORD_LENGTH, hash_password
from ..services.image_uploads import decode_base64_file
from ..services.realtime import manager
from ..services.whatsapp_setup import get_config, serialize_config, upsert_whatsapp_config

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Agents"])

BUSINESS_TYPES = ("product", "service")
TEMPLATE_IMAGE_TYPES = {"image/png": "png", "image/jpeg": "jpg", "image/jpg": "jpg"}

# Agent columns an agent may edit on their own profile
EDITABLE_AGENT_FIELDS = {"address", "business_email", "contact_number", "website", "invoice_template_path"}
EDITABLE_USER_FIELDS = {"name", "email"}


class AgentCreate(BaseModel):
    agent_name: Optional[str] = None
    email: Optional[str] = None
    temp_password: Optional[str] = None
    business_type: Optional[str] = None
    whatsapp_number: Optional[str] = None
    webhook_url: Optional[str] = None
    api_key: Optional[str] = None
    business_account_id: Optional[str] = None
    phone_number_id: Optional[str] = None


class CreditsAdd(BaseModel):
    agent_id: Any = None
    amount: Any = None


class AgentUpdate(BaseModel):
    agent_id: Any = None
    agent_name: Optional[str] = None
    email: Optional[str] = None
    temp_password: Optional[str] = None
    business_type: Optional[str] = None
    whatsapp_number: Optional[str] = None
    webhook_url: Optional[str] = None
    api_key: Optional[str] = None
    business_account_id: Optional[str] = None
    phone_number_id: Optional[str] = None
    is_active: Optional[bool] = None


class AgentDetailsUpdate(BaseModel):
    user_updates: Optional[dict] = None
    agent_updates: Optional[dict] = None


class TemplatePathUpdate(BaseModel):
    invoice_template_path: Optional[str] = None


class InvoiceTemplateUpload(BaseModel):
    fileBase64: Optional[str] = None
    fileType: Optional[str] = None
    fileName: Optional[str] = None


def generate_agent_prefix(db: Session, user_id: str) -> str:
    """agt_ + the first four characters of a UUID, retried until unused"""
    candidate = f"agt_{user_id.replace('-', '')[:4]}".lower()
    while db.query(Agent).filter(Agent.agent_prefix == candidate).first():
        candidate = f"agt_{generate_user_id().replace('-', '')[:4]}"
    return candidate


def serialize_agent(agent: Agent, db: Session) -> dict:
    user = agent.user
    return {
        "id": agent.id,
        "user_id": agent.user_id,
        "agent_prefix": agent.agent_prefix,
        "business_type": agent.business_type,
        "credits": agent.credits or 0,
        "created_by": agent.created_by,
        "created_at": agent.created_at,
        "user_name": user.name if user else None,
        "user_email": user.email if user else None,
        "whatsapp_config": serialize_config(get_config(db, agent.user_id)),
    }


def load_agent(db: Session, agent_id) -> Agent:
    try:
        agent_pk = int(agent_id)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail="agent_id is required") from e
    agent = db.query(Agent).filter(Agent.id == agent_pk).first()
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent


# ==================== Admin: agent lifecycle ====================


@router.post("/add-agent", status_code=201)
async def add_agent(
    data: AgentCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Create an agent's login, tenant record, optional WhatsApp setup and tables"""
    if not data.agent_name or not data.email or not data.temp_password:
        raise HTTPException(status_code=400, detail="agent_name, email, and temp_password are required")
    if data.business_type not in BUSINESS_TYPES:
        raise HTTPException(status_code=400, detail="business_type must be 'product' or 'service'")
    if len(data.temp_password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )

    email = data.email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=400, detail="User with this email already exists")

    try:
        user = User(
            name=data.agent_name.strip(),
            email=email,
            password_hash=hash_password(data.temp_password),
            role="agent",
        )
        db.add(user)
        db.flush()

        agent = Agent(
            user_id=user.id,
            agent_prefix=generate_agent_prefix(db, user.id),
            business_type=data.business_type,
            credits=0,
            created_by=admin.id,
        )
        db.add(agent)

        config = None
        if data.whatsapp_number and data.webhook_url:
            config = upsert_whatsapp_config(
                db,
                user.id,
                commit=False,
                whatsapp_number=data.whatsapp_number,
                webhook_url=data.webhook_url,
                api_key=data.api_key,
                business_account_id=data.business_account_id,
                phone_number_id=data.phone_number_id,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(agent)
    create_tenant_tables(agent.agent_prefix, engine)
    logger.info(f"✅ Agent {agent.id} ({agent.agent_prefix}) created by {admin.email}")

    return {
        "success": True,
        "message": "Agent created successfully",
        "user": {"id": user.id, "name": user.name, "email": user.email, "role": user.role},
        "agent": serialize_agent(agent, db),
        "whatsapp_config": serialize_config(config)
        or {"info": "WhatsApp configuration not provided. Set up WhatsApp integration separately."},
    }


@router.post("/add-credits")
async def add_credits(
    data: CreditsAdd,
    _admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        amount = float(data.amount)
    except (TypeError, ValueError):
        amount = 0
    if not data.agent_id or amount <= 0:
        raise HTTPException(status_code=400, detail="Invalid input: agent_id and positive amount required")

    agent = load_agent(db, data.agent_id)
    agent.credits = (agent.credits or 0) + amount
    db.commit()
    db.refresh(agent)

    await manager.emit_agent_status(agent.id, {"type": "credits_updated", "credits": agent.credits})
    logger.info(f"Added {amount} credits to agent {agent.id}, balance {agent.credits}")
    return {"success": True, "message": "Credits added successfully", "credits": agent.credits}


@router.put("/update-agent")
async def update_agent(
    data: AgentUpdate,
    _admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if not data.agent_id:
        raise HTTPException(status_code=400, detail="agent_id is required")
    if data.business_type and data.business_type not in BUSINESS_TYPES:
        raise HTTPException(status_code=400, detail="business_type must be 'product' or 'service'")

    agent = load_agent(db, data.agent_id)
    user = agent.user
    changes = []

    if data.agent_name:
        user.name = data.agent_name.strip()
        changes.append("name")
    if data.email:
        email = data.email.strip().lower()
        if db.query(User).filter(User.email == email, User.id != user.id).first():
            raise HTTPException(status_code=400, detail="User with this email already exists")
        user.email = email
        changes.append("email")
    if data.temp_password:
        if len(data.temp_password) < MIN_PASSWORD_LENGTH:
            raise HTTPException(
                status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )
        user.password_hash = hash_password(data.temp_password)
        changes.append("password")
    if data.business_type:
        agent.business_type = data.business_type
        changes.append("business_type")

    whatsapp_fields = data.model_dump(
        include={"whatsapp_number", "webhook_url", "api_key", "business_account_id", "phone_number_id", "is_active"},
        exclude_none=True,
    )
    if whatsapp_fields:
        if get_config(db, user.id) is None and not whatsapp_fields.get("whatsapp_number"):
            raise HTTPException(status_code=400, detail="whatsapp_number is required to create a WhatsApp configuration")
        upsert_whatsapp_config(db, user.id, commit=False, **whatsapp_fields)
        changes.append("whatsapp_config")

    db.commit()
    db.refresh(agent)
    logger.info(f"Agent {agent.id} updated: {changes}")
    return {
        "success": True,
        "message": "Agent updated successfully",
        "agent": serialize_agent(agent, db),
        "changes_made": changes,
    }


@router.get("/get-agents")
async def get_agents(_admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    agents = db.query(Agent).order_by(Agent.created_at.desc(), Agent.id.desc()).all()
    return {"success": True, "agents": [serialize_agent(agent, db) for agent in agents]}


@router.delete("/delete-agent/{agent_id}")
async def delete_agent(
    agent_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Remove an agent with all of its data"""
    agent = load_agent(db, agent_id)
    user = agent.user
    prefix = agent.agent_prefix

    db.query(WhatsAppMessageLog).filter(
        (WhatsAppMessageLog.agent_id == agent.id) | (WhatsAppMessageLog.user_id == agent.user_id)
    ).delete(synchronize_session=False)
    config = get_config(db, agent.user_id)
    if config:
        db.delete(config)
    db.delete(agent)
    if user:
        db.delete(user)
    db.commit()

    # Tables are dropped only once the rows are committed
    drop_tenant_tables(prefix, engine)

    cache.delete_pattern(f"*:{agent_id}:*")
    cache.delete(f"chat_list:{agent_id}")
    logger.info(f"🗑️ Agent {agent_id} ({prefix}) deleted by {admin.email}")
    return {"success": True, "message": "Agent deleted successfully", "agent_prefix": prefix}


# ==================== Agent self-service ====================


@router.get("/get-agent-profile")
async def get_agent_profile(
    current_user: User = Depends(get_current_user),
    agent: Agent = Depends(get_current_agent),
    db: Session = Depends(get_db),
):
    config = get_config(db, current_user.id)
    return {
        "success": True,
        "agent": {
            "id": agent.id,
            "user_id": agent.user_id,
            "agent_prefix": agent.agent_prefix,
            "business_type": agent.business_type,
            "name": current_user.name or "Agent",
            "email": current_user.email or "",
            "role": current_user.role,
            "whatsapp_number": config.whatsapp_number if config else "",
            "address": agent.address or "",
            "business_email": agent.business_email or "",
            "contact_number": agent.contact_number or "",
            "website": agent.website or "",
            "invoice_template_path": agent.invoice_template_path,
            "credits": agent.credits or 0,
        },
    }


@router.put("/update-agent-details")
async def update_agent_details(
    data: AgentDetailsUpdate,
    current_user: User = Depends(get_current_user),
    agent: Agent = Depends(get_current_agent),
    db: Session = Depends(get_db),
):
    """Update the caller's user and agent records together"""
    user_updates = data.user_updates or {}
    agent_updates = data.agent_updates or {}

    unknown = (set(user_updates) - EDITABLE_USER_FIELDS) | (set(agent_updates) - EDITABLE_AGENT_FIELDS)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    if not user_updates and not agent_updates:
        raise HTTPException(status_code=400, detail="No fields to update")

    try:
        if "email" in user_updates:
            email = (user_updates["email"] or "").strip().lower()
            if not email:
                raise HTTPException(status_code=400, detail="Email cannot be empty")
            if db.query(User).filter(User.email == email, User.id != current_user.id).first():
                raise HTTPException(status_code=400, detail="User with this email already exists")
            user_updates["email"] = email
        for key, value in user_updates.items():
            setattr(current_user, key, value)
        for key, value in agent_updates.items():
            setattr(agent, key, value)
        db.commit()
    except Exception:
        db.rollback()
        raise

    if "invoice_template_path" in agent_updates:
        cache.delete(template_image_cache_key(agent.id))
    return {"success": True, "message": "Agent details updated successfully"}


@router.put("/update-agent-template-path")
async def update_agent_template_path(
    data: TemplatePathUpdate,
    agent: Agent = Depends(get_current_agent),
    db: Session = Depends(get_db),
):
    if data.invoice_template_path is None:
        raise HTTPException(status_code=400, detail="invoice_template_path is required")

    agent.invoice_template_path = data.invoice_template_path or None
    db.commit()
    cache.delete(template_image_cache_key(agent.id))
    return {"success": True, "message": "Template path updated successfully"}


@router.post("/upload-invoice-template")
async def upload_invoice_template(
    data: InvoiceTemplateUpload,
    agent: Agent = Depends(get_current_agent),
    db: Session = Depends(get_db),
):
    """Store the background image invoices are drawn on"""
    if not data.fileBase64:
        raise HTTPException(status_code=400, detail="file is required")
    extension = TEMPLATE_IMAGE_TYPES.get((data.fileType or "").lower())
    if not extension:
        raise HTTPException(status_code=400, detail="Only PNG and JPEG images are allowed")

    try:
        content = decode_base64_file(data.fileBase64)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid file data") from e

    key = f"{agent.agent_prefix}/invoice_template/invoice-template.{extension}"
    try:
        storage.upload_media(agent.agent_prefix, content, content_type=data.fileType, key=key)
    except storage.StorageError as e:
        raise HTTPException(status_code=500, detail="Failed to upload file to storage") from e

    agent.invoice_template_path = key
    db.commit()
    cache.delete(template_image_cache_key(agent.id))
    logger.info(f"Invoice template uploaded for agent {agent.id}: {key}")
    return {"success": True, "message": "Invoice template uploaded successfully", "filePath": key}
