import json
import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import delete, insert, select, update
from sqlalchemy.orm import Session

from ..auth import get_current_agent
from ..database import get_db
from ..models import Agent
from ..models_tenant import get_tenant_tables, row_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/manage-templates", tags=["Templates"])

DEFAULT_TEMPLATE_CATEGORY = "utility"
DEFAULT_TEMPLATE_LANGUAGE = "en_US"


class TemplateCreate(BaseModel):
    name: Any = None
    body: Any = None
    category: Optional[str] = None
    language: Optional[str] = None
    is_active: Optional[bool] = None


class TemplateUpdate(BaseModel):
    id: Any = None
    name: Optional[str] = None
    body: Any = None
    category: Optional[str] = None
    language: Optional[str] = None
    is_active: Optional[bool] = None


def template_matches(template: dict, search: str) -> bool:
    """Case-insensitive match on the name or anywhere in the template body"""
    needle = search.lower()
    if needle in (template.get("name") or "").lower():
        return True
    return needle in json.dumps(template.get("body") or {}, ensure_ascii=False).lower()


def find_by_name(db: Session, templates, agent_id: int, name: str) -> Optional[dict]:
    row = db.execute(
        select(templates).where(templates.c.agent_id == agent_id, templates.c.name == name)
    ).first()
    return row_to_dict(row)


@router.get("")
async def list_templates(
    search: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    limit: int = Query(50),
    offset: int = Query(0),
    agent: Agent = Depends(get_current_agent),
    db: Session = Depends(get_db),
):
    """Message templates newest first"""
    templates = get_tenant_tables(agent.agent_prefix).templates
    query = select(templates).where(templates.c.agent_id == agent.id)
    if is_active is not None:
        query = query.where(templates.c.is_active.is_(is_active))
    query = query.order_by(templates.c.created_at.desc(), templates.c.id.desc())

    results = [row_to_dict(row) for row in db.execute(query)]
    if search:
        results = [t for t in results if template_matches(t, search)]
    if offset > 0:
        results = results[offset:]
    if limit > 0:
        results = results[:limit]
    return {"success": True, "templates": results}


@router.post("", status_code=201)
async def create_template(
    data: TemplateCreate,
    agent: Agent = Depends(get_current_agent),
    db: Session = Depends(get_db),
):
    if not isinstance(data.name, str) or not data.name.strip():
        raise HTTPException(status_code=400, detail="Template name is required")
    if not isinstance(data.body, dict):
        raise HTTPException(status_code=400, detail="Template body is required")

    templates = get_tenant_tables(agent.agent_prefix).templates
    name = data.name.strip()
    if find_by_name(db, templates, agent.id, name):
        raise HTTPException(status_code=409, detail="Template name already exists")

    now = datetime.utcnow()
    result = db.execute(
        insert(templates).values(
            agent_id=agent.id,
            name=name,
            body=data.body,
            category=data.category or DEFAULT_TEMPLATE_CATEGORY,
            language=data.language or DEFAULT_TEMPLATE_LANGUAGE,
            is_active=True if data.is_active is None else data.is_active,
            created_at=now,
            updated_at=now,
        )
    )
    db.commit()
    template = row_to_dict(
        db.execute(select(templates).where(templates.c.id == result.inserted_primary_key[0])).first()
    )
    logger.info(f"Template '{name}' created for agent {agent.id}")
    return {"success": True, "message": "Template created successfully", "template": template}


@router.put("")
async def update_template(
    data: TemplateUpdate,
    agent: Agent = Depends(get_current_agent),
    db: Session = Depends(get_db),
):
    if not isinstance(data.id, int) or isinstance(data.id, bool) or not data.id:
        raise HTTPException(status_code=400, detail="Template ID is required")

    templates = get_tenant_tables(agent.agent_prefix).templates
    values = data.model_dump(exclude_unset=True, exclude={"id"})
    if "name" in values:
        if not values["name"] or not values["name"].strip():
            raise HTTPException(status_code=400, detail="Template name cannot be empty")
        values["name"] = values["name"].strip()
        existing = find_by_name(db, templates, agent.id, values["name"])
        if existing and existing["id"] != data.id:
            raise HTTPException(status_code=409, detail="Template name already exists")
    if "body" in values and not isinstance(values["body"], dict):
        raise HTTPException(status_code=400, detail="Template body must be an object")
    values["updated_at"] = datetime.utcnow()

    result = db.execute(
        update(templates).where(templates.c.id == data.id, templates.c.agent_id == agent.id).values(**values)
    )
    db.commit()
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Template not found")

    template = row_to_dict(db.execute(select(templates).where(templates.c.id == data.id)).first())
    return {"success": True, "message": "Template updated successfully", "template": template}


@router.delete("")
async def delete_template(
    id: Optional[str] = Query(None),
    agent: Agent = Depends(get_current_agent),
    db: Session = Depends(get_db),
):
    if not id or not id.isdigit():
        raise HTTPException(status_code=400, detail="Valid template ID is required")

    templates = get_tenant_tables(agent.agent_prefix).templates
    result = db.execute(delete(templates).where(templates.c.id == int(id), templates.c.agent_id == agent.id))
    db.commit()
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Template not found")
    logger.info(f"Template {id} deleted for agent {agent.id}")
    return {"success": True, "message": "Template deleted successfully"}
