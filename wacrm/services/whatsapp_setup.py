"""
WhatsApp configuration management
Creates and updates an agent's Cloud API credentials and seeds the message
templates every agent starts with
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import insert, select
from sqlalchemy.orm import Session

from ..models import WhatsAppConfiguration
from ..models_tenant import TenantTables
from ..security_utils import mask_sensitive_data

logger = logging.getLogger(__name__)

CONFIG_FIELDS = (
    "whatsapp_number",
    "webhook_url",
    "api_key",
    "business_account_id",
    "phone_number_id",
    "whatsapp_app_secret",
    "verify_token",
    "is_active",
)

WELCOME_TEMPLATE_BODY = {
    "name": "welcome_template",
    "language": {"code": "en_US"},
    "components": [
        {
            "text": "Welcome to {{business_name}}",
            "type": "header",
            "format": "TEXT",
            "example": {"header_text_named_params": [{"example": "IDesign Solutions", "param_name": "business_name"}]},
        },
        {
            "text": (
                "Thank you for choosing us. We're happy to have you with us and look forward to working "
                "together.\n\nIf you have any requirements, references, or questions, feel free to share "
                "them anytime. We're here to help 😊\n\nLooking forward to working with you!\n"
                "{{business_name}} Team"
            ),
            "type": "body",
            "example": {"body_text_named_params": [{"example": "IDesign Solutions", "param_name": "business_name"}]},
        },
        {"type": "buttons", "buttons": [{"text": "Send Message", "type": "QUICK_REPLY"}]},
    ],
}

INVOICE_TEMPLATE_BODY = {
    "name": "invoice_template",
    "language": {"code": "en_US"},
    "components": [
        {"text": "Your invoice is ready!", "type": "HEADER", "format": "TEXT"},
        {
            "text": (
                "Hello {{customer}},\n\nYour invoice for Order {{order_id}} is ready!\n"
                "Total Amount: {{total}}\n\nDownload your invoice: {{invoice_url}}\n\n"
                "Thank you for your business!"
            ),
            "type": "BODY",
            "example": {
                "body_text_named_params": [
                    {"example": "Kusal Sirimanna", "param_name": "customer"},
                    {"example": "000001", "param_name": "order_id"},
                    {"example": "LKR 5000", "param_name": "total"},
                    {"example": "www.example.com", "param_name": "invoice_url"},
                ]
            },
        },
        {"type": "BUTTONS", "buttons": [{"text": "Send Message", "type": "QUICK_REPLY"}]},
    ],
}

DEFAULT_TEMPLATES = [WELCOME_TEMPLATE_BODY, INVOICE_TEMPLATE_BODY]


def seed_default_templates(db: Session, tables: TenantTables, agent_id: int) -> list[str]:
    """Insert the default templates an agent does not have yet. Returns the names added."""
    templates = tables.templates
    existing = set(
        db.execute(select(templates.c.name).where(templates.c.agent_id == agent_id)).scalars().all()
    )

    added = []
    now = datetime.utcnow()
    for body in DEFAULT_TEMPLATES:
        if body["name"] in existing:
            continue
        db.execute(
            insert(templates).values(
                agent_id=agent_id,
                name=body["name"],
                category="utility",
                language="en_US",
                body=body,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
        )
        added.append(body["name"])
    db.commit()

    if added:
        logger.info(f"Seeded templates {added} for agent {agent_id}")
    return added


def get_config(db: Session, user_id: str) -> Optional[WhatsAppConfiguration]:
    return db.query(WhatsAppConfiguration).filter(WhatsAppConfiguration.user_id == user_id).first()


def upsert_whatsapp_config(db: Session, user_id: str, commit: bool = True, **fields) -> WhatsAppConfiguration:
    """Create the user's configuration or update the fields given (None values are ignored)"""
    config = get_config(db, user_id)
    values = {key: value for key, value in fields.items() if key in CONFIG_FIELDS and value is not None}

    if config is None:
        config = WhatsAppConfiguration(user_id=user_id, **values)
        db.add(config)
        logger.info(f"WhatsApp configuration created for user {user_id}")
    else:
        for key, value in values.items():
            setattr(config, key, value)
        logger.info(f"WhatsApp configuration updated for user {user_id}: {sorted(values)}")

    if commit:
        db.commit()
        db.refresh(config)
    return config


def serialize_config(config: Optional[WhatsAppConfiguration], reveal_secrets: bool = False) -> Optional[dict]:
    if config is None:
        return None
    data = {
        "id": config.id,
        "user_id": config.user_id,
        "whatsapp_number": config.whatsapp_number,
        "webhook_url": config.webhook_url,
        "api_key": config.api_key,
        "business_account_id": config.business_account_id,
        "phone_number_id": config.phone_number_id,
        "whatsapp_app_secret": config.whatsapp_app_secret,
        "is_active": bool(config.is_active),
        "created_at": config.created_at,
        "updated_at": config.updated_at,
    }
    if not reveal_secrets:
        data["api_key"] = mask_sensitive_data(config.api_key) if config.api_key else None
        data["whatsapp_app_secret"] = mask_sensitive_data(config.whatsapp_app_secret) if config.whatsapp_app_secret else None
    return data
