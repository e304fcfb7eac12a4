import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_user_id():
    """Generate the UUID primary key for a user"""
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_user_id)
    name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=True)
    role = Column(String(20), default="user", nullable=False)  # admin, agent, user
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    agent = relationship("Agent", back_populates="user", uselist=False, foreign_keys="Agent.user_id")
    whatsapp_config = relationship(
        "WhatsAppConfiguration", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )


class Agent(Base):
    """A tenant business. All of its CRM data lives in tables named after agent_prefix."""

    __tablename__ = "agents"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    agent_prefix = Column(String(50), unique=True, index=True, nullable=False)
    business_type = Column(String(20), nullable=False, default="product")  # product, service
    credits = Column(Float, default=0, nullable=False)
    # Business details printed on invoices
    address = Column(Text, nullable=True)
    business_email = Column(String(255), nullable=True)
    contact_number = Column(String(50), nullable=True)
    website = Column(String(255), nullable=True)
    invoice_template_path = Column(String(500), nullable=True)  # R2 key of invoice background
    created_by = Column(String(36), nullable=True)  # Admin user id
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="agent", foreign_keys=[user_id])


class WhatsAppConfiguration(Base):
    __tablename__ = "whatsapp_configuration"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    whatsapp_number = Column(String(50), nullable=False)
    webhook_url = Column(String(500), nullable=True)  # AI chatbot endpoint for inbound messages
    api_key = Column(Text, nullable=True)  # Graph API access token
    business_account_id = Column(String(100), nullable=True)
    phone_number_id = Column(String(100), index=True, nullable=True)
    whatsapp_app_secret = Column(String(255), nullable=True)
    verify_token = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="whatsapp_config")


class WhatsAppMessageLog(Base):
    """Delivery log for messages sent through the Graph API"""

    __tablename__ = "whatsapp_message_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    agent_id = Column(Integer, ForeignKey("agents.id"), nullable=True)
    customer_phone = Column(String(50), nullable=False)
    message_type = Column(String(50), nullable=False)  # text, template, image, ...
    category = Column(String(50), nullable=True)  # utility, marketing, chatbot, invoice
    status = Column(String(50), default="sent")  # sent, delivered, read, failed
    whatsapp_message_id = Column(String(255), index=True, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
