"""
Per-agent tables.

Every agent owns a private set of tables named ``{agent_prefix}_<name>``.
They are plain SQLAlchemy Core tables built on demand for a prefix and kept
in a process-wide registry so repeated lookups reuse the same objects.
"""

import logging
import re
import uuid
from threading import Lock
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

logger = logging.getLogger(__name__)

tenant_metadata = MetaData()

_registry: dict[str, "TenantTables"] = {}
_registry_lock = Lock()

AGENT_PREFIX_PATTERN = re.compile(r"^[a-z][a-z0-9_]{2,40}$")


def generate_uuid():
    return str(uuid.uuid4())


def validate_agent_prefix(prefix: str) -> str:
    """Reject prefixes that are not safe to splice into a table name"""
    if not prefix or not AGENT_PREFIX_PATTERN.match(prefix):
        raise ValueError(f"Invalid agent prefix: {prefix!r}")
    return prefix


class TenantTables:
    """All tables belonging to one agent prefix"""

    def __init__(self, prefix: str, metadata: MetaData):
        self.prefix = prefix
        p = prefix

        self.customers = Table(
            f"{p}_customers",
            metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("agent_id", Integer, nullable=True),
            Column("name", String(255), nullable=False),
            Column("phone", String(50), nullable=False, index=True),
            Column("email", String(255), nullable=True),
            Column("address", Text, nullable=True),
            Column("lead_stage", String(50), default="New Lead"),
            Column("interest_stage", String(50), nullable=True),
            Column("conversion_stage", String(50), nullable=True),
            Column("language", String(10), default="en"),
            Column("ai_enabled", Boolean, default=True),
            Column("last_user_message_time", DateTime, nullable=True),
            Column("profile_picture_url", String(500), nullable=True),
            Column("created_at", DateTime, server_default=func.now()),
            Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now()),
        )

        self.messages = Table(
            f"{p}_messages",
            metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("customer_id", Integer, ForeignKey(f"{p}_customers.id", ondelete="CASCADE"), index=True),
            Column("message", Text, nullable=True),
            Column("direction", String(10), nullable=False),  # inbound, outbound
            Column("timestamp", DateTime, server_default=func.now(), index=True),
            Column("is_read", Boolean, default=False),
            Column("media_type", String(20), default="none"),
            Column("media_url", String(500), nullable=True),
            Column("caption", Text, nullable=True),
            Column("sent_by", String(20), nullable=True),  # agent, chatbot
            Column("whatsapp_message_id", String(255), nullable=True),
        )

        self.orders = Table(
            f"{p}_orders",
            metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("customer_id", Integer, ForeignKey(f"{p}_customers.id", ondelete="CASCADE"), index=True),
            Column("total_amount", Float, default=0),
            Column("status", String(20), default="pending"),
            Column("notes", Text, nullable=True),
            Column("shipping_address", Text, nullable=True),
            Column("created_at", DateTime, server_default=func.now()),
            Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now()),
        )

        self.order_items = Table(
            f"{p}_order_items",
            metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("order_id", Integer, ForeignKey(f"{p}_orders.id", ondelete="CASCADE"), index=True),
            Column("name", String(255), nullable=False),
            Column("quantity", Float, nullable=False),
            Column("price", Float, nullable=False),
            Column("total", Float, nullable=False),
            # Set when the line was picked from a service package
            Column("package_id", String(36), nullable=True, index=True),
            Column("created_at", DateTime, server_default=func.now()),
        )

        self.invoices = Table(
            f"{p}_orders_invoices",
            metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("order_id", Integer, ForeignKey(f"{p}_orders.id", ondelete="CASCADE"), index=True),
            Column("customer_id", Integer, nullable=True),
            Column("name", String(255), nullable=False),
            Column("pdf_url", String(500), nullable=False),
            Column("status", String(20), default="generated"),  # generated, sent, paid
            Column("discount_percentage", Float, default=0),
            Column("generated_at", DateTime, server_default=func.now()),
            Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now()),
        )

        self.appointments = Table(
            f"{p}_appointments",
            metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("customer_id", Integer, ForeignKey(f"{p}_customers.id", ondelete="CASCADE"), index=True),
            Column("title", String(255), nullable=False),
            Column("appointment_date", DateTime, nullable=False),
            Column("duration_minutes", Integer, default=60),
            Column("status", String(20), default="scheduled"),
            Column("notes", Text, nullable=True),
            Column("created_at", DateTime, server_default=func.now()),
            Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now()),
        )

        self.services = Table(
            f"{p}_services",
            metadata,
            Column("id", String(36), primary_key=True, default=generate_uuid),
            Column("agent_id", Integer, nullable=False),
            Column("service_name", String(255), nullable=False),
            Column("description", Text, nullable=True),
            Column("image_urls", JSON, nullable=True),
            Column("is_active", Boolean, default=True),
            Column("created_at", DateTime, server_default=func.now()),
            Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now()),
            UniqueConstraint("agent_id", "service_name", name=f"uq_{p}_services_name"),
        )

        self.service_packages = Table(
            f"{p}_service_packages",
            metadata,
            Column("id", String(36), primary_key=True, default=generate_uuid),
            Column("service_id", String(36), ForeignKey(f"{p}_services.id", ondelete="CASCADE"), index=True),
            Column("package_name", String(255), nullable=False),
            Column("price", Float, nullable=False, default=0),
            Column("currency", String(10), default="LKR"),
            Column("discount", Float, nullable=True),
            Column("description", Text, nullable=True),
            Column("is_active", Boolean, default=True),
            Column("created_at", DateTime, server_default=func.now()),
            Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now()),
        )

        self.templates = Table(
            f"{p}_templates",
            metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("agent_id", Integer, nullable=False),
            Column("name", String(255), nullable=False),
            Column("category", String(50), default="utility"),
            Column("language", String(20), default="en_US"),
            Column("body", JSON, nullable=False),
            Column("is_active", Boolean, default=True),
            Column("created_at", DateTime, server_default=func.now()),
            Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now()),
            UniqueConstraint("agent_id", "name", name=f"uq_{p}_templates_name"),
        )

        self.inventory_categories = Table(
            f"{p}_inventory_categories",
            metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("name", String(50), nullable=False, unique=True),
            Column("description", Text, nullable=True),
            Column("color", String(7), nullable=True),
            Column("created_at", DateTime, server_default=func.now()),
            Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now()),
        )

        self.inventory_items = Table(
            f"{p}_inventory_items",
            metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("name", String(255), nullable=False),
            Column("quantity", Float, default=0),
            Column("price", Float, default=0),
            Column(
                "category_id",
                Integer,
                ForeignKey(f"{p}_inventory_categories.id", ondelete="SET NULL"),
                nullable=True,
            ),
            Column("description", Text, nullable=True),
            Column("sku", String(100), nullable=True),
            Column("image_urls", JSON, nullable=True),
            Column("created_at", DateTime, server_default=func.now()),
            Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now()),
        )

    def all(self) -> list[Table]:
        """Tables in dependency order (parents first)"""
        return [
            self.customers,
            self.messages,
            self.orders,
            self.order_items,
            self.invoices,
            self.appointments,
            self.services,
            self.service_packages,
            self.templates,
            self.inventory_categories,
            self.inventory_items,
        ]


def row_to_dict(row) -> Optional[dict]:
    """Plain dict for a Core result row"""
    if row is None:
        return None
    return dict(row._mapping)


def get_tenant_tables(prefix: str) -> TenantTables:
    """Return the table set for an agent prefix, building it on first use"""
    prefix = validate_agent_prefix(prefix.lower())
    tables = _registry.get(prefix)
    if tables is not None:
        return tables
    with _registry_lock:
        tables = _registry.get(prefix)
        if tables is None:
            tables = TenantTables(prefix, tenant_metadata)
            _registry[prefix] = tables
    return tables


def create_tenant_tables(prefix: str, bind) -> TenantTables:
    """Create (if missing) every table for an agent"""
    tables = get_tenant_tables(prefix)
    tenant_metadata.create_all(bind=bind, tables=tables.all(), checkfirst=True)
    logger.info(f"Tenant tables ready for prefix {tables.prefix}")
    return tables


def drop_tenant_tables(prefix: str, bind) -> None:
    """Drop every table for an agent and forget it"""
    tables = get_tenant_tables(prefix)
    tenant_metadata.drop_all(bind=bind, tables=list(reversed(tables.all())), checkfirst=True)
    with _registry_lock:
        for table in tables.all():
            tenant_metadata.remove(table)
        _registry.pop(tables.prefix, None)
    logger.info(f"Tenant tables dropped for prefix {tables.prefix}")
