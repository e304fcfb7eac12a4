"""
Invoice delivery over WhatsApp

Outside the free-form window the agent's approved ``invoice_template`` is sent
with its body parameters filled from the invoice. Inside the window the PDF is
sent as a document with a caption. Either way the outbound message is stored
in the conversation history.
"""

import logging
import re
from datetime import datetime
from typing import Optional

import httpx
from fastapi import HTTPException
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .. import storage
from ..config import INVOICE_CURRENCY, WHATSAPP_HTTP_TIMEOUT_SECONDS
from ..models_tenant import TenantTables, row_to_dict
from .message_store import log_whatsapp_message, publish_message, store_message
from .messaging_context import MessagingContext
from .whatsapp_service import (
    WhatsAppAPIError,
    first_message_id,
    is_within_free_form_window,
    normalize_phone,
)

logger = logging.getLogger(__name__)

INVOICE_TEMPLATE_NAME = "invoice_template"
DEFAULT_CUSTOMER_NAME = "Valued Customer"
DEFAULT_PARAMETER_NAMES = ["customer", "order_id", "total", "invoice_url"]

PARAMETER_ALIASES = {
    "customer": ("customer", "customer_name", "name"),
    "order": ("order_id", "order", "order_number", "order_no"),
    "total": ("total", "amount", "total_amount"),
    "url": ("invoice_url", "url", "link"),
}

PLACEHOLDER_PATTERN = re.compile(r"\{\{([^}]+)\}\}")


class InvoiceMessage:
    """Values an invoice notification is built from"""

    def __init__(
        self,
        customer_name: Optional[str],
        order_number: str,
        total_amount,
        invoice_url: str,
        invoice_name: str,
        currency: str = INVOICE_CURRENCY,
    ):
        self.customer_name = customer_name or DEFAULT_CUSTOMER_NAME
        self.order_number = str(order_number)
        self.total_amount = float(total_amount)
        self.invoice_url = invoice_url
        self.invoice_name = invoice_name
        self.currency = currency

    @property
    def formatted_total(self) -> str:
        return f"{self.currency} {self.total_amount:.2f}"

    def positional_values(self) -> list[str]:
        return [self.customer_name, self.order_number, self.formatted_total, self.invoice_url]

    def value_for(self, name: str) -> Optional[str]:
        """Value for a template parameter name, None when the name is not recognised"""
        values = {
            "customer": self.customer_name,
            "order": self.order_number,
            "total": self.formatted_total,
            "url": self.invoice_url,
        }
        for key, aliases in PARAMETER_ALIASES.items():
            if name in aliases:
                return values[key]
        return None

    def caption(self) -> str:
        return (
            "*Your invoice is ready!*\n\n"
            f"Hello {self.customer_name},\n\n"
            f"Your invoice for Order {self.order_number} is ready!\n"
            f"Total Amount: {self.formatted_total}\n\n"
            "Thank you for your business!"
        )

    @property
    def document_filename(self) -> str:
        return self.invoice_name or f"invoice_{self.order_number}.pdf"


# ============================================================================
# TEMPLATE HELPERS
# ============================================================================


def template_language(body: dict) -> str:
    """Language code of a stored template body (string or {code: ...})"""
    language = body.get("language")
    if isinstance(language, str) and language:
        return language
    if isinstance(language, dict) and language.get("code"):
        return language["code"]
    return "en"


def find_body_component(body: dict) -> Optional[dict]:
    for component in body.get("components") or []:
        if str(component.get("type", "")).lower() == "body":
            return component
    return None


def parameter_name(param: dict, index: int) -> str:
    """Name of a stored body parameter, param_N when it has none"""
    if param.get("parameter_name"):
        return param["parameter_name"]
    if param.get("name"):
        return param["name"]
    text = param.get("text")
    if isinstance(text, str):
        match = PLACEHOLDER_PATTERN.search(text)
        if match:
            return match.group(1).strip()
    return f"param_{index + 1}"


def example_parameter_names(body_component: dict) -> list[str]:
    """Names declared in example.body_text_named_params"""
    example = body_component.get("example") or {}
    names = []
    for param in example.get("body_text_named_params") or []:
        if isinstance(param, dict) and param.get("param_name"):
            names.append(param["param_name"])
    return names


def build_template_parameters(body_component: dict, invoice: InvoiceMessage) -> list[dict]:
    """Body parameters for the invoice template, named where the template names them"""
    stored = body_component.get("parameters") or []
    if stored:
        names = [parameter_name(param, i) for i, param in enumerate(stored)]
    else:
        names = example_parameter_names(body_component) or list(DEFAULT_PARAMETER_NAMES)

    positional = invoice.positional_values()
    parameters = []
    for index, name in enumerate(names):
        value = invoice.value_for(name)
        if not value:
            value = positional[index] if index < len(positional) else ""
        parameters.append({"type": "text", "parameter_name": name, "text": value})
    return parameters


def render_template_text(body_component: Optional[dict], parameters: list[dict], fallback: str) -> str:
    """Body text with {{1}}-style and {{name}}-style placeholders filled in"""
    text = (body_component or {}).get("text")
    if not text:
        return fallback

    for index, param in enumerate(parameters):
        text = text.replace(f"{{{{{index + 1}}}}}", param["text"])
        text = text.replace(f"{{{{{param['parameter_name']}}}}}", param["text"])
    return text


# ============================================================================
# DELIVERY
# ============================================================================


async def fetch_remote_file(url: str) -> tuple[bytes, str]:
    """GET a file, returning (content, content type)"""
    async with httpx.AsyncClient(timeout=WHATSAPP_HTTP_TIMEOUT_SECONDS, follow_redirects=True) as client:
        response = await client.get(url)
    response.raise_for_status()
    return response.content, response.headers.get("content-type", "application/pdf")


def load_invoice_template(db: Session, tables: TenantTables, agent_id: int) -> Optional[dict]:
    templates = tables.templates
    row = db.execute(
        select(templates).where(
            templates.c.agent_id == agent_id,
            templates.c.name == INVOICE_TEMPLATE_NAME,
            templates.c.is_active.is_(True),
        )
    ).first()
    return row_to_dict(row)


def mark_invoice_sent(db: Session, tables: TenantTables, invoice_url: str) -> int:
    invoices = tables.invoices
    result = db.execute(
        update(invoices)
        .where(invoices.c.pdf_url == invoice_url)
        .values(status="sent", updated_at=datetime.utcnow())
    )
    db.commit()
    return result.rowcount


class InvoiceDeliveryService:
    """Send one invoice to a customer"""

    def __init__(self, db: Session, context: MessagingContext):
        self.db = db
        self.context = context
        self.tables = context.tables

    async def send(self, customer_phone: str, invoice: InvoiceMessage) -> dict:
        customer = self.context.find_customer(self.db, customer_phone)
        try:
            to = normalize_phone(customer["phone"])
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        if is_within_free_form_window(customer.get("last_user_message_time")):
            response = await self._send_document(customer, to, invoice)
        else:
            response = await self._send_template(customer, to, invoice)

        if mark_invoice_sent(self.db, self.tables, invoice.invoice_url):
            logger.info(f"Invoice for order {invoice.order_number} marked sent")
        return response

    async def _send_template(self, customer: dict, to: str, invoice: InvoiceMessage) -> dict:
        template = load_invoice_template(self.db, self.tables, self.context.agent.id)
        if not template:
            raise HTTPException(
                status_code=404,
                detail="Invoice template not found. Please create 'invoice_template' template first.",
            )

        body = template["body"] or {}
        template_name = body.get("name") or template["name"]
        body_component = find_body_component(body)
        if not body_component:
            raise HTTPException(status_code=400, detail="Template body component not found in stored template")

        parameters = build_template_parameters(body_component, invoice)
        components = [{"type": "body", "parameters": parameters}]

        try:
            result = await self.context.client().send_template(to, template_name, template_language(body), components)
        except WhatsAppAPIError as e:
            self._log(customer, "template", None, status="failed", error=str(e.payload))
            raise HTTPException(
                status_code=500,
                detail={"error": "Failed to send invoice template", "details": e.payload},
            ) from e

        message_id = first_message_id(result)
        rendered = render_template_text(body_component, parameters, f"Invoice template: {invoice.invoice_name}")
        stored = store_message(
            self.db, self.tables, customer["id"], rendered, "outbound", sent_by="agent", whatsapp_message_id=message_id
        )
        self._log(customer, "template", message_id)
        await publish_message(self.context.agent.id, customer["id"], stored)

        return {"success": True, "message_id": message_id, "template_used": template_name, "details": result}

    async def _send_document(self, customer: dict, to: str, invoice: InvoiceMessage) -> dict:
        caption = invoice.caption()

        try:
            pdf_bytes, mime_type = await fetch_remote_file(invoice.invoice_url)
        except httpx.HTTPError as e:
            logger.error(f"Failed to download invoice PDF {invoice.invoice_url}: {e}")
            raise HTTPException(status_code=400, detail="Failed to download invoice PDF") from e

        stored_media_url = None
        try:
            stored_media_url = storage.upload_media(
                self.context.agent.agent_prefix, pdf_bytes, invoice.document_filename, mime_type, folder="outgoing"
            )
        except storage.StorageError as e:
            logger.warning(f"Invoice PDF not mirrored to storage: {e}")

        client = self.context.client()
        try:
            media_id = await client.upload_media(pdf_bytes, invoice.document_filename, mime_type, media_type="document")
        except WhatsAppAPIError as e:
            if e.status_code is not None and 200 <= e.status_code < 300:
                raise HTTPException(status_code=400, detail="Invalid WhatsApp media upload response") from e
            raise HTTPException(status_code=400, detail="Failed to upload invoice to WhatsApp media") from e

        try:
            result = await client.send_media(to, "document", media_id, caption=caption, filename=invoice.document_filename)
        except WhatsAppAPIError as e:
            self._log(customer, "document", None, status="failed", error=str(e.payload))
            raise HTTPException(
                status_code=500,
                detail={"error": "Failed to send invoice document", "details": e.payload},
            ) from e

        message_id = first_message_id(result)
        stored = store_message(
            self.db,
            self.tables,
            customer["id"],
            caption,
            "outbound",
            media_type="document",
            media_url=stored_media_url,
            caption=caption,
            sent_by="agent",
            whatsapp_message_id=message_id,
        )
        self._log(customer, "document", message_id)
        await publish_message(self.context.agent.id, customer["id"], stored)

        return {"success": True, "message_id": message_id, "sent_as": "document", "details": result}

    def _log(self, customer: dict, message_type: str, message_id: Optional[str], status: str = "sent", error=None):
        log_whatsapp_message(
            self.db,
            user_id=self.context.user.id,
            agent_id=self.context.agent.id,
            customer_phone=customer["phone"],
            message_type=message_type,
            category="invoice",
            whatsapp_message_id=message_id,
            status=status,
            error_message=error,
        )
