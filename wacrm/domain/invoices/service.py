"""Invoice service - Business logic for invoice storage, rendering and download"""

import base64
import logging
import re
from datetime import datetime
from typing import Optional

import httpx
from fastapi import HTTPException
from sqlalchemy.orm import Session

from ... import storage
from ...cache import INVOICE_TEMPLATE_IMAGE_KEY, INVOICE_TEMPLATE_IMAGE_TTL, cache
from ...config import INVOICE_TEMPLATE_URL
from ...models import Agent
from ...models_tenant import get_tenant_tables
from ...services.image_uploads import decode_base64_file
from ...services.invoice_delivery import fetch_remote_file
from ...services.invoice_pdf import InvoicePDFGenerator, format_order_number
from ..orders.repository import OrderRepository
from .repository import InvoiceRepository
from .schemas import INVOICE_STATUSES, InvoiceGenerate, InvoiceUpdate, InvoiceUpload

logger = logging.getLogger(__name__)


def invoice_object_key(agent_prefix: str, customer_id, order_id, now: Optional[datetime] = None) -> str:
    """{prefix}/{customerId}/invoice_{orderId}{YYYYmmddHHMMSS}.pdf"""
    stamp = (now or datetime.utcnow()).strftime("%Y%m%d%H%M%S")
    return f"{agent_prefix}/{customer_id}/invoice_{order_id}{stamp}.pdf"


def download_filename(invoice_name: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]", "_", invoice_name or "invoice", flags=re.IGNORECASE).lower() + ".pdf"


def template_image_cache_key(agent_id) -> str:
    return f"{INVOICE_TEMPLATE_IMAGE_KEY}:{agent_id}"


class InvoiceService:
    """Service layer for invoice business logic"""

    def __init__(self, db: Session, agent: Agent):
        self.db = db
        self.agent = agent
        self.tables = get_tenant_tables(agent.agent_prefix)
        self.repo = InvoiceRepository()

    def _store_pdf(self, pdf_bytes: bytes, order_id, customer_id, name: str, discount_percentage) -> dict:
        key = invoice_object_key(self.agent.agent_prefix, customer_id, order_id)
        try:
            public_url = storage.upload_media(
                self.agent.agent_prefix, pdf_bytes, content_type="application/pdf", key=key
            )
        except storage.StorageError as e:
            raise HTTPException(status_code=500, detail="Failed to upload invoice") from e

        invoice = self.repo.create_invoice(
            self.db,
            self.tables,
            order_id=int(order_id),
            customer_id=int(customer_id) if customer_id is not None else None,
            name=name,
            pdf_url=public_url,
            status="generated",
            discount_percentage=float(discount_percentage or 0),
        )
        logger.info(f"Invoice {invoice['id']} stored for order {order_id} ({len(pdf_bytes)} bytes)")
        return {"publicUrl": public_url, "invoice": invoice}

    def upload_invoice(self, data: InvoiceUpload) -> dict:
        if not all([data.orderId, data.invoiceName, data.agentPrefix, data.customerId, data.pdfBase64]):
            raise HTTPException(status_code=400, detail="Missing required fields")
        if data.agentPrefix != self.agent.agent_prefix:
            raise HTTPException(status_code=403, detail="Access denied")
        if not str(data.orderId).isdigit() or not str(data.customerId).isdigit():
            raise HTTPException(status_code=400, detail="Invalid order or customer ID")

        try:
            pdf_bytes = decode_base64_file(data.pdfBase64)
        except ValueError as e:
            raise HTTPException(status_code=400, detail="Invalid PDF data") from e

        return self._store_pdf(pdf_bytes, data.orderId, data.customerId, data.invoiceName, data.discountPercentage)

    async def generate_invoice(self, data: InvoiceGenerate) -> dict:
        """Render the PDF server-side from the stored order and store it like an upload"""
        if not str(data.order_id or "").isdigit():
            raise HTTPException(status_code=400, detail="Valid order ID is required")
        discount = float(data.discount_percentage or 0)
        if discount < 0 or discount > 100:
            raise HTTPException(status_code=400, detail="Discount must be between 0 and 100")

        order = OrderRepository.get_order(self.db, self.tables, int(data.order_id))
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")

        customer = order.get("customer") or {}
        invoice_name = data.invoice_name or f"Invoice {format_order_number(order['id'])}"
        background = await self.load_template_image(required=False)

        generator = InvoicePDFGenerator(
            invoice_name=invoice_name,
            order=order,
            items=order.get("items", []),
            customer_name=customer.get("name"),
            agent_details=self.agent_details(),
            discount_percentage=discount,
            notes=data.notes,
            template_image=background[0] if background else None,
        )
        pdf_bytes = generator.generate()
        return self._store_pdf(pdf_bytes, order["id"], order["customer_id"], invoice_name, discount)

    def agent_details(self) -> dict:
        user = self.agent.user
        return {
            "name": user.name if user else None,
            "address": self.agent.address,
            "business_email": self.agent.business_email or (user.email if user else None),
            "contact_number": self.agent.contact_number,
            "website": self.agent.website,
        }

    def list_invoices(self) -> list[dict]:
        return self.repo.list_invoices(self.db, self.tables)

    def update_invoice(self, data: InvoiceUpdate) -> dict:
        if not isinstance(data.id, int) or isinstance(data.id, bool) or not data.id:
            raise HTTPException(status_code=400, detail="Invoice ID is required")
        if not data.status or data.status not in INVOICE_STATUSES:
            raise HTTPException(status_code=400, detail="Valid status is required")

        invoice = self.repo.update_status(self.db, self.tables, data.id, data.status)
        if not invoice:
            raise HTTPException(status_code=404, detail="Invoice not found")
        return invoice

    def delete_invoice(self, invoice_id: Optional[str]):
        if not invoice_id or not str(invoice_id).isdigit():
            raise HTTPException(status_code=400, detail="Valid invoice ID is required")

        invoice = self.repo.get_invoice(self.db, self.tables, int(invoice_id))
        if not invoice:
            raise HTTPException(status_code=404, detail="Invoice not found")

        key = storage.key_from_public_url(invoice["pdf_url"])
        if key:
            storage.delete_object(key)
        self.repo.delete_invoice(self.db, self.tables, invoice["id"])
        logger.info(f"Invoice {invoice_id} deleted for agent {self.agent.id}")

    async def download_invoice(self, invoice_id: int) -> tuple[bytes, str]:
        """(pdf bytes, attachment filename)"""
        invoice = self.repo.get_invoice(self.db, self.tables, invoice_id)
        if not invoice:
            raise HTTPException(status_code=404, detail="Invoice not found")

        key = storage.key_from_public_url(invoice["pdf_url"])
        try:
            if key:
                content = storage.download_object(key)
            else:
                content, _ = await fetch_remote_file(invoice["pdf_url"])
        except (storage.StorageError, httpx.HTTPError) as e:
            logger.error(f"Invoice {invoice_id} download failed: {e}")
            raise HTTPException(status_code=500, detail="Failed to download invoice from storage") from e

        return content, download_filename(invoice["name"])

    async def load_template_image(self, required: bool = True) -> Optional[tuple[bytes, str]]:
        """
        Invoice background as (bytes, content type).

        Uses the agent's uploaded template when there is one, else the
        deployment default. Cached for an hour as base64.
        """
        cache_key = template_image_cache_key(self.agent.id)
        cached = cache.get(cache_key)
        if cached:
            return base64.b64decode(cached["data"]), cached["content_type"]

        try:
            if self.agent.invoice_template_path:
                content = storage.download_object(self.agent.invoice_template_path)
                content_type = "image/jpeg" if self.agent.invoice_template_path.endswith((".jpg", ".jpeg")) else "image/png"
            elif INVOICE_TEMPLATE_URL:
                content, content_type = await fetch_remote_file(INVOICE_TEMPLATE_URL)
            else:
                content = None
        except (storage.StorageError, httpx.HTTPError) as e:
            logger.warning(f"Invoice template for agent {self.agent.id} unavailable: {e}")
            content = None

        if content is None:
            if required:
                raise HTTPException(status_code=404, detail="Invoice template not found")
            return None

        cache.set(
            cache_key,
            {"data": base64.b64encode(content).decode("ascii"), "content_type": content_type},
            ttl=INVOICE_TEMPLATE_IMAGE_TTL,
        )
        return content, content_type
