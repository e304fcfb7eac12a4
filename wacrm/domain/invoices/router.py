"""Invoice router - FastAPI endpoints for invoice storage and delivery"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session

from ...auth import get_current_agent, get_current_user
from ...database import get_db
from ...models import Agent, User
from ...services.invoice_delivery import InvoiceDeliveryService, InvoiceMessage
from ...services.messaging_context import ensure_sender_access, load_messaging_context
from .schemas import InvoiceGenerate, InvoiceSend, InvoiceUpdate, InvoiceUpload
from .service import InvoiceService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Invoices"])


def get_invoice_service(
    db: Session = Depends(get_db),
    agent: Agent = Depends(get_current_agent),
) -> InvoiceService:
    """Dependency injection for InvoiceService"""
    return InvoiceService(db, agent)


@router.post("/generate-invoice", status_code=201)
async def generate_invoice(
    data: InvoiceGenerate,
    service: InvoiceService = Depends(get_invoice_service),
):
    """Render an invoice PDF for an order and store it"""
    return {"success": True, **(await service.generate_invoice(data))}


@router.post("/upload-invoice")
async def upload_invoice(
    data: InvoiceUpload,
    service: InvoiceService = Depends(get_invoice_service),
):
    return service.upload_invoice(data)


@router.post("/send-invoice-template")
async def send_invoice_template(
    data: InvoiceSend,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Send an invoice to a customer on WhatsApp.

    Uses the approved invoice template when the customer has not written in
    the last 24 hours, otherwise sends the PDF itself.
    """
    missing = data.missing_fields()
    if missing:
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: user_id, customer_phone, invoice_url, invoice_name, order_number, total_amount",
        )
    try:
        total_amount = float(data.total_amount)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail="total_amount must be a number") from e

    ensure_sender_access(current_user, data.user_id)
    context = load_messaging_context(db, data.user_id)

    invoice = InvoiceMessage(
        customer_name=data.customer_name,
        order_number=data.order_number,
        total_amount=total_amount,
        invoice_url=data.invoice_url,
        invoice_name=data.invoice_name,
    )
    logger.info(f"Sending invoice for order {invoice.order_number} to {data.customer_phone}")
    return await InvoiceDeliveryService(db, context).send(data.customer_phone, invoice)


@router.get("/manage-invoices")
async def list_invoices(service: InvoiceService = Depends(get_invoice_service)):
    return {"success": True, "invoices": service.list_invoices()}


@router.put("/manage-invoices")
async def update_invoice(
    data: InvoiceUpdate,
    service: InvoiceService = Depends(get_invoice_service),
):
    invoice = service.update_invoice(data)
    return {"success": True, "message": "Invoice updated successfully", "invoice": invoice}


@router.delete("/manage-invoices")
async def delete_invoice(
    id: Optional[str] = Query(None),
    service: InvoiceService = Depends(get_invoice_service),
):
    service.delete_invoice(id)
    return {"success": True, "message": "Invoice deleted successfully"}


@router.get("/download-invoice/{invoice_id}")
async def download_invoice(
    invoice_id: int,
    service: InvoiceService = Depends(get_invoice_service),
):
    content, filename = await service.download_invoice(invoice_id)
    return StreamingResponse(
        iter([content]),
        media_type="application/pdf",
        headers={
            "Content-Disposition": f"attachment; filename={filename}",
            "Cache-Control": "no-cache",
        },
    )


@router.get("/get-invoice-template")
async def get_invoice_template(service: InvoiceService = Depends(get_invoice_service)):
    """Background image the dashboard draws invoices on"""
    content, content_type = await service.load_template_image()
    return Response(content=content, media_type=content_type, headers={"Cache-Control": "private, max-age=3600"})
