"""Invoice domain schemas - Pydantic models for validation"""

from typing import Any, Optional

from pydantic import BaseModel

INVOICE_STATUSES = ["generated", "sent", "paid"]


class InvoiceUpload(BaseModel):
    """A PDF rendered by the dashboard, sent as base64"""

    orderId: Any = None
    invoiceName: Optional[str] = None
    agentPrefix: Optional[str] = None
    customerId: Any = None
    discountPercentage: Optional[float] = 0
    pdfBase64: Optional[str] = None


class InvoiceGenerate(BaseModel):
    order_id: Any = None
    discount_percentage: Optional[float] = 0
    notes: Optional[str] = None
    invoice_name: Optional[str] = None


class InvoiceUpdate(BaseModel):
    id: Any = None
    status: Optional[str] = None


class InvoiceSend(BaseModel):
    user_id: Optional[str] = None
    customer_phone: Optional[str] = None
    invoice_url: Optional[str] = None
    invoice_name: Optional[str] = None
    order_number: Any = None
    total_amount: Any = None
    customer_name: Optional[str] = None

    def missing_fields(self) -> list[str]:
        required = ("user_id", "customer_phone", "invoice_url", "invoice_name", "order_number", "total_amount")
        return [field for field in required if getattr(self, field) in (None, "")]
