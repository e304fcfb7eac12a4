"""Customer domain schemas - Pydantic models for validation"""

from typing import Any, Optional

from pydantic import BaseModel

LEAD_STAGES = ["New Lead", "Contacted", "Not Responding", "Follow-up Needed"]
INTEREST_STAGES = ["Interested", "Quotation Sent", "Asked for More Info"]
CONVERSION_STAGES = ["Payment Pending", "Paid", "Order Confirmed"]
LANGUAGES = ["en", "si", "ta"]


class CustomerCreate(BaseModel):
    """Schema for creating a customer. Required fields are checked by the service."""

    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    lead_stage: Optional[str] = None
    interest_stage: Optional[str] = None
    conversion_stage: Optional[str] = None
    language: Optional[str] = None
    ai_enabled: Optional[bool] = None


class CustomerUpdate(BaseModel):
    """Partial update. Only fields present in the request body are written."""

    id: Any = None
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    lead_stage: Optional[str] = None
    interest_stage: Optional[str] = None
    conversion_stage: Optional[str] = None
    language: Optional[str] = None
    ai_enabled: Optional[bool] = None
