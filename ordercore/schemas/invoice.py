from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
import uuid

from ordercore.schemas.base import BaseCreateSchema, BaseResponseSchema, PaginatedResponse


# ==================== INVOICE SCHEMAS ====================

class InvoiceItemResponse(BaseResponseSchema):
    id: uuid.UUID
    position: int
    description: str
    product_id: Optional[uuid.UUID] = None
    hsn_code: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    gst_rate: Decimal
    taxable_value: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    tax_amount: Decimal
    line_total: Decimal


class InvoiceResponse(BaseResponseSchema):
    """Fully computed invoice, ready for a renderer."""
    id: uuid.UUID
    invoice_number: str
    invoice_type: str
    is_final: bool
    status: str
    order_id: Optional[uuid.UUID] = None

    client_name: str
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    client_state: str
    client_gstin: Optional[str] = None

    seller_name: str
    seller_address: Optional[str] = None
    seller_state: str
    seller_gstin: Optional[str] = None

    is_igst: bool
    subtotal: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    delivery_date: Optional[date] = None
    notes: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    created_at: datetime
    voided_at: Optional[datetime] = None
    voided_by: Optional[uuid.UUID] = None
    void_reason: Optional[str] = None

    items: List[InvoiceItemResponse] = []


class InvoiceListResponse(PaginatedResponse):
    items: List[InvoiceResponse]


class ManualInvoiceItem(BaseCreateSchema):
    description: str = Field(..., min_length=1, max_length=255)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    gst_rate: Optional[Decimal] = Field(None, ge=0, le=100)  # Default rate when omitted
    hsn_code: Optional[str] = None
    product_id: Optional[uuid.UUID] = None


class ManualInvoiceCreate(BaseCreateSchema):
    """Ad hoc proforma invoice with no order behind it."""
    client_name: str = Field(..., min_length=1, max_length=200)
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    client_state: str = Field(..., min_length=1)
    client_gstin: Optional[str] = Field(None, max_length=15)
    items: List[ManualInvoiceItem] = Field(..., min_length=1)
    notes: Optional[str] = None


class InvoiceVoid(BaseCreateSchema):
    reason: str = Field(..., min_length=3)


class RetryQueueResult(BaseModel):
    processed: int
    completed: int
    still_pending: int
    failed: int
