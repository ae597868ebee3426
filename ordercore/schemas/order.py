from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
import uuid

from ordercore.models.order import OrderStatus, PaymentMethod, CodStatus
from ordercore.schemas.base import BaseCreateSchema, BaseResponseSchema, PaginatedResponse
from ordercore.schemas.invoice import InvoiceResponse


# ==================== ADDRESS ====================

class AddressSnapshot(BaseCreateSchema):
    """Shipping address as captured at checkout."""
    name: str = Field(..., min_length=1)
    line1: str = Field(..., min_length=1)
    line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=4, max_length=10)
    phone: Optional[str] = None


# ==================== ORDER ITEM SCHEMAS ====================

class OrderItemCreate(BaseCreateSchema):
    product_id: uuid.UUID
    quantity: int = Field(..., ge=1)
    unit_price: Optional[Decimal] = Field(None, ge=0)  # Override catalog price


class OrderItemResponse(BaseResponseSchema):
    id: uuid.UUID
    product_id: uuid.UUID
    position: int
    product_name: str
    product_sku: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    gst_rate: Decimal
    gst_rate_defaulted: bool
    tax_amount: Decimal


# ==================== ORDER SCHEMAS ====================

class OrderCreate(BaseCreateSchema):
    customer_name: str = Field(..., min_length=1, max_length=200)
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_gstin: Optional[str] = Field(None, max_length=15)
    shipping_address: AddressSnapshot
    items: List[OrderItemCreate] = Field(..., min_length=1)
    shipping_amount: Decimal = Field(Decimal("0.00"), ge=0)
    payment_method: PaymentMethod
    payment_id: Optional[str] = None  # Online checkout already captured
    notes: Optional[str] = None


class OrderResponse(BaseResponseSchema):
    id: uuid.UUID
    order_number: str
    status: str

    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_gstin: Optional[str] = None
    shipping_address: dict

    subtotal: Decimal
    shipping_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    payment_method: str
    payment_status: str
    payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None

    cod_status: Optional[str] = None
    cod_courier_name: Optional[str] = None
    cod_confirmed_at: Optional[datetime] = None
    cod_confirmed_by: Optional[uuid.UUID] = None
    cod_collected_at: Optional[datetime] = None
    cod_settled_at: Optional[datetime] = None

    courier_name: Optional[str] = None
    tracking_id: Optional[str] = None
    tracking_url: Optional[str] = None
    expected_delivery_date: Optional[date] = None

    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None

    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    items: List[OrderItemResponse] = []


class OrderListResponse(PaginatedResponse):
    items: List[OrderResponse]


class OrderCreatedResponse(BaseModel):
    order: OrderResponse
    proforma_invoice: InvoiceResponse


class StatusHistoryResponse(BaseResponseSchema):
    id: uuid.UUID
    from_status: Optional[str] = None
    to_status: str
    changed_by: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    created_at: datetime


# ==================== STATUS TRANSITIONS ====================

class ShippingDetailsInput(BaseCreateSchema):
    courier_name: str = Field(..., min_length=1)
    tracking_id: str = Field(..., min_length=1)
    tracking_url: Optional[str] = None
    expected_delivery_date: date


class OrderStatusUpdate(BaseCreateSchema):
    status: OrderStatus
    shipping: Optional[ShippingDetailsInput] = None
    notes: Optional[str] = None


class OrderCancel(BaseCreateSchema):
    reason: Optional[str] = None


class TransitionResponse(BaseModel):
    order: OrderResponse
    previous_status: str
    changed: bool
    final_invoice: Optional[InvoiceResponse] = None
    invoice_pending: bool = False
    invoice_error: Optional[str] = None


# ==================== PAYMENTS ====================

class PaymentConfirm(BaseCreateSchema):
    order_id: uuid.UUID
    payment_id: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0)


class PaymentConfirmResponse(BaseModel):
    order: OrderResponse
    already_applied: bool


# ==================== COD SETTLEMENT ====================

class CodCollect(BaseCreateSchema):
    courier_name: str = Field(..., min_length=1)
    notes: Optional[str] = None


class CodAction(BaseCreateSchema):
    notes: Optional[str] = None


class CodOverride(BaseCreateSchema):
    status: CodStatus
    reason: str = Field(..., min_length=3)


class CodHistoryEntry(BaseResponseSchema):
    id: uuid.UUID
    action: str
    user_id: Optional[uuid.UUID] = None
    old_values: Optional[dict] = None
    new_values: Optional[dict] = None
    description: Optional[str] = None
    created_at: datetime
