from pydantic import Field
from typing import Optional
from datetime import datetime
from decimal import Decimal
import uuid

from ordercore.models.ledger import LedgerAction
from ordercore.schemas.base import BaseCreateSchema, BaseResponseSchema


# ==================== PRODUCT SCHEMAS ====================

class ProductCreate(BaseCreateSchema):
    name: str = Field(..., min_length=1, max_length=255)
    sku: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    hsn_code: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    cost_price: Decimal = Field(Decimal("0.00"), ge=0)
    gst_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    initial_stock: int = Field(0, ge=0)


class CostPriceUpdate(BaseCreateSchema):
    cost_price: Decimal = Field(..., ge=0)


class ProductResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    sku: str
    description: Optional[str] = None
    hsn_code: Optional[str] = None
    price: Decimal
    cost_price: Decimal
    gst_rate: Optional[Decimal] = None
    stock_quantity: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


# ==================== RAW MATERIAL SCHEMAS ====================

class RawMaterialCreate(BaseCreateSchema):
    name: str = Field(..., min_length=1, max_length=200)
    unit: str = Field("kg", min_length=1, max_length=20)
    initial_quantity: Decimal = Field(Decimal("0"), ge=0)
    min_quantity: Decimal = Field(Decimal("0"), ge=0)
    cost_per_unit: Decimal = Field(Decimal("0.00"), ge=0)


class RawMaterialMovement(BaseCreateSchema):
    """
    add/use: positive quantity. adjust: signed correction.
    update: the new absolute quantity.
    """
    action_type: LedgerAction
    quantity: Decimal
    notes: Optional[str] = None


class RawMaterialResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    unit: str
    quantity: Decimal
    min_quantity: Decimal
    cost_per_unit: Decimal
    is_low_stock: bool
    created_at: datetime
    updated_at: datetime
