from pydantic import BaseModel
from typing import Optional, List
from datetime import date
from decimal import Decimal


class AmountBucket(BaseModel):
    count: int = 0
    amount: Decimal = Decimal("0.00")


class RevenueSummary(BaseModel):
    total: Decimal
    online: Decimal
    cod: Decimal
    order_count: int


class InTransitSummary(BaseModel):
    """COD cash handed to the courier but not yet in the bank."""
    collected_by_courier: AmountBucket
    awaiting_settlement: AmountBucket
    count: int
    amount: Decimal


class ProfitSummary(BaseModel):
    recognized_subtotal: Decimal
    cost_of_goods: Decimal
    profit: Decimal


class TaxSummaryResponse(BaseModel):
    """Tax collected, from final invoices only."""
    taxable_value: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    total: Decimal
    invoice_count: int


class InvoiceCounts(BaseModel):
    proforma_count: int
    proforma_amount: Decimal
    final_count: int
    final_amount: Decimal
    void_count: int


class DailySales(BaseModel):
    date: date
    order_count: int
    revenue: Decimal


class AccountingSummaryResponse(BaseModel):
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    order_count: int
    cancelled_count: int
    revenue: RevenueSummary
    in_transit: InTransitSummary
    cod_pending: AmountBucket
    cod_not_received: AmountBucket
    pending_online: AmountBucket
    profit: ProfitSummary
    tax: TaxSummaryResponse
    invoices: InvoiceCounts
    collection_efficiency: Decimal
    daily: List[DailySales] = []
