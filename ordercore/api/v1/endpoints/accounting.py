from typing import Optional
import uuid
from math import ceil
from datetime import date

from fastapi import APIRouter, Query, Depends

from ordercore.api.deps import DB, require_permissions
from ordercore.models.invoice import InvoiceType
from ordercore.models.order import OrderStatus, PaymentMethod, PaymentStatus, CodStatus
from ordercore.schemas.accounting import AccountingSummaryResponse
from ordercore.schemas.invoice import InvoiceListResponse, InvoiceResponse
from ordercore.schemas.order import OrderListResponse, OrderResponse
from ordercore.services.accounting_service import AccountingService


router = APIRouter(tags=["Accounting"])


@router.get(
    "/summary",
    response_model=AccountingSummaryResponse,
    dependencies=[Depends(require_permissions("accounting:view"))]
)
async def get_accounting_summary(
    db: DB,
    date_from: Optional[date] = Query(None, description="First day of the window (inclusive)"),
    date_to: Optional[date] = Query(None, description="Last day of the window (inclusive)"),
):
    """
    Revenue, in-transit COD cash, profit, tax collected and collection
    efficiency for the window. Computed from stored orders and invoices on
    every call.
    """
    summary = await AccountingService(db).get_summary(date_from=date_from, date_to=date_to)
    return AccountingSummaryResponse(**summary)


@router.get(
    "/orders",
    response_model=OrderListResponse,
    dependencies=[Depends(require_permissions("accounting:view"))]
)
async def list_orders_for_export(
    db: DB,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=500),
    status: Optional[OrderStatus] = Query(None),
    payment_method: Optional[PaymentMethod] = Query(None),
    payment_status: Optional[PaymentStatus] = Query(None),
    cod_status: Optional[CodStatus] = Query(None),
):
    """Order read model for the window, for reporting and export."""
    orders, total = await AccountingService(db).list_orders(
        date_from=date_from,
        date_to=date_to,
        skip=(page - 1) * size,
        limit=size,
        status=status.value if status else None,
        payment_method=payment_method.value if payment_method else None,
        payment_status=payment_status.value if payment_status else None,
        cod_status=cod_status.value if cod_status else None,
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get(
    "/invoices",
    response_model=InvoiceListResponse,
    dependencies=[Depends(require_permissions("accounting:view"))]
)
async def list_invoices_for_export(
    db: DB,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=500),
    invoice_type: Optional[InvoiceType] = Query(None),
    order_id: Optional[uuid.UUID] = Query(None),
    include_void: bool = Query(False),
):
    """Invoice read model for the window; final invoices are the tax documents."""
    invoices, total = await AccountingService(db).list_invoices(
        date_from=date_from,
        date_to=date_to,
        skip=(page - 1) * size,
        limit=size,
        invoice_type=invoice_type.value if invoice_type else None,
        order_id=order_id,
        include_void=include_void,
    )
    return InvoiceListResponse(
        items=[InvoiceResponse.model_validate(i) for i in invoices],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )
