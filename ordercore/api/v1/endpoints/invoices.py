from typing import List, Optional
import uuid
from math import ceil
from datetime import datetime

from fastapi import APIRouter, status, Query, Depends

from ordercore.api.deps import DB, CurrentActor, require_permissions
from ordercore.core.exceptions import NotFoundError
from ordercore.jobs.invoice_jobs import drain_final_invoice_queue
from ordercore.models.invoice import InvoiceType
from ordercore.schemas.invoice import (
    InvoiceResponse,
    InvoiceListResponse,
    ManualInvoiceCreate,
    InvoiceVoid,
    RetryQueueResult,
)
from ordercore.services.invoice_service import InvoiceService


router = APIRouter(tags=["Invoices"])


@router.get(
    "",
    response_model=InvoiceListResponse,
    dependencies=[Depends(require_permissions("invoices:view"))]
)
async def list_invoices(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    invoice_type: Optional[InvoiceType] = Query(None),
    order_id: Optional[uuid.UUID] = Query(None),
    include_void: bool = Query(True),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
):
    """Invoice read model, newest first."""
    invoices, total = await InvoiceService(db).get_invoices(
        invoice_type=invoice_type.value if invoice_type else None,
        order_id=order_id,
        include_void=include_void,
        date_from=date_from,
        date_to=date_to,
        skip=(page - 1) * size,
        limit=size,
    )
    return InvoiceListResponse(
        items=[InvoiceResponse.model_validate(i) for i in invoices],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    dependencies=[Depends(require_permissions("invoices:view"))]
)
async def get_invoice(
    invoice_id: uuid.UUID,
    db: DB,
):
    """Fully computed invoice: lines with tax breakdown and totals."""
    invoice = await InvoiceService(db).get_invoice(invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found", {"invoice_id": str(invoice_id)})
    return InvoiceResponse.model_validate(invoice)


@router.get(
    "/orders/{order_id}",
    response_model=List[InvoiceResponse],
    dependencies=[Depends(require_permissions("invoices:view"))]
)
async def list_order_invoices(
    order_id: uuid.UUID,
    db: DB,
):
    """Every invoice of an order, oldest first, void ones included."""
    invoices = await InvoiceService(db).get_order_invoices(order_id)
    return [InvoiceResponse.model_validate(i) for i in invoices]


@router.post(
    "",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions("invoices:create"))]
)
async def create_manual_proforma(
    data: ManualInvoiceCreate,
    db: DB,
    actor: CurrentActor,
):
    """Issue a proforma invoice that is not tied to an order."""
    invoice = await InvoiceService(db).create_manual_proforma(data, created_by=actor.id)
    return InvoiceResponse.model_validate(invoice)


@router.post(
    "/orders/{order_id}/final",
    response_model=InvoiceResponse,
    dependencies=[Depends(require_permissions("invoices:create"))]
)
async def create_final_invoice(
    order_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """
    Issue the final tax invoice of a delivered order.
    Idempotent: returns the existing final invoice when there is one.
    """
    invoice = await InvoiceService(db).create_final(order_id, created_by=actor.id)
    return InvoiceResponse.model_validate(invoice)


@router.post(
    "/{invoice_id}/void",
    response_model=InvoiceResponse,
    dependencies=[Depends(require_permissions("invoices:void"))]
)
async def void_invoice(
    invoice_id: uuid.UUID,
    data: InvoiceVoid,
    db: DB,
    actor: CurrentActor,
):
    """Void an invoice. A voided final invoice can be reissued."""
    invoice = await InvoiceService(db).void_invoice(invoice_id, data.reason, actor_id=actor.id)
    return InvoiceResponse.model_validate(invoice)


@router.post(
    "/retry-pending",
    response_model=RetryQueueResult,
    dependencies=[Depends(require_permissions("invoices:create"))]
)
async def retry_pending_final_invoices(
    db: DB,
    limit: int = Query(50, ge=1, le=500),
):
    """Run the final-invoice retry queue now instead of waiting for the scheduler."""
    counts = await drain_final_invoice_queue(db, limit=limit)
    return RetryQueueResult(**counts)
