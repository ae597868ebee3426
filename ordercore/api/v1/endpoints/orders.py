from typing import Optional, List
import uuid
from math import ceil
from datetime import datetime

from fastapi import APIRouter, status, Query, Depends

from ordercore.api.deps import DB, CurrentActor, require_permissions
from ordercore.models.order import OrderStatus, PaymentStatus, PaymentMethod, CodStatus
from ordercore.schemas.invoice import InvoiceResponse
from ordercore.schemas.order import (
    OrderCreate,
    OrderResponse,
    OrderListResponse,
    OrderCreatedResponse,
    OrderStatusUpdate,
    OrderCancel,
    StatusHistoryResponse,
    TransitionResponse,
)
from ordercore.services.order_service import OrderService, TransitionResult
from ordercore.services.order_state_machine import ShippingDetails


router = APIRouter(tags=["Orders"])


def _build_transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        order=OrderResponse.model_validate(result.order),
        previous_status=result.previous_status,
        changed=result.changed,
        final_invoice=InvoiceResponse.model_validate(result.final_invoice) if result.final_invoice else None,
        invoice_pending=result.invoice_pending,
        invoice_error=result.invoice_error,
    )


@router.get(
    "",
    response_model=OrderListResponse,
    dependencies=[Depends(require_permissions("orders:view"))]
)
async def list_orders(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[OrderStatus] = Query(None),
    payment_status: Optional[PaymentStatus] = Query(None),
    payment_method: Optional[PaymentMethod] = Query(None),
    cod_status: Optional[CodStatus] = Query(None),
    search: Optional[str] = Query(None, description="Search by order number, customer name or email"),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
):
    """
    Get paginated list of orders, newest first.
    Requires: orders:view permission
    """
    service = OrderService(db)
    skip = (page - 1) * size

    orders, total = await service.get_orders(
        status=status.value if status else None,
        payment_status=payment_status.value if payment_status else None,
        payment_method=payment_method.value if payment_method else None,
        cod_status=cod_status.value if cod_status else None,
        search=search,
        date_from=date_from,
        date_to=date_to,
        skip=skip,
        limit=size,
    )

    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    dependencies=[Depends(require_permissions("orders:view"))]
)
async def get_order(
    order_id: uuid.UUID,
    db: DB,
):
    """Get order details by ID."""
    order = await OrderService(db).get_order_or_404(order_id)
    return OrderResponse.model_validate(order)


@router.get(
    "/{order_id}/history",
    response_model=List[StatusHistoryResponse],
    dependencies=[Depends(require_permissions("orders:view"))]
)
async def get_order_history(
    order_id: uuid.UUID,
    db: DB,
):
    """Status timeline of an order, oldest first."""
    history = await OrderService(db).get_status_history(order_id)
    return [StatusHistoryResponse.model_validate(h) for h in history]


@router.post(
    "",
    response_model=OrderCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions("orders:create"))]
)
async def create_order(
    data: OrderCreate,
    db: DB,
    actor: CurrentActor,
):
    """
    Place an order. The proforma invoice is issued in the same transaction.
    Requires: orders:create permission
    """
    order, proforma = await OrderService(db).create_order(data, created_by=actor.id)
    return OrderCreatedResponse(
        order=OrderResponse.model_validate(order),
        proforma_invoice=InvoiceResponse.model_validate(proforma),
    )


@router.post(
    "/{order_id}/status",
    response_model=TransitionResponse,
    dependencies=[Depends(require_permissions("orders:update"))]
)
async def update_order_status(
    order_id: uuid.UUID,
    data: OrderStatusUpdate,
    db: DB,
    actor: CurrentActor,
):
    """
    Move an order to a new status.

    'shipped' requires shipping details. 'delivered' issues the final
    invoice; if that fails transiently the order stays delivered and the
    response carries ``invoice_pending``.
    Requires: orders:update permission
    """
    shipping = None
    if data.shipping:
        shipping = ShippingDetails(
            courier_name=data.shipping.courier_name,
            tracking_id=data.shipping.tracking_id,
            expected_delivery_date=data.shipping.expected_delivery_date,
            tracking_url=data.shipping.tracking_url,
        )

    result = await OrderService(db).transition(
        order_id,
        data.status.value,
        actor_id=actor.id,
        shipping=shipping,
        notes=data.notes,
    )
    return _build_transition_response(result)


@router.post(
    "/{order_id}/cancel",
    response_model=TransitionResponse,
    dependencies=[Depends(require_permissions("orders:update"))]
)
async def cancel_order(
    order_id: uuid.UUID,
    data: OrderCancel,
    db: DB,
    actor: CurrentActor,
):
    """Cancel an order that is not yet delivered."""
    result = await OrderService(db).cancel_order(order_id, actor_id=actor.id, reason=data.reason)
    return _build_transition_response(result)


@router.delete(
    "/{order_id}",
    dependencies=[Depends(require_permissions("orders:delete"))]
)
async def delete_order(
    order_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
    reason: Optional[str] = Query(None),
):
    """
    Delete an order with its invoices, lines, history and queue entries.
    A snapshot is written to the audit log first.
    Requires: orders:delete permission
    """
    result = await OrderService(db).delete_order(order_id, actor_id=actor.id, reason=reason)
    return {"message": f"Order {result['order_number']} deleted", **result}
