from fastapi import APIRouter, Depends

from ordercore.api.deps import DB, CurrentActor, require_permissions
from ordercore.schemas.order import OrderResponse, PaymentConfirm, PaymentConfirmResponse
from ordercore.services.payment_service import PaymentService


router = APIRouter(tags=["Payments"])


@router.post(
    "/confirm",
    response_model=PaymentConfirmResponse,
    dependencies=[Depends(require_permissions("payments:confirm"))]
)
async def confirm_payment(
    data: PaymentConfirm,
    db: DB,
    actor: CurrentActor,
):
    """
    Payment-confirmed fact from the checkout collaborator.

    Redelivering the same payment id returns ``already_applied: true``.
    A different payment id for a paid order is rejected with 409.
    """
    order, already_applied = await PaymentService(db).confirm_payment(
        data.order_id, data.payment_id, data.amount, actor_id=actor.id
    )
    return PaymentConfirmResponse(
        order=OrderResponse.model_validate(order),
        already_applied=already_applied,
    )
