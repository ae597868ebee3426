import uuid
from decimal import Decimal

import pytest

from ordercore.core.exceptions import NotFoundError, PaymentConflictError, ValidationError
from ordercore.models import AuditLog, PaymentMethod, PaymentStatus
from ordercore.services.audit_service import AuditService
from ordercore.services.order_service import OrderService
from ordercore.services.payment_service import PaymentService

from tests.conftest import ACTOR_ID


async def test_confirm_payment_marks_order_paid(db, make_order):
    order, _ = await make_order()

    paid, already_applied = await PaymentService(db).confirm_payment(
        order.id, "pay_123", Decimal("1180.00"), actor_id=ACTOR_ID
    )

    assert already_applied is False
    assert paid.payment_status == PaymentStatus.PAID.value
    assert paid.payment_id == "pay_123"
    assert paid.paid_at is not None

    logs = await AuditService(db).get_entity_logs("ORDER", order.id, action="PAYMENT_CONFIRMED")
    assert len(logs) == 1
    assert isinstance(logs[0], AuditLog)
    assert logs[0].user_id == ACTOR_ID


async def test_same_payment_id_is_idempotent(db, make_order):
    order, _ = await make_order()
    service = PaymentService(db)
    first, _ = await service.confirm_payment(order.id, "pay_123", Decimal("1180.00"))

    again, already_applied = await service.confirm_payment(order.id, "pay_123", Decimal("1180.00"))

    assert already_applied is True
    assert again.paid_at == first.paid_at
    logs = await AuditService(db).get_entity_logs("ORDER", order.id, action="PAYMENT_CONFIRMED")
    assert len(logs) == 1


async def test_different_payment_id_conflicts(db, make_order):
    order, _ = await make_order(payment_id="pay_checkout")

    with pytest.raises(PaymentConflictError) as exc_info:
        await PaymentService(db).confirm_payment(order.id, "pay_other", Decimal("1180.00"))

    assert exc_info.value.details["payment_id"] == "pay_checkout"


async def test_amount_must_match_total(db, make_order):
    order, _ = await make_order()

    with pytest.raises(ValidationError):
        await PaymentService(db).confirm_payment(order.id, "pay_123", Decimal("1000.00"))

    current = await OrderService(db).get_order_or_404(order.id)
    assert current.payment_status == PaymentStatus.PENDING.value


async def test_cod_orders_rejected(db, make_order):
    order, _ = await make_order(payment_method=PaymentMethod.COD)

    with pytest.raises(ValidationError):
        await PaymentService(db).confirm_payment(order.id, "pay_123", Decimal("1180.00"))


async def test_cancelled_orders_rejected(db, make_order):
    order, _ = await make_order()
    await OrderService(db).cancel_order(order.id)

    with pytest.raises(ValidationError):
        await PaymentService(db).confirm_payment(order.id, "pay_123", Decimal("1180.00"))


async def test_unknown_order(db):
    with pytest.raises(NotFoundError):
        await PaymentService(db).confirm_payment(uuid.uuid4(), "pay_123", Decimal("1"))
