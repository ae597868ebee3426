from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ordercore.core.exceptions import CodSettlementError, NotFoundError, ValidationError
from ordercore.models import CodStatus, OrderStatus, PaymentMethod, PaymentStatus
from ordercore.services.accounting_service import AccountingService
from ordercore.services.cod_settlement_service import CodSettlementService, can_move
from ordercore.services.order_service import OrderService

from tests.conftest import ACTOR_ID


def today():
    return datetime.now(timezone.utc).date()


async def summary(db):
    return await AccountingService(db).get_summary(today(), today())


async def test_cod_revenue_recognized_only_on_settlement(db, make_order, advance):
    order, _ = await make_order(payment_method=PaymentMethod.COD)
    await advance(order.id)
    service = CodSettlementService(db)

    before = await summary(db)
    assert before["revenue"]["total"] == Decimal("0.00")
    assert before["cod_pending"]["amount"] == Decimal("1180.00")

    collected = await service.confirm_collection(order.id, "Delhivery", actor_id=ACTOR_ID)
    assert collected.cod_status == CodStatus.COLLECTED_BY_COURIER.value
    assert collected.cod_courier_name == "Delhivery"
    assert collected.cod_collected_at is not None
    assert collected.cod_confirmed_by == ACTOR_ID

    in_transit = await summary(db)
    assert in_transit["revenue"]["total"] == Decimal("0.00")
    assert in_transit["in_transit"]["amount"] == Decimal("1180.00")
    assert in_transit["in_transit"]["collected_by_courier"]["count"] == 1

    settled = await service.confirm_settled(order.id, actor_id=ACTOR_ID)
    assert settled.cod_status == CodStatus.SETTLED.value
    assert settled.cod_settled_at is not None
    assert settled.payment_status == PaymentStatus.PENDING.value

    after = await summary(db)
    assert after["revenue"]["total"] == Decimal("1180.00")
    assert after["revenue"]["cod"] == Decimal("1180.00")
    assert after["in_transit"]["amount"] == Decimal("0.00")
    assert after["cod_pending"]["amount"] == Decimal("0.00")

    # Re-reading never counts the same order twice
    again = await summary(db)
    assert again["revenue"]["total"] == Decimal("1180.00")
    assert again["collection_efficiency"] == Decimal("100.00")


async def test_full_custody_chain_is_audited(db, make_order):
    order, _ = await make_order(payment_method=PaymentMethod.COD)
    service = CodSettlementService(db)

    await service.confirm_collection(order.id, "BlueDart", actor_id=ACTOR_ID)
    await service.confirm_awaiting_settlement(order.id, actor_id=ACTOR_ID, notes="Remittance batch 42")
    await service.confirm_settled(order.id, actor_id=ACTOR_ID)

    history = await service.get_history(order.id)
    assert [entry.action for entry in history] == [
        "COD_COLLECTED", "COD_AWAITING_SETTLEMENT", "COD_SETTLED",
    ]
    assert history[1].old_values == {"cod_status": "collected_by_courier"}
    assert history[1].new_values["cod_status"] == "awaiting_settlement"
    assert history[1].description == "Remittance batch 42"
    assert all(entry.user_id == ACTOR_ID for entry in history)


async def test_settlement_cannot_skip_collection(db, make_order):
    order, _ = await make_order(payment_method=PaymentMethod.COD)

    with pytest.raises(CodSettlementError) as exc_info:
        await CodSettlementService(db).confirm_settled(order.id)

    assert exc_info.value.details["current_status"] == CodStatus.PENDING.value
    current = await OrderService(db).get_order_or_404(order.id)
    assert current.cod_status == CodStatus.PENDING.value


async def test_backward_move_rejected(db, make_order):
    order, _ = await make_order(payment_method=PaymentMethod.COD)
    service = CodSettlementService(db)
    await service.confirm_collection(order.id, "BlueDart")
    settled = await service.confirm_settled(order.id)

    with pytest.raises(CodSettlementError):
        await service.confirm_collection(order.id, "Delhivery")

    # A rejected move leaves the order untouched
    assert settled.cod_courier_name == "BlueDart"
    assert settled.cod_status == CodStatus.SETTLED.value


async def test_not_received_reachable_from_settled(db, make_order):
    order, _ = await make_order(payment_method=PaymentMethod.COD)
    service = CodSettlementService(db)
    await service.confirm_collection(order.id, "BlueDart")
    await service.confirm_settled(order.id)

    flagged = await service.report_issue(order.id, actor_id=ACTOR_ID, notes="Bank reversed credit")

    assert flagged.cod_status == CodStatus.NOT_RECEIVED.value
    assert flagged.cod_settled_at is None
    figures = await summary(db)
    assert figures["revenue"]["total"] == Decimal("0.00")
    assert figures["cod_not_received"]["amount"] == Decimal("1180.00")


async def test_online_order_rejected(db, make_order):
    order, _ = await make_order()

    with pytest.raises(CodSettlementError):
        await CodSettlementService(db).confirm_collection(order.id, "BlueDart")


async def test_unknown_order(db):
    import uuid

    with pytest.raises(NotFoundError):
        await CodSettlementService(db).report_issue(uuid.uuid4())


async def test_cancelled_order_only_accepts_issue_report(db, make_order):
    order, _ = await make_order(payment_method=PaymentMethod.COD)
    await OrderService(db).cancel_order(order.id, reason="Customer refused")
    service = CodSettlementService(db)

    with pytest.raises(CodSettlementError):
        await service.confirm_collection(order.id, "BlueDart")

    flagged = await service.report_issue(order.id)
    assert flagged.status == OrderStatus.CANCELLED.value
    assert flagged.cod_status == CodStatus.NOT_RECEIVED.value


async def test_override_requires_reason_and_bypasses_table(db, make_order):
    order, _ = await make_order(payment_method=PaymentMethod.COD)
    service = CodSettlementService(db)

    with pytest.raises(ValidationError):
        await service.override_status(order.id, CodStatus.SETTLED.value, reason="")
    with pytest.raises(ValidationError):
        await service.override_status(order.id, "lost_in_mail", reason="Reconciled")
    with pytest.raises(CodSettlementError):
        await service.override_status(order.id, CodStatus.PENDING.value, reason="No change")

    overridden = await service.override_status(
        order.id, CodStatus.SETTLED, reason="Matched bank statement", actor_id=ACTOR_ID
    )

    assert overridden.cod_status == CodStatus.SETTLED.value
    history = await service.get_history(order.id)
    assert history[-1].action == "COD_OVERRIDE"
    assert history[-1].description == "Override: Matched bank statement"


def test_can_move_table():
    assert can_move(None, CodStatus.COLLECTED_BY_COURIER.value)
    assert can_move(CodStatus.COLLECTED_BY_COURIER.value, CodStatus.SETTLED.value)
    assert can_move(CodStatus.AWAITING_SETTLEMENT.value, CodStatus.SETTLED.value)
    assert not can_move(CodStatus.PENDING.value, CodStatus.AWAITING_SETTLEMENT.value)
    assert not can_move(CodStatus.SETTLED.value, CodStatus.COLLECTED_BY_COURIER.value)
    assert all(can_move(state.value, CodStatus.NOT_RECEIVED.value) for state in CodStatus if state != CodStatus.NOT_RECEIVED)
