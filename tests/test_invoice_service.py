from decimal import Decimal

import pytest
from sqlalchemy import func, select

from ordercore.core.exceptions import NotFoundError, ValidationError
from ordercore.database import async_session_factory
from ordercore.models import Invoice, InvoiceStatus, InvoiceType, OrderStatus
from ordercore.schemas.invoice import ManualInvoiceCreate, ManualInvoiceItem
from ordercore.services.invoice_service import InvoiceService, format_address

from tests.conftest import ACTOR_ID


async def count_finals(db, order_id):
    return (await db.execute(
        select(func.count(Invoice.id)).where(Invoice.order_id == order_id, Invoice.is_final.is_(True))
    )).scalar()


async def test_final_invoice_for_delivered_order(db, make_order, advance):
    order, proforma = await make_order()
    result = await advance(order.id)
    invoice = result.final_invoice

    assert invoice.invoice_type == InvoiceType.FINAL.value
    assert invoice.status == InvoiceStatus.ISSUED.value
    assert invoice.final_order_id == order.id
    assert invoice.subtotal == Decimal("1000.00")
    assert invoice.cgst_amount == Decimal("90.00")
    assert invoice.sgst_amount == Decimal("90.00")
    assert invoice.igst_amount == Decimal("0.00")
    assert invoice.total_amount == Decimal("1180.00")
    assert invoice.delivery_date is not None
    assert invoice.client_state == "Maharashtra"
    assert invoice.client_address == "12 MG Road, Pune, Maharashtra, 411001"
    assert invoice.seller_state == "Maharashtra"
    assert len(invoice.items) == 1
    assert invoice.items[0].line_total == Decimal("1180.00")
    assert invoice.invoice_number != proforma.invoice_number


async def test_inter_state_final_invoice_uses_igst(make_order, advance):
    order, proforma = await make_order(state="Karnataka")
    invoice = (await advance(order.id)).final_invoice

    assert proforma.is_igst is True
    assert invoice.is_igst is True
    assert invoice.igst_amount == Decimal("180.00")
    assert invoice.cgst_amount == Decimal("0.00")
    assert invoice.total_amount == Decimal("1180.00")


async def test_create_final_is_idempotent(db, make_order, advance):
    order, _ = await make_order()
    first = (await advance(order.id)).final_invoice

    again = await InvoiceService(db).create_final(order.id, created_by=ACTOR_ID)

    assert again.id == first.id
    assert again.invoice_number == first.invoice_number
    assert await count_finals(db, order.id) == 1


async def test_final_invoice_requires_delivery(db, make_order, advance):
    order, _ = await make_order()
    await advance(order.id, OrderStatus.SHIPPED.value)

    with pytest.raises(ValidationError):
        await InvoiceService(db).create_final(order.id)
    assert await count_finals(db, order.id) == 0


async def test_unknown_order_has_no_final_invoice(db):
    import uuid

    with pytest.raises(NotFoundError):
        await InvoiceService(db).create_final(uuid.uuid4())


async def test_concurrent_final_invoice_returns_winner(db, make_order, advance, monkeypatch):
    """
    A second writer that missed the first invoice on its lookup hits the
    unique final-invoice slot and must hand back the winner's invoice.
    """
    order, _ = await make_order()
    winner = (await advance(order.id)).final_invoice
    await db.commit()

    original = InvoiceService.get_final_invoice
    calls = {"n": 0}

    async def stale_first_lookup(self, order_id):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return await original(self, order_id)

    monkeypatch.setattr(InvoiceService, "get_final_invoice", stale_first_lookup)

    async with async_session_factory() as other:
        loser = await InvoiceService(other).create_final(order.id)

    assert loser.id == winner.id
    assert loser.invoice_number == winner.invoice_number
    assert calls["n"] == 2

    monkeypatch.setattr(InvoiceService, "get_final_invoice", original)
    assert await count_finals(db, order.id) == 1


async def test_void_frees_slot_for_reissue(db, make_order, advance):
    order, _ = await make_order()
    first = (await advance(order.id)).final_invoice
    service = InvoiceService(db)

    voided = await service.void_invoice(first.id, "Wrong GSTIN", actor_id=ACTOR_ID)
    assert voided.is_void
    assert voided.final_order_id is None
    assert await service.get_final_invoice(order.id) is None

    with pytest.raises(ValidationError):
        await service.void_invoice(first.id, "Again")

    reissued = await service.create_final(order.id)
    assert reissued.id != first.id
    assert reissued.invoice_number != first.invoice_number
    assert reissued.total_amount == first.total_amount
    assert (await service.get_final_invoice(order.id)).id == reissued.id


async def test_manual_proforma(db):
    data = ManualInvoiceCreate(
        client_name="Acme Retail",
        client_state="Karnataka",
        client_gstin="29ABCDE1234F1Z5",
        items=[
            ManualInvoiceItem(description="Custom soap hamper", quantity=Decimal("3"), unit_price=Decimal("450.00"), gst_rate=Decimal("12")),
            ManualInvoiceItem(description="Gift wrap", quantity=Decimal("1"), unit_price=Decimal("99.00")),
        ],
    )

    invoice = await InvoiceService(db).create_manual_proforma(data, created_by=ACTOR_ID)

    assert invoice.invoice_number.startswith("PRO/ARN/")
    assert invoice.order_id is None
    assert invoice.is_igst is True
    assert invoice.subtotal == Decimal("1449.00")
    # 1350 @ 12% + 99 @ default 18%
    assert invoice.igst_amount == Decimal("179.82")
    assert invoice.total_amount == Decimal("1628.82")


async def test_list_invoices_filters(db, make_order, advance):
    order, _ = await make_order()
    await advance(order.id)
    await make_order()

    invoices, total = await InvoiceService(db).get_invoices(invoice_type=InvoiceType.PROFORMA.value)
    assert total == 2
    assert all(not inv.is_final for inv in invoices)

    invoices, total = await InvoiceService(db).get_invoices(order_id=order.id)
    assert total == 2


def test_format_address_skips_blank_parts():
    assert format_address({"line1": "1 Main St", "line2": None, "city": "Goa", "state": "Goa", "pincode": "403001"}) == (
        "1 Main St, Goa, Goa, 403001"
    )
    assert format_address(None) is None
