from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ordercore.core.exceptions import ValidationError
from ordercore.models import CodStatus, OrderStatus, PaymentMethod
from ordercore.services.accounting_service import (
    AccountingService,
    collection_efficiency,
    window_bounds,
)
from ordercore.services.cod_settlement_service import CodSettlementService
from ordercore.services.invoice_service import InvoiceService
from ordercore.services.order_service import OrderService
from ordercore.services.payment_service import PaymentService
from ordercore.services.product_service import ProductService


def today():
    return datetime.now(timezone.utc).date()


async def test_empty_window(db):
    summary = await AccountingService(db).get_summary(today(), today())

    assert summary["order_count"] == 0
    assert summary["revenue"]["total"] == Decimal("0")
    assert summary["collection_efficiency"] == Decimal("0.00")
    assert summary["tax"]["invoice_count"] == 0
    assert summary["daily"] == []


async def test_online_revenue_needs_payment(db, make_order):
    await make_order(payment_id="pay_1")
    await make_order()

    summary = await AccountingService(db).get_summary(today(), today())

    assert summary["order_count"] == 2
    assert summary["revenue"]["total"] == Decimal("1180.00")
    assert summary["revenue"]["online"] == Decimal("1180.00")
    assert summary["revenue"]["order_count"] == 1
    assert summary["pending_online"] == {"count": 1, "amount": Decimal("1180.00")}
    assert summary["collection_efficiency"] == Decimal("50.00")
    assert summary["daily"][0]["order_count"] == 2
    assert summary["daily"][0]["revenue"] == Decimal("1180.00")


async def test_cancelled_orders_are_excluded_everywhere(db, make_order):
    paid, _ = await make_order(payment_id="pay_1")
    cod, _ = await make_order(payment_method=PaymentMethod.COD)
    await CodSettlementService(db).confirm_collection(cod.id, "BlueDart")
    await CodSettlementService(db).confirm_settled(cod.id)

    service = OrderService(db)
    await service.cancel_order(paid.id, reason="Fraud check")
    await service.cancel_order(cod.id, reason="Returned to origin")

    summary = await AccountingService(db).get_summary(today(), today())

    assert summary["order_count"] == 0
    assert summary["cancelled_count"] == 2
    assert summary["revenue"]["total"] == Decimal("0")
    assert summary["in_transit"]["amount"] == Decimal("0")
    assert summary["profit"]["profit"] == Decimal("0.00")


async def test_legacy_received_counts_as_settled(db, make_order):
    order, _ = await make_order(payment_method=PaymentMethod.COD)
    await CodSettlementService(db).override_status(order.id, CodStatus.RECEIVED, reason="Imported history")

    summary = await AccountingService(db).get_summary(today(), today())

    assert summary["revenue"]["cod"] == Decimal("1180.00")
    assert summary["cod_pending"]["count"] == 0


async def test_profit_uses_live_cost_price(db, product, make_order):
    await make_order(quantity=2, payment_id="pay_1")
    service = AccountingService(db)

    summary = await service.get_summary(today(), today())
    assert summary["profit"]["recognized_subtotal"] == Decimal("2000.00")
    assert summary["profit"]["cost_of_goods"] == Decimal("1200.00")
    assert summary["profit"]["profit"] == Decimal("800.00")

    await ProductService(db).update_cost_price(product.id, Decimal("700.00"))

    summary = await service.get_summary(today(), today())
    assert summary["profit"]["cost_of_goods"] == Decimal("1400.00")
    assert summary["profit"]["profit"] == Decimal("600.00")


async def test_tax_comes_from_final_invoices_only(db, make_order, advance):
    delivered, _ = await make_order(payment_id="pay_1")
    await make_order(state="Karnataka")
    result = await advance(delivered.id)

    summary = await AccountingService(db).get_summary(today(), today())

    assert summary["tax"] == {
        "taxable_value": Decimal("1000.00"),
        "cgst": Decimal("90.00"),
        "sgst": Decimal("90.00"),
        "igst": Decimal("0.00"),
        "total": Decimal("180.00"),
        "invoice_count": 1,
    }
    assert summary["invoices"]["proforma_count"] == 2
    assert summary["invoices"]["final_count"] == 1

    await InvoiceService(db).void_invoice(result.final_invoice.id, "Wrong address")
    summary = await AccountingService(db).get_summary(today(), today())

    assert summary["tax"]["invoice_count"] == 0
    assert summary["invoices"]["void_count"] == 1


async def test_payment_confirmation_moves_revenue(db, make_order):
    order, _ = await make_order()
    before = await AccountingService(db).get_summary(today(), today())
    assert before["revenue"]["total"] == Decimal("0")

    await PaymentService(db).confirm_payment(order.id, "pay_late", Decimal("1180.00"))

    after = await AccountingService(db).get_summary(today(), today())
    assert after["revenue"]["total"] == Decimal("1180.00")
    assert after["pending_online"]["count"] == 0


async def test_window_excludes_other_days(db, make_order):
    await make_order(payment_id="pay_1")
    yesterday = today() - timedelta(days=1)

    summary = await AccountingService(db).get_summary(yesterday, yesterday)

    assert summary["order_count"] == 0


async def test_list_views_use_window(db, make_order):
    await make_order()
    await make_order(payment_method=PaymentMethod.COD)
    service = AccountingService(db)

    orders, total = await service.list_orders(today(), today(), payment_method=PaymentMethod.COD.value)
    assert total == 1

    invoices, total = await service.list_invoices(today(), today())
    assert total == 2

    _, total = await service.list_orders(date(2020, 1, 1), date(2020, 1, 31))
    assert total == 0


def test_window_bounds():
    start, end = window_bounds(date(2026, 4, 1), date(2026, 4, 30))

    assert start == datetime(2026, 4, 1, tzinfo=timezone.utc)
    assert end == datetime(2026, 5, 1, tzinfo=timezone.utc)
    assert window_bounds() == (None, None)
    with pytest.raises(ValidationError):
        window_bounds(date(2026, 5, 1), date(2026, 4, 1))


def test_collection_efficiency():
    assert collection_efficiency(Decimal("0"), Decimal("0")) == Decimal("0.00")
    assert collection_efficiency(Decimal("200"), Decimal("100")) == Decimal("66.67")
    assert collection_efficiency(Decimal("500"), Decimal("0")) == Decimal("100.00")


async def test_status_filter_on_orders(db, make_order, advance):
    order, _ = await make_order()
    await advance(order.id, OrderStatus.CONFIRMED.value)
    await make_order()

    orders, total = await AccountingService(db).list_orders(today(), today(), status=OrderStatus.CONFIRMED.value)
    assert total == 1
    assert orders[0].id == order.id
