"""
Accounting Aggregator.

Read-only rollups over a date window, computed from persisted orders,
order lines, products and invoices on every call. Nothing is cached and
nothing is written, so re-running a report over the same window returns
the same figures.

Recognition rules:
- Revenue is the total of online orders with payment_status 'paid' plus
  COD orders whose cash is settled ('settled' or legacy 'received').
- Cancelled orders never count, whatever their payment or COD state.
- COD cash with the courier or awaiting bank credit is "in transit".
- Profit uses the product cost price as it is now, not as it was when the
  order was placed, so cost corrections flow into past periods.
- Tax figures come from final, non-void invoices only.
"""

import logging
from collections import OrderedDict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ordercore.core.exceptions import ValidationError
from ordercore.models.invoice import Invoice, InvoiceStatus, InvoiceType
from ordercore.models.order import CodStatus, Order, OrderStatus
from ordercore.models.product import Product
from ordercore.services.invoice_service import InvoiceService
from ordercore.services.order_service import OrderService
from ordercore.services.tax_calculator import ZERO, round_money

logger = logging.getLogger(__name__)


SETTLED_COD_STATES = {CodStatus.SETTLED.value, CodStatus.RECEIVED.value}
IN_TRANSIT_COD_STATES = {CodStatus.COLLECTED_BY_COURIER.value, CodStatus.AWAITING_SETTLEMENT.value}


def window_bounds(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive calendar dates to UTC datetime bounds [start, end)."""
    if date_from and date_to and date_from > date_to:
        raise ValidationError(
            "date_from must not be after date_to",
            {"date_from": date_from.isoformat(), "date_to": date_to.isoformat()},
        )
    start = datetime.combine(date_from, time.min, tzinfo=timezone.utc) if date_from else None
    end = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc) if date_to else None
    return start, end


def is_revenue_recognized(order: Order) -> bool:
    if order.status == OrderStatus.CANCELLED.value:
        return False
    if order.is_cod:
        return order.cod_status in SETTLED_COD_STATES
    return order.is_paid


def collection_efficiency(revenue: Decimal, outstanding: Decimal) -> Decimal:
    """Recognized revenue as a percentage of everything owed; 0 when nothing is owed."""
    denominator = revenue + outstanding
    if denominator <= ZERO:
        return Decimal("0.00")
    return round_money(revenue / denominator * Decimal("100"))


def _bucket() -> Dict[str, Any]:
    return {"count": 0, "amount": ZERO}


def _add(bucket: Dict[str, Any], amount: Decimal) -> None:
    bucket["count"] += 1
    bucket["amount"] += amount


class AccountingService:
    """Pure queries; safe to run concurrently with any write."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _orders_in_window(self, start: Optional[datetime], end: Optional[datetime]) -> List[Order]:
        stmt = select(Order).order_by(Order.created_at).execution_options(populate_existing=True)
        if start:
            stmt = stmt.where(Order.created_at >= start)
        if end:
            stmt = stmt.where(Order.created_at < end)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _invoices_in_window(self, start: Optional[datetime], end: Optional[datetime]) -> List[Invoice]:
        stmt = select(Invoice).order_by(Invoice.created_at).execution_options(populate_existing=True)
        if start:
            stmt = stmt.where(Invoice.created_at >= start)
        if end:
            stmt = stmt.where(Invoice.created_at < end)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _live_cost_prices(self, product_ids: set) -> Dict[uuid.UUID, Decimal]:
        if not product_ids:
            return {}
        result = await self.db.execute(
            select(Product.id, Product.cost_price).where(Product.id.in_(product_ids))
        )
        return {row.id: row.cost_price for row in result.all()}

    async def get_summary(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Full accounting rollup for the window."""
        start, end = window_bounds(date_from, date_to)
        orders = await self._orders_in_window(start, end)

        revenue_online = ZERO
        revenue_cod = ZERO
        recognized: List[Order] = []
        cancelled_count = 0
        cod = {state.value: _bucket() for state in CodStatus if state != CodStatus.RECEIVED}
        pending_online = _bucket()
        daily: "OrderedDict[date, Dict[str, Any]]" = OrderedDict()

        for order in orders:
            if order.status == OrderStatus.CANCELLED.value:
                cancelled_count += 1
                continue

            day = order.created_at.date()
            daily.setdefault(day, {"date": day, "order_count": 0, "revenue": ZERO})
            daily[day]["order_count"] += 1

            if is_revenue_recognized(order):
                recognized.append(order)
                daily[day]["revenue"] += order.total_amount
                if order.is_cod:
                    revenue_cod += order.total_amount
                else:
                    revenue_online += order.total_amount

            if order.is_cod:
                state = order.cod_status or CodStatus.PENDING.value
                if state == CodStatus.RECEIVED.value:
                    state = CodStatus.SETTLED.value
                _add(cod[state], order.total_amount)
            elif not order.is_paid:
                _add(pending_online, order.total_amount)

        revenue = revenue_online + revenue_cod

        # Profit over recognized orders, at today's cost prices
        cost_prices = await self._live_cost_prices(
            {item.product_id for order in recognized for item in order.items}
        )
        recognized_subtotal = sum((order.subtotal for order in recognized), ZERO)
        cost_of_goods = sum(
            (
                cost_prices.get(item.product_id, ZERO) * item.quantity
                for order in recognized
                for item in order.items
            ),
            ZERO,
        )

        in_transit = {
            "collected_by_courier": cod[CodStatus.COLLECTED_BY_COURIER.value],
            "awaiting_settlement": cod[CodStatus.AWAITING_SETTLEMENT.value],
            "count": sum(cod[s]["count"] for s in IN_TRANSIT_COD_STATES),
            "amount": sum((cod[s]["amount"] for s in IN_TRANSIT_COD_STATES), ZERO),
        }
        cod_unsettled = sum(
            (bucket["amount"] for state, bucket in cod.items() if state != CodStatus.SETTLED.value),
            ZERO,
        )

        summary = {
            "date_from": date_from,
            "date_to": date_to,
            "order_count": len(orders) - cancelled_count,
            "cancelled_count": cancelled_count,
            "revenue": {
                "total": revenue,
                "online": revenue_online,
                "cod": revenue_cod,
                "order_count": len(recognized),
            },
            "in_transit": in_transit,
            "cod_pending": cod[CodStatus.PENDING.value],
            "cod_not_received": cod[CodStatus.NOT_RECEIVED.value],
            "pending_online": pending_online,
            "profit": {
                "recognized_subtotal": recognized_subtotal,
                "cost_of_goods": round_money(cost_of_goods),
                "profit": round_money(recognized_subtotal - cost_of_goods),
            },
            "collection_efficiency": collection_efficiency(
                revenue, cod_unsettled + pending_online["amount"]
            ),
            "daily": list(daily.values()),
        }
        summary.update(await self._invoice_figures(start, end))

        logger.info(
            f"Accounting summary {date_from or '-'}..{date_to or '-'}: "
            f"{len(orders)} orders, revenue {revenue}, in transit {in_transit['amount']}"
        )
        return summary

    async def _invoice_figures(self, start: Optional[datetime], end: Optional[datetime]) -> Dict[str, Any]:
        invoices = await self._invoices_in_window(start, end)

        tax = {
            "taxable_value": ZERO,
            "cgst": ZERO,
            "sgst": ZERO,
            "igst": ZERO,
            "total": ZERO,
            "invoice_count": 0,
        }
        counts = {
            "proforma_count": 0,
            "proforma_amount": ZERO,
            "final_count": 0,
            "final_amount": ZERO,
            "void_count": 0,
        }

        for invoice in invoices:
            if invoice.status == InvoiceStatus.VOID.value:
                counts["void_count"] += 1
                continue
            if invoice.invoice_type == InvoiceType.PROFORMA.value:
                counts["proforma_count"] += 1
                counts["proforma_amount"] += invoice.total_amount
                continue

            # Only final invoices are tax documents
            counts["final_count"] += 1
            counts["final_amount"] += invoice.total_amount
            tax["taxable_value"] += invoice.subtotal
            tax["cgst"] += invoice.cgst_amount
            tax["sgst"] += invoice.sgst_amount
            tax["igst"] += invoice.igst_amount
            tax["total"] += invoice.tax_amount
            tax["invoice_count"] += 1

        return {"tax": tax, "invoices": counts}

    # ==================== READ VIEWS ====================

    async def list_orders(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        skip: int = 0,
        limit: int = 50,
        **filters,
    ) -> Tuple[List[Order], int]:
        start, end = window_bounds(date_from, date_to)
        return await OrderService(self.db).get_orders(
            date_from=start, date_to=end, skip=skip, limit=limit, **filters
        )

    async def list_invoices(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        skip: int = 0,
        limit: int = 50,
        **filters,
    ) -> Tuple[List[Invoice], int]:
        start, end = window_bounds(date_from, date_to)
        return await InvoiceService(self.db).get_invoices(
            date_from=start, date_to=end, skip=skip, limit=limit, **filters
        )
