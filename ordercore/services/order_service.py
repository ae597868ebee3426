from dataclasses import dataclass
from typing import List, Optional, Tuple
from datetime import datetime, timezone
from decimal import Decimal
import uuid
import logging

from sqlalchemy import select, func, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ordercore.config import settings
from ordercore.core.exceptions import (
    DocumentNumberCollisionError,
    InvoiceNumberCollisionError,
    NotFoundError,
    StorageUnavailableError,
    TaxReconciliationError,
    ValidationError,
)
from ordercore.core.retry import retry_on_contention
from ordercore.models.document_sequence import DocumentType
from ordercore.models.invoice import Invoice, InvoiceItem, InvoiceGenerationTask
from ordercore.models.ledger import LedgerAction, LedgerSubjectType
from ordercore.models.order import (
    Order, OrderItem, OrderStatus, OrderStatusHistory,
    PaymentMethod, PaymentStatus, CodStatus,
)
from ordercore.models.product import Product
from ordercore.schemas.order import OrderCreate
from ordercore.services.audit_service import AuditService
from ordercore.services.document_sequence_service import DocumentSequenceService
from ordercore.services.invoice_service import InvoiceService
from ordercore.services.ledger_service import LedgerService
from ordercore.services.order_state_machine import ShippingDetails, apply_transition, get_transition_action
from ordercore.services.tax_calculator import calculate_taxes, round_money

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    """
    Outcome of a status change.

    ``order.status`` and ``final_invoice`` are separate facts: a delivered
    order with ``invoice_pending`` set has its final invoice queued for retry.
    """
    order: Order
    previous_status: str
    changed: bool
    final_invoice: Optional[Invoice] = None
    invoice_pending: bool = False
    invoice_error: Optional[str] = None


class OrderService:
    """Service for placing orders and moving them through fulfillment."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== READS ====================

    async def get_order_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_order_or_404(self, order_id: uuid.UUID) -> Order:
        order = await self.get_order_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found", {"order_id": str(order_id)})
        return order

    async def _get_order_for_update(self, order_id: uuid.UUID) -> Order:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order not found", {"order_id": str(order_id)})
        return order

    async def get_orders(
        self,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        payment_method: Optional[str] = None,
        cod_status: Optional[str] = None,
        search: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Order], int]:
        """Get paginated orders with filters, newest first."""
        conditions = []
        if status:
            conditions.append(Order.status == status)
        if payment_status:
            conditions.append(Order.payment_status == payment_status)
        if payment_method:
            conditions.append(Order.payment_method == payment_method)
        if cod_status:
            conditions.append(Order.cod_status == cod_status)
        if search:
            search_filter = or_(
                Order.order_number.ilike(f"%{search}%"),
                Order.customer_name.ilike(f"%{search}%"),
                Order.customer_email.ilike(f"%{search}%"),
            )
            conditions.append(search_filter)
        if date_from:
            conditions.append(Order.created_at >= date_from)
        if date_to:
            conditions.append(Order.created_at < date_to)

        total = (await self.db.execute(
            select(func.count(Order.id)).where(*conditions)
        )).scalar() or 0

        result = await self.db.execute(
            select(Order)
            .where(*conditions)
            .order_by(Order.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_status_history(self, order_id: uuid.UUID) -> List[OrderStatusHistory]:
        await self.get_order_or_404(order_id)
        result = await self.db.execute(
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.created_at, OrderStatusHistory.id)
        )
        return list(result.scalars().all())

    # ==================== CREATE ====================

    @retry_on_contention
    async def create_order(
        self,
        data: OrderCreate,
        created_by: Optional[uuid.UUID] = None,
    ) -> Tuple[Order, Invoice]:
        """
        Place an order and issue its proforma invoice in one transaction.
        Stock is taken through the ledger in the same transaction, so a
        placed order can always be delivered.

        Line GST comes from the product, or the configured default when the
        product has none; the resolved rate is stored on the line so every
        later invoice for the order uses the same one.
        """
        buyer_state = data.shipping_address.state
        items_data = []

        for item_data in data.items:
            result = await self.db.execute(
                select(Product)
                .where(Product.id == item_data.product_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            product = result.scalar_one_or_none()
            if product is None or not product.is_active:
                raise ValidationError(
                    f"Product {item_data.product_id} not found",
                    {"product_id": str(item_data.product_id)},
                )
            if product.stock_quantity < item_data.quantity:
                raise ValidationError(
                    f"Insufficient stock for {product.sku}: "
                    f"available {product.stock_quantity}, requested {item_data.quantity}",
                    {"product_id": str(product.id), "available": product.stock_quantity},
                )

            unit_price = round_money(item_data.unit_price if item_data.unit_price is not None else product.price)
            gst_rate_defaulted = product.gst_rate is None
            gst_rate = settings.DEFAULT_GST_RATE if gst_rate_defaulted else product.gst_rate
            if gst_rate_defaulted:
                logger.warning(
                    f"Product {product.sku} has no GST rate; applying default {gst_rate}%"
                )

            items_data.append({
                "product": product,
                "quantity": item_data.quantity,
                "unit_price": unit_price,
                "line_total": round_money(unit_price * item_data.quantity),
                "gst_rate": Decimal(str(gst_rate)),
                "gst_rate_defaulted": gst_rate_defaulted,
            })

        summary = calculate_taxes(
            ((item["line_total"], item["gst_rate"]) for item in items_data),
            buyer_state,
            settings.SELLER_STATE,
        )
        subtotal = summary.subtotal
        shipping_amount = round_money(data.shipping_amount)
        tax_amount = summary.tax_amount
        total_amount = subtotal + shipping_amount + tax_amount

        is_cod = data.payment_method == PaymentMethod.COD
        if is_cod and data.payment_id:
            raise ValidationError("Cash on delivery orders cannot carry a payment id")

        order_number = await DocumentSequenceService(self.db).get_next_number(DocumentType.ORDER)
        now = datetime.now(timezone.utc)

        order = Order(
            order_number=order_number,
            status=OrderStatus.PENDING.value,
            customer_name=data.customer_name,
            customer_email=data.customer_email,
            customer_phone=data.customer_phone,
            customer_gstin=data.customer_gstin,
            shipping_address=data.shipping_address.model_dump(),
            subtotal=subtotal,
            shipping_amount=shipping_amount,
            tax_amount=tax_amount,
            total_amount=total_amount,
            payment_method=data.payment_method.value,
            payment_status=PaymentStatus.PAID.value if data.payment_id else PaymentStatus.PENDING.value,
            payment_id=data.payment_id,
            paid_at=now if data.payment_id else None,
            cod_status=CodStatus.PENDING.value if is_cod else None,
            notes=data.notes,
            created_by=created_by,
        )
        order.items = [
            OrderItem(
                product_id=item["product"].id,
                position=position,
                product_name=item["product"].name,
                product_sku=item["product"].sku,
                quantity=item["quantity"],
                unit_price=item["unit_price"],
                line_total=item["line_total"],
                gst_rate=item["gst_rate"],
                gst_rate_defaulted=item["gst_rate_defaulted"],
                tax_amount=tax.tax_amount,
            )
            for position, (item, tax) in enumerate(zip(items_data, summary.lines))
        ]
        self.db.add(order)

        try:
            await self.db.flush()
        except IntegrityError as e:
            if "order_number" in str(e.orig):
                await self.db.rollback()
                logger.critical(f"Order number collision on {order_number}")
                raise DocumentNumberCollisionError(
                    f"Order number {order_number} already exists; check document sequences",
                    {"order_number": order_number},
                ) from e
            raise

        self.db.add(OrderStatusHistory(
            order_id=order.id,
            from_status=None,
            to_status=OrderStatus.PENDING.value,
            changed_by=created_by,
            notes="Order placed",
        ))

        ledger = LedgerService(self.db)
        for item in order.items:
            await ledger.record(
                LedgerSubjectType.PRODUCT_STOCK,
                item.product_id,
                LedgerAction.USE,
                item.quantity,
                actor_id=created_by,
                notes=f"Reserved by order {order_number}",
                reference_type="order",
                reference_id=order.id,
            )

        proforma = await InvoiceService(self.db).create_proforma_for_order(order, created_by=created_by)

        await self.db.commit()
        logger.info(
            f"Order {order_number} placed: {len(items_data)} line(s), total {total_amount}, "
            f"{data.payment_method.value}"
        )
        return order, proforma

    # ==================== STATUS TRANSITIONS ====================

    async def transition(
        self,
        order_id: uuid.UUID,
        new_status: str,
        actor_id: Optional[uuid.UUID] = None,
        shipping: Optional[ShippingDetails] = None,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        """
        Move an order to ``new_status``.

        Delivery commits the status, COD bookkeeping and the
        final-invoice queue entry first; the final invoice is generated in a
        second transaction. If that fails transiently the order stays
        delivered and the queue entry keeps the invoice owed.
        """
        new_status = getattr(new_status, "value", new_status)
        order, previous_status, changed = await self._apply_status_change(
            order_id, new_status, actor_id, shipping, notes
        )
        result = TransitionResult(order=order, previous_status=previous_status, changed=changed)

        if new_status == OrderStatus.DELIVERED.value:
            await self._issue_final_invoice(order_id, actor_id, result)
            result.order = await self.get_order_or_404(order_id)

        return result

    @retry_on_contention
    async def _apply_status_change(
        self,
        order_id: uuid.UUID,
        new_status: str,
        actor_id: Optional[uuid.UUID],
        shipping: Optional[ShippingDetails],
        notes: Optional[str],
    ) -> Tuple[Order, str, bool]:
        order = await self._get_order_for_update(order_id)

        if order.status == new_status:
            logger.info(f"Order {order.order_number} already '{new_status}'; nothing to do")
            return order, order.status, False

        previous_status = apply_transition(order, new_status, shipping=shipping, reason=notes)

        self.db.add(OrderStatusHistory(
            order_id=order.id,
            from_status=previous_status,
            to_status=new_status,
            changed_by=actor_id,
            notes=notes or get_transition_action(previous_status, new_status),
        ))

        if new_status == OrderStatus.DELIVERED.value:
            await self._finalize_delivery(order, actor_id)
        elif new_status == OrderStatus.CANCELLED.value:
            await self._release_stock(order, actor_id, f"Released by cancelled order {order.order_number}")

        await self.db.commit()
        logger.info(f"Order {order.order_number}: {previous_status} -> {new_status} by {actor_id}")
        return order, previous_status, True

    async def _finalize_delivery(self, order: Order, actor_id: Optional[uuid.UUID]) -> None:
        """Side effects that must commit together with the delivered status."""
        if order.is_cod:
            if order.cod_status is None:
                order.cod_status = CodStatus.PENDING.value
            await AuditService(self.db).log(
                action="COD_PAYMENT_DUE",
                entity_type="ORDER",
                entity_id=order.id,
                user_id=actor_id,
                new_values={"cod_status": order.cod_status, "amount": order.total_amount},
                description=f"Order {order.order_number} delivered; {order.total_amount} cash due from courier",
            )

        await InvoiceService(self.db).enqueue_final_invoice(order.id)

    async def _release_stock(self, order: Order, actor_id: Optional[uuid.UUID], notes: str) -> None:
        """Return the stock taken at placement to the shelf."""
        ledger = LedgerService(self.db)
        for item in order.items:
            await ledger.record(
                LedgerSubjectType.PRODUCT_STOCK,
                item.product_id,
                LedgerAction.ADD,
                item.quantity,
                actor_id=actor_id,
                notes=notes,
                reference_type="order",
                reference_id=order.id,
            )

    async def _issue_final_invoice(
        self,
        order_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
        result: TransitionResult,
    ) -> None:
        invoice_service = InvoiceService(self.db)
        try:
            result.final_invoice = await invoice_service.create_final(order_id, created_by=actor_id)
        except (TaxReconciliationError, InvoiceNumberCollisionError) as e:
            await self.db.rollback()
            logger.critical(f"Final invoice for order {order_id} cannot be issued: {e.message}")
            await invoice_service.record_task_failure(order_id, e, fatal=True)
            raise
        except (SQLAlchemyError, StorageUnavailableError) as e:
            await self.db.rollback()
            logger.error(f"Final invoice for order {order_id} failed, queued for retry: {e}")
            result.invoice_pending = True
            result.invoice_error = str(e)
            try:
                await invoice_service.record_task_failure(order_id, e)
            except SQLAlchemyError:
                # The task row committed with the delivery is still pending
                await self.db.rollback()
                logger.exception(f"Could not record invoice failure for order {order_id}")

    async def cancel_order(
        self,
        order_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        """Cancel from any non-terminal status. Issued invoices stand as history."""
        return await self.transition(
            order_id, OrderStatus.CANCELLED.value, actor_id=actor_id, notes=reason
        )

    # ==================== ADMIN DELETE ====================

    @retry_on_contention
    async def delete_order(
        self,
        order_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
    ) -> dict:
        """
        Administrative cascade delete, in a fixed order:
        invoice lines, invoices, order lines, history and queue rows, order.

        A snapshot goes to the audit log first so the trail survives the
        delete. Ledger entries are kept; an order that still holds stock
        returns it first.
        """
        order = await self._get_order_for_update(order_id)
        invoices = (await self.db.execute(
            select(Invoice).where(Invoice.order_id == order_id)
        )).scalars().all()

        snapshot = {
            "order_number": order.order_number,
            "status": order.status,
            "payment_method": order.payment_method,
            "payment_status": order.payment_status,
            "cod_status": order.cod_status,
            "total_amount": order.total_amount,
            "customer_name": order.customer_name,
            "items": [
                {"product_sku": item.product_sku, "quantity": item.quantity, "line_total": item.line_total}
                for item in order.items
            ],
            "invoices": [
                {"invoice_number": inv.invoice_number, "invoice_type": inv.invoice_type, "status": inv.status}
                for inv in invoices
            ],
        }
        order_number = order.order_number
        invoice_ids = [inv.id for inv in invoices]

        if order.status not in (OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value):
            await self._release_stock(order, actor_id, f"Released by deleted order {order_number}")

        await AuditService(self.db).log(
            action="ORDER_DELETED",
            entity_type="ORDER",
            entity_id=order_id,
            user_id=actor_id,
            old_values=snapshot,
            description=f"Order {order_number} deleted with {len(invoice_ids)} invoice(s)"
                        + (f": {reason}" if reason else ""),
        )

        if invoice_ids:
            await self.db.execute(delete(InvoiceItem).where(InvoiceItem.invoice_id.in_(invoice_ids)))
            await self.db.execute(delete(Invoice).where(Invoice.id.in_(invoice_ids)))
        await self.db.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
        await self.db.execute(delete(OrderStatusHistory).where(OrderStatusHistory.order_id == order_id))
        await self.db.execute(delete(InvoiceGenerationTask).where(InvoiceGenerationTask.order_id == order_id))
        await self.db.execute(delete(Order).where(Order.id == order_id))
        await self.db.commit()

        logger.warning(
            f"Order {order_number} deleted by {actor_id} with {len(invoice_ids)} invoice(s)"
        )
        return {"order_number": order_number, "invoices_deleted": len(invoice_ids)}
