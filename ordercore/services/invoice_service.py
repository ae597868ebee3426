"""Invoice Generator.

- Proforma invoice: issued with the order (same transaction) or manually for
  ad hoc billing without an order.
- Final tax invoice: exactly one active per order, issued once the order is
  delivered. ``create_final`` is idempotent and safe to call from the
  delivery transition, the retry job and an operator alike.

Exactly-once is enforced by the unique ``invoices.final_order_id`` column,
not by the existence check alone: when two callers race, the loser's insert
fails, it rolls back, and returns the winner's invoice.
"""
import uuid
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ordercore.config import settings
from ordercore.core.exceptions import (
    InvoiceNumberCollisionError,
    NotFoundError,
    ValidationError,
)
from ordercore.core.retry import retry_on_contention
from ordercore.models.document_sequence import DocumentType
from ordercore.models.invoice import (
    Invoice, InvoiceItem, InvoiceType, InvoiceStatus,
    InvoiceGenerationTask, InvoiceTaskStatus,
)
from ordercore.models.order import Order, OrderStatus
from ordercore.schemas.invoice import ManualInvoiceCreate
from ordercore.services.audit_service import AuditService
from ordercore.services.document_sequence_service import DocumentSequenceService
from ordercore.services.tax_calculator import TaxSummary, calculate_taxes, reconcile_to_total


logger = logging.getLogger(__name__)

SHIPPING_LINE_DESCRIPTION = "Shipping charges"


def format_address(address: Optional[Dict[str, Any]]) -> Optional[str]:
    if not address:
        return None
    parts = [
        address.get("line1"),
        address.get("line2"),
        address.get("city"),
        address.get("state"),
        address.get("pincode"),
    ]
    return ", ".join(str(p) for p in parts if p)


def order_invoice_lines(order: Order) -> List[Dict[str, Any]]:
    """
    Invoice lines for an order: one per item at its stored GST rate, plus a
    zero-rated shipping line so the invoice total equals the order total.
    """
    lines = [
        {
            "description": item.product_name,
            "product_id": item.product_id,
            "quantity": Decimal(item.quantity),
            "unit_price": item.unit_price,
            "gst_rate": item.gst_rate,
            "taxable_value": item.line_total,
        }
        for item in order.items
    ]
    if order.shipping_amount and order.shipping_amount > 0:
        lines.append({
            "description": SHIPPING_LINE_DESCRIPTION,
            "product_id": None,
            "quantity": Decimal("1"),
            "unit_price": order.shipping_amount,
            "gst_rate": Decimal("0"),
            "taxable_value": order.shipping_amount,
        })
    return lines


class InvoiceService:
    """Service for proforma and final invoice generation."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== LOOKUPS ====================

    async def get_invoice(self, invoice_id: uuid.UUID) -> Optional[Invoice]:
        result = await self.db.execute(select(Invoice).where(Invoice.id == invoice_id))
        return result.scalar_one_or_none()

    async def get_final_invoice(self, order_id: uuid.UUID) -> Optional[Invoice]:
        """The active final invoice of an order, if one was issued."""
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.final_order_id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_order_invoices(self, order_id: uuid.UUID) -> List[Invoice]:
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.order_id == order_id)
            .order_by(Invoice.created_at)
        )
        return list(result.scalars().all())

    async def get_invoices(
        self,
        invoice_type: Optional[str] = None,
        order_id: Optional[uuid.UUID] = None,
        include_void: bool = True,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Invoice], int]:
        conditions = []
        if invoice_type:
            conditions.append(Invoice.invoice_type == invoice_type)
        if order_id:
            conditions.append(Invoice.order_id == order_id)
        if not include_void:
            conditions.append(Invoice.status != InvoiceStatus.VOID.value)
        if date_from:
            conditions.append(Invoice.created_at >= date_from)
        if date_to:
            conditions.append(Invoice.created_at < date_to)

        total = (await self.db.execute(
            select(func.count(Invoice.id)).where(*conditions)
        )).scalar() or 0

        result = await self.db.execute(
            select(Invoice)
            .where(*conditions)
            .order_by(Invoice.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    # ==================== BUILDING ====================

    async def _allocate_number(self, document_type: DocumentType) -> str:
        return await DocumentSequenceService(self.db).get_next_number(document_type)

    def _compute(self, lines: List[Dict[str, Any]], buyer_state: str, expected_total=None) -> TaxSummary:
        summary = calculate_taxes(
            ((line["taxable_value"], line["gst_rate"]) for line in lines),
            buyer_state,
            settings.SELLER_STATE,
        )
        if expected_total is not None:
            summary = reconcile_to_total(summary, expected_total, settings.TAX_ROUNDING_TOLERANCE)
        return summary

    def _build_invoice(
        self,
        invoice_number: str,
        invoice_type: InvoiceType,
        lines: List[Dict[str, Any]],
        summary: TaxSummary,
        client: Dict[str, Any],
        order_id: Optional[uuid.UUID] = None,
        created_by: Optional[uuid.UUID] = None,
        delivery_date=None,
        notes: Optional[str] = None,
    ) -> Invoice:
        is_final = invoice_type == InvoiceType.FINAL
        invoice = Invoice(
            invoice_number=invoice_number,
            invoice_type=invoice_type.value,
            is_final=is_final,
            status=InvoiceStatus.ISSUED.value,
            order_id=order_id,
            final_order_id=order_id if is_final else None,
            client_name=client["name"],
            client_email=client.get("email"),
            client_phone=client.get("phone"),
            client_address=client.get("address"),
            client_state=client["state"],
            client_gstin=client.get("gstin"),
            seller_name=settings.SELLER_NAME,
            seller_address=settings.SELLER_ADDRESS,
            seller_state=settings.SELLER_STATE,
            seller_gstin=settings.SELLER_GSTIN or None,
            is_igst=summary.is_igst,
            subtotal=summary.subtotal,
            cgst_amount=summary.cgst,
            sgst_amount=summary.sgst,
            igst_amount=summary.igst,
            tax_amount=summary.tax_amount,
            total_amount=summary.grand_total,
            delivery_date=delivery_date,
            notes=notes,
            created_by=created_by,
        )
        invoice.items = [
            InvoiceItem(
                position=position,
                description=line["description"],
                product_id=line.get("product_id"),
                hsn_code=line.get("hsn_code"),
                quantity=line["quantity"],
                unit_price=line["unit_price"],
                gst_rate=tax.gst_rate,
                taxable_value=tax.taxable_value,
                cgst_amount=tax.cgst,
                sgst_amount=tax.sgst,
                igst_amount=tax.igst,
                tax_amount=tax.tax_amount,
                line_total=tax.line_total,
            )
            for position, (line, tax) in enumerate(zip(lines, summary.lines))
        ]
        return invoice

    @staticmethod
    def _order_client(order: Order) -> Dict[str, Any]:
        return {
            "name": order.customer_name,
            "email": order.customer_email,
            "phone": order.customer_phone,
            "address": format_address(order.shipping_address),
            "state": order.buyer_state,
            "gstin": order.customer_gstin,
        }

    # ==================== PROFORMA ====================

    async def create_proforma_for_order(
        self,
        order: Order,
        created_by: Optional[uuid.UUID] = None,
    ) -> Invoice:
        """
        Issue the proforma invoice of a new order.

        Runs inside the order creation transaction and does not commit.
        """
        lines = order_invoice_lines(order)
        summary = self._compute(lines, order.buyer_state, expected_total=order.total_amount)
        invoice_number = await self._allocate_number(DocumentType.PROFORMA_INVOICE)

        invoice = self._build_invoice(
            invoice_number,
            InvoiceType.PROFORMA,
            lines,
            summary,
            self._order_client(order),
            order_id=order.id,
            created_by=created_by,
        )
        self.db.add(invoice)
        await self._flush_invoice(invoice_number)
        logger.info(f"Proforma invoice {invoice_number} issued for order {order.order_number}")
        return invoice

    @retry_on_contention
    async def create_manual_proforma(
        self,
        data: ManualInvoiceCreate,
        created_by: Optional[uuid.UUID] = None,
    ) -> Invoice:
        """Ad hoc proforma invoice with no order link."""
        lines = [
            {
                "description": item.description,
                "product_id": item.product_id,
                "hsn_code": item.hsn_code,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "gst_rate": item.gst_rate if item.gst_rate is not None else settings.DEFAULT_GST_RATE,
                "taxable_value": item.quantity * item.unit_price,
            }
            for item in data.items
        ]
        summary = self._compute(lines, data.client_state)
        invoice_number = await self._allocate_number(DocumentType.PROFORMA_INVOICE)

        invoice = self._build_invoice(
            invoice_number,
            InvoiceType.PROFORMA,
            lines,
            summary,
            {
                "name": data.client_name,
                "email": data.client_email,
                "phone": data.client_phone,
                "address": data.client_address,
                "state": data.client_state,
                "gstin": data.client_gstin,
            },
            created_by=created_by,
            notes=data.notes,
        )
        self.db.add(invoice)
        await self._flush_invoice(invoice_number)
        await self.db.commit()

        logger.info(f"Manual proforma invoice {invoice_number} issued for {data.client_name}")
        return invoice

    async def _flush_invoice(self, invoice_number: str) -> None:
        try:
            await self.db.flush()
        except IntegrityError as e:
            if "invoice_number" in str(e.orig):
                await self.db.rollback()
                logger.critical(f"Invoice number collision on {invoice_number}")
                raise InvoiceNumberCollisionError(
                    f"Invoice number {invoice_number} already exists; check document sequences",
                    {"invoice_number": invoice_number},
                ) from e
            raise

    # ==================== FINAL ====================

    @retry_on_contention
    async def create_final(
        self,
        order_id: uuid.UUID,
        created_by: Optional[uuid.UUID] = None,
    ) -> Invoice:
        """
        Issue the final tax invoice of a delivered order, or return the one
        already issued.

        Taxes use the buyer state captured at order time and the GST rates
        stored on the order lines, so the final invoice agrees with the
        proforma. Raises TaxReconciliationError, with nothing written, when
        the computed total does not match the order total.
        """
        existing = await self.get_final_invoice(order_id)
        if existing:
            logger.info(f"Final invoice {existing.invoice_number} already exists for order {order_id}")
            return existing

        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order not found", {"order_id": str(order_id)})
        if order.status != OrderStatus.DELIVERED.value:
            raise ValidationError(
                f"Final invoice requires a delivered order; order {order.order_number} is '{order.status}'",
                {"order_id": str(order_id), "status": order.status},
            )

        lines = order_invoice_lines(order)
        summary = self._compute(lines, order.buyer_state, expected_total=order.total_amount)
        order_number = order.order_number
        delivery_date = (order.delivered_at or datetime.now(timezone.utc)).date()

        invoice_number = await self._allocate_number(DocumentType.TAX_INVOICE)
        invoice = self._build_invoice(
            invoice_number,
            InvoiceType.FINAL,
            lines,
            summary,
            self._order_client(order),
            order_id=order_id,
            created_by=created_by,
            delivery_date=delivery_date,
        )
        self.db.add(invoice)

        try:
            await self.db.flush()
        except IntegrityError as e:
            message = str(e.orig)
            await self.db.rollback()
            if "final_order_id" in message:
                # Lost the race; the winner's invoice is committed
                winner = await self.get_final_invoice(order_id)
                if winner is not None:
                    logger.warning(
                        f"Concurrent final invoice for order {order_number}; "
                        f"returning {winner.invoice_number}"
                    )
                    return winner
            if "invoice_number" in message:
                logger.critical(f"Invoice number collision on {invoice_number}")
                raise InvoiceNumberCollisionError(
                    f"Invoice number {invoice_number} already exists; check document sequences",
                    {"invoice_number": invoice_number},
                ) from e
            raise

        await self._mark_task_completed(order_id, invoice.id)
        await self.db.commit()

        logger.info(
            f"Final invoice {invoice_number} issued for order {order_number}: "
            f"total {invoice.total_amount}, {'IGST' if invoice.is_igst else 'CGST+SGST'}"
        )
        return invoice

    # ==================== VOID ====================

    @retry_on_contention
    async def void_invoice(
        self,
        invoice_id: uuid.UUID,
        reason: str,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Invoice:
        """
        Mark an invoice void. Voiding a final invoice frees the order's final
        slot so a corrected invoice can be issued with create_final.
        """
        result = await self.db.execute(
            select(Invoice).where(Invoice.id == invoice_id).with_for_update()
        )
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise NotFoundError("Invoice not found", {"invoice_id": str(invoice_id)})
        if invoice.is_void:
            raise ValidationError(
                f"Invoice {invoice.invoice_number} is already void",
                {"invoice_id": str(invoice_id)},
            )

        invoice.status = InvoiceStatus.VOID.value
        invoice.final_order_id = None
        invoice.voided_at = datetime.now(timezone.utc)
        invoice.voided_by = actor_id
        invoice.void_reason = reason

        await AuditService(self.db).log(
            action="INVOICE_VOIDED",
            entity_type="INVOICE",
            entity_id=invoice.id,
            user_id=actor_id,
            old_values={"status": InvoiceStatus.ISSUED.value},
            new_values={"status": InvoiceStatus.VOID.value},
            description=f"Voided {invoice.invoice_type} invoice {invoice.invoice_number}: {reason}",
        )
        await self.db.commit()

        logger.warning(f"Invoice {invoice.invoice_number} voided by {actor_id}: {reason}")
        return invoice

    # ==================== RETRY QUEUE ====================

    async def enqueue_final_invoice(self, order_id: uuid.UUID) -> InvoiceGenerationTask:
        """Record that the order needs a final invoice. Caller commits."""
        result = await self.db.execute(
            select(InvoiceGenerationTask).where(InvoiceGenerationTask.order_id == order_id)
        )
        task = result.scalar_one_or_none()
        if task is None:
            task = InvoiceGenerationTask(
                order_id=order_id,
                status=InvoiceTaskStatus.PENDING.value,
                retry_count=0,
                max_retries=settings.FINAL_INVOICE_MAX_RETRIES,
            )
            self.db.add(task)
        elif task.status != InvoiceTaskStatus.PENDING.value:
            task.status = InvoiceTaskStatus.PENDING.value
            task.completed_at = None
        await self.db.flush()
        return task

    async def _mark_task_completed(self, order_id: uuid.UUID, invoice_id: uuid.UUID) -> None:
        result = await self.db.execute(
            select(InvoiceGenerationTask).where(InvoiceGenerationTask.order_id == order_id)
        )
        task = result.scalar_one_or_none()
        if task is not None:
            task.status = InvoiceTaskStatus.COMPLETED.value
            task.invoice_id = invoice_id
            task.last_error = None
            task.completed_at = datetime.now(timezone.utc)

    async def record_task_failure(
        self,
        order_id: uuid.UUID,
        error: Exception,
        fatal: bool = False,
    ) -> InvoiceGenerationTask:
        """
        Count a failed attempt. The task fails for good on a fatal error or
        when retries run out; otherwise it stays pending for the retry job.
        Must be called on a clean session (after rollback). Commits.
        """
        result = await self.db.execute(
            select(InvoiceGenerationTask)
            .where(InvoiceGenerationTask.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        task = result.scalar_one_or_none()
        if task is None:
            task = InvoiceGenerationTask(
                order_id=order_id,
                retry_count=0,
                max_retries=settings.FINAL_INVOICE_MAX_RETRIES,
            )
            self.db.add(task)

        task.retry_count = (task.retry_count or 0) + 1
        task.last_error = f"{type(error).__name__}: {error}"[:2000]
        if fatal or task.retry_count >= task.max_retries:
            task.status = InvoiceTaskStatus.FAILED.value
            logger.error(
                f"Final invoice for order {order_id} needs manual reconciliation "
                f"after {task.retry_count} attempt(s): {task.last_error}"
            )
        else:
            task.status = InvoiceTaskStatus.PENDING.value
            logger.warning(
                f"Final invoice for order {order_id} failed "
                f"(attempt {task.retry_count}/{task.max_retries}), queued for retry"
            )
        await self.db.commit()
        return task

    async def get_pending_tasks(self, limit: int = 50) -> List[InvoiceGenerationTask]:
        result = await self.db.execute(
            select(InvoiceGenerationTask)
            .where(InvoiceGenerationTask.status == InvoiceTaskStatus.PENDING.value)
            .order_by(InvoiceGenerationTask.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_task(self, order_id: uuid.UUID) -> Optional[InvoiceGenerationTask]:
        result = await self.db.execute(
            select(InvoiceGenerationTask)
            .where(InvoiceGenerationTask.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
