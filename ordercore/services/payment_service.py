"""
Payment confirmation.

The checkout collaborator reports a captured online payment as a fact
carrying order id, payment id and amount. Redelivery of the same fact is
harmless; a second, different payment id for a paid order is a conflict.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Tuple
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ordercore.core.exceptions import NotFoundError, PaymentConflictError, ValidationError
from ordercore.core.retry import retry_on_contention
from ordercore.models.order import Order, OrderStatus, PaymentStatus
from ordercore.services.audit_service import AuditService
from ordercore.services.tax_calculator import round_money

logger = logging.getLogger(__name__)


class PaymentService:
    """Applies payment-confirmed facts to orders."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @retry_on_contention
    async def confirm_payment(
        self,
        order_id: uuid.UUID,
        payment_id: str,
        amount: Decimal,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Tuple[Order, bool]:
        """
        Mark an online order paid.

        Returns ``(order, already_applied)``; ``already_applied`` is True when
        this payment id had been recorded before and nothing changed.
        """
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order not found", {"order_id": str(order_id)})

        if order.is_cod:
            raise ValidationError(
                f"Order {order.order_number} is cash on delivery; use COD settlement",
                {"order_id": str(order_id)},
            )

        if order.is_paid:
            if order.payment_id == payment_id:
                logger.info(f"Payment {payment_id} for order {order.order_number} already applied")
                return order, True
            raise PaymentConflictError(
                f"Order {order.order_number} is already paid with a different payment",
                {"order_id": str(order_id), "payment_id": order.payment_id},
            )

        if order.status == OrderStatus.CANCELLED.value:
            raise ValidationError(
                f"Order {order.order_number} is cancelled",
                {"order_id": str(order_id)},
            )

        amount = round_money(amount)
        if amount != order.total_amount:
            raise ValidationError(
                f"Payment amount {amount} does not match order total {order.total_amount}",
                {"order_id": str(order_id), "amount": str(amount), "total_amount": str(order.total_amount)},
            )

        order.payment_status = PaymentStatus.PAID.value
        order.payment_id = payment_id
        order.paid_at = datetime.now(timezone.utc)

        await AuditService(self.db).log(
            action="PAYMENT_CONFIRMED",
            entity_type="ORDER",
            entity_id=order.id,
            user_id=actor_id,
            old_values={"payment_status": PaymentStatus.PENDING.value},
            new_values={"payment_status": PaymentStatus.PAID.value, "payment_id": payment_id, "amount": amount},
            description=f"Payment {payment_id} of {amount} confirmed for order {order.order_number}",
        )
        await self.db.commit()

        logger.info(f"Order {order.order_number} paid: {payment_id} ({amount})")
        return order, False
