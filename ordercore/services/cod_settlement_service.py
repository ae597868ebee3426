"""
COD Settlement Tracker.

Tracks custody of cash for cash-on-delivery orders. Cash handling cannot be
observed, so every move is an explicit administrative confirmation and
every move is audited with the actor and the previous and new state.

    pending -> collected_by_courier -> awaiting_settlement -> settled
                                    \\-------------------------/
    any state -> not_received (exception report)

Only ``settled`` (and the legacy ``received``) makes COD revenue
recognizable.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ordercore.core.exceptions import CodSettlementError, NotFoundError, ValidationError
from ordercore.core.retry import retry_on_contention
from ordercore.models.order import CodStatus, Order, OrderStatus
from ordercore.services.audit_service import AuditService

logger = logging.getLogger(__name__)


SETTLED_STATES = {CodStatus.SETTLED.value, CodStatus.RECEIVED.value}

# Source states accepted by each confirmation action
COD_TRANSITIONS: Dict[str, List[str]] = {
    CodStatus.COLLECTED_BY_COURIER.value: [CodStatus.PENDING.value],
    CodStatus.AWAITING_SETTLEMENT.value: [CodStatus.COLLECTED_BY_COURIER.value],
    CodStatus.SETTLED.value: [
        CodStatus.AWAITING_SETTLEMENT.value,
        CodStatus.COLLECTED_BY_COURIER.value,
    ],
    CodStatus.NOT_RECEIVED.value: [
        CodStatus.PENDING.value,
        CodStatus.COLLECTED_BY_COURIER.value,
        CodStatus.AWAITING_SETTLEMENT.value,
        CodStatus.SETTLED.value,
        CodStatus.RECEIVED.value,
    ],
}


def can_move(from_status: Optional[str], to_status: str) -> bool:
    return (from_status or CodStatus.PENDING.value) in COD_TRANSITIONS.get(to_status, [])


class CodSettlementService:
    """Explicit COD custody confirmations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_cod_order(self, order_id: uuid.UUID) -> Order:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order not found", {"order_id": str(order_id)})
        if not order.is_cod:
            raise CodSettlementError(
                f"Order {order.order_number} is not a cash on delivery order",
                {"order_id": str(order_id), "payment_method": order.payment_method},
            )
        return order

    async def _move(
        self,
        order: Order,
        to_status: str,
        actor_id: Optional[uuid.UUID],
        action: str,
        notes: Optional[str] = None,
        forced: bool = False,
        courier_name: Optional[str] = None,
    ) -> Order:
        from_status = order.cod_status or CodStatus.PENDING.value

        if not forced:
            if order.status == OrderStatus.CANCELLED.value and to_status != CodStatus.NOT_RECEIVED.value:
                raise CodSettlementError(
                    f"Order {order.order_number} is cancelled",
                    {"order_id": str(order.id)},
                )
            if not can_move(from_status, to_status):
                raise CodSettlementError(
                    f"Cannot move COD state of {order.order_number} from '{from_status}' to '{to_status}'",
                    {
                        "order_id": str(order.id),
                        "current_status": from_status,
                        "requested_status": to_status,
                    },
                )

        now = datetime.now(timezone.utc)
        order.cod_status = to_status
        if courier_name:
            order.cod_courier_name = courier_name
        order.cod_confirmed_by = actor_id
        order.cod_confirmed_at = now
        if to_status == CodStatus.COLLECTED_BY_COURIER.value and order.cod_collected_at is None:
            order.cod_collected_at = now
        if to_status in SETTLED_STATES:
            order.cod_settled_at = now
        elif order.cod_settled_at is not None:
            order.cod_settled_at = None

        await AuditService(self.db).log(
            action=action,
            entity_type="ORDER",
            entity_id=order.id,
            user_id=actor_id,
            old_values={"cod_status": from_status},
            new_values={"cod_status": to_status, "amount": order.total_amount},
            description=notes,
        )
        await self.db.commit()

        log = logger.warning if to_status == CodStatus.NOT_RECEIVED.value or forced else logger.info
        log(f"COD {order.order_number}: {from_status} -> {to_status} by {actor_id}")
        return order

    @retry_on_contention
    async def confirm_collection(
        self,
        order_id: uuid.UUID,
        courier_name: str,
        actor_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """Courier has the cash."""
        order = await self._get_cod_order(order_id)
        if not courier_name or not courier_name.strip():
            raise ValidationError("Courier name is required to confirm collection")
        courier_name = courier_name.strip()
        return await self._move(
            order, CodStatus.COLLECTED_BY_COURIER.value, actor_id, "COD_COLLECTED",
            notes or f"Cash collected by {courier_name}",
            courier_name=courier_name,
        )

    @retry_on_contention
    async def confirm_awaiting_settlement(
        self,
        order_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """Courier has remitted; bank credit not yet seen."""
        order = await self._get_cod_order(order_id)
        return await self._move(
            order, CodStatus.AWAITING_SETTLEMENT.value, actor_id, "COD_AWAITING_SETTLEMENT", notes,
        )

    @retry_on_contention
    async def confirm_settled(
        self,
        order_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Cash confirmed in the bank. This is the only event that makes a COD
        order's amount count as revenue. payment_status is left alone.
        """
        order = await self._get_cod_order(order_id)
        return await self._move(
            order, CodStatus.SETTLED.value, actor_id, "COD_SETTLED", notes,
        )

    @retry_on_contention
    async def report_issue(
        self,
        order_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """Flag the cash as not received; needs manual reconciliation."""
        order = await self._get_cod_order(order_id)
        return await self._move(
            order, CodStatus.NOT_RECEIVED.value, actor_id, "COD_NOT_RECEIVED", notes,
        )

    @retry_on_contention
    async def override_status(
        self,
        order_id: uuid.UUID,
        status: str,
        reason: str,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Order:
        """Manual correction after reconciliation. Bypasses the transition table."""
        status = getattr(status, "value", status)
        if status not in {s.value for s in CodStatus}:
            raise ValidationError(f"Unknown COD status '{status}'")
        if not reason or len(reason.strip()) < 3:
            raise ValidationError("A reason is required to override COD status")

        order = await self._get_cod_order(order_id)
        if order.cod_status == status:
            raise CodSettlementError(
                f"COD state of {order.order_number} is already '{status}'",
                {"order_id": str(order_id)},
            )
        return await self._move(
            order, status, actor_id, "COD_OVERRIDE", f"Override: {reason.strip()}", forced=True,
        )

    async def get_history(self, order_id: uuid.UUID):
        """COD custody trail of an order, oldest first."""
        logs = await AuditService(self.db).get_entity_logs("ORDER", order_id)
        return [log for log in logs if log.action.startswith("COD_")]
