"""
Order State Machine

This module is the single place that knows which order status changes are
legal and which fields each change stamps. OrderService.transition calls
``apply_transition`` inside its unit of work and then runs the side effects
(stock release on cancel, invoice queue, COD bookkeeping).

    pending -> confirmed -> packing -> [waiting-for-pickup] -> shipped
            -> [out-for-delivery] -> delivered

``cancelled`` is reachable from every non-terminal status.
``delivered`` and ``cancelled`` are terminal.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from ordercore.core.exceptions import InvalidTransitionError, ValidationError
from ordercore.models.order import OrderStatus


S = OrderStatus

# =============================================================================
# TRANSITION RULES
# =============================================================================

# current_status -> [allowed next statuses]
ORDER_TRANSITIONS: Dict[str, List[str]] = {
    S.PENDING.value: [
        S.CONFIRMED.value,
        S.CANCELLED.value,
    ],
    S.CONFIRMED.value: [
        S.PACKING.value,
        S.CANCELLED.value,
    ],
    S.PACKING.value: [
        S.WAITING_FOR_PICKUP.value,
        S.SHIPPED.value,            # Courier picked up straight from packing
        S.CANCELLED.value,
    ],
    S.WAITING_FOR_PICKUP.value: [
        S.SHIPPED.value,
        S.CANCELLED.value,
    ],
    S.SHIPPED.value: [
        S.OUT_FOR_DELIVERY.value,
        S.DELIVERED.value,
        S.CANCELLED.value,
    ],
    S.OUT_FOR_DELIVERY.value: [
        S.DELIVERED.value,
        S.CANCELLED.value,
    ],
    S.DELIVERED.value: [],          # Terminal
    S.CANCELLED.value: [],          # Terminal
}

TRANSITION_ACTIONS: Dict[tuple, str] = {
    (S.PENDING.value, S.CONFIRMED.value): "Confirm Order",
    (S.CONFIRMED.value, S.PACKING.value): "Start Packing",
    (S.PACKING.value, S.WAITING_FOR_PICKUP.value): "Ready for Pickup",
    (S.PACKING.value, S.SHIPPED.value): "Ship",
    (S.WAITING_FOR_PICKUP.value, S.SHIPPED.value): "Ship",
    (S.SHIPPED.value, S.OUT_FOR_DELIVERY.value): "Out for Delivery",
    (S.SHIPPED.value, S.DELIVERED.value): "Mark Delivered",
    (S.OUT_FOR_DELIVERY.value, S.DELIVERED.value): "Mark Delivered",
}


@dataclass(frozen=True)
class ShippingDetails:
    """Supplied by the shipping collaborator for the shipped transition."""
    courier_name: str
    tracking_id: str
    expected_delivery_date: date
    tracking_url: Optional[str] = None

    def validate(self) -> None:
        missing = []
        if not (self.courier_name or "").strip():
            missing.append("courier_name")
        if not (self.tracking_id or "").strip():
            missing.append("tracking_id")
        if self.expected_delivery_date is None:
            missing.append("expected_delivery_date")
        if missing:
            raise ValidationError(
                "Shipping details incomplete",
                {"missing": missing},
            )


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    return new_status in ORDER_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    return ORDER_TRANSITIONS.get(current_status, [])


def get_transition_action(current_status: str, new_status: str) -> str:
    if new_status == S.CANCELLED.value:
        return "Cancel"
    return TRANSITION_ACTIONS.get((current_status, new_status), f"{current_status} -> {new_status}")


def is_terminal(status: str) -> bool:
    return status in (S.DELIVERED.value, S.CANCELLED.value)


def can_cancel(status: str) -> bool:
    return not is_terminal(status)


def validate_transition(current_status: str, new_status: str) -> None:
    """
    Raise InvalidTransitionError unless current -> new is allowed.

    Same-status requests are not validated here; callers treat them as
    idempotent replays.
    """
    if new_status not in ORDER_TRANSITIONS:
        raise InvalidTransitionError(
            f"Unknown order status '{new_status}'",
            {"status": new_status},
        )

    if can_transition(current_status, new_status):
        return

    allowed = get_allowed_transitions(current_status)
    if not allowed:
        raise InvalidTransitionError(
            f"Order in '{current_status}' status cannot be changed. This is a terminal state.",
            {"current_status": current_status, "requested_status": new_status},
        )
    raise InvalidTransitionError(
        f"Cannot change order from '{current_status}' to '{new_status}'. "
        f"Allowed transitions: {', '.join(allowed)}",
        {
            "current_status": current_status,
            "requested_status": new_status,
            "allowed": allowed,
        },
    )


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def apply_transition(
    order,
    new_status: str,
    shipping: Optional[ShippingDetails] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Validate and apply a status change to an Order instance.

    Sets the status and stamps the timestamp and shipment fields belonging to
    the target status. Does not flush. Returns the previous status.
    """
    current_status = order.status
    validate_transition(current_status, new_status)

    if new_status == S.SHIPPED.value:
        if shipping is None:
            raise ValidationError(
                "Shipping details (courier name, tracking id, expected delivery date) "
                "are required to mark an order shipped",
                {"requested_status": new_status},
            )
        shipping.validate()

    now = now or datetime.now(timezone.utc)
    order.status = new_status

    if new_status == S.CONFIRMED.value:
        order.confirmed_at = now

    elif new_status == S.SHIPPED.value:
        order.courier_name = shipping.courier_name.strip()
        order.tracking_id = shipping.tracking_id.strip()
        order.tracking_url = shipping.tracking_url
        order.expected_delivery_date = shipping.expected_delivery_date
        order.shipped_at = now

    elif new_status == S.DELIVERED.value:
        order.delivered_at = now

    elif new_status == S.CANCELLED.value:
        order.cancelled_at = now
        order.cancellation_reason = reason

    return current_status
