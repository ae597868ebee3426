from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest

from ordercore.core.exceptions import InvalidTransitionError, ValidationError
from ordercore.models.order import OrderStatus as S
from ordercore.services.order_state_machine import (
    ShippingDetails,
    apply_transition,
    can_cancel,
    can_transition,
    get_allowed_transitions,
    get_transition_action,
    is_terminal,
    validate_transition,
)


def make_order(status):
    return SimpleNamespace(
        status=status,
        confirmed_at=None,
        shipped_at=None,
        delivered_at=None,
        cancelled_at=None,
        cancellation_reason=None,
        courier_name=None,
        tracking_id=None,
        tracking_url=None,
        expected_delivery_date=None,
    )


SHIPPING = ShippingDetails(
    courier_name="BlueDart",
    tracking_id="BD123456",
    expected_delivery_date=date(2026, 10, 20),
)


@pytest.mark.parametrize("current, new", [
    (S.PENDING.value, S.CONFIRMED.value),
    (S.CONFIRMED.value, S.PACKING.value),
    (S.PACKING.value, S.WAITING_FOR_PICKUP.value),
    (S.PACKING.value, S.SHIPPED.value),
    (S.WAITING_FOR_PICKUP.value, S.SHIPPED.value),
    (S.SHIPPED.value, S.OUT_FOR_DELIVERY.value),
    (S.SHIPPED.value, S.DELIVERED.value),
    (S.OUT_FOR_DELIVERY.value, S.DELIVERED.value),
])
def test_forward_transitions_allowed(current, new):
    assert can_transition(current, new)
    validate_transition(current, new)


@pytest.mark.parametrize("current, new", [
    (S.PENDING.value, S.SHIPPED.value),
    (S.CONFIRMED.value, S.DELIVERED.value),
    (S.PACKING.value, S.CONFIRMED.value),
    (S.SHIPPED.value, S.PACKING.value),
])
def test_skips_and_backward_moves_rejected(current, new):
    assert not can_transition(current, new)
    with pytest.raises(InvalidTransitionError) as exc_info:
        validate_transition(current, new)
    assert exc_info.value.details["allowed"] == get_allowed_transitions(current)


@pytest.mark.parametrize("status", [s.value for s in S])
def test_cancel_allowed_from_every_non_terminal_status(status):
    assert can_cancel(status) == (not is_terminal(status))
    assert can_transition(status, S.CANCELLED.value) == can_cancel(status)


@pytest.mark.parametrize("terminal", [S.DELIVERED.value, S.CANCELLED.value])
def test_terminal_statuses_admit_nothing(terminal):
    assert is_terminal(terminal)
    assert get_allowed_transitions(terminal) == []
    with pytest.raises(InvalidTransitionError, match="terminal"):
        validate_transition(terminal, S.CANCELLED.value)


def test_unknown_status_rejected():
    with pytest.raises(InvalidTransitionError):
        validate_transition(S.PENDING.value, "lost")


def test_shipped_requires_shipping_details():
    order = make_order(S.PACKING.value)

    with pytest.raises(ValidationError):
        apply_transition(order, S.SHIPPED.value)

    assert order.status == S.PACKING.value


def test_shipped_reports_missing_fields():
    order = make_order(S.PACKING.value)
    shipping = ShippingDetails(courier_name="  ", tracking_id="", expected_delivery_date=None)

    with pytest.raises(ValidationError) as exc_info:
        apply_transition(order, S.SHIPPED.value, shipping=shipping)

    assert exc_info.value.details["missing"] == [
        "courier_name", "tracking_id", "expected_delivery_date",
    ]
    assert order.courier_name is None


def test_apply_transition_stamps_shipment_fields():
    order = make_order(S.WAITING_FOR_PICKUP.value)
    now = datetime(2026, 10, 17, 9, 30, tzinfo=timezone.utc)

    previous = apply_transition(order, S.SHIPPED.value, shipping=SHIPPING, now=now)

    assert previous == S.WAITING_FOR_PICKUP.value
    assert order.status == S.SHIPPED.value
    assert order.courier_name == "BlueDart"
    assert order.tracking_id == "BD123456"
    assert order.expected_delivery_date == date(2026, 10, 20)
    assert order.shipped_at == now


def test_apply_transition_records_cancellation():
    order = make_order(S.PACKING.value)

    apply_transition(order, S.CANCELLED.value, reason="Customer changed their mind")

    assert order.status == S.CANCELLED.value
    assert order.cancellation_reason == "Customer changed their mind"
    assert order.cancelled_at is not None


def test_transition_action_labels():
    assert get_transition_action(S.PENDING.value, S.CONFIRMED.value) == "Confirm Order"
    assert get_transition_action(S.SHIPPED.value, S.CANCELLED.value) == "Cancel"
