"""Тесты машин состояний и сопоставления статусов шлюза."""
import pytest

from storefront.core.exceptions import InvalidTransition
from storefront.core.state_machine import (
    TERMINAL_ORDER_STATUSES,
    is_first_approval,
    resolve_gateway_status,
    should_ignore_notification,
    validate_order_transition,
)
from storefront.models.enums import OrderStatus, PaymentStatus


@pytest.mark.parametrize(
    "transaction_status, fraud_status, expected_payment, expected_order",
    [
        ("capture", "accept", PaymentStatus.CAPTURE, OrderStatus.APPROVED),
        ("capture", "challenge", PaymentStatus.CAPTURE, OrderStatus.PENDING),
        ("settlement", None, PaymentStatus.SETTLEMENT, OrderStatus.APPROVED),
        ("pending", None, PaymentStatus.PENDING, OrderStatus.PENDING),
        ("deny", None, PaymentStatus.DENY, OrderStatus.REJECTED),
        ("cancel", None, PaymentStatus.CANCEL, OrderStatus.CANCELLED),
        ("expire", None, PaymentStatus.EXPIRE, OrderStatus.CANCELLED),
        ("failure", None, PaymentStatus.FAILURE, OrderStatus.REJECTED),
    ],
)
def test_resolve_gateway_status(transaction_status, fraud_status, expected_payment, expected_order):
    resolved = resolve_gateway_status(transaction_status, fraud_status)
    assert resolved.payment_status == expected_payment
    assert resolved.order_status == expected_order


def test_unknown_gateway_status_falls_back_to_pending(caplog):
    resolved = resolve_gateway_status("refund")
    assert resolved == (PaymentStatus.PENDING, OrderStatus.PENDING)
    assert "refund" in caplog.text


def test_terminal_order_statuses():
    assert TERMINAL_ORDER_STATUSES == {OrderStatus.REJECTED, OrderStatus.DELIVERED, OrderStatus.CANCELLED}


@pytest.mark.parametrize(
    "current, target",
    [
        (OrderStatus.PENDING, OrderStatus.APPROVED),
        (OrderStatus.PENDING, OrderStatus.REJECTED),
        (OrderStatus.PENDING, OrderStatus.CANCELLED),
        (OrderStatus.APPROVED, OrderStatus.SHIPPED),
        (OrderStatus.APPROVED, OrderStatus.CANCELLED),
        (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
        (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    ],
)
def test_allowed_order_transitions(current, target):
    assert validate_order_transition(current, target.value) == target


@pytest.mark.parametrize("current", [OrderStatus.REJECTED, OrderStatus.CANCELLED])
@pytest.mark.parametrize("target", [OrderStatus.APPROVED, OrderStatus.SHIPPED, OrderStatus.DELIVERED])
def test_rejected_or_cancelled_order_cannot_be_resurrected(current, target):
    with pytest.raises(InvalidTransition):
        validate_order_transition(current, target)


@pytest.mark.parametrize(
    "current, target",
    [
        (OrderStatus.PENDING, OrderStatus.SHIPPED),
        (OrderStatus.APPROVED, OrderStatus.PENDING),
        (OrderStatus.APPROVED, OrderStatus.APPROVED),
        (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
    ],
)
def test_transitions_outside_table_are_rejected(current, target):
    with pytest.raises(InvalidTransition):
        validate_order_transition(current, target)


def test_unknown_order_status_is_rejected():
    with pytest.raises(InvalidTransition) as exc_info:
        validate_order_transition(OrderStatus.PENDING, "LOST")
    assert exc_info.value.target == "LOST"


def test_first_approval_only_from_pre_fulfillment_states():
    assert is_first_approval(OrderStatus.PENDING, OrderStatus.APPROVED)
    assert not is_first_approval(OrderStatus.APPROVED, OrderStatus.APPROVED)
    assert not is_first_approval(OrderStatus.SHIPPED, OrderStatus.APPROVED)
    assert not is_first_approval(OrderStatus.PENDING, OrderStatus.REJECTED)


@pytest.mark.parametrize(
    "current",
    [
        PaymentStatus.SETTLEMENT,
        PaymentStatus.CANCEL,
        PaymentStatus.EXPIRE,
        PaymentStatus.FAILURE,
        PaymentStatus.DENY,
    ],
)
def test_terminal_payment_status_is_never_overwritten(current):
    for incoming in PaymentStatus:
        assert should_ignore_notification(current, incoming)


def test_non_terminal_payment_accepts_any_update():
    for incoming in PaymentStatus:
        assert not should_ignore_notification(PaymentStatus.PENDING, incoming)
        assert not should_ignore_notification(PaymentStatus.CAPTURE, incoming, "challenge")


def test_accepted_capture_only_moves_to_settlement():
    assert not should_ignore_notification(PaymentStatus.CAPTURE, PaymentStatus.SETTLEMENT, "accept")
    assert should_ignore_notification(PaymentStatus.CAPTURE, PaymentStatus.PENDING, "accept")
    assert should_ignore_notification(PaymentStatus.CAPTURE, PaymentStatus.DENY, "accept")
    assert should_ignore_notification(PaymentStatus.CAPTURE, PaymentStatus.CAPTURE, "accept")
