"""
Tests for payment status mapping and transition rules.
"""

import pytest
from app.fsm.states import (
    PaymentStatus,
    GatewayStatus,
    PaymentMethod,
    SubscriptionStatus,
    BookingStatus,
    DependentPaymentStatus,
    TransactionStatus,
    map_gateway_status,
)
from app.fsm.machine import (
    can_transition,
    subscription_state_for,
    booking_state_for,
    transaction_state_for,
)


class TestMapGatewayStatus:
    """Tests for gateway -> internal status mapping."""

    @pytest.mark.parametrize("value", ["success", "Success", "SUCCESS", "  success "])
    def test_success_is_case_insensitive(self, value):
        assert map_gateway_status(value) is PaymentStatus.COMPLETED

    def test_known_statuses(self):
        assert map_gateway_status("failed") is PaymentStatus.FAILED
        assert map_gateway_status("pending") is PaymentStatus.PENDING
        assert map_gateway_status("cancelled") is PaymentStatus.CANCELLED
        assert map_gateway_status("abandoned") is PaymentStatus.CANCELLED

    @pytest.mark.parametrize("value", ["", "paid", "succeeded", "completed", None, 1, {"status": "success"}])
    def test_unknown_defaults_to_failed(self, value):
        assert map_gateway_status(value) is PaymentStatus.FAILED

    def test_every_gateway_status_is_mapped(self):
        for status in GatewayStatus:
            assert map_gateway_status(status.value) in PaymentStatus


class TestPaymentStatus:

    def test_terminal_statuses(self):
        assert not PaymentStatus.PENDING.is_terminal
        assert PaymentStatus.COMPLETED.is_terminal
        assert PaymentStatus.FAILED.is_terminal
        assert PaymentStatus.CANCELLED.is_terminal

    def test_event_names(self):
        assert PaymentStatus.COMPLETED.event_name == "payment.success"
        assert PaymentStatus.FAILED.event_name == "payment.failed"


class TestTransitions:

    def test_pending_to_terminal_allowed(self):
        assert can_transition(PaymentStatus.PENDING, PaymentStatus.COMPLETED)
        assert can_transition(PaymentStatus.PENDING, PaymentStatus.CANCELLED)

    def test_pending_to_pending_is_not_a_transition(self):
        assert not can_transition(PaymentStatus.PENDING, PaymentStatus.PENDING)

    def test_terminal_is_immutable(self):
        for current in (PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            for new in PaymentStatus:
                assert not can_transition(current, new)


class TestDependentStates:

    def test_completed_activates_dependents(self):
        assert subscription_state_for(PaymentStatus.COMPLETED) == (
            SubscriptionStatus.ACTIVE, DependentPaymentStatus.PAID,
        )
        assert booking_state_for(PaymentStatus.COMPLETED) == (
            BookingStatus.CONFIRMED, DependentPaymentStatus.PAID,
        )
        assert transaction_state_for(PaymentStatus.COMPLETED) is TransactionStatus.COMPLETED

    def test_failure_cancels_dependents(self):
        for status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            assert subscription_state_for(status) == (
                SubscriptionStatus.CANCELLED, DependentPaymentStatus.FAILED,
            )
            assert booking_state_for(status)[1] is DependentPaymentStatus.FAILED
            assert transaction_state_for(status) is TransactionStatus.FAILED


def test_payment_method_channels():
    assert PaymentMethod.CARD.channels == ["card"]
    assert PaymentMethod.MOBILE_MONEY.channels == ["mobile-money"]
