"""
FSM Machine - payment transition rules and the dependent record states they imply.
"""

from typing import Tuple

from app.fsm.states import (
    PaymentStatus,
    SubscriptionStatus,
    BookingStatus,
    DependentPaymentStatus,
    TransactionStatus,
)


def can_transition(current: PaymentStatus, new: PaymentStatus) -> bool:
    """Only pending payments move, and only into a terminal status."""
    return current is PaymentStatus.PENDING and new.is_terminal


def subscription_state_for(status: PaymentStatus) -> Tuple[SubscriptionStatus, DependentPaymentStatus]:
    """(status, payment_status) for a subscription paid by a terminal payment."""
    if status is PaymentStatus.COMPLETED:
        return SubscriptionStatus.ACTIVE, DependentPaymentStatus.PAID
    return SubscriptionStatus.CANCELLED, DependentPaymentStatus.FAILED


def booking_state_for(status: PaymentStatus) -> Tuple[BookingStatus, DependentPaymentStatus]:
    """(status, payment_status) for a service booking paid by a terminal payment."""
    if status is PaymentStatus.COMPLETED:
        return BookingStatus.CONFIRMED, DependentPaymentStatus.PAID
    return BookingStatus.CANCELLED, DependentPaymentStatus.FAILED


def transaction_state_for(status: PaymentStatus) -> TransactionStatus:
    if status is PaymentStatus.COMPLETED:
        return TransactionStatus.COMPLETED
    return TransactionStatus.FAILED
