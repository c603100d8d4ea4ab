"""
Payment State Definitions.
Internal payment vocabulary, gateway vocabulary and the dependent record states.
"""

from enum import Enum


class PaymentStatus(str, Enum):
    """
    Internal payment status.
    Only PENDING -> {COMPLETED, FAILED, CANCELLED} is a valid transition.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING

    @property
    def event_name(self) -> str:
        """Webhook-style event name used for notifications."""
        events = {
            PaymentStatus.PENDING: "payment.pending",
            PaymentStatus.COMPLETED: "payment.success",
            PaymentStatus.FAILED: "payment.failed",
            PaymentStatus.CANCELLED: "payment.cancelled",
        }
        return events[self]


class GatewayStatus(str, Enum):
    """Status vocabulary reported by the Lenco gateway."""

    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    CANCELLED = "cancelled"
    ABANDONED = "abandoned"


GATEWAY_STATUS_MAP = {
    GatewayStatus.SUCCESS.value: PaymentStatus.COMPLETED,
    GatewayStatus.FAILED.value: PaymentStatus.FAILED,
    GatewayStatus.PENDING.value: PaymentStatus.PENDING,
    GatewayStatus.CANCELLED.value: PaymentStatus.CANCELLED,
    GatewayStatus.ABANDONED.value: PaymentStatus.CANCELLED,
}


def map_gateway_status(gateway_status) -> PaymentStatus:
    """
    Translate a gateway status into the internal vocabulary.

    Case-insensitive and total: unknown or non-string values map to FAILED,
    never to COMPLETED.
    """
    if not isinstance(gateway_status, str):
        return PaymentStatus.FAILED
    return GATEWAY_STATUS_MAP.get(gateway_status.strip().lower(), PaymentStatus.FAILED)


class PaymentMethod(str, Enum):
    MOBILE_MONEY = "mobile_money"
    CARD = "card"

    @property
    def channels(self) -> list:
        """Gateway checkout channels for this method."""
        return ["card"] if self is PaymentMethod.CARD else ["mobile-money"]


class MobileMoneyProvider(str, Enum):
    MTN = "mtn"
    AIRTEL = "airtel"
    ZAMTEL = "zamtel"


class AmountUnit(str, Enum):
    """Caller-declared unit of a payment amount."""

    MAJOR = "major"  # e.g. Kwacha
    MINOR = "minor"  # e.g. ngwee


class ReconcileSource(str, Enum):
    """Which path observed the gateway status."""

    WEBHOOK = "webhook"
    VERIFY = "verify"
    SWEEP = "sweep"


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class DependentPaymentStatus(str, Enum):
    """payment_status column on subscriptions and service bookings."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class WebhookLogStatus(str, Enum):
    PROCESSED = "processed"
    FAILED = "failed"
    DUPLICATE = "duplicate"


PAYMENT_EVENTS = (
    "payment.success",
    "payment.failed",
    "payment.pending",
    "payment.cancelled",
)

# Acknowledged and logged, but carry no payment reconciliation
NON_PAYMENT_EVENTS = (
    "transfer.successful",
    "transfer.failed",
    "collection.successful",
    "collection.failed",
    "collection.settled",
    "transaction.credit",
    "transaction.debit",
)
