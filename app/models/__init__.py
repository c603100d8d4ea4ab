"""Models package for database models."""

from app.models.payment import Payment
from app.models.subscription import UserSubscription, Transaction
from app.models.service_booking import ServiceBooking
from app.models.notification import Notification
from app.models.webhook_log import WebhookLog, PaymentEvent

__all__ = [
    "Payment",
    "UserSubscription",
    "Transaction",
    "ServiceBooking",
    "Notification",
    "WebhookLog",
    "PaymentEvent",
]
