"""Services package."""

from app.services.auth_service import AuthenticatedUser, SupabaseAuthClient
from app.services.fanout_service import FanoutService, PaymentUpdate
from app.services.lenco_gateway import LencoGateway
from app.services.payment_service import PaymentService
from app.services.realtime_service import RealtimePublisher
from app.services.webhook_service import WebhookService

__all__ = [
    "AuthenticatedUser",
    "SupabaseAuthClient",
    "FanoutService",
    "PaymentUpdate",
    "LencoGateway",
    "PaymentService",
    "RealtimePublisher",
    "WebhookService",
]
