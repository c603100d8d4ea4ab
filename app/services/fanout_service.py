"""
Fan-out Service - propagates a payment's status to dependent records.

Each step (subscription, transaction, service booking, notification, realtime
broadcast) commits on its own; a failing step is logged and rolled back
without stopping the others.
"""

import uuid
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Awaitable, Callable

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.fsm.machine import subscription_state_for, booking_state_for, transaction_state_for
from app.fsm.states import PaymentStatus, ReconcileSource
from app.models.notification import Notification
from app.models.payment import utcnow
from app.models.service_booking import ServiceBooking
from app.models.subscription import UserSubscription, Transaction
from app.services.realtime_service import RealtimePublisher

logger = logging.getLogger(__name__)


NOTIFICATION_TITLES = {
    "payment.success": "Payment Successful",
    "payment.failed": "Payment Failed",
    "payment.pending": "Payment Pending",
    "payment.cancelled": "Payment Cancelled",
}


def get_notification_title(event: str) -> str:
    return NOTIFICATION_TITLES.get(event, "Payment Update")


def format_amount(amount_minor: Optional[int], currency: str) -> str:
    """Render a minor-unit amount, e.g. 10000 ZMW -> K100.00."""
    value = (amount_minor or 0) / 100
    if currency in ("ZMW", "ZMK"):
        return f"K{value:.2f}"
    return f"{value:.2f} {currency}"


def get_notification_message(event: str, amount_minor: Optional[int], currency: str) -> str:
    amount = format_amount(amount_minor, currency)
    messages = {
        "payment.success": f"Your payment of {amount} was successful.",
        "payment.failed": f"Your payment of {amount} failed. Please try again.",
        "payment.pending": f"Your payment of {amount} is being processed.",
        "payment.cancelled": f"Your payment of {amount} was cancelled.",
    }
    return messages.get(event, f"Payment update for {amount}")


def parse_uuid(value: Any) -> uuid.UUID:
    """Parse a metadata id; raises ValueError for anything that is not a UUID."""
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


@dataclass
class PaymentUpdate:
    """A payment outcome to propagate."""

    reference: str
    status: PaymentStatus
    currency: str
    source: ReconcileSource
    amount_minor: Optional[int] = None
    event: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def event_name(self) -> str:
        return self.event or self.status.event_name


@dataclass
class FanoutReport:
    attempted: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> Optional[str]:
        if self.ok:
            return None
        return "; ".join(f"{step}: {error}" for step, error in self.failed.items())


class FanoutService:
    """Updates subscriptions, bookings and notifications for a payment outcome."""

    def __init__(self, db: AsyncSession, publisher: Optional[RealtimePublisher] = None):
        self.db = db
        self.publisher = publisher or RealtimePublisher()

    async def dispatch(self, payment_update: PaymentUpdate) -> FanoutReport:
        """Run every applicable fan-out step. Never raises."""
        report = FanoutReport()
        metadata = payment_update.metadata or {}
        context = {"reference": payment_update.reference, "source": payment_update.source.value}

        # Dependent rows only move on a terminal outcome; a pending one just notifies
        terminal = payment_update.status.is_terminal

        subscription_id = metadata.get("subscription_id")
        if terminal and subscription_id:
            await self._run_step(
                report, "subscription",
                lambda: self._update_subscription(subscription_id, payment_update), context,
            )
            await self._run_step(
                report, "transaction",
                lambda: self._update_transaction(payment_update), context,
            )

        service_id = metadata.get("service_id")
        if terminal and service_id:
            await self._run_step(
                report, "service_booking",
                lambda: self._update_service_booking(service_id, payment_update), context,
            )

        user_id = metadata.get("user_id")
        if user_id:
            notified = await self._run_step(
                report, "notification",
                lambda: self._create_notification(user_id, payment_update), context,
            )
            if notified is not None:
                await self._run_step(
                    report, "realtime",
                    lambda: self._broadcast(user_id, notified), context,
                    commit=False,
                )

        if report.ok:
            logger.info(f"Fan-out complete for {payment_update.reference}: {', '.join(report.attempted) or 'nothing to do'}")
        else:
            logger.warning(f"Fan-out partially failed for {payment_update.reference}: {report.summary()}", extra=context)
        return report

    async def _run_step(
        self,
        report: FanoutReport,
        name: str,
        step: Callable[[], Awaitable[Any]],
        context: Dict[str, Any],
        commit: bool = True,
    ) -> Any:
        report.attempted.append(name)
        try:
            result = await step()
            if commit:
                await self.db.commit()
            return result
        except Exception as e:
            if commit:
                await self.db.rollback()
            logger.error(f"Fan-out step {name} failed for {context['reference']}: {e}", exc_info=True, extra=context)
            report.failed[name] = str(e) or e.__class__.__name__
            return None

    async def _update_subscription(self, subscription_id: Any, payment_update: PaymentUpdate) -> int:
        status, payment_status = subscription_state_for(payment_update.status)
        result = await self.db.execute(
            update(UserSubscription)
            .where(UserSubscription.id == parse_uuid(subscription_id))
            .values(status=status.value, payment_status=payment_status.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Subscription {subscription_id} updated to {status.value}/{payment_status.value}")
        else:
            logger.warning(f"Subscription {subscription_id} not found for payment {payment_update.reference}")
        return result.rowcount

    async def _update_transaction(self, payment_update: PaymentUpdate) -> int:
        status = transaction_state_for(payment_update.status)
        result = await self.db.execute(
            update(Transaction)
            .where(Transaction.reference_number == payment_update.reference)
            .values(status=status.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _update_service_booking(self, service_id: Any, payment_update: PaymentUpdate) -> int:
        status, payment_status = booking_state_for(payment_update.status)
        result = await self.db.execute(
            update(ServiceBooking)
            .where(ServiceBooking.id == parse_uuid(service_id))
            .values(status=status.value, payment_status=payment_status.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Service booking {service_id} payment updated to {payment_status.value}")
        else:
            logger.warning(f"Service booking {service_id} not found for payment {payment_update.reference}")
        return result.rowcount

    async def _create_notification(self, user_id: Any, payment_update: PaymentUpdate) -> Dict[str, Any]:
        event = payment_update.event_name
        notification = Notification(
            user_id=parse_uuid(user_id),
            type="payment_update",
            title=get_notification_title(event),
            message=get_notification_message(event, payment_update.amount_minor, payment_update.currency),
            data={
                "event": event,
                "reference": payment_update.reference,
                "amount": payment_update.amount_minor,
                "currency": payment_update.currency,
            },
            read=False,
        )
        self.db.add(notification)
        await self.db.flush()

        return {
            "id": str(notification.id),
            "user_id": str(notification.user_id),
            "type": notification.type,
            "title": notification.title,
            "message": notification.message,
            "data": notification.data,
            "read": False,
        }

    async def _broadcast(self, user_id: Any, notification: Dict[str, Any]) -> bool:
        return await self.publisher.publish(str(user_id), "payment_update", notification)
