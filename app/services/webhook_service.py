"""
Webhook Service - verifies and applies Lenco webhook deliveries.

Received -> SignatureChecked -> PayloadParsed -> Reconciled -> Dispatched.
"""

import json
import math
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.exceptions import (
    AuthError,
    ConfigurationError,
    PayloadTooLarge,
    PersistenceError,
    ValidationError,
)
from app.fsm.states import (
    NON_PAYMENT_EVENTS,
    PAYMENT_EVENTS,
    ReconcileSource,
    WebhookLogStatus,
)
from app.models.payment import utcnow
from app.models.webhook_log import PaymentEvent, WebhookLog
from app.services.lenco_gateway import normalise_gateway_status
from app.services.payment_service import GatewayObservation, PaymentService, parse_timestamp
from app.services.signature import verify_signature

logger = logging.getLogger(__name__)

UNKNOWN_REFERENCE = "unknown"
REQUIRED_DATA_FIELDS = ("id", "reference", "currency", "status")


@dataclass
class WebhookResult:
    status_code: int = 200
    body: Dict[str, Any] = field(default_factory=lambda: {"success": True})


def validate_envelope(payload: Dict[str, Any]) -> Optional[str]:
    """Return a reason the envelope is unusable, or None when it is valid."""
    event = payload.get("event")
    if not isinstance(event, str) or event not in PAYMENT_EVENTS + NON_PAYMENT_EVENTS:
        return f"Unsupported event type: {event}"

    if event in NON_PAYMENT_EVENTS:
        return None

    data = payload.get("data")
    if not isinstance(data, dict):
        return "Missing event data"

    for key in REQUIRED_DATA_FIELDS:
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            return f"Missing or invalid data.{key}"

    amount = data.get("amount")
    if (
        isinstance(amount, bool)
        or not isinstance(amount, (int, float))
        or not math.isfinite(amount)
        or amount < 0
    ):
        return "Missing or invalid data.amount"

    metadata = data.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        return "Invalid data.metadata"

    return None


class WebhookService:
    """Handles one webhook delivery end to end."""

    def __init__(self, db: AsyncSession, settings: Settings, payments: PaymentService):
        self.db = db
        self.settings = settings
        self.payments = payments

    async def handle(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        content_length: Optional[int] = None,
    ) -> WebhookResult:
        max_bytes = self.settings.webhook_max_body_bytes
        if (content_length is not None and content_length > max_bytes) or len(raw_body) > max_bytes:
            raise PayloadTooLarge()

        # Fail closed before the body is looked at
        if not self.settings.lenco_webhook_secret:
            logger.error("Lenco webhook secret not configured")
            raise ConfigurationError()

        if not signature_header:
            logger.warning("Webhook rejected: missing signature header")
            raise AuthError("Missing signature")

        if not verify_signature(raw_body, signature_header, self.settings.lenco_webhook_secret):
            logger.warning("Webhook rejected: invalid signature")
            raise AuthError("Invalid signature")

        try:
            payload = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise ValidationError("Invalid JSON payload")
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")

        event = payload.get("event")
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        reference = data.get("reference") if isinstance(data.get("reference"), str) else None
        log_reference = reference or UNKNOWN_REFERENCE
        event_type = str(event)[:50] if event else "unknown"

        problem = validate_envelope(payload)
        if problem is None:
            problem = self._check_staleness(payload)
        if problem:
            logger.warning(f"Webhook rejected: {problem}", extra={"reference": log_reference})
            await self._write_log(event_type, log_reference, WebhookLogStatus.FAILED, payload, problem)
            raise ValidationError(problem)

        if event in NON_PAYMENT_EVENTS:
            logger.info(f"Acknowledged non-payment webhook {event}", extra={"reference": log_reference})
            await self._write_log(event_type, log_reference, WebhookLogStatus.PROCESSED, payload)
            return WebhookResult()

        logger.info(f"Webhook {event} received for {reference}", extra={"reference": reference, "source": "webhook"})

        event_id = data["id"]
        if not await self._claim_event(event_id, reference, event, data.get("status"), payload):
            logger.info(f"Duplicate webhook event {event_id} ignored", extra={"reference": reference})
            await self._write_log(event_type, reference, WebhookLogStatus.DUPLICATE, payload)
            return WebhookResult(body={"success": True, "duplicate": True})

        try:
            result = await self.payments.apply_observation(
                reference,
                GatewayObservation(
                    status=normalise_gateway_status(data.get("status")),
                    provider_transaction_id=data.get("id"),
                    gateway_response=data.get("gateway_response"),
                    paid_at=data.get("paid_at"),
                ),
                ReconcileSource.WEBHOOK,
                event=event,
                amount_minor=int(data["amount"]),
                currency=data.get("currency"),
                metadata=data.get("metadata") or {},
            )
        except PersistenceError as e:
            # Release the event id so a redelivery is not mistaken for a duplicate
            await self._release_event(event_id)
            await self._write_log(event_type, reference, WebhookLogStatus.FAILED, payload, e.message)
            raise
        except Exception as e:
            logger.error(f"Webhook {event} for {reference} failed: {e}", exc_info=True, extra={"reference": reference})
            await self.db.rollback()
            await self._release_event(event_id)
            await self._write_log(event_type, reference, WebhookLogStatus.FAILED, payload, str(e) or e.__class__.__name__)
            raise PersistenceError("Failed to process webhook event") from e

        fanout_error = result.fanout.summary() if result.fanout else None
        await self._write_log(event_type, reference, WebhookLogStatus.PROCESSED, payload, fanout_error)

        logger.info(
            f"Webhook {event} for {reference}: {result.outcome.value}",
            extra={"reference": reference, "source": "webhook"},
        )
        return WebhookResult()

    def _check_staleness(self, payload: Dict[str, Any]) -> Optional[str]:
        tolerance = self.settings.webhook_timestamp_tolerance_seconds
        if tolerance <= 0:
            return None
        created_at = parse_timestamp(payload.get("created_at"))
        if created_at is None:
            return None
        age = abs((utcnow() - created_at).total_seconds())
        if age > tolerance:
            return f"Stale webhook event ({int(age)}s old)"
        return None

    async def _claim_event(
        self,
        event_id: str,
        reference: str,
        event: str,
        provider_status: Optional[str],
        payload: Dict[str, Any],
    ) -> bool:
        """Record the gateway event id. False when it was already recorded."""
        self.db.add(
            PaymentEvent(
                provider_event_id=event_id,
                payment_reference=reference,
                event_type=event,
                provider_status=provider_status,
                payload=payload,
            )
        )
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            return False
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to record webhook event {event_id}: {e}", exc_info=True)
            raise PersistenceError("Failed to record webhook event") from e
        return True

    async def _release_event(self, event_id: str) -> None:
        try:
            await self.db.execute(delete(PaymentEvent).where(PaymentEvent.provider_event_id == event_id))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to release webhook event {event_id}: {e}", exc_info=True)

    async def _write_log(
        self,
        event_type: str,
        reference: str,
        status: WebhookLogStatus,
        payload: Dict[str, Any],
        error_message: Optional[str] = None,
    ) -> None:
        self.db.add(
            WebhookLog(
                event_type=event_type,
                reference=reference[:128],
                status=status.value,
                error_message=error_message,
                payload=payload,
            )
        )
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to write webhook log for {reference}: {e}", exc_info=True, extra={"reference": reference})
