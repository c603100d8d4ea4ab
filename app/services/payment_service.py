"""
Payment Service - Lenco payment initialization, verification and reconciliation.
"""

import re
import secrets
import string
import time
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.exceptions import (
    ConfigurationError,
    GatewayError,
    InvalidAmount,
    PersistenceError,
    ValidationError,
)
from app.fsm.machine import can_transition
from app.fsm.states import (
    AmountUnit,
    PaymentMethod,
    PaymentStatus,
    ReconcileSource,
    map_gateway_status,
)
from app.models.payment import Payment, utcnow
from app.schemas.payments import InitializeRequest, VerifyRequest
from app.services.fanout_service import FanoutService, FanoutReport, PaymentUpdate, parse_uuid
from app.services.lenco_gateway import GatewayInitRequest, LencoGateway

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "WC"
REFERENCE_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
REFERENCE_PATTERN = re.compile(r"^WC_\d+_[A-Z0-9]{6}$")
MAX_REFERENCE_LENGTH = 64
TAG_PATTERN = re.compile(r"<[^>]*>")
DEFAULT_DESCRIPTION = "Payment via WATHACI CONNECT"
DEFAULT_LABEL = "WATHACI CONNECT Payment"


def generate_reference(prefix: str = REFERENCE_PREFIX) -> str:
    """WC_<epoch-ms>_<6 uppercase alphanumerics>. The DB unique constraint is the backstop."""
    suffix = "".join(secrets.choice(REFERENCE_SUFFIX_ALPHABET) for _ in range(6))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def sanitise_description(description: Optional[str]) -> str:
    cleaned = TAG_PATTERN.sub("", description or "").strip()
    return cleaned[:200] if cleaned else DEFAULT_DESCRIPTION


def build_label(label: Optional[str], fallback: str) -> str:
    value = (label or fallback).strip()
    return value[:64] or DEFAULT_LABEL


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 gateway timestamp; None when absent or unparseable."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning(f"Unparseable gateway timestamp: {value}")
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class ReconcileOutcome(str, Enum):
    TRANSITIONED = "transitioned"        # this call moved pending -> terminal
    ALREADY_TERMINAL = "already_terminal"
    STILL_PENDING = "still_pending"
    UNKNOWN_REFERENCE = "unknown_reference"


@dataclass
class GatewayObservation:
    """A status report for a payment, from a webhook, verify call or sweep."""

    status: Any
    provider_transaction_id: Optional[str] = None
    gateway_response: Optional[str] = None
    paid_at: Any = None


@dataclass
class ReconcileResult:
    reference: str
    observed_status: PaymentStatus
    outcome: ReconcileOutcome
    payment: Optional[Payment] = None
    fanout: Optional[FanoutReport] = None

    @property
    def current_status(self) -> PaymentStatus:
        """Stored status when the payment exists, else what was observed."""
        if self.payment is not None:
            return PaymentStatus(self.payment.status)
        return self.observed_status


@dataclass
class ResolvedAmount:
    major: Decimal
    minor: int


class PaymentService:
    """Service for the payment lifecycle: initialize, verify, reconcile."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        gateway: Optional[LencoGateway] = None,
        fanout: Optional[FanoutService] = None,
    ):
        self.db = db
        self.settings = settings
        self.gateway = gateway
        self.fanout = fanout or FanoutService(db)

    def _require_gateway(self) -> LencoGateway:
        if self.gateway is None:
            raise ConfigurationError("Payment gateway not configured")
        return self.gateway

    # --- Record store ---

    async def get_payment(self, reference: str) -> Optional[Payment]:
        """Fetch the payment row for a reference, bypassing stale identity-map state."""
        result = await self.db.execute(
            select(Payment)
            .where(Payment.reference == reference)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # --- Initialize ---

    def resolve_amount(self, amount: Optional[Decimal], unit: Optional[AmountUnit]) -> ResolvedAmount:
        """
        Work out major and minor amounts.

        An explicit unit is taken at its word. Without one, values above the
        minor-unit threshold are assumed to be minor units already.
        """
        if amount is None or not amount.is_finite() or amount <= 0:
            raise InvalidAmount()

        factor = Decimal(self.settings.minor_unit_factor)

        if unit is None:
            if amount > self.settings.minor_unit_threshold:
                logger.warning(
                    f"Amount {amount} has no declared unit and exceeds {self.settings.minor_unit_threshold}; "
                    f"treating it as minor units"
                )
                unit = AmountUnit.MINOR
            else:
                unit = AmountUnit.MAJOR

        if unit is AmountUnit.MINOR:
            if amount != amount.to_integral_value():
                raise InvalidAmount("Minor-unit amounts must be whole numbers")
            minor = int(amount)
            major = (amount / factor).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        else:
            major = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
            minor = int((major * factor).to_integral_value(rounding=ROUND_HALF_UP))

        if major < Decimal(str(self.settings.min_payment_amount)):
            raise InvalidAmount()
        if major > Decimal(str(self.settings.max_payment_amount)):
            raise InvalidAmount("Payment amount exceeds the maximum allowed")

        return ResolvedAmount(major=major, minor=minor)

    def validate_initialize(self, request: InitializeRequest) -> ResolvedAmount:
        """Every rule that must pass before the gateway is called."""
        resolved = self.resolve_amount(request.amount, request.amount_unit)

        if not _clean(request.email) or not _clean(request.name) or not _clean(request.description):
            raise ValidationError("Missing required payment information")

        if request.payment_method is PaymentMethod.MOBILE_MONEY:
            if not _clean(request.phone_number):
                raise ValidationError("Mobile money payments require phone number")
            if request.provider is None:
                raise ValidationError("Mobile money payments require a provider")

        reference = _clean(request.reference)
        if reference and len(reference) > MAX_REFERENCE_LENGTH:
            raise ValidationError("Payment reference is too long")

        return resolved

    def _callback_url(self, request: InitializeRequest, origin: Optional[str]) -> str:
        if request.callback_url:
            return request.callback_url
        if origin and re.match(r"^https?://", origin, re.IGNORECASE):
            return f"{origin.rstrip('/')}/payment/callback"
        return f"{self.settings.app_url.rstrip('/')}/payment/callback"

    async def initialize(
        self,
        request: InitializeRequest,
        user_id: str,
        origin: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Validate, open a gateway checkout, then persist a pending payment.

        A gateway failure aborts before anything is written. A persistence
        failure after a successful gateway call leaves an orphaned gateway
        transaction; it is logged with the reference for reconciliation.
        """
        resolved = self.validate_initialize(request)
        gateway = self._require_gateway()

        reference = _clean(request.reference)
        if reference:
            existing = await self.get_payment(reference)
            if existing is not None:
                return self._replay_initialize(existing, user_id)
        else:
            reference = generate_reference()

        currency = (_clean(request.currency) or self.settings.payment_currency).upper()
        description = sanitise_description(request.description)
        phone = _clean(request.phone_number)
        provider = request.provider.value if request.provider else None
        context = {"reference": reference, "user_id": user_id}

        metadata = {
            **(request.metadata or {}),
            "payment_method": request.payment_method.value,
            "provider": provider,
            "user_id": user_id,
            "platform": "WATHACI_CONNECT",
        }

        gateway_request = GatewayInitRequest(
            reference=reference,
            amount_minor=resolved.minor,
            currency=currency,
            email=request.email.strip(),
            name=request.name.strip(),
            description=description,
            callback_url=self._callback_url(request, origin),
            phone=phone,
            label=build_label(request.label, description),
            channels=request.payment_method.channels,
            metadata=metadata,
        )

        logger.info(
            f"Initializing {request.payment_method.value} payment {reference}: {resolved.major} {currency}",
            extra=context,
        )
        init_result = await gateway.initialize(gateway_request)

        try:
            user_uuid = parse_uuid(user_id)
        except ValueError:
            user_uuid = None

        payment = Payment(
            reference=reference,
            provider_reference=init_result.provider_reference,
            user_id=user_uuid,
            amount=resolved.major,
            currency=currency,
            status=PaymentStatus.PENDING.value,
            payment_method=request.payment_method.value,
            provider=provider,
            email=request.email.strip(),
            name=request.name.strip(),
            phone=phone,
            description=description,
            access_code=init_result.access_code,
            authorization_url=init_result.authorization_url,
            payment_metadata=metadata,
        )
        self.db.add(payment)

        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Failed to store payment {reference}; gateway transaction is orphaned: {e}",
                exc_info=True,
                extra=context,
            )
            raise PersistenceError() from e

        logger.info(f"Payment {reference} created pending", extra=context)

        return {
            "reference": reference,
            "payment_url": init_result.authorization_url,
            "access_code": init_result.access_code,
            "amount": float(resolved.major),
            "currency": currency,
        }

    def _replay_initialize(self, payment: Payment, user_id: str) -> Dict[str, Any]:
        """Return the stored checkout for a retried initialize with a known reference."""
        if str(payment.user_id) != user_id or payment.status != PaymentStatus.PENDING.value:
            raise ValidationError("Payment reference already in use")

        logger.info(f"Initialize retried for {payment.reference}, returning stored checkout",
                    extra={"reference": payment.reference, "user_id": user_id})
        return {
            "reference": payment.reference,
            "payment_url": payment.authorization_url,
            "access_code": payment.access_code,
            "amount": float(payment.amount),
            "currency": payment.currency,
        }

    # --- Reconcile ---

    async def reconcile(
        self,
        reference: str,
        observation: GatewayObservation,
        source: ReconcileSource,
    ) -> ReconcileResult:
        """
        Apply an observed gateway status to the payment row.

        The pending -> terminal move is a single conditional UPDATE, so of
        several concurrent observers exactly one sees TRANSITIONED. Terminal
        rows are never rewritten.
        """
        observed = map_gateway_status(observation.status)
        now = utcnow()
        context = {"reference": reference, "source": source.value}

        values: Dict[str, Any] = {"updated_at": now}
        if observation.provider_transaction_id:
            values["provider_transaction_id"] = str(observation.provider_transaction_id)
        if observation.gateway_response:
            values["gateway_response"] = str(observation.gateway_response)

        if can_transition(PaymentStatus.PENDING, observed):
            values["status"] = observed.value
            values["reconciled_by"] = source.value
            if observed is PaymentStatus.COMPLETED:
                values["paid_at"] = parse_timestamp(observation.paid_at) or now

        try:
            result = await self.db.execute(
                update(Payment)
                .where(
                    Payment.reference == reference,
                    Payment.status == PaymentStatus.PENDING.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to update payment {reference}: {e}", exc_info=True, extra=context)
            raise PersistenceError("Failed to update payment record") from e

        changed = result.rowcount or 0
        payment = await self.get_payment(reference)

        if payment is None:
            outcome = ReconcileOutcome.UNKNOWN_REFERENCE
            logger.warning(f"{source.value}: no payment found for reference {reference}", extra=context)
        elif changed and observed.is_terminal:
            outcome = ReconcileOutcome.TRANSITIONED
            logger.info(f"{source.value}: payment {reference} moved pending -> {observed.value}", extra=context)
        elif PaymentStatus(payment.status).is_terminal:
            outcome = ReconcileOutcome.ALREADY_TERMINAL
            if payment.status != observed.value:
                logger.warning(
                    f"{source.value}: ignored {observed.value} for payment {reference} already {payment.status}",
                    extra=context,
                )
        else:
            outcome = ReconcileOutcome.STILL_PENDING

        return ReconcileResult(
            reference=reference,
            observed_status=observed,
            outcome=outcome,
            payment=payment,
        )

    async def apply_observation(
        self,
        reference: str,
        observation: GatewayObservation,
        source: ReconcileSource,
        event: Optional[str] = None,
        amount_minor: Optional[int] = None,
        currency: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ReconcileResult:
        """
        Reconcile, then fan out when this call owns the transition.

        A webhook for a reference with no local row still fans out on its
        own metadata, and a pending webhook still notifies the user; verify
        and sweep never do either.
        """
        result = await self.reconcile(reference, observation, source)

        should_dispatch = result.outcome is ReconcileOutcome.TRANSITIONED or (
            source is ReconcileSource.WEBHOOK
            and result.outcome in (ReconcileOutcome.UNKNOWN_REFERENCE, ReconcileOutcome.STILL_PENDING)
        )
        if not should_dispatch:
            return result

        payment = result.payment
        merged_metadata = dict(metadata or {})
        if payment is not None:
            merged_metadata.update(payment.payment_metadata or {})
            if amount_minor is None:
                amount_minor = int(
                    (payment.amount * self.settings.minor_unit_factor).to_integral_value(rounding=ROUND_HALF_UP)
                )
            currency = currency or payment.currency

        result.fanout = await self.fanout.dispatch(
            PaymentUpdate(
                reference=reference,
                status=result.observed_status,
                currency=currency or self.settings.payment_currency,
                source=source,
                amount_minor=amount_minor,
                event=event,
                metadata=merged_metadata,
            )
        )
        return result

    # --- Verify ---

    async def verify(self, request: VerifyRequest) -> Dict[str, Any]:
        """Poll the gateway for a payment and reconcile the stored row."""
        reference = _clean(request.reference)
        if not reference:
            raise ValidationError("Payment reference is required")

        gateway = self._require_gateway()
        verification = await gateway.verify(reference)

        result = await self.apply_observation(
            reference,
            GatewayObservation(
                status=verification.status,
                provider_transaction_id=verification.provider_transaction_id,
                gateway_response=verification.gateway_response,
                paid_at=verification.paid_at,
            ),
            ReconcileSource.VERIFY,
        )

        payment = result.payment
        return {
            "reference": reference,
            "status": result.current_status.value,
            "gateway_status": verification.status,
            "amount": float(verification.amount) if verification.amount is not None else None,
            "currency": verification.currency or (payment.currency if payment else None),
            "id": verification.provider_transaction_id,
            "gateway_response": verification.gateway_response,
            "paid_at": payment.paid_at.isoformat() if payment and payment.paid_at else verification.paid_at,
            "metadata": verification.metadata,
        }

    # --- Sweep ---

    async def find_stale_pending(self, older_than: timedelta, limit: int) -> List[str]:
        cutoff = utcnow() - older_than
        result = await self.db.execute(
            select(Payment.reference)
            .where(
                Payment.status == PaymentStatus.PENDING.value,
                Payment.created_at < cutoff,
            )
            .order_by(Payment.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def sweep_stale_pending(self, older_than: Optional[timedelta] = None) -> Tuple[int, int]:
        """
        Verify long-pending payments with the gateway.

        Returns (checked, transitioned). Gateway and store errors skip that payment.
        """
        gateway = self._require_gateway()
        older_than = older_than or timedelta(minutes=self.settings.sweep_pending_after_minutes)
        references = await self.find_stale_pending(older_than, self.settings.sweep_batch_size)

        transitioned = 0
        for reference in references:
            try:
                verification = await gateway.verify(reference)
            except GatewayError as e:
                logger.warning(f"Sweep: gateway verify failed for {reference}: {e.message}")
                continue

            try:
                result = await self.apply_observation(
                    reference,
                    GatewayObservation(
                        status=verification.status,
                        provider_transaction_id=verification.provider_transaction_id,
                        gateway_response=verification.gateway_response,
                        paid_at=verification.paid_at,
                    ),
                    ReconcileSource.SWEEP,
                )
            except PersistenceError as e:
                logger.error(f"Sweep: failed to reconcile {reference}: {e.message}", extra={"reference": reference})
                continue

            if result.outcome is ReconcileOutcome.TRANSITIONED:
                transitioned += 1

        logger.info(f"Sweep checked {len(references)} pending payments, {transitioned} reconciled")
        return len(references), transitioned
