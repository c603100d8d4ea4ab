"""Payment model - one row per attempted gateway payment."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy import String, DateTime, Numeric, Text, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.fsm.states import PaymentStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Payment(Base):
    """
    Payment record keyed by a unique reference.

    Created pending by the initialize handler, moved to a terminal status
    once by reconciliation, never deleted.
    """

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Correlation key across gateway and internal systems (immutable)
    reference: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
    )

    # Gateway-assigned identifier, set once known
    provider_reference: Mapped[Optional[str]] = mapped_column(
        String(128),
        unique=True,
        nullable=True,
    )

    provider_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
    )

    # Supabase auth user that initialized the payment
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
        index=True,
    )

    # Major units (Kwacha), human readable
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        default="ZMW",
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        index=True,
    )

    # Request-time metadata (write-once)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    provider: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Gateway checkout details
    access_code: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    authorization_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Foreign keys for fan-out (subscription_id / service_id / user_id)
    payment_metadata: Mapped[Dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        default=dict,
        nullable=False,
    )

    gateway_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Set only on transition into completed
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # webhook / verify / sweep
    reconciled_by: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Payment {self.reference} {self.status}>"
