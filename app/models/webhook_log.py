"""Webhook audit models - delivery log and gateway event idempotency."""

import uuid
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import String, DateTime, Text, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.payment import utcnow


class WebhookLog(Base):
    """
    Append-only record of every accepted webhook delivery.
    reference is not a foreign key: the payment may not exist yet.
    """

    __tablename__ = "webhook_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    reference: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    # processed / failed / duplicate
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payload: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<WebhookLog {self.event_type} {self.reference} {self.status}>"


class PaymentEvent(Base):
    """
    One row per distinct gateway event.
    provider_event_id is unique so redelivered webhooks are dropped.
    """

    __tablename__ = "payment_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    provider_event_id: Mapped[str] = mapped_column(
        String(128),
        unique=True,
        nullable=False,
    )

    payment_reference: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    payload: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
