"""
Lenco Webhook Handler.
Verifies signatures and reconciles payment events.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_payment_service
from app.config import Settings, get_settings
from app.database import get_db
from app.services.payment_service import PaymentService
from app.services.webhook_service import WebhookService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/webhook")
async def lenco_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    payments: PaymentService = Depends(get_payment_service),
):
    """
    Handle Lenco webhook events.

    payment.success / payment.failed / payment.pending / payment.cancelled
    reconcile the payment and fan out; other known events are acknowledged.
    """
    # Signature covers the untouched bytes, read exactly once
    body = await request.body()

    content_length = request.headers.get("content-length")
    result = await WebhookService(db, settings, payments).handle(
        body,
        request.headers.get(settings.lenco_webhook_signature_header),
        content_length=int(content_length) if content_length and content_length.isdigit() else None,
    )
    return JSONResponse(status_code=result.status_code, content=result.body)
