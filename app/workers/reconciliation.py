import asyncio
import logging

from app.config import get_settings
from app.database import get_db_context
from app.services.lenco_gateway import LencoGateway
from app.services.payment_service import PaymentService
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def sweep_pending_payments(self):
    """
    Celery task that verifies payments stuck in pending with the gateway.
    """
    try:
        checked, transitioned = asyncio.run(_sweep_pending_payments())
        return {"status": "success", "checked": checked, "reconciled": transitioned}
    except Exception as e:
        logger.error(f"Pending payment sweep failed: {e}", exc_info=True)
        raise self.retry(exc=e, countdown=60)


async def _sweep_pending_payments():
    settings = get_settings()
    async with get_db_context() as db:
        service = PaymentService(db, settings, gateway=LencoGateway(settings))
        return await service.sweep_stale_pending()
