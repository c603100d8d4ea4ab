"""
Tests for the Lenco webhook handler.
"""

import base64
import hashlib
import hmac
import json
import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select, func

from app.config import get_settings
from app.exceptions import PersistenceError
from app.main import app
from app.models.notification import Notification
from app.models.payment import Payment
from app.models.subscription import UserSubscription
from app.models.webhook_log import PaymentEvent, WebhookLog

SECRET = "whsec_test_secret"
USER_ID = "0b7f4a52-3c1e-4b7e-9a59-5f1d2c3e4a10"

CARD_PAYMENT = {
    "action": "initialize",
    "amount": 100,
    "paymentMethod": "card",
    "email": "a@b.com",
    "name": "A",
    "description": "svc",
}


def _envelope(reference, status="success", event="payment.success", event_id="txn_1", **data):
    body = {
        "event": event,
        "data": {
            "id": event_id,
            "reference": reference,
            "status": status,
            "amount": 10000,
            "currency": "ZMW",
            "gateway_response": "Approved",
            "customer": {"email": "a@b.com"},
            **data,
        },
        "created_at": "2026-10-16T10:00:00Z",
    }
    return json.dumps(body).encode()


def _sign(body: bytes) -> str:
    return hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()


async def _post(client, body: bytes, signature=None):
    headers = {"Content-Type": "application/json"}
    if signature is not False:
        headers["x-lenco-signature"] = signature or _sign(body)
    return await client.post("/payments/webhook", content=body, headers=headers)


async def _payment(session_maker, reference):
    async with session_maker() as session:
        result = await session.execute(select(Payment).where(Payment.reference == reference))
        return result.scalar_one_or_none()


async def _logs(session_maker):
    async with session_maker() as session:
        result = await session.execute(select(WebhookLog).order_by(WebhookLog.processed_at))
        return list(result.scalars().all())


async def _count(session_maker, model):
    async with session_maker() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def _seed(session_maker, reference="WC_1700000000000_HOOK01", status="pending", metadata=None):
    async with session_maker() as session:
        session.add(Payment(
            reference=reference,
            user_id=uuid.UUID(USER_ID),
            amount=Decimal("100.00"),
            currency="ZMW",
            status=status,
            payment_method="card",
            payment_metadata=metadata if metadata is not None else {"user_id": USER_ID},
        ))
        await session.commit()
    return reference


@pytest.mark.asyncio
async def test_happy_path_initialize_then_webhook(client, session_maker):
    created = await client.post("/payments", json=CARD_PAYMENT)
    reference = created.json()["data"]["reference"]
    assert (await _payment(session_maker, reference)).status == "pending"

    response = await _post(client, _envelope(reference))

    assert response.status_code == 200
    assert response.json() == {"success": True}

    payment = await _payment(session_maker, reference)
    assert payment.status == "completed"
    assert payment.paid_at is not None
    assert payment.provider_transaction_id == "txn_1"
    assert payment.gateway_response == "Approved"
    assert payment.reconciled_by == "webhook"

    logs = await _logs(session_maker)
    assert [(log.reference, log.status) for log in logs] == [(reference, "processed")]
    assert await _count(session_maker, Notification) == 1


@pytest.mark.asyncio
async def test_bad_signature_is_rejected(client, session_maker):
    reference = await _seed(session_maker)
    body = _envelope(reference)
    tampered = _sign(body)[:-1] + ("0" if _sign(body)[-1] != "0" else "1")

    response = await _post(client, body, signature=tampered)

    assert response.status_code == 401
    assert (await _payment(session_maker, reference)).status == "pending"
    assert await _logs(session_maker) == []


@pytest.mark.asyncio
async def test_missing_signature_header(client, session_maker):
    reference = await _seed(session_maker)

    response = await _post(client, _envelope(reference), signature=False)

    assert response.status_code == 401
    assert (await _payment(session_maker, reference)).status == "pending"


@pytest.mark.asyncio
async def test_base64_signature_accepted(client, session_maker):
    reference = await _seed(session_maker)
    body = _envelope(reference)
    digest = hmac.new(SECRET.encode(), body, hashlib.sha256).digest()

    response = await _post(client, body, signature=base64.b64encode(digest).decode())

    assert response.status_code == 200
    assert (await _payment(session_maker, reference)).status == "completed"


@pytest.mark.asyncio
async def test_missing_secret_fails_closed(client, session_maker, test_settings):
    reference = await _seed(session_maker)
    app.dependency_overrides[get_settings] = lambda: test_settings.model_copy(update={"lenco_webhook_secret": ""})

    response = await _post(client, _envelope(reference))

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Server configuration incomplete"}
    assert (await _payment(session_maker, reference)).status == "pending"
    assert await _logs(session_maker) == []


@pytest.mark.asyncio
async def test_malformed_json(client, session_maker):
    body = b'{"event": "payment.success", '

    response = await _post(client, body)

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid JSON payload"
    assert await _logs(session_maker) == []


@pytest.mark.asyncio
async def test_invalid_envelope_is_logged_as_failed(client, session_maker):
    body = json.dumps({"event": "payment.success", "data": {"reference": "WC_X", "status": "success"}}).encode()

    response = await _post(client, body)

    assert response.status_code == 400
    logs = await _logs(session_maker)
    assert [(log.reference, log.status) for log in logs] == [("WC_X", "failed")]
    assert "data.id" in logs[0].error_message


@pytest.mark.asyncio
async def test_get_is_not_allowed(client):
    response = await client.get("/payments/webhook")
    assert response.status_code == 405


@pytest.mark.asyncio
async def test_oversized_payload(client):
    body = _envelope("WC_BIG", padding="x" * (33 * 1024))
    response = await _post(client, body)
    assert response.status_code == 413


@pytest.mark.asyncio
async def test_failed_after_completed_keeps_completed(client, session_maker):
    reference = await _seed(session_maker)

    first = await _post(client, _envelope(reference, event_id="txn_ok"))
    second = await _post(client, _envelope(reference, status="failed", event="payment.failed", event_id="txn_late"))

    assert first.status_code == 200
    assert second.status_code == 200
    assert (await _payment(session_maker, reference)).status == "completed"
    assert await _count(session_maker, Notification) == 1
    assert [log.status for log in await _logs(session_maker)] == ["processed", "processed"]


@pytest.mark.asyncio
async def test_duplicate_delivery_is_acknowledged_once(client, session_maker):
    reference = await _seed(session_maker)
    body = _envelope(reference)

    first = await _post(client, body)
    second = await _post(client, body)

    assert first.json() == {"success": True}
    assert second.status_code == 200
    assert second.json() == {"success": True, "duplicate": True}
    assert await _count(session_maker, PaymentEvent) == 1
    assert await _count(session_maker, Notification) == 1
    assert [log.status for log in await _logs(session_maker)] == ["processed", "duplicate"]


@pytest.mark.asyncio
async def test_verify_after_webhook_does_not_fan_out_again(client, session_maker, fake_gateway):
    reference = await _seed(session_maker)

    await _post(client, _envelope(reference))
    verified = await client.post("/payments/verify", json={"reference": reference})

    assert verified.json()["data"]["status"] == "completed"
    assert (await _payment(session_maker, reference)).reconciled_by == "webhook"
    assert await _count(session_maker, Notification) == 1


@pytest.mark.asyncio
async def test_unknown_reference_still_fans_out(client, session_maker):
    body = _envelope("WC_NOT_YET_STORED", metadata={"user_id": USER_ID})

    response = await _post(client, body)

    assert response.status_code == 200
    assert await _payment(session_maker, "WC_NOT_YET_STORED") is None
    assert await _count(session_maker, Notification) == 1
    assert [log.status for log in await _logs(session_maker)] == ["processed"]


@pytest.mark.asyncio
async def test_subscription_updated_and_partial_failure_acknowledged(client, session_maker):
    async with session_maker() as session:
        subscription = UserSubscription(user_id=uuid.UUID(USER_ID), status="pending", payment_status="pending")
        session.add(subscription)
        await session.commit()
        subscription_id = str(subscription.id)

    reference = await _seed(session_maker, metadata={
        "user_id": USER_ID,
        "subscription_id": subscription_id,
        "service_id": "not-a-uuid",
    })

    response = await _post(client, _envelope(reference))

    assert response.status_code == 200
    async with session_maker() as session:
        stored = await session.get(UserSubscription, uuid.UUID(subscription_id))
        assert (stored.status, stored.payment_status) == ("active", "paid")
    logs = await _logs(session_maker)
    assert logs[0].status == "processed"
    assert "service_booking" in logs[0].error_message
    assert await _count(session_maker, Notification) == 1


@pytest.mark.asyncio
async def test_pending_event_notifies_without_transition(client, session_maker):
    reference = await _seed(session_maker)

    response = await _post(client, _envelope(reference, status="pending", event="payment.pending"))

    assert response.status_code == 200
    assert (await _payment(session_maker, reference)).status == "pending"
    async with session_maker() as session:
        notification = (await session.execute(select(Notification))).scalar_one()
    assert notification.title == "Payment Pending"
    assert [log.status for log in await _logs(session_maker)] == ["processed"]


@pytest.mark.asyncio
async def test_non_finite_amount_is_rejected_and_logged(client, session_maker):
    reference = await _seed(session_maker)
    body = _envelope(reference).replace(b'"amount": 10000', b'"amount": NaN')

    response = await _post(client, body)

    assert response.status_code == 400
    assert (await _payment(session_maker, reference)).status == "pending"
    assert [log.status for log in await _logs(session_maker)] == ["failed"]


@pytest.mark.asyncio
async def test_unexpected_error_writes_failed_log_and_releases_event(client, session_maker):
    reference = await _seed(session_maker)
    body = _envelope(reference)

    with patch(
        "app.services.payment_service.PaymentService.reconcile",
        AsyncMock(side_effect=RuntimeError("boom")),
    ):
        failed = await _post(client, body)

    assert failed.status_code == 500
    assert await _count(session_maker, PaymentEvent) == 0
    logs = await _logs(session_maker)
    assert [(log.status, log.error_message) for log in logs] == [("failed", "boom")]


@pytest.mark.asyncio
async def test_non_payment_event_is_acknowledged(client, session_maker):
    body = json.dumps({"event": "transfer.successful", "data": {"id": "tr_1", "reference": "TR_1"}}).encode()

    response = await _post(client, body)

    assert response.status_code == 200
    logs = await _logs(session_maker)
    assert [(log.event_type, log.status) for log in logs] == [("transfer.successful", "processed")]


@pytest.mark.asyncio
async def test_core_write_failure_returns_500_and_allows_redelivery(client, session_maker):
    reference = await _seed(session_maker)
    body = _envelope(reference)

    with patch(
        "app.services.payment_service.PaymentService.reconcile",
        AsyncMock(side_effect=PersistenceError("Failed to update payment record")),
    ):
        failed = await _post(client, body)

    assert failed.status_code == 500
    assert (await _payment(session_maker, reference)).status == "pending"
    assert await _count(session_maker, PaymentEvent) == 0

    retried = await _post(client, body)

    assert retried.json() == {"success": True}
    assert (await _payment(session_maker, reference)).status == "completed"
    assert [log.status for log in await _logs(session_maker)] == ["failed", "processed"]
