"""
Tests for the Lenco gateway client, using httpx.MockTransport.
"""

import json
from decimal import Decimal

import httpx
import pytest

from app.exceptions import ConfigurationError, GatewayError, GatewayTimeout
from app.services.lenco_gateway import (
    GatewayInitRequest,
    LencoGateway,
    normalise_gateway_status,
    split_name,
)


def _init_request(**overrides) -> GatewayInitRequest:
    values = dict(
        reference="WC_1700000000000_ABC123",
        amount_minor=10000,
        currency="ZMW",
        email="a@b.com",
        name="Ada Banda",
        description="svc",
        callback_url="https://wathaci.com/payment/callback",
        phone="0977000000",
        channels=["mobile-money"],
        metadata={"user_id": "u1"},
    )
    values.update(overrides)
    return GatewayInitRequest(**values)


def _gateway(test_settings, handler) -> LencoGateway:
    return LencoGateway(test_settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_initialize_sends_minor_units_and_auth(test_settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "success": True,
            "data": {
                "access_code": "ACC_1",
                "authorization_url": "https://pay.lenco.co/ACC_1",
                "id": "lenco_1",
            },
        })

    result = await _gateway(test_settings, handler).initialize(_init_request())

    assert seen["url"] == "https://api.lenco.co/access/v2/payments/initialize"
    assert seen["auth"] == "Bearer sk_test_lenco"
    assert seen["body"]["amount"] == 10000
    assert seen["body"]["bearer"] == "merchant"
    assert seen["body"]["channels"] == ["mobile-money"]
    assert seen["body"]["customer"] == {"firstName": "Ada", "lastName": "Banda", "phone": "0977000000"}
    assert result.access_code == "ACC_1"
    assert result.authorization_url == "https://pay.lenco.co/ACC_1"
    assert result.provider_reference == "lenco_1"


@pytest.mark.asyncio
async def test_initialize_gateway_rejection(test_settings):
    def handler(request):
        return httpx.Response(400, json={"success": False, "message": "Invalid phone number"})

    with pytest.raises(GatewayError) as exc_info:
        await _gateway(test_settings, handler).initialize(_init_request())
    assert exc_info.value.message == "Invalid phone number"


@pytest.mark.asyncio
async def test_success_false_on_200_is_an_error(test_settings):
    def handler(request):
        return httpx.Response(200, json={"status": False, "error": "Duplicate reference"})

    with pytest.raises(GatewayError) as exc_info:
        await _gateway(test_settings, handler).initialize(_init_request())
    assert exc_info.value.message == "Duplicate reference"


@pytest.mark.asyncio
async def test_malformed_body(test_settings):
    def handler(request):
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    with pytest.raises(GatewayError) as exc_info:
        await _gateway(test_settings, handler).initialize(_init_request())
    assert exc_info.value.message == "Invalid response from payment gateway"


@pytest.mark.asyncio
async def test_timeout_maps_to_gateway_timeout(test_settings):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayTimeout) as exc_info:
        await _gateway(test_settings, handler).initialize(_init_request())
    assert exc_info.value.status_code == 504


@pytest.mark.asyncio
async def test_missing_secret_is_configuration_error(test_settings):
    settings = test_settings.model_copy(update={"lenco_secret_key": ""})
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(ConfigurationError):
        await _gateway(settings, handler).initialize(_init_request())
    assert calls == []


@pytest.mark.asyncio
async def test_verify_collections_status(test_settings):
    def handler(request):
        assert request.url.path == "/access/v2/collections/status/WC_1_ABC123"
        return httpx.Response(200, json={
            "status": True,
            "data": {
                "id": "txn_9",
                "status": "successful",
                "amount": "100.00",
                "currency": "zmw",
                "completedAt": "2026-10-16T10:00:00Z",
            },
        })

    verification = await _gateway(test_settings, handler).verify("WC_1_ABC123")

    assert verification.status == "success"
    assert verification.amount == Decimal("100.00")
    assert verification.currency == "ZMW"
    assert verification.provider_transaction_id == "txn_9"
    assert verification.paid_at == "2026-10-16T10:00:00Z"


@pytest.mark.asyncio
async def test_verify_falls_back_to_legacy_endpoint(test_settings):
    paths = []

    def handler(request):
        paths.append(request.url.path)
        if "/collections/" in request.url.path:
            return httpx.Response(404, json={"status": False, "message": "Not found"})
        return httpx.Response(200, json={"status": True, "data": {"status": "failed", "gateway_response": "Declined"}})

    verification = await _gateway(test_settings, handler).verify("WC_1_ABC123")

    assert paths == [
        "/access/v2/collections/status/WC_1_ABC123",
        "/access/v2/payments/verify/WC_1_ABC123",
    ]
    assert verification.status == "failed"
    assert verification.gateway_response == "Declined"


@pytest.mark.asyncio
async def test_verify_timeout_does_not_fall_back(test_settings):
    paths = []

    def handler(request):
        paths.append(request.url.path)
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(GatewayTimeout):
        await _gateway(test_settings, handler).verify("WC_1_ABC123")
    assert len(paths) == 1


def test_normalise_gateway_status():
    assert normalise_gateway_status("Successful") == "success"
    assert normalise_gateway_status("otp-required") == "pending"
    assert normalise_gateway_status("declined") == "failed"
    assert normalise_gateway_status(None) == ""


def test_split_name():
    assert split_name("Ada") == ("Ada", None)
    assert split_name("Ada Mwila Banda") == ("Ada", "Mwila Banda")
    assert split_name("") == (None, None)
