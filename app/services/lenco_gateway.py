"""
Lenco Gateway Client - initialize and verify collections over the Lenco API.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List
from urllib.parse import quote

import httpx

from app.config import Settings
from app.exceptions import ConfigurationError, GatewayError, GatewayTimeout
from app.fsm.states import GatewayStatus

logger = logging.getLogger(__name__)


# Collections endpoint vocabulary folded into the canonical gateway statuses
COLLECTION_STATUS_ALIASES = {
    "successful": GatewayStatus.SUCCESS.value,
    "processing": GatewayStatus.PENDING.value,
    "initiated": GatewayStatus.PENDING.value,
    "otp-required": GatewayStatus.PENDING.value,
    "pay-offline": GatewayStatus.PENDING.value,
    "declined": GatewayStatus.FAILED.value,
    "rejected": GatewayStatus.FAILED.value,
    "canceled": GatewayStatus.CANCELLED.value,
}


def normalise_gateway_status(status: Any) -> str:
    """Lower-case a gateway status and fold collection aliases."""
    value = status.strip().lower() if isinstance(status, str) else ""
    return COLLECTION_STATUS_ALIASES.get(value, value)


@dataclass
class GatewayInitRequest:
    """Payload for a gateway initialize call. amount is in minor units."""

    reference: str
    amount_minor: int
    currency: str
    email: str
    name: str
    description: str
    callback_url: str
    phone: Optional[str] = None
    label: Optional[str] = None
    channels: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        first_name, last_name = split_name(self.name)
        return {
            "amount": self.amount_minor,
            "currency": self.currency,
            "email": self.email,
            "name": self.name,
            "phone": self.phone or "",
            "reference": self.reference,
            "description": self.description,
            "callback_url": self.callback_url,
            "label": self.label or self.description,
            "bearer": "merchant",
            "channels": self.channels,
            "customer": {
                "firstName": first_name,
                "lastName": last_name,
                "phone": self.phone,
            },
            "metadata": self.metadata,
        }


@dataclass
class GatewayInitResult:
    access_code: Optional[str]
    authorization_url: Optional[str]
    provider_reference: Optional[str]


@dataclass
class GatewayVerification:
    """Gateway view of a payment. status uses the canonical gateway vocabulary."""

    reference: str
    status: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    gateway_response: Optional[str] = None
    paid_at: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def split_name(full_name: Optional[str]):
    """Split a full name into (first, last); last may be None."""
    parts = (full_name or "").split()
    if not parts:
        return None, None
    if len(parts) == 1:
        return parts[0], None
    return parts[0], " ".join(parts[1:])


def _data_section(body: Dict[str, Any]) -> Dict[str, Any]:
    section = body.get("data")
    return section if isinstance(section, dict) else {}


def _parse_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value).replace(",", "").strip())
    except (InvalidOperation, ValueError):
        return None


class LencoGateway:
    """Thin async wrapper around the Lenco payments API. No retries."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.lenco_api_url.rstrip("/")
        self.secret_key = settings.lenco_secret_key
        self.timeout = settings.gateway_timeout_seconds
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        if not self.secret_key:
            raise ConfigurationError("Payment gateway not configured")
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a request and return the decoded body, raising GatewayError on failure."""
        headers = self._headers()
        url = f"{self.base_url}{path}"

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.request(method, url, json=json, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"Lenco API timeout on {method} {path}: {e}")
            raise GatewayTimeout() from e
        except httpx.HTTPError as e:
            logger.error(f"Lenco API transport error on {method} {path}: {e}")
            raise GatewayError() from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict):
            logger.error(f"Lenco API returned malformed body ({response.status_code}) on {method} {path}")
            raise GatewayError("Invalid response from payment gateway")

        if not response.is_success or data.get("success") is False or data.get("status") is False:
            message = data.get("message") or data.get("error")
            logger.error(f"Lenco API Error {response.status_code} on {method} {path}: {message}")
            raise GatewayError(message if isinstance(message, str) and message else None)

        return data

    async def initialize(self, request: GatewayInitRequest) -> GatewayInitResult:
        """Create a gateway checkout for a new payment."""
        data = await self._request("POST", "/payments/initialize", json=request.to_payload())
        payload = _data_section(data)

        return GatewayInitResult(
            access_code=payload.get("access_code") or payload.get("accessCode"),
            authorization_url=(
                payload.get("authorization_url")
                or payload.get("payment_url")
                or payload.get("checkout_url")
            ),
            provider_reference=payload.get("id") or payload.get("lencoReference"),
        )

    async def verify(self, reference: str) -> GatewayVerification:
        """
        Fetch the gateway's view of a payment.

        Uses the collections status endpoint and falls back to the legacy
        payments verify endpoint.
        """
        quoted = quote(reference, safe="")
        try:
            data = await self._request("GET", f"/collections/status/{quoted}")
        except GatewayTimeout:
            raise
        except GatewayError as e:
            logger.warning(f"Collections status lookup failed for {reference}, trying legacy verify: {e.message}")
            data = await self._request("GET", f"/payments/verify/{quoted}")

        payload = _data_section(data)
        currency = payload.get("currency")

        return GatewayVerification(
            reference=reference,
            status=normalise_gateway_status(payload.get("status")),
            amount=_parse_decimal(payload.get("amount")),
            currency=currency.strip().upper() if isinstance(currency, str) and currency.strip() else None,
            provider_transaction_id=payload.get("id") or payload.get("lencoReference"),
            gateway_response=payload.get("gateway_response") or payload.get("reasonForFailure"),
            paid_at=payload.get("paid_at") or payload.get("completedAt"),
            metadata=payload,
        )
