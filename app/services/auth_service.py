"""
Auth Service - resolves Supabase bearer tokens to users.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from app.config import Settings
from app.exceptions import AuthError, ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class AuthenticatedUser:
    id: str
    email: Optional[str] = None


class SupabaseAuthClient:
    """Validates access tokens against Supabase Auth (GET /auth/v1/user)."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.supabase_url.rstrip("/")
        self.service_key = settings.supabase_service_role_key
        self.timeout = settings.gateway_timeout_seconds
        self._transport = transport

    async def get_user(self, token: str) -> AuthenticatedUser:
        if not self.base_url or not self.service_key:
            logger.error("Supabase credentials not configured")
            raise ConfigurationError()

        if not token:
            raise AuthError("Missing authorization header")

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/auth/v1/user",
                    headers={
                        "apikey": self.service_key,
                        "Authorization": f"Bearer {token}",
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"Supabase auth request failed: {e}")
            raise AuthError("Unable to validate token") from e

        if response.status_code != 200:
            logger.info(f"Supabase rejected token ({response.status_code})")
            raise AuthError("Invalid or expired token")

        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict) or not data.get("id"):
            raise AuthError("Invalid or expired token")

        return AuthenticatedUser(id=str(data["id"]), email=data.get("email"))
