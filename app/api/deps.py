from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.database import get_db
from app.exceptions import AuthError
from app.services.auth_service import AuthenticatedUser, SupabaseAuthClient
from app.services.lenco_gateway import LencoGateway
from app.services.payment_service import PaymentService


def get_gateway(settings: Settings = Depends(get_settings)) -> LencoGateway:
    return LencoGateway(settings)


def get_auth_client(settings: Settings = Depends(get_settings)) -> SupabaseAuthClient:
    return SupabaseAuthClient(settings)


async def get_current_user(
    authorization: Optional[str] = Header(None),
    auth_client: SupabaseAuthClient = Depends(get_auth_client),
) -> AuthenticatedUser:
    """
    Resolve the caller from an `Authorization: Bearer <token>` header.
    Raises AuthError (401) when the header is missing or the token is rejected.
    """
    if not authorization:
        raise AuthError("Missing authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Invalid authorization header")

    return await auth_client.get_user(token.strip())


def get_payment_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    gateway: LencoGateway = Depends(get_gateway),
) -> PaymentService:
    return PaymentService(db, settings, gateway=gateway)
