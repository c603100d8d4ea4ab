"""
Pytest configuration and fixtures.
"""

import sys
import os
from typing import AsyncGenerator
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Add app to path
sys.path.append(os.getcwd())

from app.api.deps import get_current_user, get_gateway
from app.config import Settings, get_settings
from app.database import Base, get_db
from app.main import app
from app.services.auth_service import AuthenticatedUser
from app.services.lenco_gateway import GatewayInitResult, GatewayVerification, LencoGateway
from app import models  # noqa: F401  registers tables on Base.metadata

# Use in-memory SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

WEBHOOK_SECRET = "whsec_test_secret"
TEST_USER_ID = "0b7f4a52-3c1e-4b7e-9a59-5f1d2c3e4a10"


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        redis_url="",
        lenco_secret_key="sk_test_lenco",
        lenco_webhook_secret=WEBHOOK_SECRET,
        supabase_url="https://project.supabase.test",
        supabase_service_role_key="service-role-key",
    )


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create async engine for tests. StaticPool keeps one in-memory database across sessions."""
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for a test."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def fake_gateway():
    gateway = AsyncMock(spec=LencoGateway)
    gateway.initialize.return_value = GatewayInitResult(
        access_code="ACC_123",
        authorization_url="https://pay.lenco.co/checkout/ACC_123",
        provider_reference="lenco_ref_1",
    )
    gateway.verify.return_value = GatewayVerification(
        reference="",
        status="success",
        amount=None,
        currency="ZMW",
        provider_transaction_id="txn_verify",
        gateway_response="Approved",
    )
    return gateway


@pytest.fixture
def fake_publisher():
    publisher = AsyncMock()
    publisher.publish.return_value = True
    return publisher


@pytest.fixture
def current_user() -> AuthenticatedUser:
    return AuthenticatedUser(id=TEST_USER_ID, email="a@b.com")


@pytest_asyncio.fixture
async def client(session_maker, test_settings, fake_gateway, current_user):
    """ASGI client with database, settings, gateway and auth overridden."""

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_current_user] = lambda: current_user

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def no_redis():
    """Realtime broadcasts stay local unless a test opts in."""
    with patch("app.redis.RedisClient.is_configured", return_value=False):
        yield
