"""
Redis connection shared by realtime broadcasts (redis-py asyncio).
Celery talks to the same instance through its own broker connection.
"""

from typing import Optional
import logging

from redis import asyncio as aioredis
from redis.asyncio.client import Redis

from app.config import settings

logger = logging.getLogger(__name__)


class RedisClient:
    """Lazily created, process-wide Redis connection pool."""

    _client: Optional[Redis] = None

    @classmethod
    def is_configured(cls) -> bool:
        return bool(settings.redis_url)

    @classmethod
    def get_client(cls) -> Redis:
        if cls._client is not None:
            return cls._client

        if not cls.is_configured():
            raise RuntimeError("REDIS_URL not set. Realtime broadcasts disabled.")

        cls._client = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=5.0,
            health_check_interval=30,
        )
        logger.info("Redis client initialized for realtime broadcasts")
        return cls._client

    @classmethod
    async def close(cls) -> None:
        if cls._client is None:
            return
        await cls._client.aclose()
        cls._client = None
        logger.info("Redis client closed")


async def get_redis() -> Redis:
    return RedisClient.get_client()
