"""
Realtime Service - per-user broadcast of payment updates over Redis pub/sub.
"""

import json
import logging
from typing import Any, Dict

from app import redis as redis_module

logger = logging.getLogger(__name__)


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


class RealtimePublisher:
    """Publishes broadcast events on the user's channel."""

    async def publish(self, user_id: str, event: str, payload: Dict[str, Any]) -> bool:
        """
        Publish {type, event, payload} on user:<id>.

        Returns False when Redis is not configured; connection errors propagate.
        """
        if not redis_module.RedisClient.is_configured():
            logger.debug(f"Redis not configured, skipping realtime broadcast for user {user_id}")
            return False

        client = await redis_module.get_redis()
        message = json.dumps(
            {"type": "broadcast", "event": event, "payload": payload},
            default=str,
        )
        receivers = await client.publish(user_channel(user_id), message)
        logger.debug(f"Realtime {event} published to {user_channel(user_id)} ({receivers} receivers)")
        return True
