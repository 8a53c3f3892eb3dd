"""
Redis connection used for the revalidation channel.

Nothing in the treasury is stored in Redis; ledger state lives only in the
database. The client is module-level so tests can swap it for a fake.
"""

import json
import logging
from typing import Any, Dict

import redis.asyncio as redis
from backend.app.core.config import settings

logger = logging.getLogger("troop_treasury.redis")


redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def publish_revalidation(payload: Dict[str, Any]) -> int:
    """
    Publish a revalidation payload on the configured channel.

    Returns:
        Number of subscribers that received the message
    """
    message = json.dumps(payload)
    receivers = await redis_client.publish(settings.revalidation_channel, message)
    logger.debug("Published revalidation to %s receiver(s): %s", receivers, message)
    return receivers


async def ping_redis() -> bool:
    """
    Check that the revalidation channel is reachable.

    Returns:
        True if Redis answered, False otherwise
    """
    try:
        return bool(await redis_client.ping())
    except Exception as exc:
        logger.warning("Redis ping failed: %s", exc)
        return False
