"""Shared Redis connection pool for the sweep lock and the event channel."""

import logging

import redis.asyncio as aioredis

from tripbook.config import settings
from tripbook.infrastructure.events import RedisEventPublisher

logger = logging.getLogger(__name__)

_pool = aioredis.ConnectionPool.from_url(
    settings.redis_url, decode_responses=True
)


async def get_redis() -> aioredis.Redis:
    """Return a Redis client backed by the shared connection pool."""
    return aioredis.Redis(connection_pool=_pool)


async def create_event_publisher() -> RedisEventPublisher:
    """Publisher bound to the configured events channel."""
    client = await get_redis()
    logger.info("Publishing domain events to %s", settings.events_channel)
    return RedisEventPublisher(client, settings.events_channel)


async def close_pool() -> None:
    await _pool.disconnect()
