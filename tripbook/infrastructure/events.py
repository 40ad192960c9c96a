"""
Outbound domain events.

``RedisEventPublisher`` pushes each event as JSON onto a pub/sub channel
for the notification dispatchers (push, email, chat) to consume.  Publishing
runs as a background task: the engine hands the event off and moves on, and
a failed publish is logged rather than surfaced to the booking caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum

import redis.asyncio as aioredis

from tripbook.domain.entities import DomainEvent
from tripbook.domain.ports import EventPublisher

logger = logging.getLogger(__name__)


def serialize_event(event: DomainEvent) -> str:
    def _default(value):
        if isinstance(value, Enum):
            return value.value
        if hasattr(value, "isoformat"):
            return value.isoformat()
        raise TypeError(f"Cannot serialise {type(value).__name__}")

    return json.dumps(
        {
            "name": event.name,
            "occurred_at": event.occurred_at.isoformat(),
            "payload": event.payload,
        },
        default=_default,
    )


class RedisEventPublisher(EventPublisher):
    def __init__(self, client: aioredis.Redis, channel: str):
        self.redis = client
        self.channel = channel
        self._pending: set[asyncio.Task] = set()

    def publish(self, event: DomainEvent) -> None:
        task = asyncio.get_running_loop().create_task(self._send(event))
        # keep a reference until done so the task is not garbage collected
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, event: DomainEvent) -> None:
        try:
            await self.redis.publish(self.channel, serialize_event(event))
        except (aioredis.RedisError, OSError):
            logger.exception("Could not publish %s to %s", event.name, self.channel)

    async def drain(self) -> None:
        """Wait for in-flight publishes (used on shutdown)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


class LoggingEventPublisher(EventPublisher):
    """Local-development publisher: events only go to the log."""

    def publish(self, event: DomainEvent) -> None:
        logger.info("event %s %s", event.name, serialize_event(event))
