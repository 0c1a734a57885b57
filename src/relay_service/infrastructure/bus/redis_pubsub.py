"""Redis Pub/Sub fan-out of room events between relay processes."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine
from uuid import UUID

import redis.asyncio as aioredis

from relay_service.infrastructure.bus.serializer import (
    RoomEvent,
    deserialize_room_event,
    serialize_room_event,
)

logger = logging.getLogger(__name__)


class RedisRoomPublisher:
    """Implements application.ports.bus.RoomPublisher."""

    def __init__(self, redis: aioredis.Redis, channel: str) -> None:
        self._redis = redis
        self._channel = channel

    async def publish_room(
        self,
        conversation_id: UUID,
        event: str,
        data: dict[str, Any],
        *,
        exclude: str | None = None,
    ) -> None:
        raw = serialize_room_event(RoomEvent(conversation_id, event, data, exclude))
        await self._redis.publish(self._channel, raw)


OnRoomEventCallback = Callable[[RoomEvent], Coroutine[Any, Any, None]]


class RedisRoomSubscriber:
    """Background task delivering fan-out frames to this process's rooms."""

    def __init__(
        self,
        redis: aioredis.Redis,
        channel: str,
        callback: OnRoomEventCallback,
    ) -> None:
        self._redis = redis
        self._channel = channel
        self._callback = callback
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self._listen(), name="relay-fanout-subscriber")
        logger.info("Room fan-out subscriber started on channel=%s", self._channel)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            logger.info("Room fan-out subscriber stopped")

    async def _listen(self) -> None:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self._channel)
        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    await self._callback(deserialize_room_event(message["data"]))
                except Exception:
                    logger.exception("Error delivering fan-out frame")
        finally:
            await pubsub.unsubscribe(self._channel)
            await pubsub.aclose()
