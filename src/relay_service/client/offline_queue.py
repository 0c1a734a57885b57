"""Queue for mutating HTTP requests made while the network is down.

Queued requests are replayed in enqueue order once connectivity returns.
Only failures where the request never left the machine (connect errors)
are queued. A replay that fails to connect again stays queued; a replay
that may have reached the server is dropped rather than sent twice.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from typing import Protocol

import httpx
import redis.asyncio as aioredis

from relay_service.application.ports.clock import Clock, SystemClock
from relay_service.domain.value_objects.enums import ConnectionStatus

logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
QUEUED_MESSAGE = "Request queued for when you're back online"

# The request was never sent, so replaying it cannot duplicate a write.
OFFLINE_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


@dataclass(frozen=True, slots=True)
class QueuedRequest:
    url: str
    method: str
    headers: dict[str, str]
    body: str | None
    timestamp: int  # epoch millis


@dataclass(frozen=True, slots=True)
class DrainResult:
    replayed: int
    retained: int
    uncertain: int = 0


class QueueStore(Protocol):
    async def load(self) -> list[QueuedRequest]: ...

    async def save(self, requests: list[QueuedRequest]) -> None: ...


class RedisQueueStore:
    """Keeps the queue as one JSON list under a single key."""

    def __init__(self, redis: aioredis.Redis, key: str) -> None:
        self._redis = redis
        self._key = key

    async def load(self) -> list[QueuedRequest]:
        raw = await self._redis.get(self._key)
        if not raw:
            return []
        return [QueuedRequest(**item) for item in json.loads(raw)]

    async def save(self, requests: list[QueuedRequest]) -> None:
        if not requests:
            await self._redis.delete(self._key)
            return
        await self._redis.set(self._key, json.dumps([asdict(r) for r in requests]))


class OfflineRequestQueue:
    def __init__(
        self,
        store: QueueStore,
        http: httpx.AsyncClient,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._http = http
        self._clock = clock or SystemClock()
        self._lock = asyncio.Lock()

    async def submit(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: str | None = None,
    ) -> httpx.Response:
        method = method.upper()
        try:
            return await self._http.request(method, url, headers=headers, content=body)
        except OFFLINE_ERRORS as exc:
            if method not in MUTATING_METHODS:
                raise
            logger.info("Network down, queueing %s %s: %s", method, url, exc)
            await self.enqueue(
                QueuedRequest(
                    url=url,
                    method=method,
                    headers=dict(headers or {}),
                    body=body,
                    timestamp=int(self._clock.now().timestamp() * 1000),
                )
            )
            return httpx.Response(
                202,
                json={"queued": True, "message": QUEUED_MESSAGE},
                request=httpx.Request(method, url),
            )

    async def enqueue(self, request: QueuedRequest) -> None:
        async with self._lock:
            pending = await self._store.load()
            pending.append(request)
            await self._store.save(pending)

    async def pending(self) -> list[QueuedRequest]:
        return await self._store.load()

    async def drain(self) -> DrainResult:
        async with self._lock:
            pending = sorted(await self._store.load(), key=lambda r: r.timestamp)
            retained: list[QueuedRequest] = []
            replayed = uncertain = 0
            for request in pending:
                try:
                    await self._http.request(
                        request.method,
                        request.url,
                        headers=request.headers,
                        content=request.body,
                    )
                except OFFLINE_ERRORS as exc:
                    logger.warning(
                        "Replay of %s %s failed, keeping it queued: %s",
                        request.method, request.url, exc,
                    )
                    retained.append(request)
                except httpx.TransportError as exc:
                    logger.warning(
                        "Replay of %s %s may have reached the server, dropping it: %s",
                        request.method, request.url, exc,
                    )
                    uncertain += 1
                else:
                    replayed += 1
            await self._store.save(retained)
        if pending:
            logger.info(
                "Offline queue drained: replayed=%d retained=%d uncertain=%d",
                replayed, len(retained), uncertain,
            )
        return DrainResult(replayed=replayed, retained=len(retained), uncertain=uncertain)

    async def on_status(self, status: ConnectionStatus) -> None:
        if status == ConnectionStatus.CONNECTED:
            await self.drain()
