from __future__ import annotations

import json

import httpx
import pytest

from relay_service.client.offline_queue import (
    QUEUED_MESSAGE,
    OfflineRequestQueue,
    QueuedRequest,
    RedisQueueStore,
)
from relay_service.domain.value_objects.enums import ConnectionStatus
from tests.conftest import FixedClock, MemoryQueueStore


class Network:
    """MockTransport handler that can be switched offline per URL.

    Paths in ``stalled`` reach the server but never get an answer."""

    def __init__(self) -> None:
        self.down: set[str] = set()
        self.stalled: set[str] = set()
        self.offline = False
        self.status = 200
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.offline or request.url.path in self.down:
            raise httpx.ConnectError("network unreachable", request=request)
        self.requests.append(request)
        if request.url.path in self.stalled:
            raise httpx.ReadTimeout("no response", request=request)
        return httpx.Response(self.status, json={"ok": True})


def _queue(network: Network, store=None, clock=None) -> OfflineRequestQueue:
    http = httpx.AsyncClient(base_url="https://api.test", transport=httpx.MockTransport(network))
    return OfflineRequestQueue(store or MemoryQueueStore(), http, clock=clock or FixedClock())


@pytest.mark.asyncio
async def test_online_request_passes_through():
    network = Network()
    queue = _queue(network)

    resp = await queue.submit("POST", "/api/conversations", body='{"agent":"luna"}')

    assert resp.status_code == 200
    assert await queue.pending() == []


@pytest.mark.asyncio
async def test_offline_mutation_is_queued_with_synthetic_202():
    network = Network()
    network.offline = True
    store = MemoryQueueStore()
    queue = _queue(network, store)

    resp = await queue.submit(
        "post", "/api/messages", headers={"Authorization": "Bearer t"}, body='{"x":1}',
    )

    assert resp.status_code == 202
    assert resp.json() == {"queued": True, "message": QUEUED_MESSAGE}
    assert store.items == [
        QueuedRequest(
            url="/api/messages",
            method="POST",
            headers={"Authorization": "Bearer t"},
            body='{"x":1}',
            timestamp=1792411200000,
        )
    ]


@pytest.mark.asyncio
async def test_offline_read_is_not_queued():
    network = Network()
    network.offline = True
    queue = _queue(network)

    with pytest.raises(httpx.ConnectError):
        await queue.submit("GET", "/api/conversations")

    assert await queue.pending() == []


@pytest.mark.asyncio
async def test_server_errors_are_not_queued():
    network = Network()
    network.status = 500
    queue = _queue(network)

    resp = await queue.submit("POST", "/api/messages", body="{}")

    assert resp.status_code == 500
    assert await queue.pending() == []


@pytest.mark.asyncio
async def test_drain_replays_in_order_and_retains_failures():
    network = Network()
    network.offline = True
    clock = FixedClock()
    queue = _queue(network, clock=clock)
    await queue.submit("POST", "/a", body="A")
    clock.advance(1)
    await queue.submit("POST", "/b", body="B")

    network.offline = False
    network.down = {"/a"}
    result = await queue.drain()

    assert (result.replayed, result.retained) == (1, 1)
    assert [r.url.path for r in network.requests] == ["/b"]
    assert [r.url for r in await queue.pending()] == ["/a"]

    network.down = set()
    result = await queue.drain()

    assert (result.replayed, result.retained) == (1, 0)
    assert [r.content for r in network.requests] == [b"B", b"A"]
    assert await queue.pending() == []


@pytest.mark.asyncio
async def test_drain_order_follows_enqueue_time():
    network = Network()
    store = MemoryQueueStore(
        [
            QueuedRequest("/second", "PUT", {}, None, 2000),
            QueuedRequest("/first", "DELETE", {}, None, 1000),
        ]
    )
    queue = _queue(network, store)

    await queue.drain()

    assert [(r.method, r.url.path) for r in network.requests] == [("DELETE", "/first"), ("PUT", "/second")]


@pytest.mark.asyncio
async def test_connected_status_triggers_drain():
    network = Network()
    store = MemoryQueueStore([QueuedRequest("/a", "POST", {}, "A", 1)])
    queue = _queue(network, store)

    await queue.on_status(ConnectionStatus.DISCONNECTED)
    assert store.items

    await queue.on_status(ConnectionStatus.CONNECTED)
    assert store.items == []


class FakeRedis:
    def __init__(self) -> None:
        self.data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


@pytest.mark.asyncio
async def test_redis_store_persists_json_list():
    redis = FakeRedis()
    store = RedisQueueStore(redis, "sensacall:request-queue")
    request = QueuedRequest("/a", "POST", {"X": "1"}, "A", 5)

    await store.save([request])

    assert json.loads(redis.data["sensacall:request-queue"]) == [
        {"url": "/a", "method": "POST", "headers": {"X": "1"}, "body": "A", "timestamp": 5}
    ]
    assert await store.load() == [request]

    await store.save([])
    assert "sensacall:request-queue" not in redis.data


@pytest.mark.asyncio
async def test_request_that_may_have_been_delivered_is_not_queued():
    network = Network()
    network.stalled = {"/api/messages"}
    queue = _queue(network)

    with pytest.raises(httpx.ReadTimeout):
        await queue.submit("POST", "/api/messages", body='{"x":1}')

    assert len(network.requests) == 1
    assert await queue.pending() == []


@pytest.mark.asyncio
async def test_drain_drops_replays_that_may_have_been_delivered():
    network = Network()
    network.offline = True
    clock = FixedClock()
    queue = _queue(network, clock=clock)
    await queue.submit("POST", "/a", body="A")
    clock.advance(1)
    await queue.submit("POST", "/b", body="B")

    network.offline = False
    network.stalled = {"/a"}
    result = await queue.drain()

    assert (result.replayed, result.retained, result.uncertain) == (1, 0, 1)
    assert [r.url.path for r in network.requests] == ["/a", "/b"]
    assert await queue.pending() == []

    network.stalled = set()
    result = await queue.drain()

    assert result.replayed == 0
    assert [r.url.path for r in network.requests] == ["/a", "/b"]
