"""Shared test fixtures and in-memory fakes."""
from __future__ import annotations

import asyncio
import dataclasses
import json
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable
from uuid import UUID

import jwt
import pytest

from relay_service.application.dto.completion import ChatTurn, Completion
from relay_service.application.dto.principal import Principal
from relay_service.client.offline_queue import QueuedRequest
from relay_service.config import settings
from relay_service.domain.entities.conversation import Conversation
from relay_service.domain.entities.message import Envelope
from relay_service.domain.entities.profile import Profile
from relay_service.domain.entities.usage import DailyUsage
from relay_service.domain.value_objects.enums import SenderType, SubscriptionTier

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_principal(
    *,
    user_id: UUID | None = None,
    tier: SubscriptionTier = SubscriptionTier.FREE,
) -> Principal:
    return Principal(user_id=user_id or uuid.uuid4(), email="user@example.com", tier=tier)


def make_conversation(
    user_id: UUID,
    *,
    conversation_id: UUID | None = None,
    agent_id: str = "luna",
) -> Conversation:
    return Conversation(
        id=conversation_id or uuid.uuid4(),
        user_id=user_id,
        agent_id=agent_id,
        title=None,
        message_count=0,
        last_message_at=None,
        created_at=NOW,
    )


def make_envelope(
    conversation_id: UUID,
    *,
    sender_type: str = SenderType.USER,
    content: str = "hello",
    created_at: datetime = NOW,
) -> Envelope:
    return Envelope(
        id=uuid.uuid4(),
        conversation_id=conversation_id,
        sender_type=sender_type,
        content=content,
        created_at=created_at,
    )


def make_token(user_id: UUID, *, secret: str | None = None, **extra: Any) -> str:
    claims = {"userId": str(user_id), "email": "user@example.com", **extra}
    return jwt.encode(claims, secret or settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate`` holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.001)


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)


# -- persistence fakes -----------------------------------------------------


@dataclass
class FakeProfileReader:
    _store: dict[UUID, Profile] = field(default_factory=dict)

    async def get_by_id(self, user_id: UUID) -> Profile | None:
        return self._store.get(user_id)


@dataclass
class FakeConversationReader:
    _store: dict[UUID, Conversation] = field(default_factory=dict)

    async def get_owned(self, conversation_id: UUID, user_id: UUID) -> Conversation | None:
        conv = self._store.get(conversation_id)
        return conv if conv is not None and conv.user_id == user_id else None


@dataclass
class FakeConversationWriter:
    _reader: FakeConversationReader

    async def create(self, conversation: Conversation) -> Conversation:
        self._reader._store[conversation.id] = conversation
        return conversation

    async def record_exchange(self, conversation_id: UUID, ts: datetime, *, messages: int = 2) -> None:
        conv = self._reader._store[conversation_id]
        self._reader._store[conversation_id] = dataclasses.replace(
            conv, last_message_at=ts, message_count=conv.message_count + messages,
        )


@dataclass
class FakeMessageReader:
    _messages: list[Envelope] = field(default_factory=list)
    fail: bool = False

    async def list_recent(self, conversation_id: UUID, *, limit: int = 10) -> list[Envelope]:
        if self.fail:
            raise RuntimeError("history unavailable")
        rows = [m for m in self._messages if m.conversation_id == conversation_id]
        rows.sort(key=lambda m: m.created_at)
        return rows[-limit:]


@dataclass
class FakeMessageWriter:
    _reader: FakeMessageReader
    fail_for: set[str] = field(default_factory=set)

    async def add(self, envelope: Envelope) -> Envelope:
        if envelope.sender_type in self.fail_for:
            raise RuntimeError("insert failed")
        self._reader._messages.append(envelope)
        return envelope


@dataclass
class FakeUsageReader:
    _rows: dict[tuple[UUID, date], DailyUsage] = field(default_factory=dict)

    async def get_for_day(self, user_id: UUID, day: date) -> DailyUsage | None:
        return self._rows.get((user_id, day))


@dataclass
class FakeUsageWriter:
    _reader: FakeUsageReader
    fail: bool = False

    async def increment(
        self,
        user_id: UUID,
        day: date,
        *,
        messages: int = 0,
        credits: int = 0,
        conversations: int = 0,
    ) -> DailyUsage:
        if self.fail:
            raise RuntimeError("usage write failed")
        row = self._reader._rows.get((user_id, day)) or DailyUsage(user_id=user_id, date=day)
        row = dataclasses.replace(
            row,
            messages_sent=row.messages_sent + messages,
            credits_used=row.credits_used + credits,
            conversations_created=row.conversations_created + conversations,
        )
        self._reader._rows[(user_id, day)] = row
        return row


@dataclass
class FakeUoW:
    """In-memory UoW for unit tests; every unit of work shares the same stores."""
    profiles: FakeProfileReader = field(default_factory=FakeProfileReader)
    conversations: FakeConversationReader = field(default_factory=FakeConversationReader)
    conversations_w: FakeConversationWriter | None = None
    messages: FakeMessageReader = field(default_factory=FakeMessageReader)
    messages_w: FakeMessageWriter | None = None
    usage: FakeUsageReader = field(default_factory=FakeUsageReader)
    usage_w: FakeUsageWriter | None = None
    commits: int = 0

    def __post_init__(self) -> None:
        if self.conversations_w is None:
            self.conversations_w = FakeConversationWriter(self.conversations)
        if self.messages_w is None:
            self.messages_w = FakeMessageWriter(self.messages)
        if self.usage_w is None:
            self.usage_w = FakeUsageWriter(self.usage)

    def add_profile(self, principal: Principal) -> None:
        self.profiles._store[principal.user_id] = Profile(
            id=principal.user_id, email=principal.email, subscription_tier=principal.tier.value,
        )

    def add_conversation(self, conversation: Conversation) -> Conversation:
        self.conversations._store[conversation.id] = conversation
        return conversation

    def set_usage(self, user_id: UUID, day: date, messages_sent: int) -> None:
        self.usage._rows[(user_id, day)] = DailyUsage(
            user_id=user_id, date=day, messages_sent=messages_sent,
        )

    def usage_for(self, user_id: UUID, day: date) -> DailyUsage | None:
        return self.usage._rows.get((user_id, day))

    async def flush(self) -> None:
        pass

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        pass


def uow_factory(uow: FakeUoW):
    @asynccontextmanager
    async def _open() -> AsyncIterator[FakeUoW]:
        yield uow

    return _open


# -- transport fakes -------------------------------------------------------


class FakeSocket:
    """Records every frame written to it; ``on_send`` runs before each write."""

    def __init__(self, on_send: Callable[[dict[str, Any]], None] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.broken = False
        self._on_send = on_send

    async def send_text(self, data: str) -> None:
        if self.broken:
            raise ConnectionError("socket closed")
        frame = json.loads(data)
        if self._on_send is not None:
            self._on_send(frame)
        self.sent.append(frame)

    def frames(self, event: str | None = None) -> list[dict[str, Any]]:
        return [f for f in self.sent if event is None or f["type"] == event]

    def types(self) -> list[str]:
        return [f["type"] for f in self.sent]


class FakePublisher:
    def __init__(self) -> None:
        self.published: list[tuple[UUID, str, dict[str, Any], str | None]] = []

    async def publish_room(
        self,
        conversation_id: UUID,
        event: str,
        data: dict[str, Any],
        *,
        exclude: str | None = None,
    ) -> None:
        self.published.append((conversation_id, event, data, exclude))


class FakeStream:
    def __init__(self, chunks: list[str], tokens_used: int | None, error: Exception | None = None) -> None:
        self._chunks = chunks
        self.tokens_used: int | None = None
        self._final_tokens = tokens_used
        self._error = error
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self._chunks:
            await asyncio.sleep(0)
            yield chunk
        if self._error is not None:
            raise self._error
        self.tokens_used = self._final_tokens

    async def aclose(self) -> None:
        self.closed = True


class FakeCompletionClient:
    def __init__(
        self,
        chunks: list[str] | None = None,
        *,
        tokens_used: int | None = 120,
        streaming: bool = True,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.chunks = chunks if chunks is not None else ["Hi", " there,", " friend."]
        self.tokens_used = tokens_used
        self.supports_streaming = streaming
        self.error = error
        self.delay = delay
        self.calls: list[list[ChatTurn]] = []
        self.streams: list[FakeStream] = []

    async def complete(self, messages) -> Completion:
        self.calls.append(list(messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return Completion(content="".join(self.chunks), tokens_used=self.tokens_used)

    async def stream(self, messages) -> FakeStream:
        self.calls.append(list(messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        stream = FakeStream(self.chunks, self.tokens_used, self.error)
        self.streams.append(stream)
        return stream


@dataclass
class MemoryQueueStore:
    items: list[QueuedRequest] = field(default_factory=list)

    async def load(self) -> list[QueuedRequest]:
        return list(self.items)

    async def save(self, requests: list[QueuedRequest]) -> None:
        self.items = list(requests)


# -- fixtures --------------------------------------------------------------


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def principal() -> Principal:
    return make_principal()


@pytest.fixture
def uow(principal) -> FakeUoW:
    uow = FakeUoW()
    uow.add_profile(principal)
    return uow


@pytest.fixture
def conversation(uow, principal) -> Conversation:
    return uow.add_conversation(make_conversation(principal.user_id))
