from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Callable, Protocol

from relay_service.application.repositories.conversation import (
    ConversationReader,
    ConversationWriter,
)
from relay_service.application.repositories.message import MessageReader, MessageWriter
from relay_service.application.repositories.profile import ProfileReader
from relay_service.application.repositories.usage import UsageReader, UsageWriter


class UnitOfWork(Protocol):
    profiles: ProfileReader
    conversations: ConversationReader
    conversations_w: ConversationWriter
    messages: MessageReader
    messages_w: MessageWriter
    usage: UsageReader
    usage_w: UsageWriter

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...
    async def flush(self) -> None: ...


UoWFactory = Callable[[], AbstractAsyncContextManager[UnitOfWork]]
