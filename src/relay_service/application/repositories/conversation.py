from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from relay_service.domain.entities.conversation import Conversation


class ConversationReader(Protocol):
    async def get_owned(self, conversation_id: UUID, user_id: UUID) -> Conversation | None:
        """Return the conversation only if ``user_id`` owns it."""
        ...


class ConversationWriter(Protocol):
    async def create(self, conversation: Conversation) -> Conversation: ...

    async def record_exchange(
        self, conversation_id: UUID, ts: datetime, *, messages: int = 2
    ) -> None:
        """Bump ``message_count`` and set ``last_message_at``."""
        ...
