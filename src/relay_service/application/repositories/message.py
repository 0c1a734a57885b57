from __future__ import annotations

from typing import Protocol
from uuid import UUID

from relay_service.domain.entities.message import Envelope


class MessageReader(Protocol):
    async def list_recent(self, conversation_id: UUID, *, limit: int = 10) -> list[Envelope]:
        """Most recent ``limit`` envelopes, oldest first."""
        ...


class MessageWriter(Protocol):
    async def add(self, envelope: Envelope) -> Envelope: ...
