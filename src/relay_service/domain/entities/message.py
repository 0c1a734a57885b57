from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Envelope:
    """A single persisted chat message, the unit both stored and broadcast."""

    id: UUID
    conversation_id: UUID
    sender_type: str
    content: str
    created_at: datetime
    tokens_used: int = 0
    credits_used: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "conversation_id": str(self.conversation_id),
            "sender_type": self.sender_type,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }
