from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Conversation:
    id: UUID
    user_id: UUID
    agent_id: str
    title: str | None
    message_count: int
    last_message_at: datetime | None
    created_at: datetime
