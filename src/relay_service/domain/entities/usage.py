from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from uuid import UUID


@dataclass(frozen=True, slots=True)
class DailyUsage:
    user_id: UUID
    date: date
    messages_sent: int = 0
    credits_used: int = 0
    conversations_created: int = 0
