from __future__ import annotations

from datetime import date
from typing import Protocol
from uuid import UUID

from relay_service.domain.entities.usage import DailyUsage


class UsageReader(Protocol):
    async def get_for_day(self, user_id: UUID, day: date) -> DailyUsage | None: ...


class UsageWriter(Protocol):
    async def increment(
        self,
        user_id: UUID,
        day: date,
        *,
        messages: int = 0,
        credits: int = 0,
        conversations: int = 0,
    ) -> DailyUsage:
        """Add to the day's counters, creating the row if missing."""
        ...
