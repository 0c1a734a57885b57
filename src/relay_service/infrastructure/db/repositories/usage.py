from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from relay_service.domain.entities.usage import DailyUsage
from relay_service.infrastructure.db.mappers import usage as mapper
from relay_service.infrastructure.db.models.usage import UsageModel


class UsageReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_for_day(self, user_id: UUID, day: date) -> DailyUsage | None:
        stmt = select(UsageModel).where(
            UsageModel.user_id == user_id,
            UsageModel.date == day,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None


class UsageWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def increment(
        self,
        user_id: UUID,
        day: date,
        *,
        messages: int = 0,
        credits: int = 0,
        conversations: int = 0,
    ) -> DailyUsage:
        """Atomic upsert; concurrent increments for the same day never lose updates."""
        stmt = pg_insert(UsageModel).values(
            user_id=user_id,
            date=day,
            messages_sent=messages,
            credits_used=credits,
            conversations_created=conversations,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_usage_user_day",
            set_={
                "messages_sent": UsageModel.messages_sent + messages,
                "credits_used": UsageModel.credits_used + credits,
                "conversations_created": UsageModel.conversations_created + conversations,
            },
        ).returning(UsageModel)
        result = await self._session.execute(stmt)
        return mapper.model_to_entity(result.scalar_one())
