from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from relay_service.domain.entities.message import Envelope
from relay_service.infrastructure.db.mappers import message as mapper
from relay_service.infrastructure.db.models.message import MessageModel


class MessageReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_recent(
        self,
        conversation_id: UUID,
        *,
        limit: int = 10,
    ) -> list[Envelope]:
        stmt = (
            select(MessageModel)
            .where(MessageModel.conversation_id == conversation_id)
            .order_by(MessageModel.created_at.desc(), MessageModel.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        newest_first = [mapper.model_to_entity(m) for m in result.scalars().all()]
        return newest_first[::-1]


class MessageWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, envelope: Envelope) -> Envelope:
        model = mapper.entity_to_model(envelope)
        self._session.add(model)
        await self._session.flush()
        return mapper.model_to_entity(model)
