from __future__ import annotations

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from relay_service.domain.entities.profile import Profile
from relay_service.infrastructure.db.mappers import profile as mapper
from relay_service.infrastructure.db.models.profile import ProfileModel


class ProfileReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, user_id: UUID) -> Profile | None:
        result = await self._session.get(ProfileModel, user_id)
        return mapper.model_to_entity(result) if result else None
