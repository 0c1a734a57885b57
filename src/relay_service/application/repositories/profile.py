from __future__ import annotations

from typing import Protocol
from uuid import UUID

from relay_service.domain.entities.profile import Profile


class ProfileReader(Protocol):
    async def get_by_id(self, user_id: UUID) -> Profile | None: ...
