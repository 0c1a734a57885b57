from __future__ import annotations

from typing import Any, Protocol
from uuid import UUID


class RoomPublisher(Protocol):
    """Cross-process fan-out of a room event to every relay instance."""

    async def publish_room(
        self,
        conversation_id: UUID,
        event: str,
        data: dict[str, Any],
        *,
        exclude: str | None = None,
    ) -> None: ...
