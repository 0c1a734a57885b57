"""Process-local connection, room and presence state."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from relay_service.application.dto.principal import Principal
from relay_service.application.ports.transport import SocketSender
from relay_service.domain.value_objects.enums import PresenceStatus


@dataclass(eq=False, slots=True)
class Connection:
    id: str
    principal: Principal
    socket: SocketSender
    rooms: set[UUID] = field(default_factory=set)
    presence: dict[UUID, tuple[PresenceStatus, datetime]] = field(default_factory=dict)

    @property
    def user_id(self) -> UUID:
        return self.principal.user_id


@dataclass(slots=True)
class TypingMarker:
    user_id: UUID
    since: datetime
    expiry: asyncio.Task[None] | None = None

    def cancel(self) -> None:
        if self.expiry is not None:
            self.expiry.cancel()
            self.expiry = None


@dataclass(slots=True)
class Room:
    conversation_id: UUID
    members: set[str] = field(default_factory=set)
    typing: dict[str, TypingMarker] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.members


@dataclass(frozen=True, slots=True)
class PresenceRecord:
    user_id: UUID
    status: PresenceStatus
    updated_at: datetime

    def to_payload(self) -> dict[str, str]:
        return {"status": self.status.value, "updatedAt": self.updated_at.isoformat()}


_RANK = {
    PresenceStatus.ONLINE: 2,
    PresenceStatus.AWAY: 1,
    PresenceStatus.OFFLINE: 0,
}


def merge_presence(records: list[PresenceRecord]) -> PresenceRecord:
    """Collapse several connections of one user into the most available status."""
    best = max(records, key=lambda r: (_RANK[r.status], r.updated_at))
    latest = max(r.updated_at for r in records)
    return PresenceRecord(best.user_id, best.status, latest)
