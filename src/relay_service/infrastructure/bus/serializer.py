"""Wire format of room events on the fan-out channel."""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID


class _Encoder(json.JSONEncoder):
    def default(self, o: object) -> Any:
        if isinstance(o, UUID):
            return str(o)
        if isinstance(o, datetime):
            return o.isoformat()
        return super().default(o)


@dataclass(frozen=True, slots=True)
class RoomEvent:
    conversation_id: UUID
    event: str
    data: dict[str, Any]
    exclude: str | None = None


def serialize_room_event(room_event: RoomEvent) -> str:
    frame = {
        "room": room_event.conversation_id,
        "event": room_event.event,
        "data": room_event.data,
        "exclude": room_event.exclude,
    }
    return json.dumps(frame, cls=_Encoder)


def deserialize_room_event(raw: str | bytes) -> RoomEvent:
    frame = json.loads(raw)
    return RoomEvent(
        conversation_id=UUID(frame["room"]),
        event=frame["event"],
        data=frame.get("data") or {},
        exclude=frame.get("exclude"),
    )
