"""In-process connection, room, presence and typing manager."""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any
from uuid import UUID

from relay_service.application.dto.principal import Principal
from relay_service.application.ports.bus import RoomPublisher
from relay_service.application.ports.clock import Clock, SystemClock
from relay_service.application.ports.transport import SocketSender
from relay_service.domain.value_objects.enums import PresenceStatus
from relay_service.infrastructure.bus.serializer import RoomEvent
from relay_service.infrastructure.ws import protocol
from relay_service.infrastructure.ws.rooms import (
    Connection,
    PresenceRecord,
    Room,
    TypingMarker,
    merge_presence,
)

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks authenticated connections and the conversation rooms they joined.

    One instance per process, created by the application lifespan. Rooms are
    created on first join and dropped when their last member leaves. All
    state is ephemeral and can be rebuilt from scratch.

    With a ``publisher`` room broadcasts go through the fan-out channel and
    come back via :meth:`deliver_local`; without one they are delivered
    directly.
    """

    def __init__(
        self,
        *,
        publisher: RoomPublisher | None = None,
        clock: Clock | None = None,
        typing_timeout: float = 3.0,
    ) -> None:
        self._publisher = publisher
        self._clock = clock or SystemClock()
        self._typing_timeout = typing_timeout
        self._connections: dict[str, Connection] = {}
        self._rooms: dict[UUID, Room] = {}

    # -- connections -------------------------------------------------------

    def register(self, socket: SocketSender, principal: Principal) -> Connection:
        conn = Connection(id=uuid.uuid4().hex, principal=principal, socket=socket)
        self._connections[conn.id] = conn
        logger.debug(
            "Connection registered: %s user=%s (total=%d)",
            conn.id, principal.user_id, len(self._connections),
        )
        return conn

    async def unregister(self, connection_id: str) -> None:
        """Drop a closed connection: leave every room, clear its typing markers."""
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return
        for conversation_id in list(conn.rooms):
            await self._remove_member(conn, conversation_id)
        logger.debug("Connection unregistered: %s user=%s", conn.id, conn.user_id)

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # -- rooms -------------------------------------------------------------

    def is_member(self, connection_id: str, conversation_id: UUID) -> bool:
        room = self._rooms.get(conversation_id)
        return room is not None and connection_id in room.members

    def room_members(self, conversation_id: UUID) -> set[str]:
        room = self._rooms.get(conversation_id)
        return set(room.members) if room else set()

    async def join(self, connection_id: str, conversation_id: UUID) -> None:
        """Admit an already-authorized connection and publish it as online."""
        conn = self._connections.get(connection_id)
        if conn is None:
            return
        room = self._rooms.get(conversation_id)
        if room is None:
            room = self._rooms[conversation_id] = Room(conversation_id)
        room.members.add(conn.id)
        conn.rooms.add(conversation_id)
        conn.presence[conversation_id] = (PresenceStatus.ONLINE, self._clock.now())
        logger.info("Connection %s joined room %s", conn.id, conversation_id)
        await self.publish_presence(conversation_id)

    async def leave(self, connection_id: str, conversation_id: UUID) -> bool:
        """Idempotent. Returns whether the connection was a member."""
        conn = self._connections.get(connection_id)
        if conn is None or conversation_id not in conn.rooms:
            return False
        await self._remove_member(conn, conversation_id)
        logger.info("Connection %s left room %s", conn.id, conversation_id)
        return True

    async def _remove_member(self, conn: Connection, conversation_id: UUID) -> None:
        conn.rooms.discard(conversation_id)
        conn.presence.pop(conversation_id, None)
        room = self._rooms.get(conversation_id)
        if room is None:
            return
        room.members.discard(conn.id)
        marker = room.typing.pop(conn.id, None)
        if room.is_empty:
            for leftover in room.typing.values():
                leftover.cancel()
            del self._rooms[conversation_id]
        if marker is not None:
            marker.cancel()
            await self._broadcast_user_typing(conversation_id, conn.id, marker.user_id, False)
        await self.publish_presence(conversation_id)

    # -- presence ----------------------------------------------------------

    async def update_presence(
        self,
        connection_id: str,
        conversation_id: UUID,
        status: PresenceStatus,
    ) -> None:
        conn = self._connections.get(connection_id)
        if conn is None or conversation_id not in conn.rooms:
            return
        conn.presence[conversation_id] = (status, self._clock.now())
        await self.publish_presence(conversation_id)

    def presence_state(self, conversation_id: UUID) -> dict[UUID, PresenceRecord]:
        """Per-user presence recomputed from the room's live connections."""
        per_user: dict[UUID, list[PresenceRecord]] = {}
        for connection_id in self.room_members(conversation_id):
            conn = self._connections.get(connection_id)
            if conn is None or conversation_id not in conn.presence:
                continue
            status, updated_at = conn.presence[conversation_id]
            per_user.setdefault(conn.user_id, []).append(
                PresenceRecord(conn.user_id, status, updated_at)
            )
        return {user_id: merge_presence(records) for user_id, records in per_user.items()}

    async def publish_presence(self, conversation_id: UUID) -> None:
        if conversation_id not in self._rooms:
            return
        state = self.presence_state(conversation_id)
        await self._deliver(
            conversation_id,
            protocol.PRESENCE_SYNC,
            {
                "conversationId": str(conversation_id),
                "presence": {str(uid): rec.to_payload() for uid, rec in state.items()},
            },
        )

    # -- typing ------------------------------------------------------------

    async def set_typing(
        self,
        connection_id: str,
        conversation_id: UUID,
        is_typing: bool,
    ) -> None:
        """Debounced typing flag; ``True`` expires after the quiescence window."""
        conn = self._connections.get(connection_id)
        room = self._rooms.get(conversation_id)
        if conn is None or room is None or conn.id not in room.members:
            return

        previous = room.typing.pop(conn.id, None)
        if previous is not None:
            previous.cancel()

        if is_typing:
            marker = TypingMarker(user_id=conn.user_id, since=self._clock.now())
            marker.expiry = asyncio.create_task(
                self._expire_typing(conn.id, conversation_id, marker),
                name=f"typing-expiry-{conn.id}",
            )
            room.typing[conn.id] = marker
            if previous is None:
                await self._broadcast_user_typing(conversation_id, conn.id, conn.user_id, True)
        elif previous is not None:
            await self._broadcast_user_typing(conversation_id, conn.id, conn.user_id, False)

    def typing_users(self, conversation_id: UUID) -> set[UUID]:
        room = self._rooms.get(conversation_id)
        return {m.user_id for m in room.typing.values()} if room else set()

    async def _expire_typing(
        self,
        connection_id: str,
        conversation_id: UUID,
        marker: TypingMarker,
    ) -> None:
        await asyncio.sleep(self._typing_timeout)
        room = self._rooms.get(conversation_id)
        if room is None or room.typing.get(connection_id) is not marker:
            return
        del room.typing[connection_id]
        marker.expiry = None
        try:
            await self._broadcast_user_typing(conversation_id, connection_id, marker.user_id, False)
        except Exception:
            logger.exception("Typing expiry broadcast failed for room %s", conversation_id)

    async def _broadcast_user_typing(
        self,
        conversation_id: UUID,
        connection_id: str,
        user_id: UUID,
        is_typing: bool,
    ) -> None:
        await self.broadcast(
            conversation_id,
            protocol.USER_TYPING,
            {
                "userId": str(user_id),
                "conversationId": str(conversation_id),
                "isTyping": is_typing,
            },
            exclude=connection_id,
        )

    async def set_agent_typing(self, conversation_id: UUID, is_typing: bool) -> None:
        await self.broadcast(
            conversation_id,
            protocol.AGENT_TYPING,
            {"conversationId": str(conversation_id), "isTyping": is_typing},
        )

    # -- delivery ----------------------------------------------------------

    async def broadcast(
        self,
        conversation_id: UUID,
        event: str,
        data: dict[str, Any],
        *,
        exclude: str | None = None,
    ) -> None:
        """Send an event to every member of a room, on every relay process."""
        if self._publisher is not None:
            await self._publisher.publish_room(conversation_id, event, data, exclude=exclude)
        else:
            await self.deliver_local(RoomEvent(conversation_id, event, data, exclude))

    async def _deliver(
        self,
        conversation_id: UUID,
        event: str,
        data: dict[str, Any],
        *,
        exclude: str | None = None,
    ) -> None:
        # Presence only describes this process's connections.
        await self.deliver_local(RoomEvent(conversation_id, event, data, exclude))

    async def deliver_local(self, room_event: RoomEvent) -> None:
        raw = protocol.encode(room_event.event, room_event.data)
        dead: list[str] = []
        for connection_id in self.room_members(room_event.conversation_id):
            if connection_id == room_event.exclude:
                continue
            conn = self._connections.get(connection_id)
            if conn is None:
                continue
            try:
                await conn.socket.send_text(raw)
            except Exception:
                dead.append(connection_id)
        for connection_id in dead:
            logger.info("Dropping dead connection %s", connection_id)
            await self.unregister(connection_id)

    async def send_to(self, connection_id: str, event: str, data: dict[str, Any]) -> bool:
        """Send to a single connection. Returns False if it is gone."""
        conn = self._connections.get(connection_id)
        if conn is None:
            return False
        try:
            await conn.socket.send_text(protocol.encode(event, data))
        except Exception:
            logger.info("Dropping dead connection %s", connection_id)
            await self.unregister(connection_id)
            return False
        return True

    async def close(self) -> None:
        for room in self._rooms.values():
            for marker in room.typing.values():
                marker.cancel()
        self._rooms.clear()
        self._connections.clear()
