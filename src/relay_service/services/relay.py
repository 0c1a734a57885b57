"""Relay service: dispatches inbound frames of authenticated connections."""
from __future__ import annotations

import asyncio
import logging
from typing import Any
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from relay_service.application.dto.principal import Principal
from relay_service.application.exceptions import AppError
from relay_service.application.ports.auth import TokenVerifier
from relay_service.application.ports.transport import SocketSender
from relay_service.application.uow import UoWFactory
from relay_service.infrastructure.ws import protocol
from relay_service.infrastructure.ws.manager import ConnectionManager
from relay_service.infrastructure.ws.protocol import (
    ConversationRef,
    PresencePayload,
    SendMessagePayload,
    TypingPayload,
    WsInbound,
)
from relay_service.infrastructure.ws.rooms import Connection
from relay_service.services import auth_service, room_service
from relay_service.services.message_pipeline import MessagePipeline, SendResult

logger = logging.getLogger(__name__)


class Relay:
    """Owns the connection manager and the send pipeline for one process.

    Sends run as background tasks so a connection keeps reading typing and
    presence frames while its reply is generated. A connection closing does
    not cancel its in-flight sends.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        pipeline: MessagePipeline,
        uow_factory: UoWFactory,
        verifier: TokenVerifier,
    ) -> None:
        self.manager = manager
        self._pipeline = pipeline
        self._uow_factory = uow_factory
        self._verifier = verifier
        self._sends: set[asyncio.Task[SendResult | None]] = set()

    async def authenticate(self, token: str | None) -> Principal:
        async with self._uow_factory() as uow:
            return await auth_service.authenticate(token, self._verifier, uow)

    def connect(self, socket: SocketSender, principal: Principal) -> Connection:
        return self.manager.register(socket, principal)

    async def disconnect(self, connection: Connection) -> None:
        await self.manager.unregister(connection.id)

    async def handle(self, connection: Connection, raw: str) -> None:
        try:
            msg = WsInbound.model_validate_json(raw)
        except PydanticValidationError:
            await self._error(connection, {"error": "Invalid payload"})
            return

        try:
            await self._dispatch(connection, msg)
        except PydanticValidationError:
            await self._error(connection, {"error": "Invalid payload", "type": msg.type})
        except AppError as exc:
            await self._error(connection, exc.to_payload())

    async def _dispatch(self, connection: Connection, msg: WsInbound) -> None:
        if msg.type == protocol.PING:
            await self.manager.send_to(connection.id, protocol.PONG, {})

        elif msg.type == protocol.JOIN_CONVERSATION:
            ref = ConversationRef.model_validate(msg.data)
            await self._join(connection, ref.conversation_id)

        elif msg.type == protocol.LEAVE_CONVERSATION:
            ref = ConversationRef.model_validate(msg.data)
            await room_service.leave_conversation(self.manager, connection, ref.conversation_id)
            await self.manager.send_to(
                connection.id,
                protocol.LEFT_CONVERSATION,
                {"conversationId": str(ref.conversation_id)},
            )

        elif msg.type == protocol.SEND_MESSAGE:
            payload = SendMessagePayload.model_validate(msg.data)
            self._spawn_send(connection, payload)

        elif msg.type == protocol.TYPING:
            payload = TypingPayload.model_validate(msg.data)
            await self.manager.set_typing(connection.id, payload.conversation_id, payload.is_typing)

        elif msg.type == protocol.UPDATE_PRESENCE:
            payload = PresencePayload.model_validate(msg.data)
            await self.manager.update_presence(connection.id, payload.conversation_id, payload.status)

        else:
            await self._error(connection, {"error": "Unknown event", "type": msg.type})

    async def _join(self, connection: Connection, conversation_id: UUID) -> None:
        async with self._uow_factory() as uow:
            await room_service.join_conversation(self.manager, connection, conversation_id, uow)
        await self.manager.send_to(
            connection.id,
            protocol.JOINED_CONVERSATION,
            {"conversationId": str(conversation_id)},
        )

    def _spawn_send(self, connection: Connection, payload: SendMessagePayload) -> None:
        task = asyncio.create_task(
            self._send(connection, payload),
            name=f"send-{connection.id}-{payload.conversation_id}",
        )
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)

    async def _send(self, connection: Connection, payload: SendMessagePayload) -> SendResult | None:
        try:
            result = await self._pipeline.run(connection, payload.conversation_id, payload.content)
        except Exception:
            logger.exception("Send pipeline crashed for %s", payload.conversation_id)
            await self._error(connection, {"error": "Failed to send message"})
            return None
        if result.failure is not None:
            await self._error(connection, result.failure.to_payload())
        return result

    async def _error(self, connection: Connection, data: dict[str, Any]) -> None:
        await self.manager.send_to(connection.id, protocol.ERROR, data)

    async def wait_idle(self) -> None:
        """Wait for every in-flight send to finish."""
        while self._sends:
            await asyncio.gather(*list(self._sends), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._sends):
            task.cancel()
        await asyncio.gather(*list(self._sends), return_exceptions=True)
        await self.manager.close()
