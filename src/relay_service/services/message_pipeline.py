"""Send pipeline: user text in, persisted and broadcast AI reply out.

Every envelope is committed before it is broadcast. Steps run strictly in
order and a failure stops the run without undoing earlier steps: a user
message that was stored and broadcast stays visible even when the reply
fails.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from uuid import UUID

from relay_service.application.dto.completion import ChatTurn
from relay_service.application.exceptions import (
    AccessError,
    AppError,
    PersistError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
)
from relay_service.application.policies.permissions import assert_conversation_access
from relay_service.application.ports.clock import Clock, SystemClock
from relay_service.application.ports.completion import CompletionClient
from relay_service.application.uow import UoWFactory
from relay_service.domain.entities.message import Envelope
from relay_service.domain.entities.persona import Persona
from relay_service.domain.personas import get_persona
from relay_service.domain.prompting import build_system_prompt, estimate_tokens
from relay_service.domain.value_objects.enums import SenderType
from relay_service.infrastructure.ws import protocol
from relay_service.infrastructure.ws.manager import ConnectionManager
from relay_service.infrastructure.ws.rooms import Connection
from relay_service.services.usage_service import (
    check_daily_limit,
    credits_for_tokens,
    increment_usage,
)

logger = logging.getLogger(__name__)

MESSAGES_PER_EXCHANGE = 2


class SendState(StrEnum):
    RECEIVED = "received"
    DAILY_LIMIT_CHECKED = "daily_limit_checked"
    USER_MESSAGE_PERSISTED = "user_message_persisted"
    USER_MESSAGE_BROADCAST = "user_message_broadcast"
    HISTORY_FETCHED = "history_fetched"
    COMPLETION_REQUESTED = "completion_requested"
    COMPLETION_STREAMING = "completion_streaming"
    COMPLETION_PERSISTED = "completion_persisted"
    COMPLETION_BROADCAST = "completion_broadcast"
    USAGE_INCREMENTED = "usage_incremented"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SendResult:
    conversation_id: UUID
    states: list[SendState] = field(default_factory=list)
    user_message: Envelope | None = None
    agent_message: Envelope | None = None
    failure: AppError | None = None

    @property
    def state(self) -> SendState | None:
        return self.states[-1] if self.states else None

    @property
    def ok(self) -> bool:
        return self.state == SendState.DONE

    def advance(self, state: SendState) -> None:
        self.states.append(state)
        logger.debug("send %s -> %s", self.conversation_id, state)

    def fail(self, error: AppError) -> None:
        self.failure = error
        self.states.append(SendState.FAILED)


class MessagePipeline:
    def __init__(
        self,
        manager: ConnectionManager,
        uow_factory: UoWFactory,
        completion: CompletionClient,
        *,
        clock: Clock | None = None,
        history_limit: int = 10,
        completion_timeout: float | None = 60.0,
    ) -> None:
        self._manager = manager
        self._uow_factory = uow_factory
        self._completion = completion
        self._clock = clock or SystemClock()
        self._history_limit = history_limit
        self._completion_timeout = completion_timeout

    async def run(self, connection: Connection, conversation_id: UUID, content: str) -> SendResult:
        """Run one send attempt to completion. Never raises AppError; see ``failure``."""
        result = SendResult(conversation_id)
        try:
            await self._run(result, connection, conversation_id, content)
        except AppError as exc:
            logger.info(
                "send to %s failed after %s: %s",
                conversation_id, result.state, exc.detail,
            )
            result.fail(exc)
        return result

    async def _run(
        self,
        result: SendResult,
        connection: Connection,
        conversation_id: UUID,
        content: str,
    ) -> None:
        principal = connection.principal
        result.advance(SendState.RECEIVED)

        content = content.strip()
        if not content:
            raise ValidationError("Message content is required")

        # Sends go through the room: a denied or missing join means no send.
        if not self._manager.is_member(connection.id, conversation_id):
            raise AccessError()

        async with self._uow_factory() as uow:
            conversation = await assert_conversation_access(
                principal, conversation_id, uow.conversations,
            )
            persona = get_persona(conversation.agent_id)
            if persona is None:
                logger.error(
                    "Conversation %s references unknown persona %r",
                    conversation_id, conversation.agent_id,
                )
                raise ValidationError("Unknown persona")
            await check_daily_limit(principal, uow.usage, self._clock.now().date())
        result.advance(SendState.DAILY_LIMIT_CHECKED)

        user_message = await self._persist(
            Envelope(
                id=uuid.uuid4(),
                conversation_id=conversation_id,
                sender_type=SenderType.USER,
                content=content,
                created_at=self._clock.now(),
            )
        )
        result.user_message = user_message
        result.advance(SendState.USER_MESSAGE_PERSISTED)

        await self._manager.broadcast(conversation_id, protocol.NEW_MESSAGE, user_message.to_payload())
        result.advance(SendState.USER_MESSAGE_BROADCAST)

        turns = await self._build_context(conversation_id, persona)
        result.advance(SendState.HISTORY_FETCHED)

        agent_message_id = uuid.uuid4()
        await self._manager.set_agent_typing(conversation_id, True)
        try:
            result.advance(SendState.COMPLETION_REQUESTED)
            async with asyncio.timeout(self._completion_timeout):
                reply, tokens_used = await self._generate(
                    result, connection, agent_message_id, turns,
                )
        except TimeoutError:
            raise UpstreamTimeoutError() from None
        finally:
            await self._clear_agent_typing(conversation_id)

        if tokens_used is None:
            tokens_used = estimate_tokens(content, reply)
        credits = credits_for_tokens(tokens_used)

        agent_message = await self._persist(
            Envelope(
                id=agent_message_id,
                conversation_id=conversation_id,
                sender_type=SenderType.AGENT,
                content=reply,
                created_at=self._clock.now(),
                tokens_used=tokens_used,
                credits_used=credits,
            ),
            record_exchange=True,
        )
        result.agent_message = agent_message
        result.advance(SendState.COMPLETION_PERSISTED)

        await self._manager.broadcast(conversation_id, protocol.NEW_MESSAGE, agent_message.to_payload())
        result.advance(SendState.COMPLETION_BROADCAST)

        if await self._record_usage(principal.user_id, credits):
            result.advance(SendState.USAGE_INCREMENTED)
        result.advance(SendState.DONE)

    async def _persist(self, envelope: Envelope, *, record_exchange: bool = False) -> Envelope:
        try:
            async with self._uow_factory() as uow:
                saved = await uow.messages_w.add(envelope)
                if record_exchange:
                    await uow.conversations_w.record_exchange(
                        saved.conversation_id, saved.created_at, messages=MESSAGES_PER_EXCHANGE,
                    )
                await uow.commit()
        except AppError:
            raise
        except Exception as exc:
            logger.exception("Failed to persist %s message %s", envelope.sender_type, envelope.id)
            raise PersistError() from exc
        return saved

    async def _build_context(self, conversation_id: UUID, persona: Persona) -> list[ChatTurn]:
        try:
            async with self._uow_factory() as uow:
                history = await uow.messages.list_recent(conversation_id, limit=self._history_limit)
        except Exception as exc:
            logger.exception("Failed to load history for %s", conversation_id)
            raise PersistError("Failed to load conversation history") from exc

        turns = [ChatTurn("system", build_system_prompt(persona))]
        for envelope in sorted(history, key=lambda e: e.created_at):
            role = "user" if envelope.sender_type == SenderType.USER else "assistant"
            turns.append(ChatTurn(role, envelope.content))
        return turns

    async def _generate(
        self,
        result: SendResult,
        connection: Connection,
        message_id: UUID,
        turns: Sequence[ChatTurn],
    ) -> tuple[str, int | None]:
        try:
            if not self._completion.supports_streaming:
                completion = await self._completion.complete(turns)
                reply, tokens_used = completion.content, completion.tokens_used
            else:
                reply, tokens_used = await self._relay_stream(
                    result, connection, message_id, turns,
                )
        except AppError:
            raise
        except Exception as exc:
            logger.exception("Completion failed for %s", result.conversation_id)
            raise UpstreamError() from exc

        if not reply.strip():
            raise UpstreamError("Empty AI response")
        return reply, tokens_used

    async def _relay_stream(
        self,
        result: SendResult,
        connection: Connection,
        message_id: UUID,
        turns: Sequence[ChatTurn],
    ) -> tuple[str, int | None]:
        stream = await self._completion.stream(turns)
        parts: list[str] = []
        try:
            async for chunk in stream:
                if result.state != SendState.COMPLETION_STREAMING:
                    result.advance(SendState.COMPLETION_STREAMING)
                parts.append(chunk)
                # Sender only; a gone sender does not stop generation.
                await self._manager.send_to(
                    connection.id,
                    protocol.MESSAGE_CHUNK,
                    {
                        "messageId": str(message_id),
                        "chunk": chunk,
                        "conversationId": str(result.conversation_id),
                    },
                )
        finally:
            await stream.aclose()
        return "".join(parts), stream.tokens_used

    async def _clear_agent_typing(self, conversation_id: UUID) -> None:
        try:
            await self._manager.set_agent_typing(conversation_id, False)
        except Exception:
            logger.exception("Failed to clear agent typing for %s", conversation_id)

    async def _record_usage(self, user_id: UUID, credits: int) -> bool:
        try:
            async with self._uow_factory() as uow:
                await increment_usage(
                    user_id,
                    self._clock.now().date(),
                    uow.usage_w,
                    messages=MESSAGES_PER_EXCHANGE,
                    credits=credits,
                )
                await uow.commit()
        except Exception:
            logger.exception("Failed to increment usage for %s", user_id)
            return False
        return True
