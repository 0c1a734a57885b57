"""WebSocket frame models and event names of the relay protocol."""
from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from relay_service.domain.value_objects.enums import PresenceStatus

# client -> server
JOIN_CONVERSATION = "join_conversation"
LEAVE_CONVERSATION = "leave_conversation"
SEND_MESSAGE = "send_message"
TYPING = "typing"
UPDATE_PRESENCE = "update_presence"
PING = "ping"

# server -> client
JOINED_CONVERSATION = "joined_conversation"
LEFT_CONVERSATION = "left_conversation"
NEW_MESSAGE = "new_message"
MESSAGE_CHUNK = "message_chunk"
AGENT_TYPING = "agent_typing"
USER_TYPING = "user_typing"
PRESENCE_SYNC = "presence_sync"
PONG = "pong"
ERROR = "error"


class WsInbound(BaseModel):
    """Client → Server."""

    type: str
    data: dict[str, Any] = {}


class WsOutbound(BaseModel):
    """Server → Client."""

    type: str
    data: dict[str, Any] = {}


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ConversationRef(_Payload):
    conversation_id: UUID = Field(alias="conversationId")


class SendMessagePayload(ConversationRef):
    content: str = Field(min_length=1, max_length=4000)


class TypingPayload(ConversationRef):
    is_typing: bool = Field(alias="isTyping")


class PresencePayload(ConversationRef):
    status: PresenceStatus


def encode(event: str, data: dict[str, Any]) -> str:
    return WsOutbound(type=event, data=data).model_dump_json()
