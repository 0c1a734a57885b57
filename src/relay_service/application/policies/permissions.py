from __future__ import annotations

from uuid import UUID

from relay_service.application.dto.principal import Principal
from relay_service.application.exceptions import AccessError
from relay_service.application.repositories.conversation import ConversationReader
from relay_service.domain.entities.conversation import Conversation


async def assert_conversation_access(
    principal: Principal,
    conversation_id: UUID,
    conversations: ConversationReader,
) -> Conversation:
    """Raise AccessError unless the principal owns the conversation.

    A missing conversation and someone else's conversation raise the same
    error so callers cannot discover which conversations exist.
    """
    conversation = await conversations.get_owned(conversation_id, principal.user_id)
    if conversation is None:
        raise AccessError()
    return conversation
