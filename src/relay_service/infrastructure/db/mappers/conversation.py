from __future__ import annotations

from relay_service.domain.entities.conversation import Conversation
from relay_service.infrastructure.db.models.conversation import ConversationModel


def model_to_entity(model: ConversationModel) -> Conversation:
    return Conversation(
        id=model.id,
        user_id=model.user_id,
        agent_id=model.agent_id,
        title=model.title,
        message_count=model.message_count,
        last_message_at=model.last_message_at,
        created_at=model.created_at,
    )


def entity_to_model(entity: Conversation) -> ConversationModel:
    return ConversationModel(
        id=entity.id,
        user_id=entity.user_id,
        agent_id=entity.agent_id,
        title=entity.title,
        message_count=entity.message_count,
        last_message_at=entity.last_message_at,
        created_at=entity.created_at,
    )
