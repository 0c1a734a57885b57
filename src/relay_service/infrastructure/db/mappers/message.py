from __future__ import annotations

from relay_service.domain.entities.message import Envelope
from relay_service.infrastructure.db.models.message import MessageModel


def model_to_entity(model: MessageModel) -> Envelope:
    return Envelope(
        id=model.id,
        conversation_id=model.conversation_id,
        sender_type=model.sender_type,
        content=model.content,
        created_at=model.created_at,
        tokens_used=model.tokens_used,
        credits_used=model.credits_used,
    )


def entity_to_model(entity: Envelope) -> MessageModel:
    return MessageModel(
        id=entity.id,
        conversation_id=entity.conversation_id,
        sender_type=entity.sender_type,
        content=entity.content,
        created_at=entity.created_at,
        tokens_used=entity.tokens_used,
        credits_used=entity.credits_used,
    )
