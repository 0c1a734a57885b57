from __future__ import annotations

from relay_service.domain.entities.usage import DailyUsage
from relay_service.infrastructure.db.models.usage import UsageModel


def model_to_entity(model: UsageModel) -> DailyUsage:
    return DailyUsage(
        user_id=model.user_id,
        date=model.date,
        messages_sent=model.messages_sent,
        credits_used=model.credits_used,
        conversations_created=model.conversations_created,
    )
