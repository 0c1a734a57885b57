from __future__ import annotations

import math
from datetime import date
from uuid import UUID

from relay_service.application.dto.principal import Principal
from relay_service.application.exceptions import QuotaExceededError
from relay_service.application.repositories.usage import UsageReader, UsageWriter
from relay_service.config import settings
from relay_service.domain.entities.usage import DailyUsage
from relay_service.domain.value_objects.enums import SubscriptionTier


def daily_limit_for(tier: SubscriptionTier) -> int:
    limits = {
        SubscriptionTier.FREE: settings.FREE_TIER_DAILY_LIMIT,
        SubscriptionTier.PLUS: settings.PLUS_TIER_DAILY_LIMIT,
        SubscriptionTier.PRO: settings.PRO_TIER_DAILY_LIMIT,
    }
    return limits.get(tier, settings.FREE_TIER_DAILY_LIMIT)


def credits_for_tokens(tokens_used: int) -> int:
    return max(0, math.ceil(tokens_used / 100))


async def check_daily_limit(
    principal: Principal,
    usage: UsageReader,
    today: date,
) -> DailyUsage | None:
    """Raise QuotaExceededError once today's sends reach the tier limit.

    Read-only; a user with no row yet has sent nothing today.
    """
    record = await usage.get_for_day(principal.user_id, today)
    used = record.messages_sent if record else 0
    limit = daily_limit_for(principal.tier)
    if used >= limit:
        raise QuotaExceededError(limit=limit, used=used, tier=principal.tier.value)
    return record


async def increment_usage(
    user_id: UUID,
    today: date,
    usage_w: UsageWriter,
    *,
    messages: int = 0,
    credits: int = 0,
    conversations: int = 0,
) -> DailyUsage:
    return await usage_w.increment(
        user_id,
        today,
        messages=messages,
        credits=credits,
        conversations=conversations,
    )
