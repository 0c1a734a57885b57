from __future__ import annotations

import datetime as dt

from pydantic import BaseModel

from relay_service.domain.value_objects.enums import SubscriptionTier


class DailyUsageResponse(BaseModel):
    date: dt.date
    tier: SubscriptionTier
    limit: int
    messages_sent: int
    credits_used: int
    remaining: int
