from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter

from relay_service.api.deps import CurrentPrincipal, UoWDep
from relay_service.api.v1.schemas.usage import DailyUsageResponse
from relay_service.services.usage_service import daily_limit_for

router = APIRouter(prefix="/api/v1/usage", tags=["usage"])


@router.get("/today", response_model=DailyUsageResponse)
async def usage_today(principal: CurrentPrincipal, uow: UoWDep) -> DailyUsageResponse:
    today = datetime.now(timezone.utc).date()
    record = await uow.usage.get_for_day(principal.user_id, today)
    limit = daily_limit_for(principal.tier)
    used = record.messages_sent if record else 0
    return DailyUsageResponse(
        date=today,
        tier=principal.tier,
        limit=limit,
        messages_sent=used,
        credits_used=record.credits_used if record else 0,
        remaining=max(0, limit - used),
    )
