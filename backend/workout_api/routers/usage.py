"""
Usage report for the calling key.

GET /api/v1/usage
  • tier and its quotas
  • requests counted against the current month (same number the monthly
    quota check sees, uncached)
  • trailing-window stats and the most recent requests
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request

from workout_api.auth.dependencies import Access, get_usage_logger
from workout_api.core.constants import TIER_FREE, TIER_LIMITS
from workout_api.schemas.envelope import success_envelope
from workout_api.schemas.usage import TierLimitsOut, UsageLogOut, UsageReport, UsageStatsOut
from workout_api.services.usage_logger import UsageLogger

router = APIRouter(tags=["Usage"])

Usage = Annotated[UsageLogger, Depends(get_usage_logger)]


@router.get("/usage", summary="Usage and quotas for the calling key")
async def get_usage(
    request: Request,
    access: Access,
    usage: Usage,
    days: Annotated[int, Query(ge=1, le=90)] = 30,
    recent: Annotated[int, Query(ge=0, le=100)] = 10,
) -> dict[str, Any]:
    stats = await usage.get_usage_stats(access.key_id, days)
    logs = await usage.get_recent_logs(access.key_id, recent) if recent else []

    report = UsageReport(
        tier=access.tier,
        limits=TierLimitsOut.model_validate(TIER_LIMITS.get(access.tier, TIER_LIMITS[TIER_FREE])),
        monthly_usage=await usage.get_monthly_usage(access.key_id),
        stats=UsageStatsOut.model_validate(stats),
        recent=[UsageLogOut.model_validate(row) for row in logs],
    )
    return success_envelope(request, report.model_dump(mode="json"))
