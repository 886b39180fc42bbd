"""
Retention cleanup for the high-churn tables.

  • rate_limits — durable counter rows older than RATE_LIMIT_RETENTION_DAYS
  • api_usage   — ledger rows older than USAGE_RETENTION_DAYS

Idempotent: running twice deletes nothing the second time.
Called at app startup (no background scheduler yet).
"""

import datetime
import logging

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from workout_api.core.config import settings
from workout_api.core.database import utcnow
from workout_api.models.api_usage import ApiUsage
from workout_api.models.rate_limit import RateLimitWindow

logger = logging.getLogger(__name__)


async def purge_expired_records(
    session: AsyncSession,
    now: datetime.datetime | None = None,
) -> dict[str, int]:
    """
    Delete expired rows from both tables in one transaction.

    Returns the number of rows removed per table.
    """
    now = now or utcnow()
    rate_limit_cutoff = now - datetime.timedelta(days=settings.RATE_LIMIT_RETENTION_DAYS)
    usage_cutoff = now - datetime.timedelta(days=settings.USAGE_RETENTION_DAYS)

    rate_limits = await session.execute(
        delete(RateLimitWindow).where(RateLimitWindow.window_start < rate_limit_cutoff)
    )
    usage = await session.execute(
        delete(ApiUsage).where(ApiUsage.created_at < usage_cutoff)
    )
    await session.commit()

    removed = {
        "rate_limits": rate_limits.rowcount or 0,
        "api_usage": usage.rowcount or 0,
    }
    logger.info(
        "Purged %d rate_limits and %d api_usage rows",
        removed["rate_limits"], removed["api_usage"],
    )
    return removed
