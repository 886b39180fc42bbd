"""
Usage ledger service.

api_usage is append-only and is the source of truth for monthly quotas:
  • log_usage() writes one row per completed request and NEVER raises —
    it runs off the response path, so a failed insert is logged, not
    surfaced.
  • Each write bumps a per-month version counter and drops the cached
    monthly count, so the next quota check re-reads the ledger and a
    reader that raced the write does not cache its stale count.
  • All aggregation happens in SQL (COUNT / SUM / AVG) — no Python-side
    loops over rows.
"""

from __future__ import annotations

import datetime
import logging
import secrets
import string
import time
import uuid
from dataclasses import dataclass

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workout_api.core.cache import CacheService
from workout_api.core.config import settings
from workout_api.core.database import start_of_month, utcnow
from workout_api.models.api_usage import ApiUsage

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase
_REQUEST_ID_SUFFIX_LENGTH = 7
# Must outlive any in-flight monthly count query.
_VERSION_TTL_SECONDS = 3600


def generate_request_id() -> str:
    """Correlation id: req_<epoch ms>_<7 base36 chars>."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(_REQUEST_ID_SUFFIX_LENGTH))
    return f"req_{int(time.time() * 1000)}_{suffix}"


def monthly_cache_key(key_id: uuid.UUID | str, now: datetime.datetime) -> str:
    return CacheService.generate_key("usage", "monthly", str(key_id), now.strftime("%Y-%m"))


def monthly_version_key(key_id: uuid.UUID | str, now: datetime.datetime) -> str:
    """Write counter bumped by every ledger insert for this key and month."""
    return CacheService.generate_key(
        "usage", "monthly", str(key_id), now.strftime("%Y-%m"), "version",
    )


@dataclass(frozen=True, slots=True)
class UsageStats:
    """Aggregates over a trailing window of days."""

    total_requests: int
    successful_requests: int
    failed_requests: int
    avg_response_time_ms: int
    period_days: int


class UsageLogger:
    """Writes and aggregates api_usage rows for one API key at a time."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheService,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache

    # ── Write path ──────────────────────────────────────────
    async def log_usage(
        self,
        key_id: uuid.UUID,
        endpoint: str,
        method: str,
        status_code: int,
        response_time_ms: int,
        request_id: str | None = None,
    ) -> str:
        """Append one ledger row. Returns the request id (generated if absent)."""
        request_id = request_id or generate_request_id()
        try:
            async with self._session_factory() as session:
                session.add(ApiUsage(
                    api_key_id=key_id,
                    endpoint=endpoint,
                    method=method,
                    status_code=status_code,
                    response_time_ms=max(0, response_time_ms),
                    request_id=request_id,
                ))
                await session.commit()
        except Exception:
            logger.exception("Usage logging failed for request %s (non-fatal)", request_id)
            return request_id

        # Bump the version before dropping the count so an in-flight reader
        # sees the change and skips its write-back.
        now = utcnow()
        version_key = monthly_version_key(key_id, now)
        await self._cache.incr(version_key)
        await self._cache.expire(version_key, _VERSION_TTL_SECONDS)
        await self._cache.delete(monthly_cache_key(key_id, now))
        logger.info(
            "%s %s %d %dms (%s)",
            method, endpoint, status_code, response_time_ms, request_id,
        )
        return request_id

    # ── Read path ───────────────────────────────────────────
    async def get_monthly_usage(
        self,
        key_id: uuid.UUID,
        now: datetime.datetime | None = None,
    ) -> int:
        """
        Rows for this key since the first instant of the current UTC month.

        Backed by ix_api_usage_key_created. Database errors propagate:
        this count gates admission, so it must not silently read 0.
        """
        since = start_of_month(now or utcnow())
        stmt = select(func.count()).select_from(ApiUsage).where(
            ApiUsage.api_key_id == key_id,
            ApiUsage.created_at >= since,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def get_cached_monthly_usage(
        self,
        key_id: uuid.UUID,
        now: datetime.datetime | None = None,
    ) -> int:
        """
        get_monthly_usage behind a short-lived cache entry.

        A miss re-reads the ledger and writes the count back only when no
        insert bumped the month's version counter during the query. The
        remaining gap between that re-check and the write is bounded by
        MONTHLY_USAGE_CACHE_TTL_SECONDS.
        """
        now = now or utcnow()
        cache_key = monthly_cache_key(key_id, now)
        cached = await self._cache.get(cache_key)
        if cached is not None:
            return int(cached)

        version_key = monthly_version_key(key_id, now)
        version = await self._cache.get(version_key)
        count = await self.get_monthly_usage(key_id, now)
        if await self._cache.get(version_key) == version:
            await self._cache.set(cache_key, count, settings.MONTHLY_USAGE_CACHE_TTL_SECONDS)
        else:
            logger.debug("Monthly usage for %s changed during read; not caching", key_id)
        return count

    async def get_usage_stats(self, key_id: uuid.UUID, days: int = 30) -> UsageStats:
        since = utcnow() - datetime.timedelta(days=days)
        stmt = select(
            func.count().label("total"),
            func.coalesce(
                func.sum(case((ApiUsage.status_code < 400, 1), else_=0)), 0,
            ).label("successful"),
            func.avg(ApiUsage.response_time_ms).label("avg_latency"),
        ).where(
            ApiUsage.api_key_id == key_id,
            ApiUsage.created_at >= since,
        )

        async with self._session_factory() as session:
            row = (await session.execute(stmt)).one()

        total = int(row.total or 0)
        successful = int(row.successful or 0)
        return UsageStats(
            total_requests=total,
            successful_requests=successful,
            failed_requests=total - successful,
            avg_response_time_ms=round(float(row.avg_latency or 0)),
            period_days=days,
        )

    async def get_recent_logs(self, key_id: uuid.UUID, limit: int = 100) -> list[ApiUsage]:
        stmt = (
            select(ApiUsage)
            .where(ApiUsage.api_key_id == key_id)
            .order_by(ApiUsage.created_at.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
