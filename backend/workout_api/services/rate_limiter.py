"""
Per-key rate limiter: fixed per-minute window + monthly quota.

Order: PER-MINUTE → MONTHLY. The monthly check only runs when the
per-minute check passes and the tier's cap is not UNLIMITED.

Per-minute (Redis fast path):
  • INCR ratelimit:<key_id>:per_minute; EXPIRE 60 on the first hit.
  • A counter left without a TTL (crash between INCR and EXPIRE) gets its
    expiry re-applied so it cannot pin the key at its limit forever.
  • Allowed iff count <= limit. The denied request still consumed a slot.

Monthly:
  • Authoritative count = api_usage rows since the first instant of the
    current UTC month, cached for 60 s. Deny when count >= cap.
  • Database errors propagate (→ 500).

Redis unavailable (INCR returns 0), per settings.RATE_LIMIT_FALLBACK:
  • "open"     — allow with full quota, reset = now + 60 s
  • "database" — atomic INSERT … ON CONFLICT DO UPDATE … RETURNING on the
                 rate_limits minute bucket; fails open if that fails too
"""

from __future__ import annotations

import datetime
import logging
import math
import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workout_api.core.cache import CacheService
from workout_api.core.config import settings
from workout_api.core.constants import TIER_FREE, TIER_LIMITS, UNLIMITED
from workout_api.core.database import (
    minute_bucket,
    start_of_next_month,
    upsert_insert,
    utcnow,
)
from workout_api.models.rate_limit import RateLimitWindow
from workout_api.services.usage_logger import UsageLogger

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60

# limit_type values
LIMIT_PER_MINUTE = "per_minute"
LIMIT_MONTHLY = "monthly"

FALLBACK_OPEN = "open"
FALLBACK_DATABASE = "database"


def _iso(value: datetime.datetime) -> str:
    return value.astimezone(datetime.timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class RateLimitAllowed:
    limit: int
    remaining: int
    reset_at: datetime.datetime

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": _iso(self.reset_at),
        }


@dataclass(frozen=True, slots=True)
class RateLimitDenied:
    limit: int
    reset_at: datetime.datetime
    limit_type: str
    retry_after: int
    remaining: int = 0

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": _iso(self.reset_at),
            "Retry-After": str(self.retry_after),
        }


def _retry_after(reset_at: datetime.datetime, now: datetime.datetime) -> int:
    return max(1, math.ceil((reset_at - now).total_seconds()))


class RateLimiter:
    """Admission quotas for validated keys."""

    def __init__(
        self,
        cache: CacheService,
        session_factory: async_sessionmaker[AsyncSession],
        usage_logger: UsageLogger,
        fallback: str | None = None,
    ) -> None:
        self._cache = cache
        self._session_factory = session_factory
        self._usage = usage_logger
        self._fallback = fallback or settings.RATE_LIMIT_FALLBACK

    async def check(
        self,
        key_id: uuid.UUID,
        tier: str,
        now: datetime.datetime | None = None,
    ) -> RateLimitAllowed | RateLimitDenied:
        now = now or utcnow()
        limits = TIER_LIMITS.get(tier, TIER_LIMITS[TIER_FREE])

        minute = await self._check_per_minute(key_id, limits.per_minute, now)
        if isinstance(minute, RateLimitDenied):
            return minute

        if limits.monthly != UNLIMITED:
            used = await self._usage.get_cached_monthly_usage(key_id, now)
            if used >= limits.monthly:
                reset_at = start_of_next_month(now)
                logger.info("Monthly quota exhausted for key %s (%d/%d)", key_id, used, limits.monthly)
                return RateLimitDenied(
                    limit=limits.monthly,
                    reset_at=reset_at,
                    limit_type=LIMIT_MONTHLY,
                    retry_after=_retry_after(reset_at, now),
                )

        return minute

    # ── Per-minute window ───────────────────────────────────
    async def _check_per_minute(
        self,
        key_id: uuid.UUID,
        limit: int,
        now: datetime.datetime,
    ) -> RateLimitAllowed | RateLimitDenied:
        counter_key = CacheService.generate_key("ratelimit", str(key_id), LIMIT_PER_MINUTE)

        count = await self._cache.incr(counter_key)
        if count == 0:
            return await self._degraded(key_id, limit, now)

        if count == 1:
            await self._cache.expire(counter_key, WINDOW_SECONDS)

        ttl = await self._cache.ttl(counter_key)
        if ttl == -1:
            await self._cache.expire(counter_key, WINDOW_SECONDS)
            ttl = WINDOW_SECONDS

        reset_at = now + datetime.timedelta(seconds=ttl)
        return self._decide(count, limit, reset_at, now)

    @staticmethod
    def _decide(
        count: int,
        limit: int,
        reset_at: datetime.datetime,
        now: datetime.datetime,
    ) -> RateLimitAllowed | RateLimitDenied:
        if count > limit:
            return RateLimitDenied(
                limit=limit,
                reset_at=reset_at,
                limit_type=LIMIT_PER_MINUTE,
                retry_after=_retry_after(reset_at, now),
            )
        return RateLimitAllowed(limit=limit, remaining=max(0, limit - count), reset_at=reset_at)

    # ── Redis unavailable ───────────────────────────────────
    async def _degraded(
        self,
        key_id: uuid.UUID,
        limit: int,
        now: datetime.datetime,
    ) -> RateLimitAllowed | RateLimitDenied:
        if self._fallback == FALLBACK_DATABASE:
            try:
                count = await self._increment_durable(key_id, now)
            except Exception:
                logger.exception("Durable rate-limit counter failed for key %s; failing open", key_id)
            else:
                reset_at = minute_bucket(now) + datetime.timedelta(seconds=WINDOW_SECONDS)
                return self._decide(count, limit, reset_at, now)

        logger.warning("Rate limiter degraded; allowing key %s", key_id)
        return RateLimitAllowed(
            limit=limit,
            remaining=limit,
            reset_at=now + datetime.timedelta(seconds=WINDOW_SECONDS),
        )

    async def _increment_durable(self, key_id: uuid.UUID, now: datetime.datetime) -> int:
        """Atomically bump the minute bucket in rate_limits and return the new count."""
        async with self._session_factory() as session:
            stmt = upsert_insert(session)(RateLimitWindow).values(
                id=uuid.uuid4(),
                api_key_id=key_id,
                limit_type=LIMIT_PER_MINUTE,
                window_start=minute_bucket(now),
                request_count=1,
                updated_at=now,
            ).on_conflict_do_update(
                index_elements=["api_key_id", "limit_type", "window_start"],
                set_={
                    "request_count": RateLimitWindow.request_count + 1,
                    "updated_at": now,
                },
            ).returning(RateLimitWindow.request_count)

            count = (await session.execute(stmt)).scalar_one()
            await session.commit()
        return int(count)
