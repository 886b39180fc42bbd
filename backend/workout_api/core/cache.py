"""
Redis-backed cache service.

The cache is an optimization, never a source of truth:
  • Every primitive swallows Redis errors and returns a safe default
    (get → None, set/delete/expire → no-op, incr → 0, ttl → -1).
  • get_or_set falls back to the supplier when Redis is unavailable.
    Supplier errors are NOT swallowed — they belong to the caller.

Values are JSON-encoded so cached dicts survive the round trip.
The Redis client carries a socket timeout (settings.REDIS_TIMEOUT_SECONDS)
so a degraded cache cannot stall the request pipeline.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from workout_api.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that mean "the cache is degraded", not "the caller is wrong".
_CACHE_ERRORS = (RedisError, OSError)

# ── TTLs (seconds) ──────────────────────────────────────────
CACHE_TTL_API_KEY = 5 * 60
CACHE_TTL_WORKOUT_LIST = 10 * 60
CACHE_TTL_WORKOUT_SINGLE = 10 * 60
CACHE_TTL_CATEGORIES = 30 * 60
CACHE_TTL_MONTHLY_USAGE = 60

_KEY_DELIMITER = ":"
_PARAM_HASH_LENGTH = 16


def create_redis_client() -> aioredis.Redis:
    """Build the shared Redis client. No connection is opened until first use."""
    return aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=settings.REDIS_TIMEOUT_SECONDS,
        socket_connect_timeout=settings.REDIS_TIMEOUT_SECONDS,
    )


class CacheService:
    """Fail-safe wrapper around an async Redis client."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    # ── Primitives ──────────────────────────────────────────
    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._redis.get(key)
        except _CACHE_ERRORS as exc:
            logger.warning("Cache get failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl_seconds)
        except _CACHE_ERRORS as exc:
            logger.warning("Cache set failed for %s: %s", key, exc)

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except _CACHE_ERRORS as exc:
            logger.warning("Cache delete failed for %s: %s", key, exc)

    async def delete_pattern(self, pattern: str) -> None:
        """
        Delete every key matching a glob pattern.

        Uses KEYS — acceptable at this service's key cardinality,
        not a substitute for SCAN-based iteration on a large keyspace.
        """
        try:
            keys = await self._redis.keys(pattern)
            if keys:
                await self._redis.delete(*keys)
        except _CACHE_ERRORS as exc:
            logger.warning("Cache delete_pattern failed for %s: %s", pattern, exc)

    async def incr(self, key: str) -> int:
        """Atomically increment a counter (created at 1). Returns 0 on failure."""
        try:
            return int(await self._redis.incr(key))
        except _CACHE_ERRORS as exc:
            logger.warning("Cache incr failed for %s: %s", key, exc)
            return 0

    async def expire(self, key: str, ttl_seconds: int) -> None:
        try:
            await self._redis.expire(key, ttl_seconds)
        except _CACHE_ERRORS as exc:
            logger.warning("Cache expire failed for %s: %s", key, exc)

    async def ttl(self, key: str) -> int:
        """Seconds until expiry, or -1 when unknown / no expiry."""
        try:
            remaining = int(await self._redis.ttl(key))
        except _CACHE_ERRORS as exc:
            logger.warning("Cache ttl failed for %s: %s", key, exc)
            return -1
        return remaining if remaining >= 0 else -1

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except _CACHE_ERRORS:
            return False

    # ── Cache-aside ─────────────────────────────────────────
    async def get_or_set(
        self,
        key: str,
        supplier: Callable[[], Awaitable[T]],
        ttl_seconds: int,
    ) -> tuple[T, bool]:
        """
        Return (value, was_cached).

        On a miss (or when Redis is down) the supplier runs exactly once
        and its result is written back best-effort.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached, True

        data = await supplier()
        if data is not None:
            await self.set(key, data, ttl_seconds)
        return data, False

    # ── Key helpers ─────────────────────────────────────────
    @staticmethod
    def generate_key(*parts: str | int | None) -> str:
        """Join the non-empty parts: generate_key("workouts", "list", h) → "workouts:list:h"."""
        return _KEY_DELIMITER.join(str(part) for part in parts if part not in (None, ""))

    @staticmethod
    def hash_params(params: dict[str, Any]) -> str:
        """
        Order-independent short digest of an option bag.

        None values are dropped so {"a": 1, "b": None} == {"a": 1}.
        """
        canonical = {k: params[k] for k in sorted(params) if params[k] is not None}
        encoded = json.dumps(canonical, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:_PARAM_HASH_LENGTH]
