"""
API key lifecycle: validation, issuance, rotation and revocation.

Validation flow (validate):
  1. Format check — wa_ prefix and a minimum length
  2. Cache lookup by the 12-character prefix (apikey:<prefix>)
       hit + fingerprint match + not expired → success, last-used refreshed
       in the background
  3. DB lookup: active key by prefix, joined with its subscription
  4. Expiry, then bcrypt verification, then subscription status
  5. Success → last-used written in the background, entry cached

Client errors are returned as KeyInvalid, never raised. Database errors
propagate to the caller (→ 500).

Security:
  • The raw key is never logged or cached. The cache holds a SHA-256
    fingerprint so a different secret that shares the prefix cannot ride
    on a cached success.
  • Revocation deactivates (never deletes) and drops the cache entry
    synchronously, so the next request re-reads the database.
  • At most one active key per prefix (uq_api_keys_prefix_active);
    issuance retries on a collision.
  • A user never holds more usable keys than the tier allows: rotated
    keys count until their grace window ends, and rotate only once.
"""

from __future__ import annotations

import asyncio
import datetime
import enum
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workout_api.auth.hashing import (
    fingerprint_matches,
    generate_api_key,
    is_well_formed,
    key_fingerprint,
    key_prefix,
    verify_api_key,
)
from workout_api.core.cache import CacheService
from workout_api.core.config import settings
from workout_api.core.constants import LIVE_STATUSES
from workout_api.core.database import as_utc, utcnow
from workout_api.core.tasks import fire_and_forget
from workout_api.models.api_key import APIKey
from workout_api.models.subscription import Subscription

logger = logging.getLogger(__name__)

_MAX_PREFIX_ATTEMPTS = 5


class KeyFailure(str, enum.Enum):
    MALFORMED = "malformed"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    INVALID = "invalid"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"


@dataclass(frozen=True, slots=True)
class KeyValid:
    """A validated key: the tenant id plus what admission needs."""

    key_id: uuid.UUID
    user_id: uuid.UUID
    tier: str


@dataclass(frozen=True, slots=True)
class KeyInvalid:
    reason: KeyFailure


@dataclass(frozen=True, slots=True)
class IssuedKey:
    """A freshly generated key. raw_key is shown to the user exactly once."""

    id: uuid.UUID
    raw_key: str
    prefix: str
    name: str
    created_at: datetime.datetime


class ApiKeyNotFound(Exception):
    """No key with that id belongs to the user."""


class ApiKeyLimitReached(Exception):
    """The user already holds the maximum number of active keys for the tier."""


class ApiKeyAlreadyRotated(Exception):
    """The key is already inside its rotation grace window."""


class ApiKeyService:
    """Key operations over a session factory and the shared cache."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheService,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache

    @staticmethod
    def cache_key(prefix: str) -> str:
        return CacheService.generate_key("apikey", prefix)

    # ── Validation ──────────────────────────────────────────
    async def validate(
        self,
        raw_key: str | None,
        now: datetime.datetime | None = None,
    ) -> KeyValid | KeyInvalid:
        if not raw_key or not is_well_formed(raw_key):
            return KeyInvalid(KeyFailure.MALFORMED)

        now = now or utcnow()
        prefix = key_prefix(raw_key)

        cached = await self._cache.get(self.cache_key(prefix))
        if isinstance(cached, dict) and fingerprint_matches(raw_key, cached.get("fingerprint")):
            expires_at = cached.get("expires_at")
            if expires_at and datetime.datetime.fromisoformat(expires_at) <= now:
                await self._cache.delete(self.cache_key(prefix))
                return KeyInvalid(KeyFailure.EXPIRED)

            key_id = uuid.UUID(cached["key_id"])
            fire_and_forget(self._touch_last_used(key_id), name=f"last-used:{prefix}")
            return KeyValid(
                key_id=key_id,
                user_id=uuid.UUID(cached["user_id"]),
                tier=cached["tier"],
            )

        stmt = (
            select(APIKey, Subscription)
            .outerjoin(Subscription, Subscription.id == APIKey.subscription_id)
            .where(APIKey.key_prefix == prefix, APIKey.is_active.is_(True))
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).first()

        if row is None:
            return KeyInvalid(KeyFailure.NOT_FOUND)
        api_key, subscription = row

        expires_at = as_utc(api_key.expires_at)
        if expires_at is not None and expires_at <= now:
            return KeyInvalid(KeyFailure.EXPIRED)

        # bcrypt is CPU-bound; run it off the event loop.
        if not await asyncio.to_thread(verify_api_key, raw_key, api_key.key_hash):
            return KeyInvalid(KeyFailure.INVALID)

        if subscription is None or subscription.status not in LIVE_STATUSES:
            return KeyInvalid(KeyFailure.SUBSCRIPTION_INACTIVE)

        fire_and_forget(self._touch_last_used(api_key.id), name=f"last-used:{prefix}")

        await self._cache.set(
            self.cache_key(prefix),
            {
                "key_id": str(api_key.id),
                "user_id": str(api_key.user_id),
                "tier": subscription.tier,
                "fingerprint": key_fingerprint(raw_key),
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
            settings.API_KEY_CACHE_TTL_SECONDS,
        )
        return KeyValid(key_id=api_key.id, user_id=api_key.user_id, tier=subscription.tier)

    async def _touch_last_used(self, key_id: uuid.UUID) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(APIKey).where(APIKey.id == key_id).values(last_used_at=utcnow())
            )
            await session.commit()

    # ── Issuance ────────────────────────────────────────────
    async def generate_key(
        self,
        user_id: uuid.UUID,
        subscription_id: uuid.UUID,
        name: str,
        max_keys: int | None = None,
    ) -> IssuedKey:
        """
        Create and persist a new key.

        max_keys bounds the user's usable keys (tier's max_api_keys);
        None skips the check.
        """
        if max_keys is not None and await self.count_active_keys(user_id) >= max_keys:
            raise ApiKeyLimitReached(f"Maximum of {max_keys} active API key(s) reached")

        for _ in range(_MAX_PREFIX_ATTEMPTS):
            raw_key, key_hash = await asyncio.to_thread(generate_api_key)
            api_key = APIKey(
                user_id=user_id,
                subscription_id=subscription_id,
                key_hash=key_hash,
                key_prefix=key_prefix(raw_key),
                name=name,
            )
            async with self._session_factory() as session:
                session.add(api_key)
                try:
                    await session.commit()
                except IntegrityError:
                    # uq_api_keys_prefix_active: another active key owns this prefix.
                    await session.rollback()
                    logger.warning("API key prefix collision, regenerating")
                    continue
            break
        else:
            raise RuntimeError("Could not generate an API key with a unique prefix")

        logger.info("Issued API key %s for user %s", api_key.key_prefix, user_id)
        return IssuedKey(
            id=api_key.id,
            raw_key=raw_key,
            prefix=api_key.key_prefix,
            name=api_key.name,
            created_at=api_key.created_at,
        )

    async def regenerate_key(
        self,
        key_id: uuid.UUID,
        user_id: uuid.UUID,
        max_keys: int | None = None,
    ) -> IssuedKey:
        """
        Rotate a key: the old one keeps working for the grace window,
        then stops validating. Returns the replacement.

        A key already in its grace window cannot be rotated again, and the
        old key keeps counting against max_keys until it expires.
        """
        now = utcnow()
        grace_end = now + datetime.timedelta(hours=settings.API_KEY_ROTATION_GRACE_HOURS)

        async with self._session_factory() as session:
            old = await self._owned_active_key(session, key_id, user_id)
            if old.expires_at is not None:
                raise ApiKeyAlreadyRotated(str(key_id))
            if max_keys is not None and await self._count_usable(session, user_id, now) - 1 >= max_keys:
                raise ApiKeyLimitReached(
                    f"Maximum of {max_keys} active API key(s) reached; "
                    "wait for a rotated key to expire"
                )
            old.expires_at = grace_end
            subscription_id, name, prefix = old.subscription_id, old.name, old.key_prefix
            await session.commit()

        await self.invalidate_cache(prefix)
        return await self.generate_key(user_id, subscription_id, name)

    async def revoke_key(self, key_id: uuid.UUID, user_id: uuid.UUID) -> None:
        async with self._session_factory() as session:
            api_key = await self._owned_active_key(session, key_id, user_id)
            api_key.is_active = False
            prefix = api_key.key_prefix
            await session.commit()

        await self.invalidate_cache(prefix)
        logger.info("Revoked API key %s for user %s", prefix, user_id)

    @staticmethod
    async def _owned_active_key(
        session: AsyncSession, key_id: uuid.UUID, user_id: uuid.UUID
    ) -> APIKey:
        api_key = await session.scalar(
            select(APIKey).where(
                APIKey.id == key_id,
                APIKey.user_id == user_id,
                APIKey.is_active.is_(True),
            )
        )
        if api_key is None:
            raise ApiKeyNotFound(str(key_id))
        return api_key

    # ── Queries ─────────────────────────────────────────────
    async def list_keys(self, user_id: uuid.UUID) -> list[APIKey]:
        stmt = (
            select(APIKey)
            .where(APIKey.user_id == user_id)
            .order_by(APIKey.created_at.desc())
        )
        async with self._session_factory() as session:
            return list((await session.scalars(stmt)).all())

    async def count_active_keys(self, user_id: uuid.UUID) -> int:
        """Keys that still validate, including rotated keys inside their grace window."""
        async with self._session_factory() as session:
            return await self._count_usable(session, user_id, utcnow())

    @staticmethod
    async def _count_usable(
        session: AsyncSession, user_id: uuid.UUID, now: datetime.datetime
    ) -> int:
        stmt = select(func.count()).select_from(APIKey).where(
            APIKey.user_id == user_id,
            APIKey.is_active.is_(True),
            or_(APIKey.expires_at.is_(None), APIKey.expires_at > now),
        )
        return int(await session.scalar(stmt) or 0)

    # ── Cache invalidation ──────────────────────────────────
    async def invalidate_cache(self, prefix: str) -> None:
        await self._cache.delete(self.cache_key(prefix))

    async def invalidate_user_keys(self, user_id: uuid.UUID) -> None:
        """Drop cached validations for every key the user owns."""
        stmt = select(APIKey.key_prefix).where(APIKey.user_id == user_id)
        async with self._session_factory() as session:
            prefixes = list((await session.scalars(stmt)).all())
        for prefix in prefixes:
            await self.invalidate_cache(prefix)
