"""
Subscription lifecycle driven by Razorpay webhooks.

Event → effect:
  • subscription.activated  — upsert by provider id; plan → tier;
                              provider status → local status
  • subscription.charged    — active, billing period refreshed
  • subscription.cancelled  — canceled, the subscription's keys deactivated
  • subscription.paused     — past_due
  • payment.failed          — past_due
  • subscription.resumed    — active
Unknown events are logged and acknowledged.

Invariants:
  • At most ONE live (active/trialing) subscription per user. Making a
    subscription live retires the user's other live rows first and moves
    their active keys onto it, so an upgrade keeps the caller's keys.
  • Every status/tier change drops the cached validations of all the
    user's keys — the next request sees the new tier or the inactive state.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workout_api.core.config import settings
from workout_api.core.constants import (
    DEFAULT_KEY_NAME,
    LIVE_STATUSES,
    STATUS_ACTIVE,
    STATUS_CANCELED,
    STATUS_INCOMPLETE,
    STATUS_PAST_DUE,
    TIER_ENTERPRISE,
    TIER_FREE,
    TIER_PRO,
)
from workout_api.core.database import utcnow
from workout_api.models.api_key import APIKey
from workout_api.models.subscription import Subscription
from workout_api.services.api_keys import ApiKeyService, IssuedKey

logger = logging.getLogger(__name__)

_DEFAULT_PERIOD = datetime.timedelta(days=30)

# Razorpay subscription.status → local status
PROVIDER_STATUS_MAP: dict[str, str] = {
    "created": STATUS_INCOMPLETE,
    "authenticated": STATUS_INCOMPLETE,
    "active": STATUS_ACTIVE,
    "pending": STATUS_PAST_DUE,
    "halted": STATUS_PAST_DUE,
    "cancelled": STATUS_CANCELED,
    "completed": STATUS_CANCELED,
    "expired": STATUS_CANCELED,
}


def map_provider_status(provider_status: str | None) -> str:
    return PROVIDER_STATUS_MAP.get(provider_status or "", STATUS_INCOMPLETE)


def tier_for_plan(plan_id: str | None) -> str:
    if plan_id and plan_id == settings.RAZORPAY_PLAN_ID_PRO:
        return TIER_PRO
    if plan_id and plan_id == settings.RAZORPAY_PLAN_ID_ENTERPRISE:
        return TIER_ENTERPRISE
    return TIER_FREE


def _from_epoch(value: Any) -> datetime.datetime | None:
    if not value:
        return None
    return datetime.datetime.fromtimestamp(int(value), tz=datetime.timezone.utc)


def _entity(event: dict[str, Any], kind: str) -> dict[str, Any]:
    """event["payload"][kind]["entity"], or {} when absent."""
    return ((event.get("payload") or {}).get(kind) or {}).get("entity") or {}


class SubscriptionService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        api_keys: ApiKeyService,
    ) -> None:
        self._session_factory = session_factory
        self._api_keys = api_keys
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "subscription.activated": self.handle_subscription_activated,
            "subscription.charged": self.handle_subscription_charged,
            "subscription.cancelled": self.handle_subscription_cancelled,
            "subscription.paused": self.handle_subscription_paused,
            "subscription.resumed": self.handle_subscription_resumed,
            "payment.failed": self.handle_payment_failed,
        }

    async def handle_event(self, event: dict[str, Any]) -> bool:
        """Dispatch one verified webhook. Returns False for unhandled event types."""
        event_type = event.get("event")
        handler = self._handlers.get(event_type or "")
        if handler is None:
            logger.info("Unhandled Razorpay event: %s", event_type)
            return False
        logger.info("Processing Razorpay event %s", event_type)
        await handler(event)
        return True

    # ── Signup ──────────────────────────────────────────────
    async def create_free_subscription(self, user_id: uuid.UUID) -> tuple[Subscription, IssuedKey]:
        """Free, active subscription plus the user's default key."""
        async with self._session_factory() as session:
            await self._retire_live(session, user_id, keep_id=None)
            subscription = Subscription(user_id=user_id, tier=TIER_FREE, status=STATUS_ACTIVE)
            session.add(subscription)
            await session.commit()

        issued = await self._api_keys.generate_key(user_id, subscription.id, DEFAULT_KEY_NAME)
        return subscription, issued

    async def get_user_subscription(self, user_id: uuid.UUID) -> Subscription | None:
        """The user's live subscription, else the most recent one."""
        async with self._session_factory() as session:
            live = await session.scalar(
                select(Subscription).where(
                    Subscription.user_id == user_id,
                    Subscription.status.in_(LIVE_STATUSES),
                )
            )
            if live is not None:
                return live
            return await session.scalar(
                select(Subscription)
                .where(Subscription.user_id == user_id)
                .order_by(Subscription.created_at.desc())
                .limit(1)
            )

    # ── Webhook handlers ────────────────────────────────────
    async def handle_subscription_activated(self, event: dict[str, Any]) -> None:
        entity = _entity(event, "subscription")
        provider_id = entity.get("id")
        if not provider_id:
            logger.warning("subscription.activated without a subscription id; ignored")
            return
        try:
            user_id = uuid.UUID(str((entity.get("notes") or {}).get("userId")))
        except ValueError:
            logger.error("subscription.activated %s carries no valid userId note", provider_id)
            return

        values = {
            "provider_customer_id": entity.get("customer_id"),
            "tier": tier_for_plan(entity.get("plan_id")),
            "status": map_provider_status(entity.get("status")),
            "current_period_start": _from_epoch(entity.get("current_start")),
            "current_period_end": _from_epoch(entity.get("current_end")),
            "cancel_at_period_end": False,
        }

        async with self._session_factory() as session:
            subscription = await session.scalar(
                select(Subscription).where(Subscription.provider_subscription_id == provider_id)
            )
            is_new = subscription is None
            if is_new:
                # Inserted non-live first: retired keys need a row to point at.
                subscription = Subscription(
                    user_id=user_id,
                    provider_subscription_id=provider_id,
                    tier=values["tier"],
                    status=STATUS_INCOMPLETE,
                )
                session.add(subscription)
                await session.flush()

            moved = 0
            if values["status"] in LIVE_STATUSES:
                moved = await self._retire_live(session, user_id, keep_id=subscription.id)

            for field, value in values.items():
                setattr(subscription, field, value)
            await session.commit()

        logger.info(
            "Subscription %s for user %s is %s/%s",
            provider_id, user_id, subscription.tier, subscription.status,
        )
        await self._api_keys.invalidate_user_keys(user_id)

        if is_new and moved == 0:
            await self._api_keys.generate_key(user_id, subscription.id, DEFAULT_KEY_NAME)

    async def handle_subscription_charged(self, event: dict[str, Any]) -> None:
        payment = _entity(event, "payment")
        entity = _entity(event, "subscription")
        provider_id = payment.get("subscription_id") or entity.get("id")
        if not provider_id:
            return

        now = utcnow()
        await self._set_status(
            provider_id,
            STATUS_ACTIVE,
            current_period_start=_from_epoch(entity.get("current_start")) or now,
            current_period_end=_from_epoch(entity.get("current_end")) or now + _DEFAULT_PERIOD,
        )

    async def handle_subscription_cancelled(self, event: dict[str, Any]) -> None:
        provider_id = _entity(event, "subscription").get("id")
        if not provider_id:
            return
        subscription = await self._set_status(provider_id, STATUS_CANCELED)
        if subscription is None:
            return

        async with self._session_factory() as session:
            await session.execute(
                update(APIKey)
                .where(APIKey.subscription_id == subscription.id)
                .values(is_active=False)
            )
            await session.commit()
        await self._api_keys.invalidate_user_keys(subscription.user_id)

    async def handle_subscription_paused(self, event: dict[str, Any]) -> None:
        provider_id = _entity(event, "subscription").get("id")
        if provider_id:
            await self._set_status(provider_id, STATUS_PAST_DUE)

    async def handle_subscription_resumed(self, event: dict[str, Any]) -> None:
        provider_id = _entity(event, "subscription").get("id")
        if provider_id:
            await self._set_status(provider_id, STATUS_ACTIVE)

    async def handle_payment_failed(self, event: dict[str, Any]) -> None:
        provider_id = _entity(event, "payment").get("subscription_id")
        if provider_id:
            await self._set_status(provider_id, STATUS_PAST_DUE)

    # ── Helpers ─────────────────────────────────────────────
    async def _set_status(
        self,
        provider_id: str,
        status: str,
        **fields: Any,
    ) -> Subscription | None:
        async with self._session_factory() as session:
            subscription = await session.scalar(
                select(Subscription).where(Subscription.provider_subscription_id == provider_id)
            )
            if subscription is None:
                logger.warning("Webhook for unknown subscription %s", provider_id)
                return None

            if status in LIVE_STATUSES and subscription.status not in LIVE_STATUSES:
                await self._retire_live(session, subscription.user_id, keep_id=subscription.id)
            subscription.status = status
            for field, value in fields.items():
                setattr(subscription, field, value)
            await session.commit()

        logger.info("Subscription %s → %s", provider_id, status)
        await self._api_keys.invalidate_user_keys(subscription.user_id)
        return subscription

    @staticmethod
    async def _retire_live(
        session: AsyncSession,
        user_id: uuid.UUID,
        keep_id: uuid.UUID | None,
    ) -> int:
        """
        Cancel the user's other live subscriptions and move their active
        keys onto keep_id. Returns the number of keys moved.

        Flushed before the caller makes keep_id live, so the partial unique
        index never sees two live rows.
        """
        stmt = select(Subscription.id).where(
            Subscription.user_id == user_id,
            Subscription.status.in_(LIVE_STATUSES),
        )
        if keep_id is not None:
            stmt = stmt.where(Subscription.id != keep_id)
        retired = list((await session.scalars(stmt)).all())
        if not retired:
            return 0

        await session.execute(
            update(Subscription)
            .where(Subscription.id.in_(retired))
            .values(status=STATUS_CANCELED, updated_at=utcnow())
        )
        moved = 0
        if keep_id is not None:
            result = await session.execute(
                update(APIKey)
                .where(APIKey.subscription_id.in_(retired), APIKey.is_active.is_(True))
                .values(subscription_id=keep_id)
            )
            moved = result.rowcount or 0
        await session.flush()
        logger.info("Retired %d live subscription(s) for user %s", len(retired), user_id)
        return moved
