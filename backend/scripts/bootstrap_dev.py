"""
Dev bootstrap script — create a user, free subscription and API key for
local development.

Usage (from backend/):
    python -m scripts.bootstrap_dev [email]

This will:
  1. Create (or reuse) the user, default dev@example.com
  2. Create a free, active subscription (retiring any other live one)
  3. Generate the default API key
  4. Print the raw key ONCE (only its bcrypt hash is stored)

Redis is optional here: cache writes degrade to no-ops.
"""

import asyncio
import sys

from sqlalchemy import select

from workout_api.core.cache import CacheService, create_redis_client
from workout_api.core.database import async_session_factory, engine
from workout_api.models.user import User
from workout_api.services.api_keys import ApiKeyService
from workout_api.services.subscriptions import SubscriptionService


async def main(email: str) -> None:
    redis = create_redis_client()
    api_keys = ApiKeyService(async_session_factory, CacheService(redis))
    subscriptions = SubscriptionService(async_session_factory, api_keys)

    # ── Create or reuse user ────────────────────────────────
    async with async_session_factory() as session:
        user = await session.scalar(select(User).where(User.email == email))
        if user is None:
            user = User(email=email, company_name="Dev Co")
            session.add(user)
            await session.commit()

    # ── Subscription + key ──────────────────────────────────
    subscription, issued = await subscriptions.create_free_subscription(user.id)

    # ── Print results ───────────────────────────────────────
    print()
    print("=" * 60)
    print("  Dev Bootstrap Complete")
    print("=" * 60)
    print()
    print(f"  User:         {user.email}")
    print(f"  User ID:      {user.id}")
    print(f"  Subscription: {subscription.id} ({subscription.tier})")
    print()
    print(f"  API Key:      {issued.raw_key}")
    print()
    print("  ⚠  Copy this key now — it will NEVER be shown again.")
    print("=" * 60)
    print()

    await redis.aclose()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "dev@example.com"))
