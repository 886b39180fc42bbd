"""
FastAPI application entrypoint.

create_app() wires the service graph once and stores it on app.state:
  cache → usage_logger → api_keys → rate_limiter → pipeline,
  plus workouts and subscriptions. Tests pass their own session factory
  and Redis client; production uses the module-level engine and REDIS_URL.

Lifespan:
  • On startup: verify DB connectivity, purge expired rate-limit and
    usage rows (non-fatal).
  • On shutdown: wait for background usage writes, close Redis, dispose
    the engine.

Routers:
  • /api/v1       — workouts, categories, keys, usage (API-key protected)
  • /webhooks     — Razorpay (signature protected)
  • /health       — database + cache probe
"""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workout_api.core.cache import CacheService, create_redis_client
from workout_api.core.config import settings
from workout_api.core.database import async_session_factory, engine
from workout_api.core.errors import register_exception_handlers
from workout_api.core.tasks import drain_pending
from workout_api.middleware.usage_logging import UsageLoggingMiddleware
from workout_api.routers.health import router as health_router
from workout_api.routers.keys import router as keys_router
from workout_api.routers.usage import router as usage_router
from workout_api.routers.webhooks import router as webhooks_router
from workout_api.routers.workouts import router as workouts_router
from workout_api.services.api_keys import ApiKeyService
from workout_api.services.maintenance import purge_expired_records
from workout_api.services.pipeline import RequestPipeline
from workout_api.services.rate_limiter import RateLimiter
from workout_api.services.subscriptions import SubscriptionService
from workout_api.services.usage_logger import UsageLogger
from workout_api.services.workouts import WorkoutService

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""
    session_factory = app.state.session_factory

    # Startup: verify DB is reachable
    db_available = False
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        logger.info("Database connection verified ✓")
        db_available = True
    except Exception:
        logger.warning(
            "Could not reach the database on startup. "
            "The app will start, but requests will fail until the DB is available."
        )

    # Startup: retention cleanup (until a background scheduler exists)
    if db_available and settings.CLEANUP_ON_STARTUP:
        try:
            async with session_factory() as session:
                await purge_expired_records(session)
            logger.info("Startup cleanup completed ✓")
        except Exception:
            logger.exception("Startup cleanup failed (non-fatal)")

    yield  # ← application runs here

    # Shutdown: flush background writes, then release connections
    await drain_pending()
    await app.state.redis.aclose()
    if app.state.owns_engine:
        await engine.dispose()
        logger.info("Database engine disposed ✓")


# ── App factory ─────────────────────────────────────────────
def create_app(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    redis: aioredis.Redis | None = None,
) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description=(
            "Workout catalogue API — API-key authentication, "
            "per-tier rate limits and monthly quotas, usage metering."
        ),
        lifespan=lifespan,
    )

    # ── Service graph ───────────────────────────────────────
    app.state.owns_engine = session_factory is None
    app.state.session_factory = session_factory or async_session_factory
    app.state.redis = redis or create_redis_client()

    cache = CacheService(app.state.redis)
    usage_logger = UsageLogger(app.state.session_factory, cache)
    api_keys = ApiKeyService(app.state.session_factory, cache)
    rate_limiter = RateLimiter(cache, app.state.session_factory, usage_logger)

    app.state.cache = cache
    app.state.usage_logger = usage_logger
    app.state.api_keys = api_keys
    app.state.pipeline = RequestPipeline(api_keys, rate_limiter)
    app.state.workouts = WorkoutService(app.state.session_factory, cache)
    app.state.subscriptions = SubscriptionService(app.state.session_factory, api_keys)

    # ── HTTP surface ────────────────────────────────────────
    register_exception_handlers(app)
    app.add_middleware(UsageLoggingMiddleware)

    api_prefix = f"/api/{settings.API_VERSION}"
    app.include_router(workouts_router, prefix=api_prefix)
    app.include_router(keys_router, prefix=api_prefix)
    app.include_router(usage_router, prefix=api_prefix)
    app.include_router(webhooks_router, prefix="/webhooks")
    app.include_router(health_router)

    return app


app = create_app()
