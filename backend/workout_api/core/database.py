"""
Async database engine, session factory, and ORM base.

Rules enforced:
  • Every DB call goes through AsyncSession (no sync, no raw SQL).
  • Services receive the session factory explicitly so tests can
    substitute their own engine.
  • The declarative Base is shared across all models so Alembic can
    auto-detect schema changes from a single metadata object.
"""

import datetime
from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from workout_api.core.config import settings

# ── Engine ──────────────────────────────────────────────────
def engine_options(url: str, timeout: float) -> dict[str, Any]:
    """
    Driver-specific engine kwargs.

    asyncpg gets a connect timeout, a per-statement command_timeout and a
    bounded pool checkout, so a stalled database fails the request instead
    of hanging it. Other drivers (aiosqlite in tests) keep their defaults.
    """
    if not url.startswith("postgresql+asyncpg"):
        return {}
    return {
        "pool_timeout": timeout,
        "connect_args": {"timeout": timeout, "command_timeout": timeout},
    }


# pool_pre_ping: drop stale connections before reuse
# echo: SQL logging, debug mode only
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
    **engine_options(settings.DATABASE_URL, settings.DATABASE_TIMEOUT_SECONDS),
)

# ── Session factory ─────────────────────────────────────────
async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,  # avoid lazy-load issues after commit
)


# ── ORM Base ────────────────────────────────────────────────
class Base(DeclarativeBase):
    """Shared declarative base for all SQLAlchemy models."""


# ── Time helpers ────────────────────────────────────────────
def utcnow() -> datetime.datetime:
    """Timezone-aware current time (UTC)."""
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    """Attach UTC to naive timestamps read back from drivers that drop tzinfo."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=datetime.timezone.utc)


def minute_bucket(now: datetime.datetime) -> datetime.datetime:
    """Floor a timestamp to the start of the current minute (UTC)."""
    return now.replace(second=0, microsecond=0)


def start_of_month(now: datetime.datetime) -> datetime.datetime:
    """First instant of the calendar month containing `now` (UTC)."""
    return now.astimezone(datetime.timezone.utc).replace(
        day=1, hour=0, minute=0, second=0, microsecond=0,
    )


def start_of_next_month(now: datetime.datetime) -> datetime.datetime:
    first = start_of_month(now)
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


# ── Upserts ─────────────────────────────────────────────────
def upsert_insert(session: AsyncSession) -> Any:
    """
    The dialect's INSERT construct that supports on_conflict_do_update.

    Postgres in production; SQLite backs the test suite.
    """
    if session.bind.dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert
