"""
Durable rate-limit counter model (fallback path).

Each row is the request count for one API key in one fixed window.
Unique key: (api_key_id, limit_type, window_start) — one row per bucket.

Time buckets:
  • 'per_minute' — floor to current minute (UTC)
  • 'monthly'    — first instant of the calendar month (UTC)

Only written when Redis is unavailable and RATE_LIMIT_FALLBACK="database".
Atomic increments via INSERT … ON CONFLICT DO UPDATE … RETURNING ensure
correctness under concurrent requests without external locks.
"""

import uuid
import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from workout_api.core.database import Base, utcnow


class RateLimitWindow(Base):
    """Per-key, per-window request counter."""

    __tablename__ = "rate_limits"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    api_key_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("api_keys.id", ondelete="CASCADE"),
        nullable=False,
    )
    limit_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    window_start: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    request_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        UniqueConstraint(
            "api_key_id", "limit_type", "window_start",
            name="uq_rate_limits_bucket",
        ),
        Index("ix_rate_limits_window_start", "window_start"),
    )

    def __repr__(self) -> str:
        return (
            f"<RateLimitWindow key={self.api_key_id!s:.8} "
            f"type={self.limit_type} count={self.request_count}>"
        )
