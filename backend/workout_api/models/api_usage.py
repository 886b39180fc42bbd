"""
SQLAlchemy model for the `api_usage` table.

Each row represents one completed API request — success or failure.
Append-only: this table is the source of truth for monthly quotas
and for usage analytics.

Design notes:
  • request_id is the correlation id echoed to the caller.
  • (api_key_id, created_at) index backs the monthly count query.
  • created_at index backs the retention purge.
"""

import uuid
import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from workout_api.core.database import Base, utcnow


class ApiUsage(Base):
    """One API request outcome."""

    __tablename__ = "api_usage"

    # ── Primary key ─────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # ── Tenant ──────────────────────────────────────────────
    api_key_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("api_keys.id", ondelete="CASCADE"),
        nullable=False,
    )

    # ── Request ─────────────────────────────────────────────
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # ── Timestamp ───────────────────────────────────────────
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint("response_time_ms >= 0", name="ck_api_usage_latency_non_neg"),
        Index("ix_api_usage_key_created", "api_key_id", "created_at"),
        Index("ix_api_usage_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ApiUsage id={self.id!s:.8} {self.method} {self.endpoint} "
            f"status={self.status_code}>"
        )
