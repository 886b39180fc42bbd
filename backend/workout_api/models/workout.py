"""
Workout catalogue model — the content served by /api/v1/workouts.

Design notes:
  • slug is unique and doubles as a public identifier (lookup by id OR slug).
  • muscle_groups / equipment / instructions are JSON lists so the same
    model runs on Postgres and SQLite.
  • tier_access gates visibility: a caller sees rows at or below its tier.
  • Soft delete via is_deleted — rows are never removed by the API.
"""

import uuid
import datetime

from sqlalchemy import (
    JSON,
    Boolean,
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


class Workout(Base):
    """One exercise routine."""

    __tablename__ = "workouts"

    # ── Identity ────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # ── Content ─────────────────────────────────────────────
    difficulty: Mapped[str] = mapped_column(String(20), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    muscle_groups: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    equipment: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    instructions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    video_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    calories_burned: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # ── Access ──────────────────────────────────────────────
    tier_access: Mapped[str] = mapped_column(
        String(20), nullable=False, default="free", server_default="free",
    )
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false",
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # ── Timestamps ──────────────────────────────────────────
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint(
            "difficulty IN ('beginner', 'intermediate', 'advanced')",
            name="ck_workouts_difficulty_valid",
        ),
        CheckConstraint(
            "tier_access IN ('free', 'pro', 'enterprise')",
            name="ck_workouts_tier_access_valid",
        ),
        CheckConstraint("duration > 0", name="ck_workouts_duration_positive"),
        Index("ix_workouts_difficulty", "difficulty"),
        Index("ix_workouts_listing", "is_deleted", "tier_access", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Workout id={self.id!s:.8} slug={self.slug!r}>"
