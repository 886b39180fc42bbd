"""
API key model — authentication credential for a subscription.

Security notes:
  • Raw API keys are NEVER stored. Only a bcrypt hash is persisted.
  • `key_prefix` stores the first 12 characters (e.g., "wa_3f9a1c07b")
    and is the lookup index; it is not secret.
  • `is_active` allows key revocation without deletion (audit trail).
  • `expires_at` is set on rotation: the old key stays valid for a
    grace window, then stops validating.
"""

import uuid
import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from workout_api.core.database import Base, utcnow


class APIKey(Base):
    """Hashed API key belonging to a user's subscription."""

    __tablename__ = "api_keys"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    key_hash: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    key_prefix: Mapped[str] = mapped_column(
        String(12),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="true",
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    expires_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_used_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        # One active key per lookup prefix; revoked keys release theirs.
        Index(
            "uq_api_keys_prefix_active",
            "key_prefix",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<APIKey id={self.id!s:.8} prefix={self.key_prefix!r} "
            f"active={self.is_active}>"
        )
