"""
Subscription model — drives the tier (and therefore every quota).

Invariant: at most ONE live (active/trialing) subscription per user,
enforced by a partial unique index rather than by "most recent row wins"
ordering. Webhook activation retires any other live row first.

provider_subscription_id / provider_customer_id hold the payment
provider's identifiers (Razorpay).
"""

import uuid
import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from workout_api.core.database import Base, utcnow

_LIVE_PREDICATE = text("status IN ('active', 'trialing')")


class Subscription(Base):
    """A user's plan: tier + billing status + current period."""

    __tablename__ = "subscriptions"

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
    provider_subscription_id: Mapped[str | None] = mapped_column(
        Text, nullable=True, unique=True,
    )
    provider_customer_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    tier: Mapped[str] = mapped_column(
        String(20), nullable=False, default="free", server_default="free",
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="active", server_default="active",
    )
    current_period_start: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    current_period_end: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false",
    )
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
            "tier IN ('free', 'pro', 'enterprise')",
            name="ck_subscriptions_tier_valid",
        ),
        CheckConstraint(
            "status IN ('active', 'past_due', 'canceled', 'incomplete', 'trialing')",
            name="ck_subscriptions_status_valid",
        ),
        Index(
            "uq_subscriptions_user_live",
            "user_id",
            unique=True,
            postgresql_where=_LIVE_PREDICATE,
            sqlite_where=_LIVE_PREDICATE,
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription id={self.id!s:.8} tier={self.tier} "
            f"status={self.status}>"
        )
