"""
User model — the account that owns subscriptions and API keys.

Identity/session management lives outside this service; rows are created
by the signup flow and referenced here only as an ownership boundary.
"""

import uuid
import datetime

from sqlalchemy import CheckConstraint, DateTime, String, Text, Uuid
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from workout_api.core.database import Base, utcnow


class User(Base):
    """One customer (or admin) account."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        Text, nullable=False, unique=True,
    )
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="customer", server_default="customer",
    )
    company_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    use_case: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint("role IN ('admin', 'customer')", name="ck_users_role_valid"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id!s:.8} email={self.email!r}>"
