"""
Web Audit API — User Model
============================

What:  ORM model for the `users` table (profile, role, current plan, credits).
Why:   Payment, plan-expiry, credit and admin routes all read or update the
       caller's row; the auth backend owns credentials, this table owns
       everything billing-related.
Who:   Created lazily on first successful payment (from token metadata) or
       by the auth backend's signup hook.

Plan columns are denormalised from `plans` on purchase so that expiry
checks and dashboards never need a join.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID, TIMESTAMP

from webaudit.database import Base


class User(Base):
    """A registered account and its billing state."""

    __tablename__ = "users"

    # Same id as the auth backend's user (the token `sub` claim)
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, index=True)
    first_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(120), nullable=True)

    # 'user' or 'admin'
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="user", server_default=text("'user'")
    )

    # ── Plan ──────────────────────────────────────────────────────────────
    plan_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="Starter", server_default=text("'Starter'")
    )
    plan_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    billing_cycle: Mapped[str | None] = mapped_column(String(20), nullable=True)
    # NULL for Starter (never expires)
    plan_expires_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    image_scan_credits: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    last_login: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part).strip()

    def __repr__(self) -> str:
        return f"<User(id={self.id}, plan_type='{self.plan_type}', role='{self.role}')>"
