"""
Web Audit API — Plan and Subscription Models
==============================================

What:  ORM models for the `plans` catalogue and per-user `subscriptions`.
Why:   Plans define price, billing cycle and, most importantly, which feature
       ids a user may use (`can_use_features`) and how many projects they may
       create (`max_projects`, -1 = unlimited). Feature gating reads both.
How:   List-valued and dict-valued columns use JSONB so the catalogue can
       evolve without migrations.

Soft delete:
    Plans are never removed; DELETE sets `is_active = false` so historical
    payments keep a valid `plan_id`.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Numeric, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB, UUID, TIMESTAMP

from webaudit.database import Base

PLAN_TYPES = ("Starter", "Growth", "Scale")
BILLING_CYCLES = ("monthly", "yearly")


class Plan(Base):
    """A purchasable plan tier."""

    __tablename__ = "plans"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    billing_cycle: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")
    plan_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Marketing bullet points shown on the pricing page
    features: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    # Feature ids from the catalogue in webaudit/features.py
    can_use_features: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    max_projects: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    limits: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    image_scan_credits: Mapped[int | None] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_popular: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    color: Mapped[str] = mapped_column(String(20), nullable=False, default="gray")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    razorpay_plan_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    subscription_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Optional availability window; NULL means unbounded
    start_date: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_plans_active_sort", "is_active", "sort_order"),
    )

    def __repr__(self) -> str:
        return f"<Plan(id={self.id}, name='{self.name}', plan_type='{self.plan_type}')>"


class Subscription(Base):
    """Links a user to a plan; the newest `active` row wins."""

    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("plans.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    razorpay_subscription_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )
