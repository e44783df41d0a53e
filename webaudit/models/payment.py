"""
Web Audit API — Payment Model
===============================

What:  One row per captured payment, credit purchase or system downgrade.
Why:   Source for the user's payment history, admin revenue reports and
       idempotency of the payment-success callback.
How:   Plan details are copied onto the row at purchase time so later plan
       edits do not rewrite history.

Idempotency:
    `razorpay_payment_id` is unique. The payment-success handler looks it up
    first and returns "already processed" on a repeat callback.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB, UUID, TIMESTAMP

from webaudit.database import Base


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    plan_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("plans.id"), nullable=True
    )

    razorpay_payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    razorpay_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")

    # ── Plan snapshot ─────────────────────────────────────────────────────
    plan_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    plan_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    billing_cycle: Mapped[str | None] = mapped_column(String(20), nullable=True)
    max_projects: Mapped[int | None] = mapped_column(Integer, nullable=True)
    can_use_features: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    # completed | pending | failed | cancelled
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")
    payment_method: Mapped[str] = mapped_column(String(40), nullable=False, default="razorpay")
    payment_date: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_payments_user_date", "user_id", payment_date.desc()),
    )
