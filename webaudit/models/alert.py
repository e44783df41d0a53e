"""
Web Audit API — Admin Alert Model
===================================

What:  Banner/notification records authored by admins and shown to users.
Why:   Lets operations announce maintenance, promotions or incidents without
       a frontend deploy.
How:   Visibility is decided at query time from status, the start/end window
       and `target_audience`; engagement is tracked with view/click counters.

Audience values:
    'all'      every signed-in user
    'free'     users without a paid plan
    <plan>     users on that plan type (e.g. 'Growth')
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID, TIMESTAMP

from webaudit.database import Base

ALERT_STATUSES = ("active", "inactive", "draft")


class AdminAlert(Base):
    __tablename__ = "admin_alerts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    # info | warning | success | error | maintenance | feature | promotion
    alert_type: Mapped[str] = mapped_column(String(30), nullable=False, default="info")
    # low | medium | high | critical
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    target_audience: Mapped[str] = mapped_column(String(40), nullable=False, default="all")

    start_date: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    end_date: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    action_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_text: Mapped[str | None] = mapped_column(String(80), nullable=True)
    dismissible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_expire: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    click_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("priority BETWEEN 1 AND 10", name="ck_admin_alerts_priority"),
        CheckConstraint(
            "status IN ('active', 'inactive', 'draft')",
            name="ck_admin_alerts_status",
        ),
        Index("idx_admin_alerts_status_priority", "status", priority.desc()),
    )

    def __repr__(self) -> str:
        return f"<AdminAlert(id={self.id}, title='{self.title}', status='{self.status}')>"
