"""Initial schema

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

What:  Creates every table the API reads or writes: users, plans,
       subscriptions, credit_packages, payments, admin_alerts,
       audit_projects, scraped_pages, scraped_images, support_tickets and
       notify_me.
How:   PostgreSQL UUID primary keys (gen_random_uuid()), TIMESTAMP WITH TIME
       ZONE everywhere, JSONB for feature lists and cached reports.

Rollback: downgrade() drops every table (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)
TS = postgresql.TIMESTAMP(timezone=True)
NOW = sa.text("CURRENT_TIMESTAMP")


def _id() -> sa.Column:
    return sa.Column("id", UUID, primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _created_at() -> sa.Column:
    return sa.Column("created_at", TS, nullable=False, server_default=NOW)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("first_name", sa.String(120), nullable=True),
        sa.Column("last_name", sa.String(120), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'user'")),
        sa.Column("plan_type", sa.String(20), nullable=False, server_default=sa.text("'Starter'")),
        sa.Column("plan_id", UUID, nullable=True),
        sa.Column("subscription_id", sa.String(64), nullable=True),
        sa.Column("billing_cycle", sa.String(20), nullable=True),
        sa.Column("plan_expires_at", TS, nullable=True),
        sa.Column("image_scan_credits", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _created_at(),
        sa.Column("updated_at", TS, nullable=True),
        sa.Column("last_login", TS, nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"])
    # The expiry sweep only looks at paid plans with an expiry
    op.create_index(
        "idx_users_plan_expires_at",
        "users",
        ["plan_expires_at"],
        postgresql_where=sa.text("plan_expires_at IS NOT NULL"),
    )

    op.create_table(
        "plans",
        _id(),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'INR'")),
        sa.Column("billing_cycle", sa.String(20), nullable=False, server_default=sa.text("'monthly'")),
        sa.Column("plan_type", sa.String(20), nullable=False),
        sa.Column("features", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("can_use_features", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("max_projects", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("limits", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("image_scan_credits", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_popular", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("color", sa.String(20), nullable=False, server_default=sa.text("'gray'")),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("razorpay_plan_id", sa.String(64), nullable=True, unique=True),
        sa.Column("subscription_id", sa.String(64), nullable=True),
        sa.Column("start_date", TS, nullable=True),
        sa.Column("end_date", TS, nullable=True),
        _created_at(),
        sa.Column("updated_at", TS, nullable=True),
    )
    op.create_index("idx_plans_active_sort", "plans", ["is_active", "sort_order"])

    op.create_table(
        "subscriptions",
        _id(),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("plan_id", UUID, sa.ForeignKey("plans.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'active'")),
        sa.Column("razorpay_subscription_id", sa.String(64), nullable=True),
        _created_at(),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])

    op.create_table(
        "credit_packages",
        _id(),
        sa.Column("credits", sa.Integer(), nullable=False, unique=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("label", sa.String(120), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _created_at(),
        sa.Column("updated_at", TS, nullable=True),
    )

    op.create_table(
        "payments",
        _id(),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("plan_id", UUID, sa.ForeignKey("plans.id"), nullable=True),
        sa.Column("razorpay_payment_id", sa.String(64), nullable=True, unique=True),
        sa.Column("razorpay_order_id", sa.String(64), nullable=True),
        sa.Column("subscription_id", sa.String(64), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'INR'")),
        sa.Column("plan_name", sa.String(120), nullable=True),
        sa.Column("plan_type", sa.String(20), nullable=True),
        sa.Column("billing_cycle", sa.String(20), nullable=True),
        sa.Column("max_projects", sa.Integer(), nullable=True),
        sa.Column("can_use_features", postgresql.JSONB(), nullable=True),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default=sa.text("'completed'")),
        sa.Column("payment_method", sa.String(40), nullable=False, server_default=sa.text("'razorpay'")),
        sa.Column("payment_date", TS, nullable=False, server_default=NOW),
        _created_at(),
    )
    op.create_index(
        "idx_payments_user_date", "payments", ["user_id", sa.text("payment_date DESC")]
    )

    op.create_table(
        "admin_alerts",
        _id(),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("alert_type", sa.String(30), nullable=False, server_default=sa.text("'info'")),
        sa.Column("severity", sa.String(20), nullable=False, server_default=sa.text("'medium'")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'active'")),
        sa.Column("is_global", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("target_audience", sa.String(40), nullable=False, server_default=sa.text("'all'")),
        sa.Column("start_date", TS, nullable=False, server_default=NOW),
        sa.Column("end_date", TS, nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("action_url", sa.Text(), nullable=True),
        sa.Column("action_text", sa.String(80), nullable=True),
        sa.Column("dismissible", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("auto_expire", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("click_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _created_at(),
        sa.Column("updated_at", TS, nullable=True),
        sa.CheckConstraint("priority BETWEEN 1 AND 10", name="ck_admin_alerts_priority"),
        sa.CheckConstraint("status IN ('active', 'inactive', 'draft')", name="ck_admin_alerts_status"),
    )
    op.create_index(
        "idx_admin_alerts_status_priority", "admin_alerts", ["status", sa.text("priority DESC")]
    )

    op.create_table(
        "audit_projects",
        _id(),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("site_url", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("pagespeed_insights_data", postgresql.JSONB(), nullable=True),
        sa.Column("pagespeed_insights_loading", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("pagespeed_insights_error", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("completed_at", TS, nullable=True),
    )
    op.create_index("ix_audit_projects_user_id", "audit_projects", ["user_id"])

    op.create_table(
        "scraped_pages",
        _id(),
        sa.Column(
            "audit_project_id", UUID,
            sa.ForeignKey("audit_projects.id", ondelete="CASCADE"), nullable=True,
        ),
        sa.Column("user_id", UUID, nullable=True),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("gemini_analysis", postgresql.JSONB(), nullable=True),
        sa.Column("image_gemini_analysis", postgresql.JSONB(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "scraped_images",
        _id(),
        sa.Column(
            "scraped_page_id", UUID,
            sa.ForeignKey("scraped_pages.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("audit_project_id", UUID, nullable=True),
        sa.Column("user_id", UUID, nullable=True),
        sa.Column("original_url", sa.Text(), nullable=False),
        sa.Column("alt_text", sa.Text(), nullable=True),
        sa.Column("title_text", sa.Text(), nullable=True),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("type", sa.String(40), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("extra_metadata", sa.Text(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "support_tickets",
        _id(),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("subject", sa.String(300), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'open'")),
        sa.Column("priority", sa.String(20), nullable=False, server_default=sa.text("'medium'")),
        _created_at(),
    )

    op.create_table(
        "notify_me",
        _id(),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("source", sa.String(60), nullable=False, server_default=sa.text("'homepage'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.Column("updated_at", TS, nullable=True),
    )


def downgrade() -> None:
    for table in (
        "notify_me",
        "support_tickets",
        "scraped_images",
        "scraped_pages",
        "audit_projects",
        "admin_alerts",
        "payments",
        "credit_packages",
        "subscriptions",
        "plans",
        "users",
    ):
        op.drop_table(table)
