"""
Web Audit API — Plan Expiry and Downgrade
===========================================

What:  Reports when a paid plan runs out and moves expired users back to
       the Starter plan, either on the user's own request or in bulk from
       the scheduled cron call.
Why:   Razorpay subscriptions are not authoritative here; the expiry
       timestamp written by payment-success is.
How:   A downgrade copies the Starter plan onto the user, clears the expiry
       and billing cycle, closes active subscriptions and writes a zero
       amount payment row as an audit trail.

Cron behaviour:
    Each user is downgraded inside its own SAVEPOINT so that one failing
    row is reported in `errors` while the others are still processed.
"""

import hmac
import logging
import math
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.config import settings
from webaudit.exceptions import AuthenticationError, NotFoundError, WebAuditError
from webaudit.models.payment import Payment
from webaudit.models.plan import Plan, Subscription
from webaudit.models.user import User

logger = logging.getLogger(__name__)

STARTER = "Starter"


def verify_cron_secret(provided: Optional[str]) -> None:
    """
    The scheduler authenticates with `x-cron-secret`. An unset secret
    rejects every call rather than leaving the job open.
    """
    expected = settings.cron_secret
    if not expected or not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        raise AuthenticationError(message="Unauthorized", error_code="unauthorized")


def days_until(expires_at: datetime, now: datetime) -> int:
    return math.ceil((expires_at - now).total_seconds() / 86400)


class PlanExpiryService:

    async def _get_user(self, db: AsyncSession, user_id: uuid.UUID) -> User:
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError(resource="user", resource_id=str(user_id))
        return user

    async def _starter_plan(self, db: AsyncSession) -> Plan:
        result = await db.execute(
            select(Plan)
            .where(Plan.plan_type == STARTER, Plan.is_active.is_(True))
            .order_by(Plan.sort_order.asc())
            .limit(1)
        )
        plan = result.scalars().first()
        if plan is None:
            logger.error("No active Starter plan; expired users cannot be downgraded")
            raise WebAuditError(message="Failed to fetch Starter plan", error_code="starter_plan_missing")
        return plan

    async def check_expiry(self, db: AsyncSession, user_id: uuid.UUID) -> Dict[str, Any]:
        user = await self._get_user(db, user_id)
        if user.plan_type == STARTER:
            return {"is_expired": False, "plan_type": STARTER, "expires_at": None}

        now = datetime.now(timezone.utc)
        expires_at = user.plan_expires_at
        return {
            "is_expired": bool(expires_at and expires_at < now),
            "expires_at": expires_at,
            "days_until_expiry": days_until(expires_at, now) if expires_at else None,
            "billing_cycle": user.billing_cycle,
            "plan_type": user.plan_type,
        }

    async def downgrade(
        self, db: AsyncSession, user: User, starter: Plan, method: str
    ) -> None:
        """Moves one user to Starter. Flushes but does not commit."""
        now = datetime.now(timezone.utc)
        expired_at = user.plan_expires_at

        user.plan_type = STARTER
        user.plan_id = starter.id
        user.plan_expires_at = None
        user.billing_cycle = None
        user.updated_at = now

        await db.execute(
            update(Subscription)
            .where(Subscription.user_id == user.id, Subscription.status == "active")
            .values(status="expired")
        )
        db.add(Payment(
            user_id=user.id,
            plan_id=starter.id,
            razorpay_payment_id=f"{method}_{int(time.time() * 1000)}_{user.id.hex[:12]}",
            amount=0,
            currency="INR",
            plan_name=starter.name,
            plan_type=STARTER,
            billing_cycle="none",
            max_projects=starter.max_projects or 1,
            can_use_features=list(starter.can_use_features or []),
            payment_status="completed",
            payment_method=method,
            payment_date=now,
            created_at=now,
        ))
        await db.flush()
        logger.info("User %s downgraded to Starter (plan expired %s)", user.id, expired_at)

    async def downgrade_if_expired(self, db: AsyncSession, user_id: uuid.UUID) -> Dict[str, Any]:
        user = await self._get_user(db, user_id)
        if user.plan_type == STARTER:
            return {
                "message": "User is on Starter plan (no expiry)",
                "plan_type": STARTER,
                "is_expired": False,
            }

        now = datetime.now(timezone.utc)
        if not user.plan_expires_at or user.plan_expires_at >= now:
            return {
                "message": "Plan is still active",
                "plan_type": user.plan_type,
                "is_expired": False,
                "expires_at": user.plan_expires_at,
            }

        previous = user.plan_type
        starter = await self._starter_plan(db)
        await self.downgrade(db, user, starter, method="system_downgrade")
        return {
            "message": "Plan has expired and user has been downgraded to Starter plan",
            "plan_type": STARTER,
            "is_expired": True,
            "downgraded": True,
            "previous_plan": previous,
            "new_plan": STARTER,
        }

    async def downgrade_all_expired(self, db: AsyncSession) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        result = await db.execute(
            select(User)
            .where(User.plan_type != STARTER)
            .where(User.plan_expires_at.is_not(None))
            .where(User.plan_expires_at < now)
        )
        users = list(result.scalars().all())
        if not users:
            return {
                "message": "No users with expired plans found",
                "processed_count": 0,
                "error_count": 0,
                "processed_users": [],
                "errors": [],
            }

        starter = await self._starter_plan(db)
        processed, errors = [], []
        for user in users:
            # Captured before the downgrade mutates (or a rollback expires) the row
            user_id, email, previous = str(user.id), user.email, user.plan_type
            try:
                async with db.begin_nested():
                    await self.downgrade(db, user, starter, method="cron_downgrade")
            except SQLAlchemyError as e:
                logger.error("Error downgrading user %s: %s", user_id, e)
                errors.append({"user_id": user_id, "email": email, "error": str(e)})
                continue
            processed.append({
                "user_id": user_id,
                "email": email,
                "previous_plan": previous,
                "new_plan": STARTER,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            })

        logger.info("Expired plan sweep: %d downgraded, %d failed", len(processed), len(errors))
        return {
            "message": f"Processed {len(processed)} users with expired plans",
            "processed_count": len(processed),
            "error_count": len(errors),
            "processed_users": processed,
            "errors": errors,
        }


plan_expiry_service = PlanExpiryService()
