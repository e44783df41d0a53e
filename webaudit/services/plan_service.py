"""
Web Audit API — Plan Catalogue Service
========================================

What:  CRUD for `plans` and the formatted listing of plans defined in Razorpay.
Why:   The pricing page reads active plans; admins create and edit them;
       payment confirmation copies plan details onto the user.
How:   Enum checks happen here so the admin UI gets precise messages. A
       duplicate `razorpay_plan_id` is caught before the insert and, for
       races, again as an IntegrityError.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.exceptions import NotFoundError, ValidationError
from webaudit.models.plan import BILLING_CYCLES, PLAN_TYPES, Plan
from webaudit.schemas.plan import GatewayPlan, PlanFields
from webaudit.services.payment_gateway import PaymentGateway, payment_gateway
from webaudit.validators import is_blank, parse_uuid

logger = logging.getLogger(__name__)

DUPLICATE_RAZORPAY_ID = (
    "A plan with this Razorpay ID already exists. "
    "Please use a different Razorpay ID or leave it empty."
)
DEFAULT_GATEWAY_FEATURES = ["Unlimited audits", "Advanced analytics", "Priority support"]

_PERIOD_TEXT = {"monthly": "per month", "yearly": "per year", "weekly": "per week"}


def _validate_enums(fields: PlanFields) -> None:
    if fields.plan_type is not None and fields.plan_type not in PLAN_TYPES:
        raise ValidationError(
            message="Invalid plan_type. Must be Starter, Growth, or Scale",
            field="plan_type",
        )
    if fields.billing_cycle and fields.billing_cycle not in BILLING_CYCLES:
        raise ValidationError(
            message="Invalid billing_cycle. Must be monthly or yearly",
            field="billing_cycle",
        )


def format_gateway_plan(plan: Dict[str, Any], subscribed_plan_ids: set) -> GatewayPlan:
    """Shapes one Razorpay plan entity for the pricing page."""
    item = plan.get("item") or {}
    notes = item.get("notes") or {}
    if not isinstance(notes, dict):
        notes = {}

    amount = item.get("amount") or plan.get("amount") or 0
    currency = item.get("currency") or plan.get("currency") or "INR"
    period = plan.get("period") or plan.get("interval") or "monthly"
    symbol = "₹" if currency == "INR" else "$"

    features = notes.get("features") or DEFAULT_GATEWAY_FEATURES
    if isinstance(features, str):
        features = [f.strip() for f in features.split(",") if f.strip()]

    return GatewayPlan(
        id=plan["id"],
        name=item.get("name") or "Plan",
        description=item.get("description") or "",
        amount=int(amount),
        currency=currency,
        interval=str(period),
        interval_count=plan.get("interval"),
        period=_PERIOD_TEXT.get(str(period), f"per {period}"),
        price=f"{symbol}{round(amount / 100):,}",
        features=features,
        popular=str(notes.get("popular", "")).lower() == "true",
        color=notes.get("color") or "gray",
        status=plan.get("status"),
        created_at=plan.get("created_at"),
        subscription_count=1 if plan["id"] in subscribed_plan_ids else 0,
    )


class PlanService:

    def __init__(self, gateway: PaymentGateway = payment_gateway):
        self.gateway = gateway

    async def list_active(self, db: AsyncSession) -> List[Plan]:
        """Active plans whose optional start/end window contains now."""
        now = datetime.now(timezone.utc)
        stmt = (
            select(Plan)
            .where(Plan.is_active.is_(True))
            .where(or_(Plan.start_date.is_(None), Plan.start_date <= now))
            .where(or_(Plan.end_date.is_(None), Plan.end_date >= now))
            .order_by(Plan.sort_order.asc(), Plan.created_at.asc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_plan(self, db: AsyncSession, plan_id: Any) -> Plan:
        try:
            pid = parse_uuid(plan_id, "plan_id")
        except ValidationError:
            # A malformed id cannot name a plan
            raise NotFoundError(resource="plan", resource_id=str(plan_id))
        result = await db.execute(select(Plan).where(Plan.id == pid))
        plan = result.scalar_one_or_none()
        if plan is None:
            raise NotFoundError(resource="plan", resource_id=str(pid))
        return plan

    async def _ensure_unique_razorpay_id(
        self, db: AsyncSession, razorpay_plan_id: Optional[str], exclude_id=None
    ) -> None:
        if not razorpay_plan_id:
            return
        stmt = select(Plan.id).where(Plan.razorpay_plan_id == razorpay_plan_id)
        if exclude_id is not None:
            stmt = stmt.where(Plan.id != exclude_id)
        result = await db.execute(stmt)
        if result.scalars().first() is not None:
            raise ValidationError(message=DUPLICATE_RAZORPAY_ID, field="razorpay_plan_id")

    async def _flush(self, db: AsyncSession) -> None:
        try:
            await db.flush()
        except IntegrityError as e:
            logger.warning("Plan write violated a constraint: %s", e.orig)
            raise ValidationError(message=DUPLICATE_RAZORPAY_ID, field="razorpay_plan_id")

    async def create_plan(self, db: AsyncSession, fields: PlanFields) -> Plan:
        if is_blank(fields.name) or is_blank(fields.plan_type):
            raise ValidationError(message="Name and plan_type are required")
        _validate_enums(fields)

        razorpay_plan_id = None if is_blank(fields.razorpay_plan_id) else fields.razorpay_plan_id
        subscription_id = None if is_blank(fields.subscription_id) else fields.subscription_id
        await self._ensure_unique_razorpay_id(db, razorpay_plan_id)

        plan = Plan(
            name=fields.name,
            description=fields.description or "",
            plan_type=fields.plan_type,
            price=fields.price or 0,
            currency=fields.currency or "INR",
            billing_cycle=fields.billing_cycle or "monthly",
            features=fields.features or [],
            can_use_features=fields.can_use_features or [],
            max_projects=fields.max_projects if fields.max_projects is not None else 1,
            is_active=fields.is_active if fields.is_active is not None else True,
            sort_order=fields.sort_order or 0,
            razorpay_plan_id=razorpay_plan_id,
            subscription_id=subscription_id,
            color=fields.color or "gray",
            is_popular=fields.is_popular or False,
            limits=fields.limits or {},
            image_scan_credits=fields.image_scan_credits,
            start_date=fields.start_date,
            end_date=fields.end_date,
            created_at=datetime.now(timezone.utc),
        )
        db.add(plan)
        await self._flush(db)
        logger.info("Plan created: %s (%s)", plan.name, plan.plan_type)
        return plan

    async def update_plan(self, db: AsyncSession, plan_id: Any, fields: PlanFields) -> Plan:
        _validate_enums(fields)
        plan = await self.get_plan(db, plan_id)

        updates = fields.model_dump(exclude_unset=True, exclude_none=True)
        if "razorpay_plan_id" in updates:
            if is_blank(updates["razorpay_plan_id"]):
                # Blank ids are ignored; the unique index would reject a second ""
                updates.pop("razorpay_plan_id")
            else:
                await self._ensure_unique_razorpay_id(
                    db, updates["razorpay_plan_id"], exclude_id=plan.id
                )

        for key, value in updates.items():
            setattr(plan, key, value)
        plan.updated_at = datetime.now(timezone.utc)

        await self._flush(db)
        logger.info("Plan %s updated (%s)", plan.id, ", ".join(sorted(updates)) or "no fields")
        return plan

    async def delete_plan(self, db: AsyncSession, plan_id: Any) -> None:
        """Soft delete; payments keep referencing the row."""
        plan = await self.get_plan(db, plan_id)
        plan.is_active = False
        plan.updated_at = datetime.now(timezone.utc)
        await db.flush()
        logger.info("Plan %s deactivated", plan.id)

    async def list_gateway_plans(self) -> Dict[str, Any]:
        """
        Plans defined in Razorpay, sorted by amount.

        An unconfigured gateway is not an error for the pricing page; it gets
        an empty list and an explanatory `error` string.
        """
        if not self.gateway.configured:
            logger.info("Razorpay keys not configured, returning empty plans")
            return {"plans": [], "total": 0, "error": "Razorpay keys not configured"}

        plans = await self.gateway.list_plans(count=100)
        subscriptions = await self.gateway.list_subscriptions(count=100)
        subscribed = {s.get("plan_id") for s in subscriptions.get("items", [])}

        formatted = [format_gateway_plan(p, subscribed) for p in plans.get("items", [])]
        formatted.sort(key=lambda p: p.amount)
        return {"plans": formatted, "total": len(formatted)}


plan_service = PlanService()
