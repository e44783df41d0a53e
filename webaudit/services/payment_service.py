"""
Web Audit API — Payment Service
=================================

What:  Checkout orchestration: plan orders and subscriptions, the
       payment-success callback, image-scan credit purchases, webhooks and
       the user's payment history.
Why:   The browser talks to Razorpay's checkout widget directly; these
       operations create the server-side order first and record the result
       afterwards, so the plan/credit state lives only in our database.
How:   Gateway calls go through PaymentGateway (threadpool + error mapping);
       writes use the request session, committed by the route dependency.

Plan purchase flow:
    create-order ──▶ checkout widget ──▶ payment-success
                                          │
                     ┌────────────────────┼───────────────────────┐
                     ▼                    ▼                       ▼
               ensure users row     payments row (once      users plan columns
               (from token)         per payment id)         + active subscription

Idempotency:
    A repeated payment-success for the same `razorpay_payment_id` returns
    "Payment already processed" without touching the user.
"""

import json
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.auth import CurrentUser
from webaudit.exceptions import (
    NotFoundError,
    PaymentGatewayError,
    PermissionDeniedError,
    ValidationError,
)
from webaudit.models.payment import Payment
from webaudit.models.plan import Subscription
from webaudit.models.user import User
from webaudit.schemas.payment import (
    CreateOrderRequest,
    CreateSubscriptionRequest,
    CreditPackageOption,
    CreditPurchaseSuccessRequest,
    PaymentSuccessRequest,
    PlanDetails,
    PurchaseCreditsRequest,
)
from webaudit.services.credit_package_service import CreditPackageService, credit_package_service
from webaudit.services.payment_gateway import PaymentGateway, payment_gateway
from webaudit.services.plan_service import PlanService, plan_service
from webaudit.validators import is_blank

logger = logging.getLogger(__name__)

ORDER_SOURCE = "web_audit_pricing"
CREDITS_SOURCE = "web_audit_credits"

# Offered when the credit_packages table is empty
DEFAULT_CREDIT_PACKAGES: List[Tuple[int, int]] = [
    (10, 100), (25, 200), (50, 350), (100, 600), (250, 1200), (500, 2000),
]

PLAN_DURATION = {"monthly": timedelta(days=30), "yearly": timedelta(days=365)}


def _now_ms() -> int:
    return int(time.time() * 1000)


def plan_expiry(billing_cycle: Optional[str], now: datetime) -> datetime:
    return now + PLAN_DURATION.get(billing_cycle or "monthly", PLAN_DURATION["monthly"])


def split_full_name(metadata: Dict[str, Any]) -> Tuple[str, str]:
    """First/last name from auth metadata, falling back to `full_name`."""
    full = (metadata.get("full_name") or "").split()
    first = metadata.get("first_name") or (full[0] if full else "User")
    last = metadata.get("last_name") or " ".join(full[1:])
    return first, last


class PaymentService:

    def __init__(
        self,
        gateway: PaymentGateway = payment_gateway,
        plans: PlanService = plan_service,
        packages: CreditPackageService = credit_package_service,
    ):
        self.gateway = gateway
        self.plans = plans
        self.packages = packages

    # ── Orders and subscriptions ──────────────────────────────────────────

    async def create_order(self, request: CreateOrderRequest) -> Dict[str, Any]:
        if not request.amount:
            raise ValidationError(message="Amount is required", field="amount")
        if request.amount < 0:
            raise ValidationError(message="Amount must be positive", field="amount")

        order = await self.gateway.create_order(
            amount=request.amount,
            currency=request.currency or "INR",
            receipt=request.receipt or f"receipt_{_now_ms()}",
            notes={"source": ORDER_SOURCE},
        )
        return {
            "id": order["id"],
            "amount": order["amount"],
            "currency": order["currency"],
            "receipt": order.get("receipt"),
        }

    async def create_subscription(self, request: CreateSubscriptionRequest) -> Dict[str, Any]:
        if is_blank(request.plan_id):
            raise ValidationError(message="Plan ID is required", field="plan_id")

        customer_id = request.customer_id
        if not customer_id:
            details = request.customer_details or {}
            customer = await self.gateway.create_customer(
                name=details.get("name") or "Customer",
                email=details.get("email") or "",
                contact=details.get("contact") or "",
                notes={"source": ORDER_SOURCE},
            )
            customer_id = customer["id"]

        now = int(time.time())
        subscription = await self.gateway.create_subscription({
            "plan_id": request.plan_id,
            "customer_id": customer_id,
            "customer_notify": 1,
            "total_count": 12,
            "start_at": now + 60,
            "expire_by": now + 24 * 60 * 60,
            "notes": {"source": ORDER_SOURCE, "plan_type": "subscription"},
        })
        keys = (
            "id", "plan_id", "status", "short_url", "total_count", "paid_count",
            "current_start", "current_end", "ended_at", "quantity", "notes", "created_at",
        )
        return {key: subscription.get(key) for key in keys}

    # ── Webhook ───────────────────────────────────────────────────────────

    def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, str]:
        """Verifies the signature over the raw bytes, then logs the event."""
        if not signature:
            raise ValidationError(message="Missing signature", error_code="missing_signature")
        body = raw_body.decode("utf-8", errors="replace")
        self.gateway.verify_webhook_signature(body, signature)

        try:
            event = json.loads(body)
        except ValueError:
            raise ValidationError(message="Invalid webhook payload")

        name = event.get("event")
        payload = event.get("payload") or {}
        payment = (payload.get("payment") or {}).get("entity") or {}
        order = (payload.get("order") or {}).get("entity") or {}

        if name == "payment.captured":
            logger.info(
                "Payment captured: %s (%s %s, order %s)",
                payment.get("id"), payment.get("amount"), payment.get("currency"), order.get("id"),
            )
        elif name == "payment.failed":
            logger.warning(
                "Payment failed: %s (%s: %s)",
                payment.get("id"), payment.get("error_code"), payment.get("error_description"),
            )
        elif name == "order.paid":
            logger.info("Order paid: %s (%s)", order.get("id"), order.get("status"))
        else:
            logger.info("Unhandled webhook event: %s", name)
        return {"status": "success"}

    # ── Plan purchase confirmation ────────────────────────────────────────

    async def ensure_user(self, db: AsyncSession, user: CurrentUser) -> User:
        """Returns the caller's users row, creating it from token metadata."""
        result = await db.execute(select(User).where(User.id == user.id))
        record = result.scalar_one_or_none()
        if record is not None:
            return record

        first, last = split_full_name(user.user_metadata or {})
        now = datetime.now(timezone.utc)
        record = User(
            id=user.id,
            email=user.email,
            first_name=first,
            last_name=last,
            created_at=now,
            updated_at=now,
        )
        db.add(record)
        await db.flush()
        logger.info("Created users row for %s on first payment", user.id)
        return record

    async def process_payment_success(
        self, db: AsyncSession, user: CurrentUser, request: PaymentSuccessRequest
    ) -> Dict[str, Any]:
        if is_blank(request.razorpay_payment_id) or is_blank(request.plan_id):
            raise ValidationError(message="Payment ID and plan ID are required")
        if request.user_id and request.user_id != str(user.id):
            logger.warning("User ID mismatch on payment-success: %s vs %s", request.user_id, user.id)
            raise PermissionDeniedError(
                message="Provided user ID does not match authenticated user",
                error_code="USER_ID_MISMATCH",
            )

        record = await self.ensure_user(db, user)
        plan = await self.plans.get_plan(db, request.plan_id)

        if request.razorpay_order_id and request.razorpay_signature:
            self.gateway.verify_payment_signature(
                request.razorpay_order_id, request.razorpay_payment_id, request.razorpay_signature
            )

        result = await db.execute(
            select(Payment.id).where(Payment.razorpay_payment_id == request.razorpay_payment_id)
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            logger.info("Payment %s already processed", request.razorpay_payment_id)
            return {"success": True, "message": "Payment already processed", "payment_id": existing}

        now = datetime.now(timezone.utc)
        payment = Payment(
            user_id=record.id,
            plan_id=plan.id,
            razorpay_payment_id=request.razorpay_payment_id,
            razorpay_order_id=request.razorpay_order_id,
            amount=request.amount if request.amount is not None else plan.price,
            currency=request.currency or "INR",
            plan_name=plan.name,
            plan_type=plan.plan_type,
            billing_cycle=plan.billing_cycle or "monthly",
            max_projects=plan.max_projects or 1,
            can_use_features=list(plan.can_use_features or []),
            payment_status="completed",
            payment_method="razorpay",
            subscription_id=request.subscription_id,
            payment_date=now,
            created_at=now,
        )
        db.add(payment)

        record.plan_type = plan.plan_type
        record.plan_id = plan.id
        record.subscription_id = request.subscription_id
        record.billing_cycle = plan.billing_cycle or "monthly"
        record.plan_expires_at = plan_expiry(plan.billing_cycle, now)
        record.updated_at = now

        # Feature gating resolves the plan from the newest active subscription
        db.add(Subscription(
            user_id=record.id,
            plan_id=plan.id,
            status="active",
            razorpay_subscription_id=request.subscription_id,
            created_at=now,
        ))
        await db.flush()

        logger.info(
            "Payment %s recorded: user %s upgraded to %s until %s",
            request.razorpay_payment_id, record.id, plan.plan_type, record.plan_expires_at,
        )
        return {
            "success": True,
            "message": "Payment processed successfully",
            "payment_id": payment.id,
            "user_plan_updated": True,
            "plan_details": PlanDetails(
                plan_name=plan.name,
                plan_type=plan.plan_type,
                billing_cycle=plan.billing_cycle or "monthly",
                max_projects=plan.max_projects or 1,
            ),
        }

    # ── Image-scan credits ────────────────────────────────────────────────

    async def purchasable_packages(self, db: AsyncSession) -> List[CreditPackageOption]:
        """Active packages from the database, or the built-in defaults."""
        try:
            packages = await self.packages.list_active(db)
        except SQLAlchemyError as e:
            logger.error("Error fetching credit packages, using defaults: %s", e)
            packages = []

        if packages:
            return [
                CreditPackageOption(
                    id=str(p.id),
                    credits=p.credits,
                    price=float(p.price),
                    label=p.label,
                    price_per_credit=p.price_per_credit,
                )
                for p in packages
            ]
        return [
            CreditPackageOption(
                credits=credits,
                price=float(price),
                label=f"{credits} Credits",
                price_per_credit=round(price / credits, 2),
            )
            for credits, price in DEFAULT_CREDIT_PACKAGES
        ]

    @staticmethod
    def select_package(
        packages: List[CreditPackageOption], request: PurchaseCreditsRequest
    ) -> Optional[CreditPackageOption]:
        if request.package_id is not None:
            ref = str(request.package_id)
            if "-" in ref:
                return next((p for p in packages if p.id == ref), None)
            # Older clients send the package's position in the listing
            if ref.isdigit() and int(ref) < len(packages):
                return packages[int(ref)]
            return None
        if request.credits:
            return next((p for p in packages if p.credits == request.credits), None)
        return None

    async def create_credit_order(
        self, db: AsyncSession, user: CurrentUser, request: PurchaseCreditsRequest
    ) -> Dict[str, Any]:
        packages = await self.purchasable_packages(db)
        package = self.select_package(packages, request)
        if package is None:
            raise ValidationError(
                message="Please select a valid credit package",
                error_code="INVALID_PACKAGE",
                extra={
                    "availablePackages": [
                        {"id": p.id or index, "credits": p.credits, "price": p.price, "label": p.label}
                        for index, p in enumerate(packages)
                    ],
                },
            )

        if not self.gateway.configured:
            logger.error("Credit purchase attempted but Razorpay keys are not configured")
            raise PaymentGatewayError(
                message="Payment system not configured",
                error_code="PAYMENT_NOT_CONFIGURED",
            )

        receipt = f"credits_{str(user.id)[:8]}_{_now_ms()}"[:40]
        order = await self.gateway.create_order(
            amount=int(round(package.price * 100)),
            currency="INR",
            receipt=receipt,
            notes={
                "source": CREDITS_SOURCE,
                "user_id": str(user.id),
                "credits": str(package.credits),
                "payment_type": "credit_purchase",
            },
        )
        logger.info("Credit order %s created for user %s (%d credits)", order.get("id"), user.id, package.credits)
        package_id = package.id
        if package_id is None and request.package_id is not None:
            package_id = str(request.package_id)
        return {
            "success": True,
            "order_id": order["id"],
            "amount": order["amount"],
            "currency": order["currency"],
            "receipt": order.get("receipt") or receipt,
            "credits": package.credits,
            "price": package.price,
            "package_id": package_id,
        }

    async def record_credit_purchase(
        self, db: AsyncSession, user: CurrentUser, request: CreditPurchaseSuccessRequest
    ) -> Dict[str, Any]:
        if is_blank(request.razorpay_payment_id) or not request.credits or not request.amount:
            raise ValidationError(
                message="Payment ID, credits, and amount are required",
                error_code="MISSING_FIELDS",
            )
        if request.credits < 0:
            raise ValidationError(message="Credits must be a positive integer", field="credits")

        now = datetime.now(timezone.utc)
        result = await db.execute(
            update(User)
            .where(User.id == user.id)
            .values(image_scan_credits=User.image_scan_credits + request.credits, updated_at=now)
            .returning(User.image_scan_credits)
        )
        new_credits = result.scalar_one_or_none()
        if new_credits is None:
            raise NotFoundError(resource="user", resource_id=str(user.id))
        previous = new_credits - request.credits

        # The credits are granted either way; the ledger row is best effort
        try:
            async with db.begin_nested():
                db.add(Payment(
                    user_id=user.id,
                    plan_id=None,
                    razorpay_payment_id=request.razorpay_payment_id,
                    razorpay_order_id=request.razorpay_order_id,
                    amount=request.amount,
                    currency="INR",
                    plan_name=f"{request.credits} Image Scan Credits",
                    plan_type="Credits",
                    billing_cycle="one-time",
                    can_use_features=[],
                    payment_status="completed",
                    payment_method="razorpay",
                    payment_date=now,
                    created_at=now,
                ))
        except SQLAlchemyError as e:
            logger.error("Failed to record credit purchase %s: %s", request.razorpay_payment_id, e)

        logger.info("Added %d credits to user %s (%d → %d)", request.credits, user.id, previous, new_credits)
        return {
            "success": True,
            "credits_added": request.credits,
            "previous_credits": previous,
            "new_credits": new_credits,
            "payment_id": request.razorpay_payment_id,
        }

    # ── History ───────────────────────────────────────────────────────────

    async def payment_history(
        self, db: AsyncSession, user_id: uuid.UUID, limit: int = 10, offset: int = 0
    ) -> Dict[str, Any]:
        result = await db.execute(
            select(Payment)
            .where(Payment.user_id == user_id)
            .order_by(Payment.payment_date.desc())
            .offset(offset)
            .limit(limit)
        )
        payments = list(result.scalars().all())

        result = await db.execute(
            select(func.count()).select_from(Payment).where(Payment.user_id == user_id)
        )
        total = result.scalar_one() or 0
        return {
            "payments": payments,
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": total > offset + limit,
        }


payment_service = PaymentService()
