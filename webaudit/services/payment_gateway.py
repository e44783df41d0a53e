"""
Web Audit API — Razorpay Gateway Wrapper
==========================================

What:  Thin async facade over the official `razorpay` SDK: orders, customers,
       subscriptions, plan listing and signature checks.
Why:   The SDK is synchronous (it uses `requests`), so every call is pushed to
       Starlette's threadpool to keep the event loop free. Centralising the
       client also means one place decides what "not configured" means.
How:   Lazily builds `razorpay.Client(auth=(key_id, key_secret))`; SDK errors
       are logged and re-raised as PaymentGatewayError.
Who:   PaymentService and PlanService.

No retries:
    Creating an order or subscription is not idempotent on the gateway side;
    a retried POST could bill twice. A failure is reported to the client.
"""

import logging
from typing import Any, Dict, Optional

import razorpay
from razorpay.errors import SignatureVerificationError
from starlette.concurrency import run_in_threadpool

from webaudit.config import settings
from webaudit.exceptions import PaymentGatewayError, ValidationError

logger = logging.getLogger(__name__)


class PaymentGateway:

    def __init__(self, client: Optional[razorpay.Client] = None):
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or settings.razorpay_configured

    @property
    def client(self) -> razorpay.Client:
        if self._client is None:
            if not settings.razorpay_configured:
                raise PaymentGatewayError(
                    message="Payment system not configured",
                    error_code="PAYMENT_NOT_CONFIGURED",
                )
            self._client = razorpay.Client(
                auth=(settings.razorpay_key_id, settings.razorpay_key_secret)
            )
        return self._client

    async def _call(self, operation: str, fn, *args, **kwargs) -> Dict[str, Any]:
        client_error_message = kwargs.pop("failure_message", "Payment gateway request failed")
        try:
            return await run_in_threadpool(fn, *args, **kwargs)
        except PaymentGatewayError:
            raise
        except Exception as e:
            logger.error("Razorpay %s failed: %s", operation, str(e))
            raise PaymentGatewayError(
                message=client_error_message,
                context={"operation": operation, "error_type": type(e).__name__},
            )

    # ── Orders ────────────────────────────────────────────────────────────

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Args:
            amount: In the smallest currency unit (paise for INR)
        """
        data = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes}
        order = await self._call(
            "order.create",
            self.client.order.create,
            data=data,
            failure_message="Failed to create order",
        )
        logger.info("Razorpay order %s created (%s %s)", order.get("id"), amount, currency)
        return order

    # ── Customers and subscriptions ───────────────────────────────────────

    async def create_customer(self, name: str, email: str, contact: str, notes: Dict[str, Any]) -> Dict[str, Any]:
        data = {"name": name, "email": email, "contact": contact, "notes": notes}
        return await self._call(
            "customer.create",
            self.client.customer.create,
            data=data,
            failure_message="Failed to create subscription",
        )

    async def create_subscription(self, data: Dict[str, Any]) -> Dict[str, Any]:
        subscription = await self._call(
            "subscription.create",
            self.client.subscription.create,
            data=data,
            failure_message="Failed to create subscription",
        )
        logger.info(
            "Razorpay subscription %s created for plan %s",
            subscription.get("id"),
            data.get("plan_id"),
        )
        return subscription

    async def list_plans(self, count: int = 100) -> Dict[str, Any]:
        return await self._call(
            "plan.all",
            self.client.plan.all,
            {"count": count},
            failure_message="Failed to fetch plans",
        )

    async def list_subscriptions(self, count: int = 100) -> Dict[str, Any]:
        return await self._call(
            "subscription.all",
            self.client.subscription.all,
            {"count": count},
            failure_message="Failed to fetch plans",
        )

    # ── Signatures ────────────────────────────────────────────────────────

    def verify_webhook_signature(self, body: str, signature: str) -> None:
        """
        HMAC-SHA256 of the raw body with the webhook secret.

        Raises:
            ValidationError: secret missing or signature mismatch
        """
        if not settings.razorpay_webhook_secret:
            logger.error("Webhook received but RAZORPAY_WEBHOOK_SECRET is not configured")
            raise ValidationError(message="Invalid signature", error_code="invalid_signature")
        try:
            # The utility helpers only use the secret passed in, not the client auth
            razorpay.Client(auth=("", "")).utility.verify_webhook_signature(
                body, signature, settings.razorpay_webhook_secret
            )
        except SignatureVerificationError:
            logger.warning("Rejected Razorpay webhook with invalid signature")
            raise ValidationError(message="Invalid signature", error_code="invalid_signature")

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> None:
        """Checkout callback signature: HMAC-SHA256 of '<order_id>|<payment_id>'."""
        try:
            self.client.utility.verify_payment_signature({
                "razorpay_order_id": order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature,
            })
        except SignatureVerificationError:
            logger.warning("Payment %s failed signature verification", payment_id)
            raise ValidationError(
                message="Payment signature verification failed",
                error_code="invalid_signature",
            )


payment_gateway = PaymentGateway()
