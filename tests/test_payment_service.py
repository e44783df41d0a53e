"""
Web Audit API — Payment Service Tests
=======================================

What:  Tests PaymentService with the Razorpay gateway and plan lookups mocked.
Why:   Payment confirmation writes the user's plan; mistakes here either give
       away paid plans or lose paid upgrades.

What we test:
    ✅ Order validation and receipt defaults
    ✅ Webhook signature handling
    ✅ payment-success: identity check, idempotency, plan copy and expiry
    ✅ Credit package selection (UUID, legacy index, credits) and errors
    ✅ Credit grants and the best-effort ledger row
"""

import json
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

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
    CreditPackageOption,
    CreditPurchaseSuccessRequest,
    PaymentSuccessRequest,
    PurchaseCreditsRequest,
)
from webaudit.services.payment_service import PaymentService, plan_expiry, split_full_name


def _options():
    return [
        CreditPackageOption(id=str(uuid.uuid4()), credits=10, price=100.0, label="10 Credits", price_per_credit=10.0),
        CreditPackageOption(id=str(uuid.uuid4()), credits=50, price=350.0, label="50 Credits", price_per_credit=7.0),
    ]


class TestHelpers:

    def test_plan_expiry_monthly(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert plan_expiry("monthly", now) == now + timedelta(days=30)

    def test_plan_expiry_yearly(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert plan_expiry("yearly", now) == now + timedelta(days=365)

    def test_plan_expiry_unknown_cycle_is_monthly(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert plan_expiry(None, now) == now + timedelta(days=30)

    def test_split_full_name(self):
        assert split_full_name({"full_name": "Jane Q Doe"}) == ("Jane", "Q Doe")

    def test_split_full_name_prefers_explicit_fields(self):
        assert split_full_name({"first_name": "Ann", "last_name": "Lee", "full_name": "X Y"}) == ("Ann", "Lee")

    def test_split_full_name_defaults(self):
        assert split_full_name({}) == ("User", "")


class TestPaymentService:

    def setup_method(self):
        self.gateway = MagicMock()
        self.gateway.configured = True
        self.gateway.create_order = AsyncMock(
            return_value={"id": "order_123", "amount": 35000, "currency": "INR", "receipt": "r1"}
        )
        self.plans = MagicMock()
        self.plans.get_plan = AsyncMock()
        self.packages = MagicMock()
        self.packages.list_active = AsyncMock(return_value=[])
        self.service = PaymentService(gateway=self.gateway, plans=self.plans, packages=self.packages)

    # ── Orders ────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_create_order_requires_amount(self):
        with pytest.raises(ValidationError, match="Amount is required"):
            await self.service.create_order(CreateOrderRequest())

    @pytest.mark.asyncio
    async def test_create_order_rejects_negative_amount(self):
        with pytest.raises(ValidationError, match="positive"):
            await self.service.create_order(CreateOrderRequest(amount=-5))

    @pytest.mark.asyncio
    async def test_create_order_generates_receipt(self):
        result = await self.service.create_order(CreateOrderRequest(amount=49900))

        kwargs = self.gateway.create_order.await_args.kwargs
        assert kwargs["amount"] == 49900
        assert kwargs["currency"] == "INR"
        assert kwargs["receipt"].startswith("receipt_")
        assert kwargs["notes"] == {"source": "web_audit_pricing"}
        assert result["id"] == "order_123"

    # ── Webhook ───────────────────────────────────────────────────────────

    def test_webhook_requires_signature(self):
        with pytest.raises(ValidationError) as exc_info:
            self.service.handle_webhook(b"{}", None)
        assert exc_info.value.error_code == "missing_signature"

    def test_webhook_invalid_signature_propagates(self):
        self.gateway.verify_webhook_signature.side_effect = ValidationError(
            message="Invalid signature", error_code="invalid_signature"
        )
        with pytest.raises(ValidationError, match="Invalid signature"):
            self.service.handle_webhook(b"{}", "bad")

    def test_webhook_acknowledges_known_event(self):
        body = json.dumps({
            "event": "payment.captured",
            "payload": {"payment": {"entity": {"id": "pay_1", "amount": 100, "currency": "INR"}}},
        }).encode()
        assert self.service.handle_webhook(body, "sig") == {"status": "success"}
        self.gateway.verify_webhook_signature.assert_called_once_with(body.decode(), "sig")

    # ── Payment success ───────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_payment_success_requires_ids(self, mock_db_session, current_user):
        with pytest.raises(ValidationError, match="Payment ID and plan ID are required"):
            await self.service.process_payment_success(
                mock_db_session, current_user, PaymentSuccessRequest(razorpay_payment_id="pay_1")
            )

    @pytest.mark.asyncio
    async def test_payment_success_rejects_other_user(self, mock_db_session, current_user):
        request = PaymentSuccessRequest(
            razorpay_payment_id="pay_1", plan_id=str(uuid.uuid4()), user_id=str(uuid.uuid4())
        )
        with pytest.raises(PermissionDeniedError) as exc_info:
            await self.service.process_payment_success(mock_db_session, current_user, request)
        assert exc_info.value.error_code == "USER_ID_MISMATCH"

    @pytest.mark.asyncio
    async def test_payment_success_is_idempotent(self, mock_db_session, make_result, current_user, sample_plan):
        existing_user = User(id=current_user.id, plan_type="Starter")
        existing_payment = uuid.uuid4()
        mock_db_session.execute.side_effect = [
            make_result(scalar=existing_user),
            make_result(scalar=existing_payment),
        ]
        self.plans.get_plan.return_value = sample_plan

        result = await self.service.process_payment_success(
            mock_db_session, current_user,
            PaymentSuccessRequest(razorpay_payment_id="pay_1", plan_id=str(sample_plan.id)),
        )

        assert result["message"] == "Payment already processed"
        assert result["payment_id"] == existing_payment
        assert existing_user.plan_type == "Starter"
        mock_db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_payment_success_upgrades_user(self, mock_db_session, make_result, current_user, sample_plan):
        existing_user = User(id=current_user.id, plan_type="Starter")
        mock_db_session.execute.side_effect = [
            make_result(scalar=existing_user),
            make_result(scalar=None),
        ]
        self.plans.get_plan.return_value = sample_plan

        before = datetime.now(timezone.utc)
        result = await self.service.process_payment_success(
            mock_db_session, current_user,
            PaymentSuccessRequest(
                razorpay_payment_id="pay_1",
                razorpay_order_id="order_1",
                razorpay_signature="sig",
                plan_id=str(sample_plan.id),
            ),
        )

        self.gateway.verify_payment_signature.assert_called_once_with("order_1", "pay_1", "sig")
        assert result["user_plan_updated"] is True
        assert result["plan_details"].plan_type == "Growth"
        assert existing_user.plan_type == "Growth"
        assert existing_user.plan_id == sample_plan.id
        assert existing_user.billing_cycle == "monthly"
        assert existing_user.plan_expires_at >= before + timedelta(days=30)

        added = [call.args[0] for call in mock_db_session.add.call_args_list]
        payment = next(obj for obj in added if isinstance(obj, Payment))
        assert payment.amount == Decimal("1999.00")
        assert payment.can_use_features == sample_plan.can_use_features
        assert any(isinstance(obj, Subscription) and obj.status == "active" for obj in added)

    @pytest.mark.asyncio
    async def test_payment_success_creates_missing_user(self, mock_db_session, make_result, current_user, sample_plan):
        mock_db_session.execute.side_effect = [make_result(scalar=None), make_result(scalar=None)]
        self.plans.get_plan.return_value = sample_plan

        await self.service.process_payment_success(
            mock_db_session, current_user,
            PaymentSuccessRequest(razorpay_payment_id="pay_2", plan_id=str(sample_plan.id)),
        )

        created = mock_db_session.add.call_args_list[0].args[0]
        assert isinstance(created, User)
        assert created.first_name == "Jane"
        assert created.last_name == "Q Doe"
        self.gateway.verify_payment_signature.assert_not_called()

    # ── Credit packages ───────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_default_packages_when_table_empty(self, mock_db_session):
        packages = await self.service.purchasable_packages(mock_db_session)
        assert [p.credits for p in packages] == [10, 25, 50, 100, 250, 500]
        assert packages[0].price_per_credit == 10.0

    @pytest.mark.asyncio
    async def test_default_packages_when_lookup_fails(self, mock_db_session):
        self.packages.list_active.side_effect = OperationalError("SELECT", {}, Exception("down"))
        packages = await self.service.purchasable_packages(mock_db_session)
        assert len(packages) == 6

    def test_select_package_by_uuid(self):
        options = _options()
        chosen = self.service.select_package(options, PurchaseCreditsRequest(package_id=options[1].id))
        assert chosen.credits == 50

    def test_select_package_by_legacy_index(self):
        options = _options()
        assert self.service.select_package(options, PurchaseCreditsRequest(package_id=0)).credits == 10
        assert self.service.select_package(options, PurchaseCreditsRequest(package_id="5")) is None

    def test_select_package_by_credits(self):
        assert self.service.select_package(_options(), PurchaseCreditsRequest(credits=50)).price == 350.0

    @pytest.mark.asyncio
    async def test_invalid_package_lists_available(self, mock_db_session, current_user):
        with pytest.raises(ValidationError) as exc_info:
            await self.service.create_credit_order(
                mock_db_session, current_user, PurchaseCreditsRequest(credits=7)
            )
        assert exc_info.value.error_code == "INVALID_PACKAGE"
        available = exc_info.value.extra["availablePackages"]
        assert len(available) == 6
        assert available[0]["id"] == 0

    @pytest.mark.asyncio
    async def test_credit_order_requires_gateway(self, mock_db_session, current_user):
        self.gateway.configured = False
        with pytest.raises(PaymentGatewayError) as exc_info:
            await self.service.create_credit_order(
                mock_db_session, current_user, PurchaseCreditsRequest(credits=10)
            )
        assert exc_info.value.error_code == "PAYMENT_NOT_CONFIGURED"

    @pytest.mark.asyncio
    async def test_credit_order_amount_in_paise(self, mock_db_session, current_user):
        result = await self.service.create_credit_order(
            mock_db_session, current_user, PurchaseCreditsRequest(credits=50)
        )

        kwargs = self.gateway.create_order.await_args.kwargs
        assert kwargs["amount"] == 35000
        assert kwargs["notes"]["payment_type"] == "credit_purchase"
        assert len(kwargs["receipt"]) <= 40
        assert result["credits"] == 50
        assert result["order_id"] == "order_123"

    # ── Credit purchase confirmation ──────────────────────────────────────

    @pytest.mark.asyncio
    async def test_record_credit_purchase_requires_fields(self, mock_db_session, current_user):
        with pytest.raises(ValidationError) as exc_info:
            await self.service.record_credit_purchase(
                mock_db_session, current_user, CreditPurchaseSuccessRequest(razorpay_payment_id="pay_1")
            )
        assert exc_info.value.error_code == "MISSING_FIELDS"

    @pytest.mark.asyncio
    async def test_record_credit_purchase_adds_credits(self, mock_db_session, make_result, current_user):
        mock_db_session.execute.return_value = make_result(scalar=35)

        result = await self.service.record_credit_purchase(
            mock_db_session, current_user,
            CreditPurchaseSuccessRequest(razorpay_payment_id="pay_1", credits=25, amount=Decimal("200")),
        )

        assert result["previous_credits"] == 10
        assert result["new_credits"] == 35
        ledger = mock_db_session.add.call_args.args[0]
        assert ledger.plan_type == "Credits"
        assert ledger.plan_name == "25 Image Scan Credits"

    @pytest.mark.asyncio
    async def test_record_credit_purchase_unknown_user(self, mock_db_session, make_result, current_user):
        mock_db_session.execute.return_value = make_result(scalar=None)

        with pytest.raises(NotFoundError):
            await self.service.record_credit_purchase(
                mock_db_session, current_user,
                CreditPurchaseSuccessRequest(razorpay_payment_id="pay_1", credits=25, amount=Decimal("200")),
            )

    @pytest.mark.asyncio
    async def test_ledger_failure_still_grants_credits(self, mock_db_session, make_result, current_user):
        mock_db_session.execute.return_value = make_result(scalar=35)
        mock_db_session.add.side_effect = OperationalError("INSERT", {}, Exception("down"))

        result = await self.service.record_credit_purchase(
            mock_db_session, current_user,
            CreditPurchaseSuccessRequest(razorpay_payment_id="pay_1", credits=25, amount=Decimal("200")),
        )
        assert result["new_credits"] == 35

    # ── History ───────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_payment_history_has_more(self, mock_db_session, make_result, user_id):
        mock_db_session.execute.side_effect = [make_result(items=[]), make_result(scalar=25)]

        result = await self.service.payment_history(mock_db_session, user_id, limit=10, offset=10)

        assert result["total"] == 25
        assert result["has_more"] is True
