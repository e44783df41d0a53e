"""
Web Audit API — Payment Schemas
=================================

What:  Bodies for order/subscription creation, payment confirmation, credit
       purchases and the payment history listing.

Wire format:
    The checkout widget posts a mix of snake_case (plan purchase) and
    camelCase (credit purchase) keys. Aliases keep the Python side snake_case.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_serializer


class CreateOrderRequest(BaseModel):
    amount: Optional[int] = Field(default=None, description="Amount in the smallest currency unit")
    currency: str = "INR"
    receipt: Optional[str] = None


class OrderResponse(BaseModel):
    id: str
    amount: int
    currency: str
    receipt: Optional[str] = None


class CreateSubscriptionRequest(BaseModel):
    plan_id: Optional[str] = None
    customer_id: Optional[str] = None
    # name, email, contact
    customer_details: Optional[Dict[str, str]] = None


class PaymentSuccessRequest(BaseModel):
    razorpay_payment_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    plan_id: Optional[str] = None
    user_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: str = Field(default="INR", max_length=3)
    subscription_id: Optional[str] = None


class PlanDetails(BaseModel):
    plan_name: str
    plan_type: str
    billing_cycle: str
    max_projects: int


class PaymentSuccessResponse(BaseModel):
    success: bool = True
    message: str
    payment_id: Optional[uuid.UUID] = None
    user_plan_updated: bool = False
    plan_details: Optional[PlanDetails] = None


class CreditPackageOption(BaseModel):
    id: Optional[str] = None
    credits: int
    price: float
    label: str
    price_per_credit: float = Field(serialization_alias="pricePerCredit")


class PurchasablePackagesResponse(BaseModel):
    success: bool = True
    packages: List[CreditPackageOption]


class PurchaseCreditsRequest(BaseModel):
    # Either a package UUID or the package's index in the listing
    package_id: Optional[Union[int, str]] = Field(default=None, alias="packageId")
    credits: Optional[int] = None

    model_config = {"populate_by_name": True}


class PurchaseCreditsResponse(BaseModel):
    success: bool = True
    order_id: str = Field(serialization_alias="orderId")
    amount: int
    currency: str
    receipt: str
    credits: int
    price: float
    package_id: Optional[str] = Field(default=None, serialization_alias="packageId")


class CreditPurchaseSuccessRequest(BaseModel):
    razorpay_payment_id: Optional[str] = Field(default=None, alias="razorpayPaymentId")
    razorpay_order_id: Optional[str] = Field(default=None, alias="razorpayOrderId")
    credits: Optional[int] = None
    amount: Optional[Decimal] = None

    model_config = {"populate_by_name": True}


class CreditPurchaseSuccessResponse(BaseModel):
    success: bool = True
    credits_added: int = Field(serialization_alias="creditsAdded")
    previous_credits: int = Field(serialization_alias="previousCredits")
    new_credits: int = Field(serialization_alias="newCredits")
    payment_id: str = Field(serialization_alias="paymentId")


class PaymentRecord(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    plan_id: Optional[uuid.UUID] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    amount: Decimal
    currency: str
    plan_name: Optional[str] = None
    plan_type: Optional[str] = None
    billing_cycle: Optional[str] = None
    max_projects: Optional[int] = None
    payment_status: str
    payment_method: str
    subscription_id: Optional[str] = None
    payment_date: datetime
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_serializer("amount")
    def serialize_amount(self, amount: Decimal) -> float:
        return float(amount)


class PaymentHistoryResponse(BaseModel):
    payments: List[PaymentRecord]
    total: int
    limit: int
    offset: int
    has_more: bool


class WebhookAck(BaseModel):
    status: str = "success"
