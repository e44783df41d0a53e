"""
Web Audit API — Payment Route Handlers
========================================

What:  Razorpay order/subscription creation, the webhook receiver, plan
       purchase confirmation, image-scan credit purchases and the caller's
       payment history.
Who:   The checkout widget on the pricing and credits pages; Razorpay
       itself for /api/razorpay-webhook.

Authentication:
    Order, subscription and webhook endpoints are anonymous (the widget
    calls them before sign-in completes; the webhook is signed instead).
    Everything that changes a user's plan or credits requires a bearer token.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.auth import CurrentUser, get_current_user
from webaudit.database import get_db_session
from webaudit.schemas.common import ErrorResponse
from webaudit.schemas.payment import (
    CreateOrderRequest,
    CreateSubscriptionRequest,
    CreditPurchaseSuccessRequest,
    CreditPurchaseSuccessResponse,
    OrderResponse,
    PaymentHistoryResponse,
    PaymentSuccessRequest,
    PaymentSuccessResponse,
    PurchasablePackagesResponse,
    PurchaseCreditsRequest,
    PurchaseCreditsResponse,
    WebhookAck,
)
from webaudit.services.payment_service import payment_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Payments"])


@router.post(
    "/create-order",
    response_model=OrderResponse,
    responses={
        400: {"description": "Amount missing", "model": ErrorResponse},
        500: {"description": "Gateway failure", "model": ErrorResponse},
    },
    summary="Create a Razorpay order",
)
async def create_order(body: CreateOrderRequest) -> OrderResponse:
    return OrderResponse(**await payment_service.create_order(body))


@router.post(
    "/create-subscription",
    responses={
        400: {"description": "Plan id missing", "model": ErrorResponse},
        500: {"description": "Gateway failure", "model": ErrorResponse},
    },
    summary="Create a Razorpay subscription",
    description=(
        "Creates a gateway customer when no customer_id is supplied, then a "
        "12-cycle subscription starting in one minute."
    ),
)
async def create_subscription(body: CreateSubscriptionRequest) -> dict:
    return await payment_service.create_subscription(body)


@router.post(
    "/razorpay-webhook",
    response_model=WebhookAck,
    responses={400: {"description": "Missing or invalid signature", "model": ErrorResponse}},
    summary="Razorpay webhook receiver",
)
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(default=None),
) -> WebhookAck:
    """
    The signature covers the exact bytes Razorpay sent, so the raw body is
    read before any JSON parsing.
    """
    raw_body = await request.body()
    return WebhookAck(**payment_service.handle_webhook(raw_body, x_razorpay_signature))


@router.post(
    "/payment-success",
    response_model=PaymentSuccessResponse,
    response_model_exclude_none=True,
    responses={
        400: {"description": "Missing ids or bad signature", "model": ErrorResponse},
        401: {"description": "Not signed in", "model": ErrorResponse},
        403: {"description": "user_id does not match the token", "model": ErrorResponse},
        404: {"description": "Unknown plan", "model": ErrorResponse},
    },
    summary="Confirm a plan purchase",
    description=(
        "Records the payment and moves the caller onto the purchased plan. "
        "Idempotent on razorpay_payment_id."
    ),
)
async def payment_success(
    body: PaymentSuccessRequest,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
) -> PaymentSuccessResponse:
    return PaymentSuccessResponse(**await payment_service.process_payment_success(db, user, body))


@router.get(
    "/purchase-credits",
    response_model=PurchasablePackagesResponse,
    tags=["Credits"],
    summary="Credit packages available for purchase",
)
async def list_purchasable_packages(
    db: AsyncSession = Depends(get_db_session),
) -> PurchasablePackagesResponse:
    return PurchasablePackagesResponse(packages=await payment_service.purchasable_packages(db))


@router.post(
    "/purchase-credits",
    response_model=PurchaseCreditsResponse,
    tags=["Credits"],
    responses={
        400: {"description": "Unknown package (lists availablePackages)", "model": ErrorResponse},
        401: {"description": "Not signed in", "model": ErrorResponse},
        500: {"description": "Gateway not configured or failed", "model": ErrorResponse},
    },
    summary="Create an order for a credit package",
)
async def purchase_credits(
    body: PurchaseCreditsRequest,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
) -> PurchaseCreditsResponse:
    return PurchaseCreditsResponse(**await payment_service.create_credit_order(db, user, body))


@router.post(
    "/credit-purchase-success",
    response_model=CreditPurchaseSuccessResponse,
    tags=["Credits"],
    responses={
        400: {"description": "Missing fields", "model": ErrorResponse},
        401: {"description": "Not signed in", "model": ErrorResponse},
    },
    summary="Grant purchased credits",
)
async def credit_purchase_success(
    body: CreditPurchaseSuccessRequest,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
) -> CreditPurchaseSuccessResponse:
    return CreditPurchaseSuccessResponse(**await payment_service.record_credit_purchase(db, user, body))


@router.get(
    "/payment-history",
    response_model=PaymentHistoryResponse,
    responses={401: {"description": "Not signed in", "model": ErrorResponse}},
    summary="The caller's payments, newest first",
)
async def payment_history(
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
) -> PaymentHistoryResponse:
    return PaymentHistoryResponse(**await payment_service.payment_history(db, user.id, limit, offset))
