"""
Web Audit API — Plan and Credit Package Schemas
=================================================

What:  Request/response models for the plan catalogue, the gateway plan
       listing and credit packages.
Why:   Enum checks (plan type, billing cycle) happen in the service so the
       client gets the exact message the pricing admin UI displays; the
       schemas here only fix the shapes.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer


# ══════════════════════════════════════════════════════════════════════════
# Plans
# ══════════════════════════════════════════════════════════════════════════


class PlanResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str
    price: Decimal
    currency: str
    billing_cycle: str
    plan_type: str
    features: List[Any] = []
    can_use_features: List[str] = []
    max_projects: int
    limits: Dict[str, Any] = {}
    image_scan_credits: Optional[int] = None
    is_active: bool
    is_popular: bool
    color: str
    sort_order: int
    razorpay_plan_id: Optional[str] = None
    subscription_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_serializer("price")
    def serialize_price(self, price: Decimal) -> float:
        return float(price)


class PlanListResponse(BaseModel):
    plans: List[PlanResponse]
    total: int


class PlanEnvelope(BaseModel):
    plan: PlanResponse
    message: Optional[str] = None


class PlanFields(BaseModel):
    """Writable plan fields; None means 'not supplied'."""
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    currency: Optional[str] = None
    billing_cycle: Optional[str] = None
    plan_type: Optional[str] = None
    features: Optional[List[Any]] = None
    can_use_features: Optional[List[str]] = None
    max_projects: Optional[int] = Field(default=None, ge=-1)
    limits: Optional[Dict[str, Any]] = None
    image_scan_credits: Optional[int] = None
    is_active: Optional[bool] = None
    is_popular: Optional[bool] = None
    color: Optional[str] = None
    sort_order: Optional[int] = None
    razorpay_plan_id: Optional[str] = None
    subscription_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class GatewayPlan(BaseModel):
    """A plan as defined in Razorpay, formatted for the pricing page."""
    id: str
    name: str
    description: str
    amount: int = Field(description="Smallest currency unit")
    currency: str
    interval: Optional[str] = None
    interval_count: Optional[int] = None
    period: str = Field(description="Human-readable billing period, e.g. 'per month'")
    price: str = Field(description="Display price, e.g. '₹999'")
    features: List[str]
    popular: bool
    color: str
    status: Optional[str] = None
    created_at: Optional[int] = None
    subscription_count: int = 0


class GatewayPlanListResponse(BaseModel):
    plans: List[GatewayPlan]
    total: int
    error: Optional[str] = None


# ══════════════════════════════════════════════════════════════════════════
# Credit packages
# ══════════════════════════════════════════════════════════════════════════


class CreditPackageResponse(BaseModel):
    id: uuid.UUID
    credits: int
    price: float
    label: str
    is_active: bool
    sort_order: int
    price_per_credit: float = Field(serialization_alias="pricePerCredit")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CreditPackageFields(BaseModel):
    # Loose types so that "credits must be an integer" reaches the client as
    # the service's own 400 message
    credits: Optional[Any] = None
    price: Optional[Any] = None
    label: Optional[str] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class CreditPackageListResponse(BaseModel):
    success: bool = True
    packages: List[CreditPackageResponse]


class CreditPackageEnvelope(BaseModel):
    success: bool = True
    package: CreditPackageResponse
