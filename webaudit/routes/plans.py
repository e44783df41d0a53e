"""
Web Audit API — Plan Catalogue and Credit Package Routes
==========================================================

What:  /api/plans (pricing plans CRUD), /api/razorpay-plans (plans defined
       in the gateway) and /api/credit-packages (image-scan credit bundles).
Who:   The public pricing page reads; the admin pricing console writes.

Caching Strategy:
    GET /api/plans and /api/credit-packages: short public cache (60s);
    prices change rarely but an admin expects edits to show up quickly.
"""

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.auth import CurrentUser, require_admin
from webaudit.database import get_db_session
from webaudit.schemas.common import ErrorResponse, SuccessResponse
from webaudit.schemas.plan import (
    CreditPackageEnvelope,
    CreditPackageFields,
    CreditPackageListResponse,
    GatewayPlanListResponse,
    PlanEnvelope,
    PlanFields,
    PlanListResponse,
)
from webaudit.services.credit_package_service import credit_package_service
from webaudit.services.plan_service import plan_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Plans"])

_CATALOGUE_CACHE = "public, max-age=60"


# ── Plans ─────────────────────────────────────────────────────────────────


@router.get(
    "/plans",
    response_model=PlanListResponse,
    summary="List active plans",
    description="Active plans inside their optional start/end window, by sort order.",
)
async def list_plans(response: Response, db: AsyncSession = Depends(get_db_session)) -> PlanListResponse:
    plans = await plan_service.list_active(db)
    response.headers["Cache-Control"] = _CATALOGUE_CACHE
    return PlanListResponse(plans=plans, total=len(plans))


@router.post(
    "/plans",
    status_code=201,
    response_model=PlanEnvelope,
    responses={400: {"description": "Invalid plan fields", "model": ErrorResponse}},
    summary="Create a plan",
)
async def create_plan(
    body: PlanFields,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> PlanEnvelope:
    plan = await plan_service.create_plan(db, body)
    return PlanEnvelope(plan=plan, message="Plan created successfully")


@router.get(
    "/plans/{plan_id}",
    response_model=PlanEnvelope,
    responses={404: {"description": "Plan not found", "model": ErrorResponse}},
    summary="Get a plan",
)
async def get_plan(plan_id: str, db: AsyncSession = Depends(get_db_session)) -> PlanEnvelope:
    return PlanEnvelope(plan=await plan_service.get_plan(db, plan_id))


@router.put(
    "/plans/{plan_id}",
    response_model=PlanEnvelope,
    responses={
        400: {"description": "Invalid plan fields", "model": ErrorResponse},
        404: {"description": "Plan not found", "model": ErrorResponse},
    },
    summary="Update a plan",
)
async def update_plan(
    plan_id: str,
    body: PlanFields,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> PlanEnvelope:
    plan = await plan_service.update_plan(db, plan_id, body)
    return PlanEnvelope(plan=plan, message="Plan updated successfully")


@router.delete(
    "/plans/{plan_id}",
    response_model=SuccessResponse,
    responses={404: {"description": "Plan not found", "model": ErrorResponse}},
    summary="Deactivate a plan",
    description="Soft delete: the plan is hidden from the catalogue but payments keep referencing it.",
)
async def delete_plan(
    plan_id: str,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> SuccessResponse:
    await plan_service.delete_plan(db, plan_id)
    return SuccessResponse(message="Plan deleted successfully")


@router.get(
    "/razorpay-plans",
    response_model=GatewayPlanListResponse,
    response_model_exclude_none=True,
    summary="Plans defined in Razorpay",
    description=(
        "Formats the gateway's plan list for the pricing page, sorted by amount. "
        "Returns an empty list with an `error` string when the gateway is not configured."
    ),
)
async def list_gateway_plans() -> GatewayPlanListResponse:
    return GatewayPlanListResponse(**await plan_service.list_gateway_plans())


# ── Credit packages ───────────────────────────────────────────────────────


@router.get(
    "/credit-packages",
    response_model=CreditPackageListResponse,
    tags=["Credits"],
    summary="List active credit packages",
)
async def list_credit_packages(
    response: Response, db: AsyncSession = Depends(get_db_session)
) -> CreditPackageListResponse:
    packages = await credit_package_service.list_active(db)
    response.headers["Cache-Control"] = _CATALOGUE_CACHE
    return CreditPackageListResponse(packages=packages)


@router.post(
    "/credit-packages",
    status_code=201,
    response_model=CreditPackageEnvelope,
    tags=["Credits"],
    responses={400: {"description": "Invalid or duplicate package", "model": ErrorResponse}},
    summary="Create a credit package",
)
async def create_credit_package(
    body: CreditPackageFields,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> CreditPackageEnvelope:
    package = await credit_package_service.create_package(db, body)
    return CreditPackageEnvelope(package=package)


@router.put(
    "/credit-packages/{package_id}",
    response_model=CreditPackageEnvelope,
    tags=["Credits"],
    responses={
        400: {"description": "Invalid or duplicate package", "model": ErrorResponse},
        404: {"description": "Package not found", "model": ErrorResponse},
    },
    summary="Update a credit package",
)
async def update_credit_package(
    package_id: str,
    body: CreditPackageFields,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> CreditPackageEnvelope:
    package = await credit_package_service.update_package(db, package_id, body)
    return CreditPackageEnvelope(package=package)


@router.delete(
    "/credit-packages/{package_id}",
    response_model=SuccessResponse,
    tags=["Credits"],
    responses={404: {"description": "Package not found", "model": ErrorResponse}},
    summary="Deactivate a credit package",
)
async def delete_credit_package(
    package_id: str,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> SuccessResponse:
    await credit_package_service.delete_package(db, package_id)
    return SuccessResponse(message="Credit package deleted successfully")
