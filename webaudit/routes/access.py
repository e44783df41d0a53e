"""
Web Audit API — Feature Access and Plan Expiry Routes
=======================================================

What:  Plan gating checks used before starting an audit, the caller's plan
       expiry status and self-service downgrade, and the scheduled sweep
       that downgrades every expired plan.
Who:   The audit wizard (check-feature-access, validate-crawl), the
       dashboard (check-plan-expiry) and the external scheduler (cron).
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.auth import CurrentUser, get_current_user
from webaudit.database import get_db_session
from webaudit.schemas.access import (
    CronResult,
    DowngradeResponse,
    FeatureAccessRequest,
    PlanExpiryResponse,
    ValidateCrawlRequest,
    ValidateCrawlResponse,
)
from webaudit.schemas.common import ErrorResponse
from webaudit.services.feature_access import feature_access_service
from webaudit.services.plan_expiry_service import plan_expiry_service, verify_cron_secret

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Access"])


@router.post(
    "/check-feature-access",
    responses={401: {"description": "Not signed in", "model": ErrorResponse}},
    summary="Check the caller's access to a feature",
    description=(
        "Without featureId: the caller's plan, allowed features and project limit. "
        "With featureId: whether that feature is included."
    ),
)
async def check_feature_access(
    body: FeatureAccessRequest,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
) -> Dict[str, Any]:
    return await feature_access_service.plan_summary(db, user.id, body.feature_id)


@router.post(
    "/validate-crawl",
    response_model=ValidateCrawlResponse,
    responses={
        400: {"description": "userId missing", "model": ErrorResponse},
        403: {"description": "Crawl type, project limit or feature denied", "model": ErrorResponse},
    },
    summary="Gate a crawl request",
)
async def validate_crawl(
    body: ValidateCrawlRequest,
    db: AsyncSession = Depends(get_db_session),
) -> ValidateCrawlResponse:
    result = await feature_access_service.validate_crawl(
        db, body.user_id, body.crawl_type, body.requested_features
    )
    return ValidateCrawlResponse(**result)


# ── Plan expiry ───────────────────────────────────────────────────────────


@router.get(
    "/check-plan-expiry",
    response_model=PlanExpiryResponse,
    responses={401: {"description": "Not signed in", "model": ErrorResponse}},
    summary="The caller's plan expiry status",
)
async def check_plan_expiry(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
) -> PlanExpiryResponse:
    return PlanExpiryResponse(**await plan_expiry_service.check_expiry(db, user.id))


@router.post(
    "/check-plan-expiry",
    response_model=DowngradeResponse,
    response_model_exclude_none=True,
    responses={401: {"description": "Not signed in", "model": ErrorResponse}},
    summary="Downgrade the caller if their plan has expired",
)
async def downgrade_if_expired(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
) -> DowngradeResponse:
    return DowngradeResponse(**await plan_expiry_service.downgrade_if_expired(db, user.id))


async def _run_expired_plan_sweep(db: AsyncSession, secret: Optional[str]) -> CronResult:
    verify_cron_secret(secret)
    logger.info("Starting expired plan sweep")
    return CronResult(**await plan_expiry_service.downgrade_all_expired(db))


@router.get(
    "/cron/check-expired-plans",
    response_model=CronResult,
    tags=["Cron"],
    responses={401: {"description": "Bad or missing x-cron-secret", "model": ErrorResponse}},
    summary="Downgrade every expired plan",
)
async def cron_check_expired_plans(
    x_cron_secret: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db_session),
) -> CronResult:
    return await _run_expired_plan_sweep(db, x_cron_secret)


@router.post(
    "/cron/check-expired-plans",
    response_model=CronResult,
    tags=["Cron"],
    responses={401: {"description": "Bad or missing x-cron-secret", "model": ErrorResponse}},
    summary="Downgrade every expired plan",
    description="POST alias for schedulers that cannot send GET.",
)
async def cron_check_expired_plans_post(
    x_cron_secret: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db_session),
) -> CronResult:
    return await _run_expired_plan_sweep(db, x_cron_secret)
