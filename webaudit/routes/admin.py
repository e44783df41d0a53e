"""
Web Audit API — Admin Reporting Routes
========================================

What:  Read-only dashboards for staff: activity feed, headline counters,
       payment statistics, chart series and the payment ledger.
Who:   The admin panel. Every route requires `users.role == 'admin'`.

Caching Strategy:
    `private, max-age=30`: the dashboard polls, and half a minute of
    staleness is acceptable for aggregate numbers.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.auth import CurrentUser, require_admin
from webaudit.database import get_db_session
from webaudit.schemas.common import ErrorResponse
from webaudit.services.admin_service import admin_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["Admin"],
    responses={
        401: {"description": "Not signed in", "model": ErrorResponse},
        403: {"description": "Not an admin", "model": ErrorResponse},
    },
)

_DASHBOARD_CACHE = "private, max-age=30"


@router.get("/recent-activity", summary="Latest registrations, audits, payments and tickets")
async def recent_activity(
    response: Response,
    limit: int = Query(default=10, ge=1, le=50),
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> Dict[str, List[Dict[str, Any]]]:
    activities = await admin_service.recent_activity(db, limit)
    response.headers["Cache-Control"] = _DASHBOARD_CACHE
    return {"activities": activities}


@router.get("/overview-stats", summary="Headline counters")
async def overview_stats(
    response: Response,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> Dict[str, Any]:
    stats = await admin_service.overview_stats(db)
    response.headers["Cache-Control"] = _DASHBOARD_CACHE
    return stats


@router.get(
    "/payment-stats",
    summary="Subscription counts and revenue",
    responses={400: {"description": "Unparsable date or plan id", "model": ErrorResponse}},
)
async def payment_stats(
    response: Response,
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    plan_id: Optional[str] = Query(default=None, alias="planId"),
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> Dict[str, Any]:
    stats = await admin_service.payment_stats(db, start_date, end_date, plan_id)
    response.headers["Cache-Control"] = _DASHBOARD_CACHE
    return stats


@router.get(
    "/chart-data",
    summary="Monthly chart series",
    description="chartType is revenue, users or plans; the default range is the last 12 months.",
    responses={400: {"description": "Invalid chart type", "model": ErrorResponse}},
)
async def chart_data(
    response: Response,
    chart_type: str = Query(default="revenue", alias="chartType"),
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    plan_id: Optional[str] = Query(default=None, alias="planId"),
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> Dict[str, Any]:
    data = await admin_service.chart_data(db, chart_type, start_date, end_date, plan_id)
    response.headers["Cache-Control"] = _DASHBOARD_CACHE
    return {"chartType": chart_type, "data": data}


@router.get("/payment-history", summary="Paginated payment ledger with per-plan statistics")
async def payment_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> Dict[str, Any]:
    return await admin_service.payment_history(db, page, limit, status)
