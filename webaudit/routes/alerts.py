"""
Web Audit API — Alert Route Handlers
======================================

What:  The user-facing banner feed (GET/POST /api/alerts) and the admin
       alert console (/api/admin/alerts).
Who:   The dashboard banner component and the admin Alerts page.

Caching Strategy:
    GET /api/alerts counts a view per call, so it is never cached.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.auth import CurrentUser, require_admin
from webaudit.database import get_db_session
from webaudit.schemas.alert import (
    AlertClick,
    AlertCreate,
    AlertEnvelope,
    AlertListResponse,
    AlertStatsResponse,
    AlertUpdate,
)
from webaudit.schemas.common import ErrorResponse, SuccessResponse
from webaudit.services.alert_service import alert_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Alerts"])


@router.get(
    "/alerts",
    response_model=AlertListResponse,
    summary="Active alerts for a plan",
    description=(
        "Returns active alerts inside their display window aimed at everyone or at "
        "the given plan, highest priority first. Each returned alert counts a view."
    ),
)
async def list_visible_alerts(
    response: Response,
    plan: Optional[str] = Query(default=None, description="Caller's plan; 'free' when omitted"),
    db: AsyncSession = Depends(get_db_session),
) -> AlertListResponse:
    alerts = await alert_service.visible_alerts(db, plan)
    response.headers["Cache-Control"] = "no-store"
    return AlertListResponse(alerts=alerts)


@router.post(
    "/alerts",
    response_model=SuccessResponse,
    response_model_exclude_none=True,
    responses={
        400: {"description": "Missing alertId", "model": ErrorResponse},
        404: {"description": "Unknown alert", "model": ErrorResponse},
    },
    summary="Record an alert click",
)
async def record_alert_click(
    body: AlertClick,
    db: AsyncSession = Depends(get_db_session),
) -> SuccessResponse:
    await alert_service.record_click(db, body.alert_id)
    return SuccessResponse()


# ══════════════════════════════════════════════════════════════════════════
# Admin console
# ══════════════════════════════════════════════════════════════════════════


@router.get(
    "/admin/alerts/stats",
    response_model=AlertStatsResponse,
    response_model_by_alias=True,
    summary="Alert dashboard statistics",
)
async def alert_stats(
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> AlertStatsResponse:
    return AlertStatsResponse(stats=await alert_service.stats(db))


@router.get(
    "/admin/alerts",
    response_model=AlertListResponse,
    summary="List all alerts",
    description="Newest first. Each filter accepts 'all' to mean no filter.",
)
async def admin_list_alerts(
    status: Optional[str] = Query(default=None),
    type: Optional[str] = Query(default=None, description="Alert type filter"),
    severity: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> AlertListResponse:
    alerts = await alert_service.list_alerts(db, status=status, alert_type=type, severity=severity)
    return AlertListResponse(alerts=alerts)


@router.post(
    "/admin/alerts",
    status_code=201,
    response_model=AlertEnvelope,
    responses={400: {"description": "Title or message missing", "model": ErrorResponse}},
    summary="Create an alert",
)
async def admin_create_alert(
    body: AlertCreate,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> AlertEnvelope:
    alert = await alert_service.create_alert(db, body)
    logger.info("Admin %s created alert %s", admin.id, alert.id)
    return AlertEnvelope(alert=alert)


@router.put(
    "/admin/alerts",
    response_model=AlertEnvelope,
    responses={
        400: {"description": "Missing id or blank title/message", "model": ErrorResponse},
        404: {"description": "Unknown alert", "model": ErrorResponse},
    },
    summary="Update an alert",
    description="Partial update; the alert id travels in the body.",
)
async def admin_update_alert(
    body: AlertUpdate,
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> AlertEnvelope:
    alert = await alert_service.update_alert(db, body.id, body)
    return AlertEnvelope(alert=alert)


@router.delete(
    "/admin/alerts",
    response_model=SuccessResponse,
    response_model_exclude_none=True,
    responses={
        400: {"description": "Missing id", "model": ErrorResponse},
        404: {"description": "Unknown alert", "model": ErrorResponse},
    },
    summary="Delete an alert",
)
async def admin_delete_alert(
    id: Optional[str] = Query(default=None, description="Alert id"),
    db: AsyncSession = Depends(get_db_session),
    admin: CurrentUser = Depends(require_admin),
) -> SuccessResponse:
    await alert_service.delete_alert(db, id)
    logger.info("Admin %s deleted alert %s", admin.id, id)
    return SuccessResponse()
