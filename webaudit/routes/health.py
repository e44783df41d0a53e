"""
Web Audit API — Health Check Route
====================================

What:  Health check endpoint for monitoring and load balancer probes.
Why:   Load balancers route away from instances that cannot reach the
       database; monitoring wants to know when Gemini is struggling.
How:   Checks the database and the Gemini circuit/API and returns status.
Who:   Called by container health checks, load balancers and monitoring.

Status levels:
    - healthy:   All dependencies operational
    - degraded:  Gemini unavailable or its circuit is open (audits still work)
    - unhealthy: Database unreachable
"""

import logging
import time

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from webaudit import __version__
from webaudit.database import engine
from webaudit.schemas.common import HealthResponse
from webaudit.services.gemini_service import gemini_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

# Initialized once when the module loads
_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description=(
        "Returns the health status of the backend service and its dependencies. "
        "Used by container health checks and load balancers."
    ),
)
async def health_check() -> HealthResponse:
    """
    Probes database and Gemini connectivity, returns aggregate status.

    Check details:
        Database: Executes SELECT 1 to verify connection and query execution
        Gemini: Circuit breaker state first, then list_models()
    """
    db_status = "connected"
    gemini_status = "available"
    overall = "healthy"

    # ── Check Database ────────────────────────────────────────────────────
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    # ── Check Gemini API ──────────────────────────────────────────────────
    if gemini_service.circuit_breaker.state == gemini_service.circuit_breaker.OPEN:
        gemini_status = "circuit_open"
    elif not await gemini_service.health_check():
        gemini_status = "unavailable"

    if gemini_status != "available" and overall == "healthy":
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        gemini=gemini_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
