"""
Web Audit API — PageSpeed Insights Client
===========================================

What:  Runs Google PageSpeed Insights (Lighthouse) for a project URL and
       caches the raw report on the audit project.
Why:   Lighthouse runs take from seconds to minutes and are rate limited, so
       each project is measured once.
How:   httpx GET with the four categories requested, wrapped in a tenacity
       retry (3 attempts, exponential backoff). Server-side failures and
       rate limits are retried; 4xx answers and timeouts are not.

Failure mapping:
    No API key                    → 503 "PageSpeed API key not configured"
    Lighthouse processing error   → 503 temporarily unavailable
    Other upstream failure        → 500 "Failed to fetch PageSpeed Insights: ..."
    Timeout                       → 500 "PageSpeed request timed out ..."
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from webaudit.config import settings
from webaudit.exceptions import NotFoundError, UpstreamServiceError, ValidationError, WebAuditError
from webaudit.models.audit import AuditProject
from webaudit.validators import is_blank, parse_uuid

logger = logging.getLogger(__name__)

CATEGORIES = ("performance", "accessibility", "best-practices", "seo")
LIGHTHOUSE_UNAVAILABLE = (
    "PageSpeed Insights is temporarily unavailable due to Lighthouse processing issues. "
    "Please try again later."
)


class PageSpeedTransientError(Exception):
    """A failure worth retrying (5xx, 429, connection problems)."""

    def __init__(self, message: str, lighthouse: bool = False):
        super().__init__(message)
        self.lighthouse = lighthouse


class PageSpeedRequestError(Exception):
    """A failure that will not improve on retry (4xx, timeout)."""


# ══════════════════════════════════════════════════════════════════════════
# Score helpers
# ══════════════════════════════════════════════════════════════════════════

def score_label(score: Optional[float]) -> str:
    """Maps a 0..1 Lighthouse score to the label shown on the dashboard."""
    if score is None:
        return "Poor"
    if score >= 0.9:
        return "Excellent"
    if score >= 0.8:
        return "Good"
    if score >= 0.6:
        return "Needs Improvement"
    return "Poor"


def score_percent(score: Optional[float]) -> int:
    if score is None:
        return 0
    return max(0, min(100, round(float(score) * 100)))


def summarize_scores(report: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Per-category {score (0-100), label} extracted from a PSI report."""
    categories = (report.get("lighthouseResult") or {}).get("categories") or {}
    summary = {}
    for key in CATEGORIES:
        raw = (categories.get(key) or {}).get("score")
        summary[key] = {"score": score_percent(raw), "label": score_label(raw)}
    return summary


def normalize_url(url: str) -> str:
    url = url.strip()
    return url if url.startswith("http") else f"https://{url}"


# ══════════════════════════════════════════════════════════════════════════
# Service
# ══════════════════════════════════════════════════════════════════════════

class PageSpeedService:

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport
        self.wait = wait_exponential(multiplier=1, min=1, max=8)

    async def fetch_report(self, url: str) -> Dict[str, Any]:
        """
        Returns the raw PSI JSON for `url`.

        Raises:
            UpstreamServiceError: key missing or Lighthouse failing (503)
            WebAuditError: any other failure after retries (500)
        """
        if not settings.pagespeed_api_key:
            raise UpstreamServiceError(
                message="PageSpeed API key not configured",
                error_code="pagespeed_not_configured",
            )

        target = normalize_url(url)
        params = [("url", target), ("key", settings.pagespeed_api_key), ("strategy", settings.pagespeed_strategy)]
        params += [("category", c) for c in CATEGORIES]

        start = time.time()
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(PageSpeedTransientError),
                stop=stop_after_attempt(3),
                wait=self.wait,
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    report = await self._request(params)
        except PageSpeedTransientError as e:
            if e.lighthouse:
                raise UpstreamServiceError(message=LIGHTHOUSE_UNAVAILABLE, error_code="pagespeed_unavailable")
            raise WebAuditError(message=f"Failed to fetch PageSpeed Insights: {e}", error_code="pagespeed_error")
        except PageSpeedRequestError as e:
            raise WebAuditError(message=f"Failed to fetch PageSpeed Insights: {e}", error_code="pagespeed_error")

        logger.info(
            "PageSpeed report for %s received in %.0fms: %s",
            target,
            (time.time() - start) * 1000,
            {k: v["label"] for k, v in summarize_scores(report).items()},
        )
        return report

    async def _request(self, params) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=settings.pagespeed_timeout,
                headers={"Accept": "application/json", "User-Agent": "WebAudit/1.0"},
            ) as client:
                response = await client.get(settings.pagespeed_api_url, params=params)
        except httpx.TimeoutException:
            raise PageSpeedRequestError(
                f"PageSpeed request timed out after {settings.pagespeed_timeout} seconds"
            )
        except httpx.TransportError as e:
            raise PageSpeedTransientError(f"Network error: {type(e).__name__}")

        if response.status_code == 200:
            return response.json()

        detail = response.text[:500]
        if response.status_code >= 500 or response.status_code == 429:
            lighthouse = False
            try:
                lighthouse = (response.json().get("error") or {}).get("reason") == "lighthouseError"
            except ValueError:
                pass
            if not lighthouse and "lighthouseError" in detail:
                lighthouse = True
            raise PageSpeedTransientError(
                f"PageSpeed API error: {response.status_code}", lighthouse=lighthouse
            )

        logger.error("PageSpeed API returned %d: %s", response.status_code, detail)
        raise PageSpeedRequestError(f"PageSpeed API error: {response.status_code}. Details: {detail}")

    async def analyze_project(self, db: AsyncSession, project_id: Any, url: Any) -> Dict[str, Any]:
        """Cached per project: the first successful report is stored and reused."""
        if is_blank(project_id) or is_blank(url):
            raise ValidationError(message="Project ID and URL are required")
        pid = parse_uuid(project_id, "projectId")

        result = await db.execute(select(AuditProject).where(AuditProject.id == pid))
        project = result.scalar_one_or_none()
        if project is None:
            raise NotFoundError(resource="project", resource_id=str(pid))

        if project.pagespeed_insights_data:
            logger.info("Returning cached PageSpeed analysis for project %s", pid)
            return {"success": True, "analysis": project.pagespeed_insights_data, "cached": True}

        report = await self.fetch_report(url)

        project.pagespeed_insights_data = report
        project.pagespeed_insights_loading = False
        project.pagespeed_insights_error = None
        await db.flush()
        logger.info("PageSpeed analysis saved for project %s", pid)
        return {"success": True, "analysis": report, "cached": False}


pagespeed_service = PageSpeedService()
