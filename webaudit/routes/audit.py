"""
Web Audit API — Audit Tooling Routes
======================================

What:  PageSpeed Insights per project, single-link checks, the scraping
       microservice proxy and the scraped-image batch writer.
Who:   The audit wizard (scrape, scraped-images) and the report tabs
       (pagespeed, check-link).
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.auth import CurrentUser, get_current_user
from webaudit.database import get_db_session
from webaudit.schemas.analysis import AnalysisResponse
from webaudit.schemas.audit import (
    LinkCheckRequest,
    LinkCheckResponse,
    PageSpeedRequest,
    ScrapedImagesRequest,
    ScrapedImagesResponse,
    ScrapeRequest,
)
from webaudit.schemas.common import ErrorResponse
from webaudit.services.link_checker import link_checker
from webaudit.services.pagespeed_service import pagespeed_service
from webaudit.services.scraper_client import insert_scraped_images, scraper_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Audit"])


@router.post(
    "/pagespeed",
    response_model=AnalysisResponse,
    responses={
        400: {"description": "projectId or url missing", "model": ErrorResponse},
        404: {"description": "Unknown project", "model": ErrorResponse},
        503: {"description": "PageSpeed unavailable or not configured", "model": ErrorResponse},
    },
    summary="PageSpeed Insights report for a project",
    description=(
        "Runs a desktop Lighthouse report (performance, accessibility, best practices, SEO) "
        "once per project and caches it on the project row."
    ),
)
async def pagespeed(
    body: PageSpeedRequest,
    db: AsyncSession = Depends(get_db_session),
) -> AnalysisResponse:
    return AnalysisResponse(**await pagespeed_service.analyze_project(db, body.project_id, body.url))


@router.post(
    "/check-link",
    response_model=LinkCheckResponse,
    response_model_exclude_none=True,
    responses={400: {"description": "Missing, malformed or non-HTTP URL", "model": ErrorResponse}},
    summary="Check whether a link works",
    description=(
        "An unreachable URL is still a 200 answer with status 'error': the check "
        "succeeded, the link is broken."
    ),
)
async def check_link(body: LinkCheckRequest) -> LinkCheckResponse:
    return await link_checker.check(body.url)


@router.post(
    "/scrape",
    responses={
        400: {"description": "url missing", "model": ErrorResponse},
        408: {"description": "Scraper timed out", "model": ErrorResponse},
        500: {"description": "Scraper misconfigured or unreachable", "model": ErrorResponse},
    },
    summary="Crawl a site through the scraping service",
    description="Returns the scraping service's JSON unchanged; its error statuses are passed through.",
)
async def scrape(body: ScrapeRequest) -> Any:
    return await scraper_client.scrape(body)


@router.post(
    "/scraped-images",
    response_model=ScrapedImagesResponse,
    responses={
        400: {"description": "images missing or invalid", "model": ErrorResponse},
        401: {"description": "Not signed in", "model": ErrorResponse},
        500: {"description": "Every batch failed", "model": ErrorResponse},
    },
    summary="Store images found by a crawl",
)
async def store_scraped_images(
    body: ScrapedImagesRequest,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
) -> ScrapedImagesResponse:
    result = await insert_scraped_images(db, body.images, user.id)
    return ScrapedImagesResponse(**result)
