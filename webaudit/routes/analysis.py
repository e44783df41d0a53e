"""
Web Audit API — AI Analysis Route Handlers
============================================

What:  Gemini content analysis (plain and streamed) and image analysis for
       scraped pages, plus cache lookups for both.
Why:   Content analysis takes 10-30 seconds; the streaming variant keeps the
       browser informed instead of leaving a spinner on a silent request.
Who:   The audit report's Content and Images tabs.

Caching Strategy:
    A page is analyzed once. A cached result returned by the streaming
    endpoint is served as JSON with `Cache-Control: public, max-age=3600`;
    it does not change for the lifetime of the page row.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.database import get_db_session
from webaudit.schemas.analysis import AnalysisResponse, ContentAnalysisRequest, ImageAnalysisRequest
from webaudit.schemas.common import ErrorResponse
from webaudit.services.analysis_service import analysis_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Analysis"])

_ERRORS = {
    400: {"description": "Missing required fields", "model": ErrorResponse},
    503: {"description": "Gemini unavailable or circuit open", "model": ErrorResponse},
}


@router.post(
    "/gemini-analysis",
    response_model=AnalysisResponse,
    responses=_ERRORS,
    summary="Analyze page content",
    description=(
        "Grammar, consistency, readability and UK-English review of a scraped page. "
        "Returns the cached result when the page has already been analyzed."
    ),
)
async def analyze_content(
    body: ContentAnalysisRequest,
    db: AsyncSession = Depends(get_db_session),
) -> AnalysisResponse:
    result = await analysis_service.analyze_content(db, body.page_id, body.content, body.url)
    return AnalysisResponse(**result)


@router.get(
    "/gemini-analysis",
    response_model=AnalysisResponse,
    responses={400: {"description": "Missing pageId", "model": ErrorResponse}},
    summary="Cached content analysis for a page",
)
async def get_content_analysis(
    page_id: Optional[str] = Query(default=None, alias="pageId"),
    db: AsyncSession = Depends(get_db_session),
) -> AnalysisResponse:
    analysis = await analysis_service.get_cached(db, page_id)
    return AnalysisResponse(analysis=analysis, cached=analysis is not None)


@router.post(
    "/gemini-analysis-stream",
    responses={
        200: {"description": "text/event-stream of progress events, or cached JSON"},
        **_ERRORS,
    },
    summary="Analyze page content with progress events",
)
async def analyze_content_stream(
    body: ContentAnalysisRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """
    Validation, cache lookup and the availability check happen before the
    stream opens, so those failures still get a proper status code. Once
    the stream has started, failures arrive as an `error` event.
    """
    page_id = analysis_service.validate_content_request(body.page_id, body.content, body.url)

    cached = await analysis_service.get_cached(db, page_id)
    if cached:
        return JSONResponse(
            content={"success": True, "analysis": cached, "cached": True, "status": "completed"},
            headers={"Cache-Control": "public, max-age=3600"},
        )

    await analysis_service.ensure_available()
    return StreamingResponse(
        analysis_service.stream_content_analysis(page_id, body.content, body.url),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post(
    "/image-analysis",
    response_model=AnalysisResponse,
    responses={
        **_ERRORS,
        403: {"description": "Plan does not include image analysis", "model": ErrorResponse},
    },
    summary="Analyze an image from a scraped page",
    description=(
        "Downloads the image, validates its size and type, and asks Gemini for alt-text, "
        "relevance and quality feedback. With userId the caller's plan must include "
        "grammar_content_analysis."
    ),
)
async def analyze_image(
    body: ImageAnalysisRequest,
    db: AsyncSession = Depends(get_db_session),
) -> AnalysisResponse:
    result = await analysis_service.analyze_image(
        db, body.page_id, body.image_url, body.page_url, user_id=body.user_id
    )
    return AnalysisResponse(**result)


@router.get(
    "/image-analysis",
    response_model=AnalysisResponse,
    responses={400: {"description": "Missing pageId", "model": ErrorResponse}},
    summary="Cached image analysis for a page",
)
async def get_image_analysis(
    page_id: Optional[str] = Query(default=None, alias="pageId"),
    db: AsyncSession = Depends(get_db_session),
) -> AnalysisResponse:
    analysis = await analysis_service.get_cached(db, page_id, "image_gemini_analysis")
    return AnalysisResponse(analysis=analysis, cached=analysis is not None)
