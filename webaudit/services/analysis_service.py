"""
Web Audit API — AI Analysis Orchestrator
==========================================

What:  Coordinates cache lookup → availability check → Gemini analysis →
       persistence for scraped pages, in a plain and a streaming flavour.
Why:   Analyses are slow and billed per call; a page is analyzed once and the
       result is cached on `scraped_pages`.
How:   Composes the ContentAnalyzer (Gemini), ImageService and the feature
       gate. The streaming variant yields server-sent events while the model
       call is in flight.
Who:   Called by the analysis routes.

Orchestration Flow (POST /api/gemini-analysis):
    ┌──────────┐    ┌──────────────┐    ┌─────────────┐    ┌──────────┐
    │ Validate │───▶│ Cached?      │───▶│ Gemini      │───▶│ Persist  │
    │  fields  │    │ (scraped_    │ no │ analyze_    │    │ (UPDATE) │
    └──────────┘    │  pages)      │    │ content()   │    └──────────┘
                    └──────────────┘    └─────────────┘
                          │ yes → return cached result

Streaming event sequence:
    starting(5) → analyzing(25) → analyzing ticks every 2s (≤70)
    → saving(85) → completed(100, analysis)      or → error
    The result is written only after `completed` has been sent.
"""

import asyncio
import json
import logging
import time
import uuid
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from webaudit.database import async_session_factory
from webaudit.exceptions import DatabaseError, UpstreamServiceError, ValidationError
from webaudit.models.audit import ScrapedPage
from webaudit.services.feature_access import FeatureAccessService, feature_access_service
from webaudit.services.gemini_service import gemini_service
from webaudit.services.image_service import ImageService, image_service
from webaudit.services.llm_base import ContentAnalyzer
from webaudit.validators import is_blank, parse_uuid

logger = logging.getLogger(__name__)

IMAGE_ANALYSIS_FEATURE = "grammar_content_analysis"
GEMINI_UNAVAILABLE = "Gemini API is not available"


def sse_event(payload: Dict[str, Any]) -> str:
    """Formats one server-sent event carrying a JSON payload."""
    return f"data: {json.dumps(payload, default=str)}\n\n"


class AnalysisService:
    """
    Stateless apart from its collaborators, which tests replace:
        analyzer         ContentAnalyzer (Gemini in production)
        images           ImageService
        access           FeatureAccessService
        session_factory  sessions for writes made after a stream has started
    """

    # Seconds between "still analyzing" events while the model call runs
    progress_interval: float = 2.0

    def __init__(
        self,
        analyzer: ContentAnalyzer = gemini_service,
        images: ImageService = image_service,
        access: FeatureAccessService = feature_access_service,
        session_factory: async_sessionmaker = async_session_factory,
    ):
        self.analyzer = analyzer
        self.images = images
        self.access = access
        self.session_factory = session_factory

    # ── Validation and cache ──────────────────────────────────────────────

    @staticmethod
    def validate_content_request(page_id: Any, content: Any, url: Any) -> uuid.UUID:
        if is_blank(page_id) or is_blank(content) or is_blank(url):
            raise ValidationError(message="Missing required fields: pageId, content, url")
        return parse_uuid(page_id, "pageId")

    async def get_cached(self, db: AsyncSession, page_id: Any, column: str = "gemini_analysis") -> Optional[Dict[str, Any]]:
        """Returns the cached analysis for a page, or None (also for unknown pages)."""
        if is_blank(page_id):
            raise ValidationError(message="Missing pageId parameter", field="pageId")
        pid = parse_uuid(page_id, "pageId")
        result = await db.execute(select(getattr(ScrapedPage, column)).where(ScrapedPage.id == pid))
        return result.scalar_one_or_none()

    async def _persist(self, db: AsyncSession, page_id: uuid.UUID, column: str, analysis: Dict[str, Any]) -> None:
        try:
            result = await db.execute(
                update(ScrapedPage).where(ScrapedPage.id == page_id).values({column: analysis})
            )
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to save %s for page %s: %s", column, page_id, e)
            raise DatabaseError(message="Failed to save analysis", context={"page_id": str(page_id)})
        if result.rowcount == 0:
            logger.warning("Analysis for unknown page %s was not stored", page_id)

    async def ensure_available(self) -> None:
        if not await self.analyzer.is_available():
            raise UpstreamServiceError(message=GEMINI_UNAVAILABLE, error_code="gemini_unavailable")

    # ── Content analysis ──────────────────────────────────────────────────

    async def analyze_content(self, db: AsyncSession, page_id: Any, content: Any, url: Any) -> Dict[str, Any]:
        start = time.time()
        pid = self.validate_content_request(page_id, content, url)

        cached = await self.get_cached(db, pid)
        if cached:
            logger.info("Returning cached content analysis for page %s", pid)
            return {"success": True, "analysis": cached, "cached": True}

        await self.ensure_available()
        analysis = await self.analyzer.analyze_content(content, url)
        await self._persist(db, pid, "gemini_analysis", analysis)

        logger.info("Content analysis for page %s finished in %.0fms", pid, (time.time() - start) * 1000)
        return {"success": True, "analysis": analysis, "cached": False}

    async def stream_content_analysis(self, page_id: uuid.UUID, content: str, url: str) -> AsyncIterator[str]:
        """
        Server-sent events for one analysis. Errors become a final `error`
        event; the HTTP status has already been sent as 200.
        """
        yield sse_event({"status": "starting", "message": "Initializing AI analysis...", "progress": 5})
        yield sse_event({"status": "analyzing", "message": "AI is analyzing your content...", "progress": 25})

        task = asyncio.ensure_future(self.analyzer.analyze_content(content, url))
        ticks = 0
        try:
            while True:
                done, _ = await asyncio.wait({task}, timeout=self.progress_interval)
                if done:
                    break
                ticks += 1
                yield sse_event({
                    "status": "analyzing",
                    "message": "AI is analyzing your content...",
                    "progress": min(70, 25 + 5 * ticks),
                })
            analysis = task.result()
        except Exception as e:
            logger.error("Streaming analysis for page %s failed: %s", page_id, e)
            yield sse_event({"status": "error", "error": "Analysis failed"})
            return
        finally:
            if not task.done():
                task.cancel()

        yield sse_event({"status": "saving", "message": "Saving analysis to database...", "progress": 85})
        yield sse_event({"status": "completed", "analysis": analysis, "cached": False, "progress": 100})

        await self._save_detached(page_id, analysis)

    async def _save_detached(self, page_id: uuid.UUID, analysis: Dict[str, Any]) -> None:
        """Writes with its own session; the request's session is gone by now."""
        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(ScrapedPage)
                    .where(ScrapedPage.id == page_id)
                    .values(gemini_analysis=analysis)
                )
                await session.commit()
            logger.info("Streamed analysis saved for page %s", page_id)
        except SQLAlchemyError as e:
            logger.error("Error saving streamed analysis for page %s: %s", page_id, e)

    # ── Image analysis ────────────────────────────────────────────────────

    async def analyze_image(
        self,
        db: AsyncSession,
        page_id: Any,
        image_url: Any,
        page_url: Any,
        user_id: Any = None,
    ) -> Dict[str, Any]:
        if is_blank(page_id) or is_blank(image_url) or is_blank(page_url):
            raise ValidationError(message="Missing required fields: pageId, imageUrl, pageUrl")
        pid = parse_uuid(page_id, "pageId")

        if not is_blank(user_id):
            await self.access.require_feature(db, parse_uuid(user_id, "userId"), IMAGE_ANALYSIS_FEATURE)

        # SAVEPOINT so a failed lookup does not abort the transaction _persist needs
        try:
            async with db.begin_nested():
                cached = await self.get_cached(db, pid, "image_gemini_analysis")
        except SQLAlchemyError as e:
            logger.warning("Could not check existing image analysis for page %s: %s", pid, e)
            cached = None
        if cached:
            return {"success": True, "analysis": cached, "cached": True}

        await self.ensure_available()
        async with self.images.scratch_image(image_url) as local_path:
            analysis = await self.analyzer.analyze_image(local_path, image_url, page_url)

        await self._persist(db, pid, "image_gemini_analysis", analysis)
        return {"success": True, "analysis": analysis, "cached": False}


analysis_service = AnalysisService()
