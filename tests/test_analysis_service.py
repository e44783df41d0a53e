"""
Web Audit API — Analysis Orchestrator Tests
=============================================

What:  Tests AnalysisService with a fake analyzer, image service and session.
Why:   The orchestrator decides when Gemini is called at all (cache, gating,
       availability) and in what order streaming events are sent.

What we test:
    ✅ Missing fields and bad page ids are rejected before any lookup
    ✅ Cached analyses are returned without calling the analyzer
    ✅ Unavailable analyzer → 503 gemini_unavailable
    ✅ Fresh analyses are persisted
    ✅ Stream event order, progress ticks and the error event
    ✅ Image analysis gating and scratch file handling
"""

import asyncio
import json
import uuid
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from webaudit.exceptions import PlanAccessError, UpstreamServiceError, ValidationError
from webaudit.services.analysis_service import AnalysisService, sse_event


ANALYSIS = {"overall_score": 80, "summary": "Fine"}


def _events(chunks):
    return [json.loads(chunk[len("data: "):].strip()) for chunk in chunks]


class FakeSession:
    """Async context manager standing in for a session_factory() session."""

    def __init__(self):
        self.execute = AsyncMock()
        self.commit = AsyncMock()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class TestAnalysisService:

    def setup_method(self):
        self.analyzer = MagicMock()
        self.analyzer.is_available = AsyncMock(return_value=True)
        self.analyzer.analyze_content = AsyncMock(return_value=dict(ANALYSIS))
        self.analyzer.analyze_image = AsyncMock(return_value={"summary": "A logo"})
        self.access = MagicMock()
        self.access.require_feature = AsyncMock()
        self.images = MagicMock()
        self.session = FakeSession()
        self.service = AnalysisService(
            analyzer=self.analyzer,
            images=self.images,
            access=self.access,
            session_factory=lambda: self.session,
        )
        self.page_id = str(uuid.uuid4())

    # ── Validation ────────────────────────────────────────────────────────

    def test_missing_fields_rejected(self):
        with pytest.raises(ValidationError, match="Missing required fields"):
            self.service.validate_content_request(self.page_id, "", "https://example.com")

    def test_bad_page_id_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            self.service.validate_content_request("not-a-uuid", "copy", "https://example.com")
        assert exc_info.value.field == "pageId"

    @pytest.mark.asyncio
    async def test_get_cached_requires_page_id(self, mock_db_session):
        with pytest.raises(ValidationError, match="Missing pageId"):
            await self.service.get_cached(mock_db_session, None)

    # ── Content analysis ──────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_cached_analysis_skips_analyzer(self, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(scalar={"overall_score": 60})

        result = await self.service.analyze_content(
            mock_db_session, self.page_id, "copy", "https://example.com"
        )

        assert result == {"success": True, "analysis": {"overall_score": 60}, "cached": True}
        self.analyzer.is_available.assert_not_called()
        self.analyzer.analyze_content.assert_not_called()

    @pytest.mark.asyncio
    async def test_unavailable_analyzer_is_503(self, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(scalar=None)
        self.analyzer.is_available.return_value = False

        with pytest.raises(UpstreamServiceError) as exc_info:
            await self.service.analyze_content(mock_db_session, self.page_id, "copy", "https://example.com")
        assert exc_info.value.status_code == 503
        assert exc_info.value.error_code == "gemini_unavailable"
        assert exc_info.value.message == "Gemini API is not available"

    @pytest.mark.asyncio
    async def test_fresh_analysis_is_persisted(self, mock_db_session, make_result):
        mock_db_session.execute.side_effect = [make_result(scalar=None), make_result(rowcount=1)]

        result = await self.service.analyze_content(
            mock_db_session, self.page_id, "copy", "https://example.com"
        )

        assert result["cached"] is False
        assert result["analysis"] == ANALYSIS
        self.analyzer.analyze_content.assert_awaited_once_with("copy", "https://example.com")
        assert mock_db_session.execute.await_count == 2
        mock_db_session.flush.assert_awaited()

    # ── Streaming ─────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_stream_event_sequence(self):
        events = _events([
            chunk async for chunk in
            self.service.stream_content_analysis(uuid.UUID(self.page_id), "copy", "https://example.com")
        ])

        assert [e["status"] for e in events] == ["starting", "analyzing", "saving", "completed"]
        assert [e["progress"] for e in events] == [5, 25, 85, 100]
        assert events[-1]["analysis"] == ANALYSIS
        assert events[-1]["cached"] is False
        self.session.execute.assert_awaited_once()
        self.session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stream_sends_progress_ticks_while_waiting(self):
        async def slow_analysis(content, url):
            await asyncio.sleep(0.05)
            return dict(ANALYSIS)

        self.analyzer.analyze_content = slow_analysis
        self.service.progress_interval = 0.01

        events = _events([
            chunk async for chunk in
            self.service.stream_content_analysis(uuid.UUID(self.page_id), "copy", "https://example.com")
        ])

        ticks = [e for e in events[2:] if e["status"] == "analyzing"]
        assert ticks
        assert all(30 <= e["progress"] <= 70 for e in ticks)
        assert events[-1]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_stream_failure_ends_with_error_event(self):
        self.analyzer.analyze_content = AsyncMock(side_effect=RuntimeError("boom"))

        events = _events([
            chunk async for chunk in
            self.service.stream_content_analysis(uuid.UUID(self.page_id), "copy", "https://example.com")
        ])

        assert events[-1] == {"status": "error", "error": "Analysis failed"}
        self.session.execute.assert_not_called()

    def test_sse_event_format(self):
        assert sse_event({"status": "starting"}) == 'data: {"status": "starting"}\n\n'

    # ── Image analysis ────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_image_analysis_checks_plan_when_user_given(self, mock_db_session):
        self.access.require_feature.side_effect = PlanAccessError(
            message="Feature not available", user_plan="Starter"
        )

        with pytest.raises(PlanAccessError):
            await self.service.analyze_image(
                mock_db_session, self.page_id, "https://example.com/a.png",
                "https://example.com", user_id=str(uuid.uuid4()),
            )
        self.analyzer.analyze_image.assert_not_called()

    @pytest.mark.asyncio
    async def test_image_analysis_uses_scratch_file(self, mock_db_session, make_result):
        mock_db_session.execute.side_effect = [make_result(scalar=None), make_result(rowcount=1)]

        @asynccontextmanager
        async def scratch(url):
            yield "/tmp/scratch.png"

        self.images.scratch_image = scratch

        result = await self.service.analyze_image(
            mock_db_session, self.page_id, "https://example.com/a.png", "https://example.com"
        )

        assert result == {"success": True, "analysis": {"summary": "A logo"}, "cached": False}
        self.analyzer.analyze_image.assert_awaited_once_with(
            "/tmp/scratch.png", "https://example.com/a.png", "https://example.com"
        )
        self.access.require_feature.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_image_cache_lookup_still_analyzes_and_saves(self, mock_db_session, make_result):
        mock_db_session.execute.side_effect = [
            OperationalError("SELECT", {}, Exception("connection reset")),
            make_result(rowcount=1),
        ]

        @asynccontextmanager
        async def scratch(url):
            yield "/tmp/scratch.png"

        self.images.scratch_image = scratch

        result = await self.service.analyze_image(
            mock_db_session, self.page_id, "https://example.com/a.png", "https://example.com"
        )

        assert result["cached"] is False
        assert result["analysis"] == {"summary": "A logo"}
        # The lookup ran inside its own savepoint
        mock_db_session.begin_nested.assert_called_once()
        assert mock_db_session.execute.await_count == 2
        mock_db_session.flush.assert_awaited_once()
