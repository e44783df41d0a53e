"""
Web Audit API — PageSpeed Client Tests
========================================

What:  Tests PageSpeedService against an httpx.MockTransport.
How:   The retry wait is replaced with tenacity's wait_none so retried
       failures finish instantly.

What we test:
    ✅ Score labels and percentages
    ✅ Request parameters (all four categories, normalized URL)
    ✅ 5xx retried then 500; Lighthouse errors → 503; 4xx not retried
    ✅ Project cache short-circuits the upstream call
"""

import uuid
from unittest.mock import patch

import httpx
import pytest
from tenacity import wait_none

from webaudit.exceptions import NotFoundError, UpstreamServiceError, ValidationError, WebAuditError
from webaudit.models.audit import AuditProject
from webaudit.services.pagespeed_service import (
    PageSpeedService,
    normalize_url,
    score_label,
    score_percent,
    summarize_scores,
)

REPORT = {
    "lighthouseResult": {
        "categories": {
            "performance": {"score": 0.93},
            "accessibility": {"score": 0.81},
            "best-practices": {"score": 0.6},
            "seo": {"score": None},
        }
    }
}


def _service(handler) -> PageSpeedService:
    service = PageSpeedService(transport=httpx.MockTransport(handler))
    service.wait = wait_none()
    return service


class TestScoreHelpers:

    @pytest.mark.parametrize("score,label", [
        (0.95, "Excellent"), (0.9, "Excellent"), (0.85, "Good"),
        (0.6, "Needs Improvement"), (0.59, "Poor"), (None, "Poor"),
    ])
    def test_score_label(self, score, label):
        assert score_label(score) == label

    def test_score_percent(self):
        assert score_percent(0.934) == 93
        assert score_percent(None) == 0

    def test_summarize_scores(self):
        summary = summarize_scores(REPORT)
        assert summary["performance"] == {"score": 93, "label": "Excellent"}
        assert summary["seo"] == {"score": 0, "label": "Poor"}

    def test_normalize_url_adds_scheme(self):
        assert normalize_url(" example.com ") == "https://example.com"
        assert normalize_url("http://example.com") == "http://example.com"


class TestPageSpeedService:

    @pytest.mark.asyncio
    async def test_fetch_report_sends_all_categories(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = request.url.params
            return httpx.Response(200, json=REPORT)

        report = await _service(handler).fetch_report("example.com")

        assert report == REPORT
        assert seen["params"]["url"] == "https://example.com"
        assert seen["params"].get_list("category") == ["performance", "accessibility", "best-practices", "seo"]
        assert seen["params"]["key"] == "test-pagespeed-key"

    @pytest.mark.asyncio
    async def test_missing_key_is_503(self):
        with patch("webaudit.services.pagespeed_service.settings") as mock_settings:
            mock_settings.pagespeed_api_key = ""
            with pytest.raises(UpstreamServiceError, match="PageSpeed API key not configured"):
                await _service(lambda r: httpx.Response(200, json=REPORT)).fetch_report("example.com")

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(500, json={"error": {"message": "backend"}})
            return httpx.Response(200, json=REPORT)

        assert await _service(handler).fetch_report("https://example.com") == REPORT
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_persistent_server_error_is_500(self):
        with pytest.raises(WebAuditError) as exc_info:
            await _service(lambda r: httpx.Response(502, text="bad gateway")).fetch_report("example.com")
        assert exc_info.value.status_code == 500
        assert exc_info.value.message.startswith("Failed to fetch PageSpeed Insights")

    @pytest.mark.asyncio
    async def test_lighthouse_error_is_503(self):
        def handler(request):
            return httpx.Response(500, json={"error": {"reason": "lighthouseError", "message": "NO_FCP"}})

        with pytest.raises(UpstreamServiceError) as exc_info:
            await _service(handler).fetch_report("example.com")
        assert exc_info.value.status_code == 503
        assert "Lighthouse" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, text="invalid url")

        with pytest.raises(WebAuditError, match="PageSpeed API error: 400"):
            await _service(handler).fetch_report("example.com")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(WebAuditError, match="timed out"):
            await _service(handler).fetch_report("example.com")
        assert len(calls) == 1

    # ── Project cache ─────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_analyze_project_requires_fields(self, mock_db_session):
        with pytest.raises(ValidationError, match="Project ID and URL are required"):
            await _service(lambda r: httpx.Response(200)).analyze_project(mock_db_session, None, "x")

    @pytest.mark.asyncio
    async def test_analyze_project_not_found(self, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(scalar=None)
        with pytest.raises(NotFoundError):
            await _service(lambda r: httpx.Response(200)).analyze_project(
                mock_db_session, str(uuid.uuid4()), "example.com"
            )

    @pytest.mark.asyncio
    async def test_cached_report_skips_upstream(self, mock_db_session, make_result):
        project = AuditProject(id=uuid.uuid4(), site_url="https://example.com", pagespeed_insights_data=REPORT)
        mock_db_session.execute.return_value = make_result(scalar=project)

        def handler(request):
            raise AssertionError("PageSpeed must not be called for a cached project")

        result = await _service(handler).analyze_project(mock_db_session, str(project.id), "example.com")
        assert result == {"success": True, "analysis": REPORT, "cached": True}

    @pytest.mark.asyncio
    async def test_fresh_report_is_stored(self, mock_db_session, make_result):
        project = AuditProject(
            id=uuid.uuid4(), site_url="https://example.com",
            pagespeed_insights_data=None, pagespeed_insights_loading=True,
            pagespeed_insights_error="previous failure",
        )
        mock_db_session.execute.return_value = make_result(scalar=project)

        result = await _service(lambda r: httpx.Response(200, json=REPORT)).analyze_project(
            mock_db_session, str(project.id), "example.com"
        )

        assert result["cached"] is False
        assert project.pagespeed_insights_data == REPORT
        assert project.pagespeed_insights_loading is False
        assert project.pagespeed_insights_error is None
