"""
Web Audit API — Scraper Proxy and Image Batch Tests
=====================================================

What:  Tests ScraperClient against an httpx.MockTransport and the scraped
       image batch writer against a mocked session.

What we test:
    ✅ Endpoint building (trailing slash, stray '=' prefix, bad config)
    ✅ Payload defaults and the server-side API key header
    ✅ Upstream errors keep their status; timeouts become 408
    ✅ Image validation lists every bad image
    ✅ A failing batch is skipped; all batches failing is an error
"""

import json
import uuid
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from webaudit.exceptions import (
    UpstreamResponseError,
    UpstreamTimeoutError,
    ValidationError,
    WebAuditError,
)
from webaudit.models.audit import ScrapedImage
from webaudit.schemas.audit import ScrapeRequest
from webaudit.services.scraper_client import (
    ScraperClient,
    clean_images,
    insert_scraped_images,
    sanitize_text,
    scraper_endpoint,
)


def _image(**overrides):
    image = {
        "scraped_page_id": str(uuid.uuid4()),
        "original_url": "https://example.com/logo.png",
        "alt_text": "Logo",
        "width": 120,
        "height": 40,
    }
    image.update(overrides)
    return image


def _stored(row):
    return ScrapedImage(id=uuid.uuid4(), created_at=datetime.now(timezone.utc), **row)


class TestScraperEndpoint:

    def test_default_endpoint(self):
        assert scraper_endpoint() == "http://localhost:3001/scrap"

    def test_strips_equals_and_trailing_slash(self):
        with patch("webaudit.services.scraper_client.settings") as mock_settings:
            mock_settings.scraper_api_base_url = "=https://scraper.example.com/"
            assert scraper_endpoint() == "https://scraper.example.com/scrap"

    def test_invalid_configuration(self):
        with patch("webaudit.services.scraper_client.settings") as mock_settings:
            mock_settings.scraper_api_base_url = "scraper-without-scheme"
            with pytest.raises(WebAuditError) as exc_info:
                scraper_endpoint()
        assert exc_info.value.error_code == "INVALID_ENDPOINT"


class TestScraperClient:

    @pytest.mark.asyncio
    async def test_url_required(self):
        with pytest.raises(ValidationError) as exc_info:
            await ScraperClient().scrape(ScrapeRequest(url=" "))
        assert exc_info.value.error_code == "MISSING_URL"

    @pytest.mark.asyncio
    async def test_forwards_payload_and_returns_upstream_json(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["api_key"] = request.headers.get("X-API-Key")
            return httpx.Response(200, json={"pages": [{"url": "https://example.com"}]})

        with patch("webaudit.services.scraper_client.settings") as mock_settings:
            mock_settings.scraper_api_base_url = "http://scraper:3001"
            mock_settings.scraper_api_key = "server-key"
            mock_settings.scraper_timeout = 180
            result = await ScraperClient(transport=httpx.MockTransport(handler)).scrape(
                ScrapeRequest(url="https://example.com", mode="full")
            )

        assert result == {"pages": [{"url": "https://example.com"}]}
        assert seen["api_key"] == "server-key"
        assert seen["body"] == {
            "url": "https://example.com",
            "mode": "full",
            "maxPages": 100,
            "extractImagesFlag": True,
            "extractLinksFlag": True,
            "detectTechnologiesFlag": True,
        }

    @pytest.mark.asyncio
    async def test_upstream_status_passed_through(self):
        client = ScraperClient(transport=httpx.MockTransport(lambda r: httpx.Response(422, text="bad url")))

        with pytest.raises(UpstreamResponseError) as exc_info:
            await client.scrape(ScrapeRequest(url="https://example.com"))

        assert exc_info.value.status_code == 422
        assert exc_info.value.error_code == "SCRAPER_ERROR"
        assert exc_info.value.extra == {"details": "bad url", "status": 422}

    @pytest.mark.asyncio
    async def test_timeout_is_408(self):
        def handler(request):
            raise httpx.ReadTimeout("slow crawl", request=request)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await ScraperClient(transport=httpx.MockTransport(handler)).scrape(
                ScrapeRequest(url="https://example.com")
            )
        assert exc_info.value.status_code == 408
        assert exc_info.value.message == "Scraping request timed out after 3 minutes"


class TestImageBatches:

    def test_sanitize_text_removes_nul(self):
        assert sanitize_text("al\x00t") == "alt"
        assert sanitize_text(5) == 5

    def test_clean_images_lists_every_problem(self, user_id):
        with pytest.raises(ValidationError) as exc_info:
            clean_images(["oops", _image(scraped_page_id=None), _image(original_url="")], user_id)

        assert exc_info.value.extra["details"] == [
            "Image 0: Not an object",
            "Image 1: Missing scraped_page_id",
            "Image 2: Missing original_url",
        ]

    def test_clean_images_serializes_metadata(self, user_id):
        rows = clean_images([_image(extra_metadata={"format": "png"})], user_id)
        assert rows[0]["extra_metadata"] == '{"format": "png"}'
        assert rows[0]["user_id"] == user_id

    @pytest.mark.asyncio
    async def test_images_must_be_a_list(self, mock_db_session, user_id):
        with pytest.raises(ValidationError) as exc_info:
            await insert_scraped_images(mock_db_session, {"not": "a list"}, user_id)
        assert exc_info.value.error_code == "MISSING_IMAGES"

    @pytest.mark.asyncio
    async def test_inserts_in_batches_of_100(self, mock_db_session, user_id):
        async def scalars(statement, rows):
            result = MagicMock()
            result.all.return_value = [_stored(row) for row in rows]
            return result

        mock_db_session.scalars.side_effect = scalars

        result = await insert_scraped_images(mock_db_session, [_image() for _ in range(150)], user_id)

        assert result["inserted"] == 150
        assert result["total"] == 150
        assert result["error"] is None
        assert mock_db_session.scalars.await_count == 2
        assert mock_db_session.begin_nested.call_count == 2

    @pytest.mark.asyncio
    async def test_failed_batch_is_reported_not_fatal(self, mock_db_session, user_id):
        calls = []

        async def scalars(statement, rows):
            calls.append(len(rows))
            if len(calls) == 1:
                raise OperationalError("INSERT", {}, Exception("deadlock detected"))
            result = MagicMock()
            result.all.return_value = [_stored(row) for row in rows]
            return result

        mock_db_session.scalars.side_effect = scalars

        result = await insert_scraped_images(mock_db_session, [_image() for _ in range(120)], user_id)

        assert calls == [100, 20]
        assert result["inserted"] == 20
        assert result["total"] == 120
        assert "deadlock detected" in result["error"]

    @pytest.mark.asyncio
    async def test_all_batches_failing_is_an_error(self, mock_db_session, user_id):
        mock_db_session.scalars.side_effect = OperationalError("INSERT", {}, Exception("disk full"))

        with pytest.raises(WebAuditError) as exc_info:
            await insert_scraped_images(mock_db_session, [_image()], user_id)
        assert exc_info.value.error_code == "INSERT_FAILED"
        assert exc_info.value.extra == {"details": "disk full"}
