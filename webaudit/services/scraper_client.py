"""
Web Audit API — Scraping Microservice Proxy and Image Batch Writer
====================================================================

What:  Forwards crawl requests to the scraping microservice and stores the
       images it found.
Why:   The scraper runs headless browsers on separate hosts and is
       authenticated with a server-side key the browser must never see.
How:   One httpx POST per crawl with a single long timeout (crawls of a full
       site take minutes); no retry, since a crawl is expensive and the
       user can start another one. Images are inserted in batches, each in
       its own SAVEPOINT so one bad batch does not lose the others.

Upstream answer mapping:
    2xx          → upstream JSON returned unchanged
    4xx / 5xx    → same status, {error, message, details, status}
    timeout      → 408 "Scraping request timed out after 3 minutes"
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.config import settings
from webaudit.exceptions import (
    UpstreamResponseError,
    UpstreamTimeoutError,
    ValidationError,
    WebAuditError,
)
from webaudit.models.audit import ScrapedImage
from webaudit.schemas.audit import ScrapeRequest

logger = logging.getLogger(__name__)

IMAGE_BATCH_SIZE = 100
IMAGE_COLUMNS = (
    "id", "scraped_page_id", "audit_project_id", "user_id", "original_url", "alt_text",
    "title_text", "width", "height", "type", "size_bytes", "extra_metadata", "created_at",
)


def scraper_endpoint() -> str:
    """`<SCRAPER_API_BASE_URL>/scrap`; stray '=' prefixes from .env files are dropped."""
    base = settings.scraper_api_base_url.lstrip("=").rstrip("/")
    endpoint = f"{base}/scrap"
    try:
        parsed = httpx.URL(endpoint)
    except httpx.InvalidURL:
        parsed = None
    if parsed is None or parsed.scheme not in ("http", "https") or not parsed.host:
        logger.error("Invalid scraper endpoint configured: %s", endpoint)
        raise WebAuditError(
            message="Invalid API endpoint configuration",
            error_code="INVALID_ENDPOINT",
            extra={"details": f"Invalid URL: {endpoint}"},
        )
    return endpoint


class ScraperClient:

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    async def scrape(self, request: ScrapeRequest) -> Any:
        if not request.url or not request.url.strip():
            raise ValidationError(message="URL is required", field="url", error_code="MISSING_URL")

        endpoint = scraper_endpoint()
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "WebAudit/1.0",
        }
        if settings.scraper_api_key:
            headers["X-API-Key"] = settings.scraper_api_key

        payload = {
            "url": request.url,
            "mode": request.mode or "single",
            "maxPages": request.max_pages or 100,
            "extractImagesFlag": request.extract_images_flag,
            "extractLinksFlag": request.extract_links_flag,
            "detectTechnologiesFlag": request.detect_technologies_flag,
        }

        logger.info("Scrape requested for %s (mode=%s, maxPages=%s)", request.url, payload["mode"], payload["maxPages"])
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=settings.scraper_timeout,
            ) as client:
                response = await client.post(endpoint, json=payload, headers=headers)
        except httpx.TimeoutException:
            logger.warning("Scrape of %s timed out after %ss", request.url, settings.scraper_timeout)
            raise UpstreamTimeoutError(
                message="Scraping request timed out after 3 minutes",
                error_code="TIMEOUT",
            )
        except httpx.HTTPError as e:
            logger.error("Scraping service unreachable: %s", e)
            raise WebAuditError(message="Failed to reach scraping service", error_code="SCRAPER_UNREACHABLE")

        if not response.is_success:
            logger.error("Scraping API returned %d: %s", response.status_code, response.text[:500])
            raise UpstreamResponseError(
                status_code=response.status_code,
                message=f"Scraping API error: {response.status_code} - {response.reason_phrase}",
                error_code="SCRAPER_ERROR",
                extra={"details": response.text, "status": response.status_code},
            )

        return response.json()


# ══════════════════════════════════════════════════════════════════════════
# Scraped image persistence
# ══════════════════════════════════════════════════════════════════════════

def sanitize_text(value: Any) -> Any:
    """PostgreSQL text columns reject NUL characters; scraped alt text has them."""
    if isinstance(value, str):
        return value.replace("\x00", "")
    return value


def _optional_uuid(value: Any) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value)) if value else None
    except ValueError:
        return None


def clean_images(images: List[Any], user_id: uuid.UUID) -> List[Dict[str, Any]]:
    """
    Maps scraper image dicts onto `scraped_images` rows.

    Raises:
        ValidationError: listing every image that lacks a page id or URL
    """
    rows, problems = [], []
    for index, image in enumerate(images):
        if not isinstance(image, dict):
            problems.append(f"Image {index}: Not an object")
            continue

        page_id = _optional_uuid(image.get("scraped_page_id"))
        original_url = sanitize_text(image.get("original_url")) or ""
        if page_id is None:
            problems.append(f"Image {index}: Missing scraped_page_id")
        if not original_url:
            problems.append(f"Image {index}: Missing original_url")

        metadata = image.get("extra_metadata")
        rows.append({
            "scraped_page_id": page_id,
            "audit_project_id": _optional_uuid(image.get("audit_project_id")),
            "user_id": user_id,
            "original_url": original_url,
            "alt_text": sanitize_text(image.get("alt_text")),
            "title_text": sanitize_text(image.get("title_text")),
            "width": image.get("width"),
            "height": image.get("height"),
            "type": sanitize_text(image.get("type")),
            "size_bytes": image.get("size_bytes"),
            "extra_metadata": json.dumps(metadata) if metadata else None,
        })

    if problems:
        raise ValidationError(message="Validation failed", extra={"details": problems})
    return rows


def _image_dict(image: ScrapedImage) -> Dict[str, Any]:
    return {column: getattr(image, column) for column in IMAGE_COLUMNS}


async def insert_scraped_images(db: AsyncSession, images: Any, user_id: uuid.UUID) -> Dict[str, Any]:
    """
    Inserts images in batches of 100. A failing batch is skipped and its
    error reported; only a run where every batch failed is an error.
    """
    if not isinstance(images, list):
        raise ValidationError(message="Images array is required", field="images", error_code="MISSING_IMAGES")

    rows = clean_images(images, user_id)
    inserted: List[Dict[str, Any]] = []
    last_error: Optional[str] = None

    for start in range(0, len(rows), IMAGE_BATCH_SIZE):
        batch = rows[start:start + IMAGE_BATCH_SIZE]
        batch_number = start // IMAGE_BATCH_SIZE + 1
        try:
            async with db.begin_nested():
                result = await db.scalars(insert(ScrapedImage).returning(ScrapedImage), batch)
                inserted.extend(_image_dict(image) for image in result.all())
        except SQLAlchemyError as e:
            logger.error(
                "Error inserting image batch %d (%d images): %s",
                batch_number, len(batch), e,
            )
            last_error = str(getattr(e, "orig", None) or e)

    if last_error is not None and not inserted:
        raise WebAuditError(
            message="Failed to insert images",
            error_code="INSERT_FAILED",
            extra={"details": last_error},
        )

    logger.info("Stored %d of %d scraped images for user %s", len(inserted), len(rows), user_id)
    return {
        "success": True,
        "data": inserted,
        "inserted": len(inserted),
        "total": len(rows),
        "error": last_error,
    }


scraper_client = ScraperClient()
