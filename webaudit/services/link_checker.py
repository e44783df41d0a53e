"""
Web Audit API — Link Checker
==============================

What:  Reports whether a single URL answers with a working status.
Why:   The audit report's link scanner checks each outgoing link from the
       browser's point of view, which CORS makes impossible client-side.
How:   HEAD with redirects followed; if HEAD itself raises (some servers
       drop HEAD connections), one GET. 2xx/3xx is working, anything else is
       broken. A URL that cannot be reached at all is still a 200 answer:
       the link is broken, the check succeeded.
"""

import logging
from typing import Any, Optional

import httpx

from webaudit.config import settings
from webaudit.exceptions import ValidationError
from webaudit.schemas.audit import LinkCheckResponse

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; WebAuditLinkChecker/1.0)"


def _invalid(message: str) -> ValidationError:
    return ValidationError(message=message, field="url", extra={"isBroken": True})


def validate_link(url: Any) -> httpx.URL:
    if not isinstance(url, str) or not url.strip():
        raise _invalid("URL is required")
    try:
        parsed = httpx.URL(url.strip())
    except httpx.InvalidURL:
        raise _invalid("Invalid URL format")
    if not parsed.scheme or not parsed.host:
        raise _invalid("Invalid URL format")
    if parsed.scheme not in ("http", "https"):
        raise _invalid("Only HTTP/HTTPS URLs are allowed")
    return parsed


class LinkChecker:

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    async def check(self, url: Any) -> LinkCheckResponse:
        target = validate_link(url)

        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=settings.link_check_timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            try:
                response = await client.head(target)
            except httpx.HTTPError as head_error:
                logger.debug("HEAD %s failed (%s), retrying with GET", target, type(head_error).__name__)
                try:
                    response = await client.get(target)
                except httpx.HTTPError as e:
                    logger.info("Link %s unreachable: %s", target, type(e).__name__)
                    return LinkCheckResponse(is_broken=True, status="error", error="Failed to fetch URL")

        working = 200 <= response.status_code < 400
        return LinkCheckResponse(
            is_broken=not working,
            status="working" if working else "broken",
            http_status=response.status_code,
            status_text=response.reason_phrase,
        )


link_checker = LinkChecker()
