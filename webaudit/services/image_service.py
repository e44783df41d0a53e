"""
Web Audit API — Image Download and Scratch Storage
====================================================

What:  Fetches a page image, validates it, and keeps it on local disk for the
       duration of one AI image analysis.
Why:   The model needs the image bytes, not a URL, and we must not forward
       arbitrary remote content (HTML error pages, huge files) to it.
How:   Streams the download with httpx while enforcing the size limit,
       checks the real type from the magic bytes with python-magic, writes the
       file with aiofiles under a UUID name, and deletes it afterwards.
Who:   Called by AnalysisService.analyze_image().

Security Model:
    1. Only http(s) URLs are fetched
    2. Size check on Content-Length, then again while streaming
    3. MIME check on the file header bytes (not the server's Content-Type)
    4. UUID filenames; nothing from the URL reaches the file system path

Directory Structure:
    storage/
    └── images/
        └── 2025/
            └── 01/
                └── 15/
                    └── a1b2c3d4-5678.png
"""

import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional, Tuple
from urllib.parse import urlparse

import aiofiles
import httpx
import magic

from webaudit.config import settings
from webaudit.exceptions import FileStorageError, UpstreamServiceError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}

DOWNLOAD_TIMEOUT = 30.0


class ImageService:
    """
    Lifecycle of an analyzed image:
        download() → validate_size() while streaming → validate_mime_type()
        → store_file() → analysis runs → cleanup_file()
    """

    def __init__(
        self,
        storage_root: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            storage_root: Override the default storage path (used in tests)
            transport:    Custom httpx transport (tests pass httpx.MockTransport)
        """
        self.storage_root = Path(storage_root or settings.storage_root).resolve() / "images"
        self.storage_root.mkdir(parents=True, exist_ok=True)
        self._transport = transport
        logger.info("ImageService initialized with storage_root=%s", self.storage_root)

    def validate_size(self, size: int) -> None:
        if size > settings.max_file_size:
            max_mb = settings.max_file_size / (1024 * 1024)
            raise ValidationError(
                message=f"Image exceeds the maximum size of {max_mb:.0f}MB",
                field="imageUrl",
                context={"size": size, "max_size": settings.max_file_size},
            )

    def validate_mime_type(self, content: bytes) -> str:
        """Returns the detected MIME type or raises ValidationError."""
        try:
            mime_type = magic.from_buffer(content[:2048], mime=True)
        except Exception as e:
            logger.error("MIME type detection failed: %s", str(e))
            raise FileStorageError(
                message="Could not verify image type. Please try again.",
                context={"error": str(e)},
            )

        if mime_type not in ALLOWED_MIME_TYPES:
            raise ValidationError(
                message=(
                    f"Image content type '{mime_type}' is not supported. "
                    "Supported types: PNG, JPEG, WebP, GIF."
                ),
                field="imageUrl",
                context={"detected_mime": mime_type},
            )
        return mime_type

    async def download(self, url: str) -> bytes:
        """
        Fetches the image bytes, aborting as soon as the size limit is passed.

        Raises:
            ValidationError: bad URL or too large
            UpstreamServiceError: the image host failed or returned non-2xx
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError(message="Invalid image URL", field="imageUrl")

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=DOWNLOAD_TIMEOUT,
                follow_redirects=True,
            ) as client:
                async with client.stream("GET", url) as response:
                    if response.status_code >= 400:
                        raise UpstreamServiceError(
                            message=f"Failed to fetch image: HTTP {response.status_code}",
                            context={"url": url, "status": response.status_code},
                        )

                    declared = response.headers.get("content-length")
                    if declared and declared.isdigit():
                        self.validate_size(int(declared))

                    chunks = []
                    received = 0
                    async for chunk in response.aiter_bytes():
                        received += len(chunk)
                        self.validate_size(received)
                        chunks.append(chunk)
        except httpx.HTTPError as e:
            logger.warning("Image download failed for %s: %s", url, e)
            raise UpstreamServiceError(
                message="Failed to fetch image",
                context={"url": url, "error_type": type(e).__name__},
            )

        content = b"".join(chunks)
        logger.info("Downloaded image %s (%d bytes)", url, len(content))
        return content

    def _generate_storage_path(self, extension: str) -> Path:
        date_dir = datetime.now(timezone.utc).strftime("%Y/%m/%d")
        return self.storage_root / date_dir / f"{uuid.uuid4()}{extension}"

    async def store_file(self, content: bytes, extension: str) -> str:
        absolute_path = self._generate_storage_path(extension)
        try:
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store image: %s", str(e))
            await self.cleanup_file(str(absolute_path))
            raise FileStorageError(context={"error": str(e)})
        return str(absolute_path)

    async def cleanup_file(self, absolute_path: str) -> None:
        """Best effort: a leftover scratch file is logged, never raised."""
        try:
            if os.path.exists(absolute_path):
                os.remove(absolute_path)
                logger.debug("Removed scratch image %s", absolute_path)
        except OSError as e:
            logger.warning("Failed to remove scratch image %s: %s", absolute_path, e)

    async def fetch_and_store(self, url: str) -> Tuple[str, str]:
        """Downloads, validates and stores; returns (absolute_path, mime_type)."""
        content = await self.download(url)
        mime_type = self.validate_mime_type(content)
        path = await self.store_file(content, ALLOWED_MIME_TYPES[mime_type])
        return path, mime_type

    @asynccontextmanager
    async def scratch_image(self, url: str) -> AsyncIterator[str]:
        """
        Context manager yielding a local path for `url`; the file is removed
        on exit whether or not the analysis succeeded.
        """
        path, _ = await self.fetch_and_store(url)
        try:
            yield path
        finally:
            await self.cleanup_file(path)


image_service = ImageService()
