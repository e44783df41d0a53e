"""
Web Audit API — Audit Tooling Schemas
=======================================

What:  Bodies for PageSpeed, link checks, the scraper proxy and scraped
       image batches.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class PageSpeedRequest(BaseModel):
    project_id: Optional[str] = Field(default=None, alias="projectId")
    url: Optional[str] = None

    model_config = {"populate_by_name": True}


class LinkCheckRequest(BaseModel):
    url: Optional[str] = None


class LinkCheckResponse(BaseModel):
    is_broken: bool = Field(serialization_alias="isBroken")
    status: str
    http_status: Optional[int] = Field(default=None, serialization_alias="httpStatus")
    status_text: Optional[str] = Field(default=None, serialization_alias="statusText")
    error: Optional[str] = None

    model_config = {"populate_by_name": True}


class ScrapeRequest(BaseModel):
    url: Optional[str] = None
    mode: str = "single"
    max_pages: int = Field(default=100, alias="maxPages", ge=1)
    extract_images_flag: bool = Field(default=True, alias="extractImagesFlag")
    extract_links_flag: bool = Field(default=True, alias="extractLinksFlag")
    detect_technologies_flag: bool = Field(default=True, alias="detectTechnologiesFlag")

    model_config = {"populate_by_name": True}


class ScrapedImagesRequest(BaseModel):
    # Any: a non-list value must reach the service to get MISSING_IMAGES
    images: Any = None


class ScrapedImagesResponse(BaseModel):
    success: bool = True
    data: List[Dict[str, Any]]
    inserted: int
    total: int
    error: Optional[str] = None
