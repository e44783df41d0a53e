"""
Web Audit API — AI Analysis Schemas
=====================================

What:  Request bodies for content/image analysis and the structured result
       the model is asked to return.
Why:   The model's JSON is validated into `ContentAnalysis` so a malformed
       answer is caught before it is cached on the scraped page.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ContentAnalysisRequest(BaseModel):
    page_id: Optional[str] = Field(default=None, alias="pageId")
    content: Optional[str] = None
    url: Optional[str] = None

    model_config = {"populate_by_name": True}


class ImageAnalysisRequest(BaseModel):
    page_id: Optional[str] = Field(default=None, alias="pageId")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    page_url: Optional[str] = Field(default=None, alias="pageUrl")
    user_id: Optional[str] = Field(default=None, alias="userId")

    model_config = {"populate_by_name": True}


class ContentAnalysis(BaseModel):
    """
    Shape of a content analysis.

    Scores are 0-100. Issue lists hold free-form objects (the model returns
    `{issue, suggestion, ...}` items) so they are left as dicts.
    """
    grammar_score: float = Field(ge=0, le=100)
    consistency_score: float = Field(ge=0, le=100)
    readability_score: float = Field(ge=0, le=100)
    overall_score: float = Field(ge=0, le=100)
    grammar_issues: List[Dict[str, Any]] = []
    consistency_issues: List[Dict[str, Any]] = []
    readability_issues: List[Dict[str, Any]] = []
    uk_english_issues: List[Dict[str, Any]] = []
    strengths: List[str] = []
    recommendations: List[str] = []
    summary: str = ""
    word_count: int = 0
    sentence_count: int = 0
    average_sentence_length: float = 0
    reading_level: str = ""
    analysis_timestamp: Optional[str] = None

    model_config = {"extra": "allow"}


class AnalysisResponse(BaseModel):
    success: bool = True
    analysis: Optional[Dict[str, Any]] = None
    cached: bool = False
