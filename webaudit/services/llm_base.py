"""
Web Audit API — Abstract Content Analyzer Interface
=====================================================

What:  Abstract base class for the AI provider behind content and image
       analysis.
Why:   Routes and the analysis service depend on this contract only, so the
       provider can be swapped (or replaced by a mock in tests) without
       touching calling code.
How:   Concrete implementations inherit from ContentAnalyzer and implement
       analyze_content(), analyze_image(), is_available() and health_check().
Who:   Called by AnalysisService.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict


class ContentAnalyzer(ABC):
    """
    Contract:
        - analyze_* return plain dicts ready to be cached as JSON
        - Implementations handle their own retry logic and error translation
        - Provider errors are wrapped in LLMServiceError
    """

    @abstractmethod
    async def analyze_content(self, content: str, url: str) -> Dict[str, Any]:
        """
        Grade page copy for grammar, consistency, readability and UK English.

        Returns:
            dict with the four 0-100 scores, the issue lists, strengths,
            recommendations, summary, text statistics and analysis_timestamp.

        Raises:
            LLMServiceError: provider failed after all retries
            CircuitBreakerOpenError: too many recent failures
        """
        ...

    @abstractmethod
    async def analyze_image(self, image_path: str, image_url: str, page_url: str) -> Dict[str, Any]:
        """Describe an image and assess its accessibility and relevance to the page."""
        ...

    @abstractmethod
    async def is_available(self) -> bool:
        """Cheap pre-flight check used before starting an analysis."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Connectivity test for GET /health; must not consume generation quota."""
        ...
