"""
Web Audit API — Google Gemini Analyzer
========================================

What:  ContentAnalyzer implementation backed by Google Gemini.
Why:   Page copy and images are graded by a large model; the result is
       structured JSON that the dashboard renders and the API caches.
How:   Sends a fixed prompt (plus the uploaded image for image analysis),
       strips markdown fences from the answer, parses and validates the JSON.
       Every call goes through tenacity retries and a circuit breaker.
Who:   Singleton `gemini_service`, used by AnalysisService and /health.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter for transient failures
       and for answers that are not valid JSON
    2. Circuit breaker so an outage fails fast instead of queueing retries
    3. Per-call request timeout passed to the SDK
"""

import json
import logging
import re
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import google.generativeai as genai
from pydantic import ValidationError as SchemaValidationError
from starlette.concurrency import run_in_threadpool
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential_jitter,
    retry_if_exception_type,
    before_sleep_log,
    RetryError,
)

from webaudit.config import settings
from webaudit.exceptions import LLMServiceError, CircuitBreakerOpenError
from webaudit.schemas.analysis import ContentAnalysis
from webaudit.services.llm_base import ContentAnalyzer

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")


class MalformedModelOutput(ValueError):
    """The model answered, but not with the JSON object we asked for."""


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Process-local circuit breaker around the Gemini API.

    State Machine:
        CLOSED     normal; failures are counted
                   → OPEN once failure_count reaches the threshold
        OPEN       every call raises CircuitBreakerOpenError
                   → HALF_OPEN after recovery_timeout seconds
        HALF_OPEN  one trial call is let through
                   → CLOSED on success, back to OPEN on failure

    Not shared between worker processes; each uvicorn worker trips on its own.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """Returns True if a call may proceed; raises CircuitBreakerOpenError otherwise."""
        if self.state != self.OPEN:
            return True

        elapsed = time.time() - (self.last_failure_time or 0)
        if elapsed >= self.recovery_timeout:
            logger.info("Circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
            self.state = self.HALF_OPEN
            return True

        raise CircuitBreakerOpenError(recovery_time=int(self.recovery_timeout - elapsed))

    def is_open(self) -> bool:
        """Non-raising variant of can_execute() for status reporting."""
        if self.state != self.OPEN:
            return False
        return time.time() - (self.last_failure_time or 0) < self.recovery_timeout

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (service recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (trial request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Prompts
# ══════════════════════════════════════════════════════════════════════════

CONTENT_PROMPT = """You are an expert content analyst specializing in grammar, consistency, and readability analysis. Analyze the following web page content and provide a comprehensive assessment.

**Content to Analyze:**
URL: {url}
Content: {content}

**Analysis Requirements:**

1. **Grammar Analysis (0-100 score):** grammatical errors, spelling mistakes, punctuation issues, style inconsistencies, run-on sentences, fragments and awkward phrasing.
2. **Consistency Analysis (0-100 score):** tone, voice, terminology and formatting consistency.
3. **Readability Analysis (0-100 score):** sentence length and complexity, clarity, structure and reading level.
4. **UK English Analysis:** American spellings that should be British English (color/colour, favor/favour, center/centre, organize/organise, realize/realise and similar), with the British alternative.

**Response Format (JSON only, no markdown):**
{{
  "grammar_score": number,
  "consistency_score": number,
  "readability_score": number,
  "overall_score": number,
  "grammar_issues": [{{"type": "grammar|spelling|punctuation|style", "severity": "high|medium|low", "text": "text with issue", "suggestion": "corrected version", "position": number}}],
  "consistency_issues": [{{"type": "tone|voice|terminology|formatting", "severity": "high|medium|low", "description": "description", "suggestion": "how to fix it"}}],
  "readability_issues": [{{"type": "sentence_length|complexity|clarity|structure", "severity": "high|medium|low", "description": "description", "suggestion": "improvement"}}],
  "uk_english_issues": [{{"type": "uk_english", "severity": "high|medium|low", "text": "American English word", "suggestion": "British English alternative", "description": "explanation"}}],
  "strengths": ["content strengths"],
  "recommendations": ["actionable recommendations"],
  "summary": "brief overall assessment",
  "word_count": number,
  "sentence_count": number,
  "average_sentence_length": number,
  "reading_level": "elementary|middle|high school|college|graduate",
  "analysis_timestamp": "ISO timestamp"
}}

Provide only the JSON response, no additional text or explanations."""

IMAGE_PROMPT = """You are an expert in web accessibility and visual content. Analyze the attached image, which appears on the web page {page_url} (image source: {image_url}).

**Response Format (JSON only, no markdown):**
{{
  "description": "what the image shows",
  "suggested_alt_text": "concise alt text (max 125 characters)",
  "contains_text": boolean,
  "detected_text": "any text visible in the image",
  "accessibility_score": number,
  "quality_score": number,
  "relevance_score": number,
  "issues": [{{"type": "accessibility|quality|relevance|text_in_image", "severity": "high|medium|low", "description": "description", "suggestion": "how to fix it"}}],
  "grammar_issues": [{{"text": "text in image with issue", "suggestion": "corrected version"}}],
  "recommendations": ["actionable recommendations"],
  "summary": "brief overall assessment"
}}

Scores are 0-100. Provide only the JSON response, no additional text or explanations."""

_IMAGE_SCORES = ("accessibility_score", "quality_score", "relevance_score")


def strip_markdown_fences(text: str) -> str:
    """Removes a leading ```json / ``` fence and the trailing ``` if present."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", cleaned))
    return cleaned.strip()


def parse_model_json(text: str) -> Dict[str, Any]:
    try:
        data = json.loads(strip_markdown_fences(text))
    except json.JSONDecodeError as e:
        raise MalformedModelOutput(f"Model output is not valid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise MalformedModelOutput("Model output is not a JSON object")
    return data


def truncate_content(content: str, limit: int) -> str:
    if len(content) <= limit:
        return content
    return content[:limit] + " ... (truncated)"


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# ══════════════════════════════════════════════════════════════════════════
# Gemini Service
# ══════════════════════════════════════════════════════════════════════════

class GeminiService(ContentAnalyzer):
    """
    Gemini implementation of ContentAnalyzer.

    Error Handling Chain:
        API call or JSON parse fails → tenacity retries (3 attempts with backoff)
        → all retries fail → circuit breaker failure recorded → LLMServiceError
        → threshold reached → later calls rejected instantly until recovery
    """

    def __init__(self):
        if settings.gemini_api_key:
            genai.configure(api_key=settings.gemini_api_key)

        self.model = genai.GenerativeModel(settings.gemini_model)
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

        logger.info(
            "GeminiService initialized with model=%s, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            settings.gemini_model,
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )

    async def analyze_content(self, content: str, url: str) -> Dict[str, Any]:
        request_id = str(uuid.uuid4())[:8]
        logger.info(
            "[%s] Starting content analysis for %s (%d chars)",
            request_id,
            url,
            len(content),
        )

        prompt = CONTENT_PROMPT.format(
            url=url,
            content=truncate_content(content, settings.gemini_max_content_chars),
        )
        raw = await self._execute([prompt], request_id, "content analysis")

        try:
            analysis = ContentAnalysis.model_validate(raw).model_dump()
        except SchemaValidationError as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Content analysis failed validation: %s", request_id, e)
            raise LLMServiceError(
                message="AI analysis returned an unexpected result. Please try again.",
                context={"request_id": request_id},
            )

        if not analysis.get("analysis_timestamp"):
            analysis["analysis_timestamp"] = _utc_timestamp()

        logger.info(
            "[%s] Content analysis completed: overall=%s grammar=%s consistency=%s readability=%s",
            request_id,
            analysis["overall_score"],
            analysis["grammar_score"],
            analysis["consistency_score"],
            analysis["readability_score"],
        )
        return analysis

    async def analyze_image(self, image_path: str, image_url: str, page_url: str) -> Dict[str, Any]:
        request_id = str(uuid.uuid4())[:8]
        logger.info(
            "[%s] Starting image analysis for %s (file %s)",
            request_id,
            image_url,
            Path(image_path).name,
        )

        self.circuit_breaker.can_execute()
        try:
            uploaded = await run_in_threadpool(genai.upload_file, path=image_path)
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Image upload to Gemini failed: %s", request_id, e)
            raise LLMServiceError(
                message="Failed to send the image for AI analysis.",
                context={"request_id": request_id, "error_type": type(e).__name__},
            )

        prompt = IMAGE_PROMPT.format(page_url=page_url, image_url=image_url)
        analysis = await self._execute([prompt, uploaded], request_id, "image analysis")

        for key in _IMAGE_SCORES:
            if key in analysis:
                try:
                    analysis[key] = max(0.0, min(100.0, float(analysis[key])))
                except (TypeError, ValueError):
                    analysis[key] = None
        analysis["image_url"] = image_url
        analysis["page_url"] = page_url
        analysis.setdefault("analysis_timestamp", _utc_timestamp())

        logger.info("[%s] Image analysis completed", request_id)
        return analysis

    async def _execute(self, parts: List[Any], request_id: str, operation: str) -> Dict[str, Any]:
        """
        Runs one generation through the circuit breaker and the retry loop.

        Raises:
            CircuitBreakerOpenError: circuit is open
            LLMServiceError: all attempts failed
        """
        self.circuit_breaker.can_execute()

        try:
            result = await self._generate_json_with_retry(parts, request_id)
            self.circuit_breaker.record_success()
            return result

        except CircuitBreakerOpenError:
            raise
        except RetryError as e:
            self.circuit_breaker.record_failure()
            logger.error(
                "[%s] All Gemini retries exhausted for %s: %s",
                request_id,
                operation,
                str(e.last_attempt.exception()) if e.last_attempt else "Unknown error",
            )
            raise LLMServiceError(
                message="AI analysis failed after multiple attempts. Please try again later.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={"request_id": request_id, "attempts": settings.retry_max_attempts},
            )
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error(
                "[%s] Gemini %s failed: %s",
                request_id,
                operation,
                str(e),
                exc_info=True,
            )
            raise LLMServiceError(
                message="Failed to analyze content with AI",
                context={"request_id": request_id, "error_type": type(e).__name__},
            )

    @retry(
        # The SDK raises plain Exception subclasses for API errors, so retry on all
        retry=retry_if_exception_type(Exception),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _generate_json_with_retry(self, parts: List[Any], request_id: str) -> Dict[str, Any]:
        start_time = time.time()
        try:
            response = await self.model.generate_content_async(
                parts,
                request_options={"timeout": 120},
            )
            text = response.text or ""
            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "[%s] Gemini responded in %.0fms with %d chars",
                request_id,
                duration_ms,
                len(text),
            )
            return parse_model_json(text)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.warning(
                "[%s] Gemini call failed after %.0fms: %s",
                request_id,
                duration_ms,
                str(e),
            )
            raise

    async def is_available(self) -> bool:
        """
        Pre-flight used by the analysis endpoints.

        False when no key is configured or the circuit is open; otherwise
        defers to health_check() so a revoked key is reported as 503 before
        any work starts.
        """
        if not settings.gemini_api_key:
            logger.warning("Gemini API key is not configured")
            return False
        if self.circuit_breaker.is_open():
            return False
        return await self.health_check()

    async def health_check(self) -> bool:
        """Lists models (no token cost) to verify the key and connectivity."""
        try:
            models = await run_in_threadpool(lambda: list(genai.list_models()))
            target = f"models/{settings.gemini_model}"
            if target not in [m.name for m in models]:
                logger.warning("Configured model %s not found in available models", target)
            return True
        except Exception as e:
            logger.warning("Gemini health check failed: %s", str(e))
            return False


# ── Singleton Instance ────────────────────────────────────────────────────
# Holds the circuit breaker state, which must be shared across requests
gemini_service = GeminiService()
