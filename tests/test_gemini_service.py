"""
Web Audit API — Gemini Analyzer Unit Tests (Mocked)
=====================================================

What:  Tests for GeminiService with mocked Google Generative AI SDK.
Why:   Tests should not make real API calls (costs money, requires network).
How:   Patches the genai module and model to simulate success/failure.

What we test:
    ✅ Circuit breaker state machine
    ✅ Markdown fence stripping and JSON parsing of model output
    ✅ Successful content analysis is validated and timestamped
    ✅ Malformed output and API failures become LLMServiceError
    ✅ Open circuit rejects calls before the SDK is touched
    ❌ Real API calls (use integration tests for that)
"""

import json
import time

import pytest
from unittest.mock import patch, MagicMock, AsyncMock

from webaudit.services.gemini_service import (
    CircuitBreaker,
    GeminiService,
    MalformedModelOutput,
    parse_model_json,
    strip_markdown_fences,
    truncate_content,
)
from webaudit.exceptions import CircuitBreakerOpenError, LLMServiceError


VALID_ANALYSIS = {
    "grammar_score": 88,
    "consistency_score": 91,
    "readability_score": 75,
    "overall_score": 85,
    "grammar_issues": [{"type": "spelling", "severity": "low", "text": "teh", "suggestion": "the"}],
    "consistency_issues": [],
    "readability_issues": [],
    "uk_english_issues": [{"type": "uk_english", "text": "color", "suggestion": "colour"}],
    "strengths": ["Clear headings"],
    "recommendations": ["Shorten the intro"],
    "summary": "Solid copy.",
    "word_count": 420,
    "sentence_count": 30,
    "average_sentence_length": 14,
    "reading_level": "high school",
}


def _response(text: str) -> MagicMock:
    response = MagicMock()
    response.text = text
    return response


class TestCircuitBreaker:
    """Tests for the CircuitBreaker resilience pattern."""

    def test_initial_state_is_closed(self):
        """New circuit breaker should start in CLOSED (allowing calls)."""
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        assert cb.state == "closed"
        assert cb.failure_count == 0

    def test_stays_closed_under_threshold(self):
        """Circuit breaker should remain CLOSED when failures < threshold."""
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        for _ in range(4):
            cb.record_failure()
        assert cb.state == "closed"
        assert cb.can_execute() is True

    def test_opens_at_threshold(self):
        """Circuit breaker should OPEN when failures reach threshold."""
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=60)
        for _ in range(3):
            cb.record_failure()
        assert cb.state == "open"
        assert cb.is_open() is True

    def test_open_circuit_rejects_calls(self):
        """OPEN circuit breaker should reject calls with CircuitBreakerOpenError."""
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        cb.record_failure()

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            cb.can_execute()
        assert exc_info.value.status_code == 503
        assert 0 < exc_info.value.retry_after <= 60

    def test_success_resets_failure_count(self):
        """Successful calls should reset the failure counter."""
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        cb.record_failure()
        cb.record_failure()
        assert cb.failure_count == 2

        cb.record_success()
        assert cb.failure_count == 0
        assert cb.state == "closed"

    def test_half_open_after_recovery_timeout(self):
        """After the recovery timeout one trial call is let through."""
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        time.sleep(0.01)

        assert cb.can_execute() is True
        assert cb.state == "half_open"

    def test_failure_during_half_open_reopens(self):
        """A failed trial call sends the circuit straight back to OPEN."""
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=0)
        for _ in range(3):
            cb.record_failure()
        time.sleep(0.01)
        cb.can_execute()

        cb.record_failure()
        assert cb.state == "open"

    def test_success_after_half_open_closes(self):
        """Success during HALF_OPEN should close the circuit."""
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        time.sleep(0.01)
        cb.can_execute()

        cb.record_success()
        assert cb.state == "closed"
        assert cb.failure_count == 0


class TestModelOutputParsing:

    def test_strip_json_fence(self):
        assert strip_markdown_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_strip_plain_fence(self):
        assert strip_markdown_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_unfenced_text_is_only_trimmed(self):
        assert strip_markdown_fences('  {"a": 1}  ') == '{"a": 1}'

    def test_parse_model_json_returns_object(self):
        assert parse_model_json('```json\n{"score": 90}\n```') == {"score": 90}

    def test_parse_model_json_rejects_prose(self):
        with pytest.raises(MalformedModelOutput):
            parse_model_json("Here is your analysis: great page!")

    def test_parse_model_json_rejects_arrays(self):
        with pytest.raises(MalformedModelOutput, match="not a JSON object"):
            parse_model_json("[1, 2, 3]")

    def test_truncate_content_keeps_short_text(self):
        assert truncate_content("short", 10) == "short"

    def test_truncate_content_marks_truncation(self):
        result = truncate_content("x" * 20, 10)
        assert result == "x" * 10 + " ... (truncated)"


class TestGeminiServiceMocked:
    """Tests for GeminiService with mocked Gemini API."""

    @pytest.mark.asyncio
    async def test_analyze_content_success(self):
        """A fenced JSON answer is parsed, validated and timestamped."""
        with patch('webaudit.services.gemini_service.genai') as mock_genai:
            mock_model = MagicMock()
            mock_model.generate_content_async = AsyncMock(
                return_value=_response("```json\n" + json.dumps(VALID_ANALYSIS) + "\n```")
            )
            mock_genai.GenerativeModel.return_value = mock_model

            service = GeminiService()
            result = await service.analyze_content("Some page copy", "https://example.com")

            assert result["overall_score"] == 85
            assert result["uk_english_issues"][0]["suggestion"] == "colour"
            assert result["analysis_timestamp"]
            assert service.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_analyze_content_out_of_range_score_fails(self):
        """Scores outside 0-100 are rejected and counted as a failure."""
        with patch('webaudit.services.gemini_service.genai') as mock_genai:
            bad = {**VALID_ANALYSIS, "overall_score": 140}
            mock_model = MagicMock()
            mock_model.generate_content_async = AsyncMock(return_value=_response(json.dumps(bad)))
            mock_genai.GenerativeModel.return_value = mock_model

            service = GeminiService()
            with pytest.raises(LLMServiceError, match="unexpected result"):
                await service.analyze_content("copy", "https://example.com")
            assert service.circuit_breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_api_failure_retries_then_raises(self):
        """Every attempt failing ends in LLMServiceError after the retries."""
        with patch('webaudit.services.gemini_service.genai') as mock_genai:
            mock_model = MagicMock()
            mock_model.generate_content_async = AsyncMock(side_effect=RuntimeError("quota exceeded"))
            mock_genai.GenerativeModel.return_value = mock_model

            service = GeminiService()
            with pytest.raises(LLMServiceError):
                await service.analyze_content("copy", "https://example.com")

            assert mock_model.generate_content_async.await_count >= 2
            assert service.circuit_breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_circuit_breaker_open_skips_api(self):
        """When circuit breaker is open, should raise CircuitBreakerOpenError."""
        with patch('webaudit.services.gemini_service.genai') as mock_genai:
            mock_model = MagicMock()
            mock_model.generate_content_async = AsyncMock()
            mock_genai.GenerativeModel.return_value = mock_model

            service = GeminiService()
            for _ in range(service.circuit_breaker.failure_threshold):
                service.circuit_breaker.record_failure()

            with pytest.raises(CircuitBreakerOpenError):
                await service.analyze_content("copy", "https://example.com")
            mock_model.generate_content_async.assert_not_called()

    @pytest.mark.asyncio
    async def test_analyze_image_clamps_scores(self):
        """Image scores are clamped to 0-100 and the URLs are echoed back."""
        with patch('webaudit.services.gemini_service.genai') as mock_genai:
            answer = {"description": "A logo", "accessibility_score": 130, "quality_score": "n/a"}
            mock_model = MagicMock()
            mock_model.generate_content_async = AsyncMock(return_value=_response(json.dumps(answer)))
            mock_genai.GenerativeModel.return_value = mock_model
            mock_genai.upload_file.return_value = MagicMock()

            service = GeminiService()
            result = await service.analyze_image(
                "/tmp/logo.png", "https://example.com/logo.png", "https://example.com"
            )

            assert result["accessibility_score"] == 100.0
            assert result["quality_score"] is None
            assert result["image_url"] == "https://example.com/logo.png"
            assert result["page_url"] == "https://example.com"

    @pytest.mark.asyncio
    async def test_health_check_returns_bool(self):
        """Health check should return True/False without raising."""
        with patch('webaudit.services.gemini_service.genai') as mock_genai:
            mock_genai.list_models.return_value = [MagicMock()]

            service = GeminiService()
            assert await service.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_failure_is_false(self):
        with patch('webaudit.services.gemini_service.genai') as mock_genai:
            mock_genai.list_models.side_effect = RuntimeError("invalid key")

            service = GeminiService()
            assert await service.health_check() is False
