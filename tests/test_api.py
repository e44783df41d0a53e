"""
Web Audit API — HTTP Surface Tests
====================================

What:  Drives the FastAPI app through httpx's ASGITransport with the
       database dependency overridden.
Why:   Checks what the dashboard actually sees: status codes, the error
       envelope, auth failures and headers.
How:   Service singletons are patched where a route would otherwise reach
       the network; the rest runs for real against the mocked session.

What we test:
    ✅ Error envelope shape and request id header
    ✅ Body validation → 400 validation_error
    ✅ Bearer auth: missing, invalid, expired; admin gate
    ✅ Cron secret and webhook signature checks
    ✅ Scraper statuses passed through
    ✅ Health check degrades without Gemini
"""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from webaudit.exceptions import UpstreamResponseError
from webaudit.schemas.audit import LinkCheckResponse


class TestErrorEnvelope:

    @pytest.mark.asyncio
    async def test_request_validation_is_400(self, api_client):
        response = await api_client.post("/api/alerts", json={"alertId": 5})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["message"].startswith("Invalid alertId")
        assert body["request_id"] == response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_client_request_id_is_echoed(self, api_client):
        response = await api_client.post(
            "/api/alerts", json={}, headers={"X-Request-ID": "dash-42"}
        )

        assert response.status_code == 400
        assert response.headers["X-Request-ID"] == "dash-42"
        assert response.json()["request_id"] == "dash-42"
        assert response.json()["details"] == {"field": "alertId"}

    @pytest.mark.asyncio
    async def test_unsafe_request_id_is_replaced(self, api_client):
        response = await api_client.post(
            "/api/alerts", json={}, headers={"X-Request-ID": "../../etc passwd"}
        )
        assert response.headers["X-Request-ID"] != "../../etc passwd"
        assert len(response.headers["X-Request-ID"]) == 8

    @pytest.mark.asyncio
    async def test_extra_fields_reach_the_body(self, api_client):
        response = await api_client.post("/api/check-link", json={"url": "ftp://example.com"})

        assert response.status_code == 400
        assert response.json()["message"] == "Only HTTP/HTTPS URLs are allowed"
        assert response.json()["isBroken"] is True

    @pytest.mark.asyncio
    async def test_overlong_currency_is_400(self, api_client, make_token):
        token = make_token(uuid4())
        response = await api_client.post(
            "/api/payment-success",
            json={"razorpay_payment_id": "pay_1", "plan_id": str(uuid4()), "currency": "RUPEE"},
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_malformed_plan_id_is_404(self, api_client):
        response = await api_client.get("/api/plans/not-a-uuid")

        assert response.status_code == 404
        assert response.json()["message"] == "Plan not found"

    @pytest.mark.asyncio
    async def test_check_link_uses_aliases(self, api_client):
        result = LinkCheckResponse(is_broken=False, status="working", http_status=200, status_text="OK")
        with patch("webaudit.routes.audit.link_checker.check", AsyncMock(return_value=result)):
            response = await api_client.post("/api/check-link", json={"url": "https://example.com"})

        assert response.status_code == 200
        assert response.json() == {"isBroken": False, "status": "working", "httpStatus": 200, "statusText": "OK"}


class TestAuthentication:

    @pytest.mark.asyncio
    async def test_missing_header(self, api_client):
        response = await api_client.get("/api/check-plan-expiry")

        assert response.status_code == 401
        assert response.json()["error"] == "MISSING_AUTH"
        assert response.json()["message"] == "Missing or invalid authorization header"

    @pytest.mark.asyncio
    async def test_garbage_token(self, api_client):
        response = await api_client.get(
            "/api/check-plan-expiry", headers={"Authorization": "Bearer not.a.jwt"}
        )
        assert response.status_code == 401
        assert response.json()["error"] == "INVALID_AUTH"

    @pytest.mark.asyncio
    async def test_expired_token(self, api_client, make_token):
        token = make_token(uuid4(), expires_in=-60)
        response = await api_client.get(
            "/api/check-plan-expiry", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401
        assert response.json()["message"] == "Authentication token has expired"

    @pytest.mark.asyncio
    async def test_wrong_audience(self, api_client, make_token):
        token = make_token(uuid4(), aud="someone-else")
        response = await api_client.get(
            "/api/check-plan-expiry", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_non_admin_is_forbidden(self, api_client, mock_db_session, make_result, make_token):
        mock_db_session.execute.return_value = make_result(scalar="user")
        token = make_token(uuid4())

        response = await api_client.get(
            "/api/admin/overview-stats", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 403
        assert response.json()["message"] == "Admin access required"

    @pytest.mark.asyncio
    async def test_admin_route_with_override(self, api_client, as_admin):
        with patch(
            "webaudit.routes.admin.admin_service.chart_data",
            AsyncMock(return_value=[{"month": "Oct 2026", "revenue": 10.0, "users": 1}]),
        ):
            response = await api_client.get("/api/admin/chart-data", params={"chartType": "revenue"})

        assert response.status_code == 200
        assert response.json()["chartType"] == "revenue"
        assert response.headers["Cache-Control"] == "private, max-age=30"


class TestMachineEndpoints:

    @pytest.mark.asyncio
    async def test_cron_requires_secret(self, api_client):
        response = await api_client.get("/api/cron/check-expired-plans")
        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_cron_with_secret(self, api_client):
        summary = {
            "message": "No users with expired plans found",
            "processed_count": 0, "error_count": 0, "processed_users": [], "errors": [],
        }
        with patch(
            "webaudit.routes.access.plan_expiry_service.downgrade_all_expired",
            AsyncMock(return_value=summary),
        ):
            response = await api_client.post(
                "/api/cron/check-expired-plans", headers={"x-cron-secret": "test-cron-secret"}
            )

        assert response.status_code == 200
        assert response.json()["processed_count"] == 0

    @pytest.mark.asyncio
    async def test_webhook_without_signature(self, api_client):
        response = await api_client.post("/api/razorpay-webhook", content=b'{"event": "payment.captured"}')

        assert response.status_code == 400
        assert response.json()["error"] == "missing_signature"


class TestPassThrough:

    @pytest.mark.asyncio
    async def test_scraper_status_kept(self, api_client):
        error = UpstreamResponseError(
            status_code=422, message="Scraping failed", error_code="SCRAPER_ERROR",
            extra={"details": "bad url", "status": 422},
        )
        with patch("webaudit.routes.audit.scraper_client.scrape", AsyncMock(side_effect=error)):
            response = await api_client.post("/api/scrape", json={"url": "https://example.com"})

        assert response.status_code == 422
        assert response.json()["error"] == "SCRAPER_ERROR"
        assert response.json()["details"] == "bad url"

    @pytest.mark.asyncio
    async def test_notify_me_created(self, api_client, mock_db_session, make_result):
        mock_db_session.execute.return_value = make_result(scalar=None)

        response = await api_client.post("/api/notify-me", json={"email": "new@example.com"})

        assert response.status_code == 201
        assert response.json()["success"] is True
        assert "id" in response.json()

    @pytest.mark.asyncio
    async def test_notify_me_invalid_email(self, api_client):
        response = await api_client.post("/api/notify-me", json={"email": "nope"})
        assert response.status_code == 400


class TestHealth:

    @staticmethod
    def _engine(fail: bool = False):
        engine = MagicMock()
        conn = AsyncMock()
        if fail:
            engine.connect.return_value.__aenter__.side_effect = OSError("connection refused")
        else:
            engine.connect.return_value.__aenter__.return_value = conn
        return engine

    @staticmethod
    def _gemini(healthy: bool = True, state: str = "closed"):
        gemini = MagicMock()
        gemini.circuit_breaker.state = state
        gemini.circuit_breaker.OPEN = "open"
        gemini.health_check = AsyncMock(return_value=healthy)
        return gemini

    @pytest.mark.asyncio
    async def test_healthy(self, api_client):
        with patch("webaudit.routes.health.engine", self._engine()), \
             patch("webaudit.routes.health.gemini_service", self._gemini()):
            response = await api_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["gemini"] == "available"

    @pytest.mark.asyncio
    async def test_gemini_down_is_degraded(self, api_client):
        with patch("webaudit.routes.health.engine", self._engine()), \
             patch("webaudit.routes.health.gemini_service", self._gemini(healthy=False)):
            response = await api_client.get("/health")

        assert response.json()["status"] == "degraded"
        assert response.json()["gemini"] == "unavailable"

    @pytest.mark.asyncio
    async def test_open_circuit_skips_probe(self, api_client):
        gemini = self._gemini(state="open")
        with patch("webaudit.routes.health.engine", self._engine()), \
             patch("webaudit.routes.health.gemini_service", gemini):
            response = await api_client.get("/health")

        assert response.json()["gemini"] == "circuit_open"
        gemini.health_check.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_database_down_is_unhealthy(self, api_client):
        with patch("webaudit.routes.health.engine", self._engine(fail=True)), \
             patch("webaudit.routes.health.gemini_service", self._gemini()):
            response = await api_client.get("/health")

        assert response.json()["status"] == "unhealthy"
        assert response.json()["database"] == "disconnected"
