"""
Web Audit API — Rate Limiting Middleware
==========================================

What:  Per-IP sliding window limit on API calls.
Why:   Several endpoints spend money per call (Gemini, PageSpeed quota, the
       scraper's headless browsers) and some are anonymous.
How:   Keeps the timestamps of each IP's requests inside the window; the
       request that would exceed `rate_limit_requests` gets a 429 in the
       standard error envelope with `Retry-After`.

Exempt paths:
    /health and the API docs, the Razorpay webhook (Razorpay retries from a
    small pool of addresses and a dropped webhook is a lost payment event)
    and the cron sweep (authenticated by its own secret).

Single-process only: each uvicorn worker counts on its own.
"""

import logging
import time
from collections import defaultdict, deque
from typing import Deque, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from webaudit.config import settings
from webaudit.exceptions import RateLimitExceededError
from webaudit.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

EXEMPT_PATHS = {
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/api/razorpay-webhook",
    "/api/cron/check-expired-plans",
}

# Sweep idle IPs after this many recorded requests
_SWEEP_EVERY = 1000


class RateLimitMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, max_requests: Optional[int] = None, window: Optional[int] = None, **kwargs):
        super().__init__(app, **kwargs)
        self.max_requests = max_requests or settings.rate_limit_requests
        self.window = window or settings.rate_limit_window
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._since_sweep = 0

    def retry_after(self, client_ip: str, now: float) -> int:
        """Seconds until the oldest request leaves the window."""
        oldest = self._requests[client_ip][0]
        return int(oldest + self.window - now) + 1

    def _evict(self, client_ip: str, window_start: float) -> Deque[float]:
        timestamps = self._requests[client_ip]
        while timestamps and timestamps[0] <= window_start:
            timestamps.popleft()
        return timestamps

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        timestamps = self._evict(client_ip, now - self.window)

        if len(timestamps) >= self.max_requests:
            exc = RateLimitExceededError(retry_after=self.retry_after(client_ip, now))
            logger.warning(
                "Rate limit exceeded for IP %s: %d requests in %ds window",
                client_ip, len(timestamps), self.window,
            )
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "error": exc.error_code,
                    "message": exc.message,
                    "details": {"retry_after": exc.retry_after},
                    "request_id": request_id_var.get(""),
                },
                headers={"Retry-After": str(exc.retry_after)},
            )

        timestamps.append(now)
        self._since_sweep += 1
        if self._since_sweep >= _SWEEP_EVERY:
            self._sweep(now - self.window)

        return await call_next(request)

    def _sweep(self, window_start: float) -> None:
        """Drops IPs with no request inside the window so the dict stays bounded."""
        self._since_sweep = 0
        idle = [ip for ip, ts in self._requests.items() if not ts or ts[-1] <= window_start]
        for ip in idle:
            del self._requests[ip]
        if idle:
            logger.debug("Cleaned up %d inactive IP entries", len(idle))
