"""
Web Audit API — Access Log Middleware
=======================================

What:  One log line per request on the `webaudit.access` logger.
Why:   Uvicorn's access log has no request id and no duration; the scraper
       proxy and Gemini calls make duration the first thing anyone asks for.
How:   Times the downstream call and logs method, path, status, duration,
       request id and client IP, at a level chosen by the status class.

Not logged (privacy): request bodies, query strings (they carry emails and
page ids), and headers, since Authorization and x-cron-secret travel there.

Streaming responses are logged when headers are sent, so the duration of
/api/gemini-analysis-stream covers setup only, not the whole stream.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from webaudit.middleware.request_id import request_id_var

logger = logging.getLogger("webaudit.access")

# Polled by load balancers every few seconds
QUIET_PATHS = {"/health"}


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        rid = request_id_var.get("")
        logger.log(
            level_for_status(status),
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
