"""
Web Audit API — Request ID Middleware
=======================================

What:  Assigns a correlation id to each request and returns it in the
       `X-Request-ID` response header.
Why:   Every error body carries `request_id`; support asks users for it and
       greps the logs for every line of that request.
How:   Accepts a client-supplied `X-Request-ID` (the dashboard generates one
       per user action) when it looks sane, otherwise generates a short one.
       Stored in a ContextVar for loggers and handlers, and on request.state.
"""

import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Ids end up in log lines and response headers; keep them short and inert
_CLIENT_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        supplied = request.headers.get("X-Request-ID", "")
        rid = supplied if _CLIENT_ID_RE.match(supplied) else new_request_id()

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
