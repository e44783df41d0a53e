"""
Web Audit API — FastAPI Application Factory
=============================================

What:  Creates and configures the FastAPI application instance.
Why:   Centralizes middleware registration, route mounting, error handling
       and lifecycle management in one place.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn webaudit.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware: RateLimit → RequestID → AccessLog → GZip    │
    │                                                          │
    │  Routes:                                                 │
    │   alerts · plans · payments · access · analysis          │
    │   audit · email · admin · /health                        │
    │                                                          │
    │  Exception Handlers:                                     │
    │   WebAuditError → its status │ body validation → 400     │
    │   anything else → 500 internal_server_error              │
    └──────────────────────────────────────────────────────────┘

Error envelope:
    {"error": <code>, "message": <text>, "details": <optional>, "request_id": <id>}
    plus any public fields the exception carries in `extra`.

Lifecycle:
    Startup:  logging, configuration report, scratch storage directory
    Shutdown: dispose database engine (close all pooled connections)
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from webaudit import __version__
from webaudit.config import settings
from webaudit.database import dispose_engine
from webaudit.exceptions import (
    DatabaseError,
    FileStorageError,
    RateLimitExceededError,
    UpstreamServiceError,
    WebAuditError,
)
from webaudit.middleware.logging import RequestLoggingMiddleware
from webaudit.middleware.rate_limit import RateLimitMiddleware
from webaudit.middleware.request_id import RequestIDMiddleware, request_id_var
from webaudit.routes import access, admin, alerts, analysis, audit, email, health, payments, plans

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s on stdout,
    which the container runtime collects.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # These log every connection and statement at INFO/DEBUG
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("Web Audit API %s starting up...", __version__)

    # Missing keys disable individual features; the rest of the API still works
    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))

    storage = Path(settings.storage_root)
    storage.mkdir(parents=True, exist_ok=True)
    logger.info("Image scratch directory: %s", storage.resolve())

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Web Audit API shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def error_body(
    error: str,
    message: str,
    details: Any = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """The error envelope. `extra` may replace `details` (scraper pass-through does)."""
    body: Dict[str, Any] = {
        "error": error,
        "message": message,
        "details": details,
        "request_id": request_id_var.get(""),
    }
    if extra:
        body.update(extra)
    return jsonable_encoder(body)


def _retry_after(exc: WebAuditError) -> Optional[int]:
    if isinstance(exc, (RateLimitExceededError, UpstreamServiceError)):
        return exc.retry_after
    return None


def register_exception_handlers(app: FastAPI) -> None:
    """
    Handler hierarchy:
        RequestValidationError  → 400 validation_error (body/query type errors)
        DatabaseError,
        FileStorageError        → 500, generic message, context logged only
        WebAuditError           → exc.status_code / exc.error_code
        Exception (fallback)    → 500 internal_server_error

    Handlers never expose stack traces, file paths or SQL. `context` is
    logged server-side; only `extra` reaches the client.
    """

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        """Malformed JSON or wrong field types: the client can fix this."""
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid {location}: {first.get('msg')}" if location else "Invalid request body"
        logger.warning("[%s] Request validation failed: %s", request_id_var.get(""), message)
        details = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors]
        return JSONResponse(status_code=400, content=error_body("validation_error", message, details))

    @app.exception_handler(DatabaseError)
    @app.exception_handler(FileStorageError)
    async def handle_internal_failure(request: Request, exc: WebAuditError):
        """Generic message to the user, details logged server-side."""
        logger.error(
            "[%s] %s: %s | Context: %s",
            request_id_var.get(""), type(exc).__name__, exc.message, exc.context,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.error_code, "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(WebAuditError)
    async def handle_webaudit_error(request: Request, exc: WebAuditError):
        rid = request_id_var.get("")
        if exc.status_code >= 500:
            logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
        else:
            logger.warning("[%s] %s: %s", rid, type(exc).__name__, exc.message)

        headers = {}
        retry_after = _retry_after(exc)
        if retry_after:
            headers["Retry-After"] = str(retry_after)

        details = {"field": exc.context["field"]} if "field" in exc.context else None
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.error_code, exc.message, details, exc.extra),
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Catch-all: stack trace logged, generic 500 returned with the request id."""
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content=error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again or contact support.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="Web Audit API",
        description=(
            "Backend for the web audit dashboard: plans and payments, plan gating, "
            "AI content analysis, PageSpeed reports, link checks, crawling and alerts."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    # text/event-stream is excluded by GZipMiddleware itself
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    for module in (alerts, plans, payments, access, analysis, audit, email, admin, health):
        app.include_router(module.router)

    return app


# ── Application Instance ─────────────────────────────────────────────────
# uvicorn expects `webaudit.main:app` to be importable
app = create_app()
