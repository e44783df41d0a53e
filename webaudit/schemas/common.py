"""
Web Audit API — Shared Response Schemas
=========================================

What:  The error envelope, the health payload and small generic bodies.
Why:   Every endpoint documents the same failure shape in OpenAPI, and the
       frontend parses errors by the top-level `error` key alone.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "validation_error",
            "message": "URL is required",
            "details": null,
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }

    Some endpoints add public fields next to these (for example `isBroken`
    on link checks or `availablePackages` on credit purchases).
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[Any] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")

    model_config = {"extra": "allow"}


class HealthResponse(BaseModel):
    """Returned by GET /health for monitoring and load balancer checks."""
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    gemini: str = Field(description="Gemini API status: available, unavailable, circuit_open")
    uptime_seconds: float = Field(description="Seconds since service started")


class SuccessResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
