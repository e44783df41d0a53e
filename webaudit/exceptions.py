"""
Web Audit API — Custom Exception Hierarchy
============================================

What:  Application-specific exceptions for every failure the API reports.
Why:   Services raise these instead of building error dicts; the global
       handlers in main.py turn them into the JSON error envelope with the
       matching HTTP status code.
How:   Each class carries a status code, a machine-readable error code, a
       human-readable message, a private `context` dict (logged only) and an
       optional public `extra` dict (merged into the response body).
Who:   Raised by services, dependencies and middleware; caught by handlers.

Exception Hierarchy:
    WebAuditError (base)                → 500
    ├── ValidationError                 → 400 Bad Request (client can fix)
    ├── AuthenticationError             → 401 Unauthorized
    ├── PermissionDeniedError           → 403 Forbidden
    │   └── PlanAccessError             → 403 Forbidden (plan gating)
    ├── NotFoundError                   → 404 Not Found
    ├── UpstreamTimeoutError            → 408 Request Timeout
    ├── UpstreamResponseError           → upstream status passed through
    ├── RateLimitExceededError          → 429 Too Many Requests
    ├── UpstreamServiceError            → 503 Service Unavailable
    │   ├── LLMServiceError             → 503 (Gemini failed after retries)
    │   └── CircuitBreakerOpenError     → 503 (circuit open)
    ├── PaymentGatewayError             → 500 (Razorpay call failed)
    ├── EmailDeliveryError              → 500 (SMTP relay refused)
    ├── FileStorageError                → 500
    └── DatabaseError                   → 500

Why `extra` as well as `context`:
    Some endpoints promise extra top-level fields on failure (for example
    `availablePackages` when a credit package id is wrong, or `isBroken` on
    link checks). `context` stays server-side; `extra` is safe to return.
"""

from typing import Any, Dict, List, Optional


class WebAuditError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
        extra:    Additional public fields merged into the error body
        status_code / error_code: Drive the HTTP response
    """

    status_code: int = 500
    error_code: str = "server_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        self.extra = extra or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)


class ValidationError(WebAuditError):
    """
    Raised when client input fails a business rule.

    HTTP: 400 Bad Request. Schema-level problems (wrong JSON types) are
    turned into the same status by the RequestValidationError handler.
    """

    status_code = 400
    error_code = "validation_error"

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx, error_code=error_code, extra=extra)
        self.field = field


class AuthenticationError(WebAuditError):
    """Missing, malformed or expired bearer token (401)."""

    status_code = 401
    error_code = "INVALID_AUTH"

    def __init__(
        self,
        message: str = "Invalid authentication",
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context, error_code=error_code)


class PermissionDeniedError(WebAuditError):
    """Authenticated, but not allowed to perform this action (403)."""

    status_code = 403
    error_code = "forbidden"

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        context: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context, error_code=error_code, extra=extra)


class PlanAccessError(PermissionDeniedError):
    """
    Raised when the user's plan does not include a feature or limit.

    The response tells the client which plan the user is on and which
    feature was required so the UI can offer an upgrade.
    """

    error_code = "access_denied"

    def __init__(
        self,
        message: str,
        user_plan: Optional[str] = None,
        required_feature: Optional[str] = None,
        allowed_features: Optional[List[str]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        public = {"userPlan": user_plan}
        if required_feature:
            public["requiredFeature"] = required_feature
        if allowed_features is not None:
            public["allowedFeatures"] = allowed_features
        public.update(extra or {})
        super().__init__(message=message, extra=public)
        self.user_plan = user_plan
        self.required_feature = required_feature


class NotFoundError(WebAuditError):
    """
    Raised when a requested resource does not exist.

    SQLAlchemy returns None for missing rows; services convert that into
    this exception so routes never check for None themselves.
    """

    status_code = 404
    error_code = "not_found"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            message = f"{resource.capitalize()} not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class UpstreamTimeoutError(WebAuditError):
    """A collaborator did not answer within its timeout (408)."""

    status_code = 408
    error_code = "request_timeout"


class RateLimitExceededError(WebAuditError):
    """Client exceeded the per-IP request rate limit (429)."""

    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class UpstreamServiceError(WebAuditError):
    """
    A collaborator (PageSpeed, scraper, Gemini) is not available right now.

    HTTP: 503 Service Unavailable, so clients know to retry later.
    """

    status_code = 503
    error_code = "service_unavailable"

    def __init__(
        self,
        message: str = "An upstream service is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx, error_code=error_code, extra=extra)
        self.retry_after = retry_after


class LLMServiceError(UpstreamServiceError):
    """Gemini returned an error or unusable output after all retries."""

    error_code = "llm_service_error"

    def __init__(
        self,
        message: str = "AI analysis service is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, retry_after=retry_after, context=context)


class CircuitBreakerOpenError(UpstreamServiceError):
    """
    Raised when the Gemini circuit breaker is OPEN.

    Requests fail immediately instead of waiting on retries against a
    service that has just failed several times in a row.
    """

    error_code = "service_unavailable"

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"AI service is temporarily unavailable due to repeated failures. "
            f"The service will automatically retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, retry_after=recovery_time, context=ctx)
        self.recovery_time = recovery_time


class UpstreamResponseError(WebAuditError):
    """
    A collaborator answered with an error status that the client should see
    unchanged (the scraper's 4xx/5xx answers are passed through).
    """

    error_code = "upstream_error"

    def __init__(
        self,
        status_code: int,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context, error_code=error_code, extra=extra)
        self.status_code = status_code


class PaymentGatewayError(WebAuditError):
    """Razorpay rejected a call or is not configured (500)."""

    status_code = 500
    error_code = "payment_gateway_error"

    def __init__(
        self,
        message: str = "Payment gateway request failed",
        context: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message=message, context=context, error_code=error_code)


class EmailDeliveryError(WebAuditError):
    """The SMTP relay refused or could not be reached (500)."""

    status_code = 500
    error_code = "email_delivery_failed"

    def __init__(
        self,
        message: str = "Failed to send email",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class FileStorageError(WebAuditError):
    """
    Raised when the image scratch storage cannot be written or read.

    The message returned to the client never contains file system paths.
    """

    status_code = 500
    error_code = "server_error"

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(WebAuditError):
    """
    Raised when database operations fail unexpectedly.

    Security Note:
        The message returned to the client is always generic. Constraint
        names and SQL are logged server-side only.
    """

    status_code = 500
    error_code = "server_error"

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
