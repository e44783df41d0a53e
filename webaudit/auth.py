"""
Web Audit API — Bearer Token Authentication
=============================================

What:  FastAPI dependencies that turn an `Authorization: Bearer <jwt>` header
       into the calling user, plus an admin-only variant.
Why:   Payment, credit, plan-expiry and image-batch routes act on "the
       caller"; admin routes must only be reachable by staff.
How:   The auth backend signs access tokens with HS256; we verify the
       signature, expiry and audience with PyJWT and read the user id from
       the `sub` claim. Admin status is read from `users.role`.
Who:   Used via `Depends(get_current_user)` / `Depends(require_admin)`.

Failure modes:
    No header                → 401 MISSING_AUTH
    Bad signature / expired  → 401 INVALID_AUTH
    Not an admin             → 403 forbidden
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.config import settings
from webaudit.database import get_db_session
from webaudit.exceptions import AuthenticationError, PermissionDeniedError
from webaudit.models.user import User

logger = logging.getLogger(__name__)

# auto_error=False: we raise our own 401 so the error envelope stays uniform
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    """The authenticated caller, as described by the access token."""

    id: uuid.UUID
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = field(default_factory=dict)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify the token and return its claims, or raise AuthenticationError."""
    if not settings.auth_jwt_secret:
        logger.error("AUTH_JWT_SECRET is not configured; rejecting bearer token")
        raise AuthenticationError()

    options = {"require": ["sub", "exp"]}
    try:
        return jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience or None,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError(message="Authentication token has expired")
    except jwt.InvalidTokenError as e:
        logger.info("Rejected bearer token: %s", type(e).__name__)
        raise AuthenticationError()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError(
            message="Missing or invalid authorization header",
            error_code="MISSING_AUTH",
        )

    claims = decode_access_token(credentials.credentials)
    try:
        user_id = uuid.UUID(str(claims["sub"]))
    except ValueError:
        raise AuthenticationError()

    return CurrentUser(
        id=user_id,
        email=claims.get("email"),
        user_metadata=claims.get("user_metadata") or {},
    )


async def require_admin(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    """Allows the request only when the caller's users row has role 'admin'."""
    result = await db.execute(select(User.role).where(User.id == user.id))
    role = result.scalar_one_or_none()
    if role != "admin":
        logger.warning("Non-admin user %s attempted an admin operation", user.id)
        raise PermissionDeniedError(message="Admin access required")
    return user
