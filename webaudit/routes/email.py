"""
Web Audit API — Email and Notify-Me Routes
============================================

What:  POST /api/send-email (templated or custom transactional email) and
       POST /api/notify-me (launch notification sign-up).
Who:   The auth backend's hooks and the admin panel send email; the landing
       page posts notify-me sign-ups.
"""

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.database import get_db_session
from webaudit.schemas.common import ErrorResponse
from webaudit.schemas.email import NotifyMeRequest, NotifyMeResponse, SendEmailRequest, SendEmailResponse
from webaudit.services.email_service import email_service
from webaudit.services.notify_service import notify_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Email"])


@router.post(
    "/send-email",
    response_model=SendEmailResponse,
    response_model_exclude_none=True,
    responses={
        400: {"description": "Missing fields or unknown template", "model": ErrorResponse},
        500: {"description": "SMTP delivery failed", "model": ErrorResponse},
    },
    summary="Send a transactional email",
    description=(
        "Custom content when `to`, `subject` and `html` are all given; otherwise the "
        "template named by `type` (welcome, confirmation, password-reset, plan-expiry)."
    ),
)
async def send_email(body: SendEmailRequest) -> SendEmailResponse:
    message_id = await email_service.send_request(body)
    return SendEmailResponse(message="Email sent successfully", message_id=message_id)


@router.post(
    "/notify-me",
    response_model=NotifyMeResponse,
    response_model_exclude_none=True,
    responses={
        201: {"description": "New subscriber", "model": NotifyMeResponse},
        400: {"description": "Invalid email", "model": ErrorResponse},
    },
    summary="Sign up for the launch notification",
)
async def notify_me(
    body: NotifyMeRequest,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
) -> NotifyMeResponse:
    created, result = await notify_service.subscribe(db, body.email, body.source)
    if created:
        response.status_code = 201
    return result
