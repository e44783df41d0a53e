"""Web Audit API — Launch notification sign-ups (`notify_me`)."""

import logging
from datetime import datetime, timezone
from typing import Any, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from webaudit.exceptions import ValidationError
from webaudit.models.support import NotifySubscriber
from webaudit.schemas.email import NotifyMeResponse

logger = logging.getLogger(__name__)


def normalize_email(email: Any) -> str:
    if not isinstance(email, str) or "@" not in email:
        raise ValidationError(message="Please provide a valid email address", field="email")
    return email.strip().lower()


class NotifyService:

    async def subscribe(self, db: AsyncSession, email: Any, source: str) -> Tuple[bool, NotifyMeResponse]:
        """
        Returns (created, body). A known active address is not an error, and
        an inactive one is switched back on with the new source.
        """
        address = normalize_email(email)
        result = await db.execute(select(NotifySubscriber).where(NotifySubscriber.email == address))
        existing = result.scalar_one_or_none()

        if existing is not None and existing.is_active:
            return False, NotifyMeResponse(
                message="You're already on our notification list! We'll notify you when we launch.",
                already_subscribed=True,
            )

        now = datetime.now(timezone.utc)
        if existing is not None:
            existing.is_active = True
            existing.source = source
            existing.updated_at = now
            await db.flush()
            logger.info("Notify-me subscription reactivated (source=%s)", source)
            return False, NotifyMeResponse(
                message="Welcome back! We've reactivated your notification subscription.",
                reactivated=True,
            )

        subscriber = NotifySubscriber(email=address, source=source, is_active=True, created_at=now)
        db.add(subscriber)
        await db.flush()
        logger.info("New notify-me subscriber (source=%s)", source)
        return True, NotifyMeResponse(
            message="Thank you! We'll notify you when we launch.",
            id=str(subscriber.id),
        )


notify_service = NotifyService()
