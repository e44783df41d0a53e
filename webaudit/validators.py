"""Small input helpers shared by the services."""

import uuid
from typing import Any, Optional

from webaudit.exceptions import ValidationError


def parse_uuid(value: Any, field: str, message: Optional[str] = None) -> uuid.UUID:
    """Converts a client-supplied id into a UUID or raises a 400."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(message=message or f"Invalid {field}", field=field)


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
