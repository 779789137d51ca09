"""Clock helpers shared by the workflow services."""

from datetime import datetime, timezone
from typing import Callable, Optional

from ticketflow.core.errors import ValidationError

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: datetime | str) -> datetime:
    """Accept a datetime or an ISO-8601 string, return an aware UTC datetime."""
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError as e:
        raise ValidationError(f"Invalid timestamp: {value!r}", fields=["since"]) from e
