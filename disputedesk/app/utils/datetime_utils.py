"""Timestamp helpers; every stored timestamp is timezone-aware UTC."""

from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Accept stored datetimes as either native values or ISO strings."""
    if value is None:
        return None
    if isinstance(value, datetime):
        # Drivers without tz_aware hand back naive UTC values
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
