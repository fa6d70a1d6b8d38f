"""
Stateless UTC day arithmetic.

All bucketing works on epoch days (whole days since 1970-01-01 UTC) so that
range and window math is plain integer math with no timezone or DST
ambiguity.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

EPOCH_DATE = date(1970, 1, 1)
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Coerce a stored timestamp into an aware UTC datetime.

    Accepts datetimes (naive values are read as UTC) and ISO-8601 strings,
    including the trailing ``Z`` form. Anything else yields ``None``.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def epoch_day(dt: datetime) -> int:
    return (ensure_utc(dt) - EPOCH).days


def day_start(day: int) -> datetime:
    return EPOCH + timedelta(days=day)


def day_key(day: int) -> str:
    return (EPOCH_DATE + timedelta(days=day)).isoformat()
