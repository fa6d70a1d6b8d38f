from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional, Sequence

from .models import Period, PeriodWindow
from .timeutils import day_key, epoch_day

ALLOWED_RANGES = (7, 14, 30, 90, 180)
ALLOWED_ACTIVE_WINDOWS = (7, 6, 5, 4, 3, 2, 1)


def _whitelisted(value: Any, allowed: Sequence[int]) -> int:
    if isinstance(value, bool):
        return allowed[0]
    if isinstance(value, int):
        parsed: Optional[int] = value
    else:
        try:
            parsed = int(str(value).strip())
        except (TypeError, ValueError):
            parsed = None
    if parsed in allowed:
        return parsed
    return allowed[0]


def resolve_range_days(value: Any) -> int:
    """Return ``value`` as a range length if it is allowed, else the default."""

    return _whitelisted(value, ALLOWED_RANGES)


def resolve_active_window_days(value: Any) -> int:
    return max(1, _whitelisted(value, ALLOWED_ACTIVE_WINDOWS))


def resolve_period_window(range_days: int, now: datetime) -> PeriodWindow:
    """
    Derive the current period ending on the UTC day of ``now`` and the
    equal-length period immediately before it.
    """

    days = max(1, range_days)
    current_end = epoch_day(now)
    current_start = current_end - (days - 1)
    previous_end = current_start - 1
    previous_start = previous_end - (days - 1)
    return PeriodWindow(
        range_days=days,
        current=Period(start_day=current_start, end_day=current_end),
        previous=Period(start_day=previous_start, end_day=previous_end),
    )


def active_window_period(current: Period, window_days: int) -> Period:
    """Span of last-seen days needed to evaluate every bucket of ``current``."""

    return Period(start_day=current.start_day - (max(1, window_days) - 1), end_day=current.end_day)


def build_buckets(period: Period) -> List[str]:
    return [day_key(day) for day in range(period.start_day, period.end_day + 1)]
