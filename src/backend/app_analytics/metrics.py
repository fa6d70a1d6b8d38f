from __future__ import annotations

import math
from typing import Optional

from .models import AggregateSnapshot, MetricWithDelta


def _is_finite(value: Optional[float]) -> bool:
    return value is not None and not isinstance(value, bool) and math.isfinite(value)


def percent_delta(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    """
    Percent change from ``previous`` to ``current`` rounded to 2 decimals.

    There is no meaningful change against an empty or unknown baseline, so a
    zero or non-finite ``previous`` gives ``None``.
    """

    if not _is_finite(previous) or previous == 0 or not _is_finite(current):
        return None
    delta = (current - previous) / previous * 100
    if not math.isfinite(delta):
        return None
    return round(delta, 2)


def build_metric(current: Optional[float], previous: Optional[float]) -> MetricWithDelta:
    return MetricWithDelta(current=current, previous=previous, delta_percent=percent_delta(current, previous))


def conversion_rate(paid_count: int, new_users: int) -> float:
    if new_users <= 0:
        return 0.0
    return round(paid_count / new_users * 100, 2)


def revenue_per_user(total_revenue: float, new_users: int) -> float:
    if new_users <= 0:
        return 0.0
    return round(total_revenue / new_users, 2)


def revenue_metric(current: AggregateSnapshot, previous: AggregateSnapshot) -> MetricWithDelta:
    return build_metric(current.total_revenue, previous.total_revenue)


def new_users_metric(current: AggregateSnapshot, previous: AggregateSnapshot) -> MetricWithDelta:
    return build_metric(current.new_users, previous.new_users)


def conversion_rate_metric(current: AggregateSnapshot, previous: AggregateSnapshot) -> MetricWithDelta:
    return build_metric(
        conversion_rate(current.paid_count, current.new_users),
        conversion_rate(previous.paid_count, previous.new_users),
    )


def revenue_per_user_metric(current: AggregateSnapshot, previous: AggregateSnapshot) -> MetricWithDelta:
    return build_metric(
        revenue_per_user(current.total_revenue, current.new_users),
        revenue_per_user(previous.total_revenue, previous.new_users),
    )
