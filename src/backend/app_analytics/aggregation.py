from __future__ import annotations

import math
import re
from collections import Counter
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Sequence

from .models import (
    AggregateSnapshot,
    DeviceRecord,
    Period,
    ProductCount,
    PurchaseRecord,
    SubscriptionDuration,
)
from .timeutils import epoch_day

SECONDS_PER_DAY = 24 * 60 * 60
_PRODUCT_SEPARATORS = re.compile(r"[-_]")


def parse_price(value: Any) -> Optional[float]:
    """
    Parse a stored price, returning ``None`` when it is not a finite number.

    A missing price counts as a zero-value purchase.
    """

    if value is None:
        return 0.0
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, Decimal):
            price = float(value)
        elif isinstance(value, (int, float)):
            price = float(value)
        else:
            price = float(Decimal(str(value).strip()))
    except (InvalidOperation, TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(price):
        return None
    return price


def aggregate_period(
    purchases: Sequence[PurchaseRecord],
    devices: Sequence[DeviceRecord],
    period: Optional[Period] = None,
) -> AggregateSnapshot:
    """
    Reduce one period's purchase and device rows into totals.

    When ``period`` is given the per-day breakdowns are filled as well, and
    only rows whose own UTC day falls inside the period count towards
    anything, whatever the upstream query returned. Totals then always equal
    the sum of their buckets.
    """

    revenue_by_day: Optional[List[float]] = None
    trial_revenue_by_day: Optional[List[float]] = None
    users_by_day: Optional[List[int]] = None
    if period is not None:
        revenue_by_day = [0.0] * period.days
        trial_revenue_by_day = [0.0] * period.days
        users_by_day = [0] * period.days

    total_revenue = 0.0
    total_trial_revenue = 0.0
    paid_count = 0
    trial_count = 0
    total_purchases = 0

    for purchase in purchases:
        offset = None
        if period is not None:
            offset = _period_offset(period, purchase.created_at)
            if offset is None:
                continue
        total_purchases += 1

        price = parse_price(purchase.price)
        if price is None:
            continue

        is_trial = bool(purchase.is_trial)
        if is_trial:
            total_trial_revenue += price
            trial_count += 1
        else:
            total_revenue += price
            paid_count += 1

        if offset is None:
            continue
        if is_trial:
            trial_revenue_by_day[offset] += price
        else:
            revenue_by_day[offset] += price

    unique_devices = set()
    for device in devices:
        if period is None:
            unique_devices.add(device.device_id)
            continue
        offset = _period_offset(period, device.created_at)
        if offset is None:
            continue
        unique_devices.add(device.device_id)
        users_by_day[offset] += 1

    return AggregateSnapshot(
        total_revenue=round(total_revenue, 2),
        total_trial_revenue=round(total_trial_revenue, 2),
        paid_count=paid_count,
        trial_count=trial_count,
        total_purchases=total_purchases,
        new_users=len(unique_devices),
        revenue_by_day=None if revenue_by_day is None else tuple(revenue_by_day),
        trial_revenue_by_day=None if trial_revenue_by_day is None else tuple(trial_revenue_by_day),
        users_by_day=None if users_by_day is None else tuple(users_by_day),
    )


def _period_offset(period: Period, moment: Optional[datetime]) -> Optional[int]:
    if moment is None:
        return None
    return period.offset(epoch_day(moment))


def average_subscription_duration(purchases: Sequence[PurchaseRecord]) -> SubscriptionDuration:
    """Mean paid subscription length in days over rows with a valid term."""

    durations = [
        (purchase.expiration_date - purchase.purchase_date).total_seconds() / SECONDS_PER_DAY
        for purchase in purchases
        if not purchase.is_trial
        and purchase.purchase_date is not None
        and purchase.expiration_date is not None
        and purchase.expiration_date > purchase.purchase_date
    ]
    if not durations:
        return SubscriptionDuration(average_days=None, sample_size=0)
    return SubscriptionDuration(
        average_days=round(sum(durations) / len(durations), 2),
        sample_size=len(durations),
    )


def format_product_label(product_id: Any) -> str:
    if not product_id or not isinstance(product_id, str):
        return "Unknown"
    parts = [part for part in _PRODUCT_SEPARATORS.split(product_id) if part]
    return " ".join(part[:1].upper() + part[1:] for part in parts)


def purchases_by_product(purchases: Sequence[PurchaseRecord]) -> List[ProductCount]:
    counts = Counter(purchase.product_id or "unknown" for purchase in purchases if not purchase.is_trial)
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [
        ProductCount(product_id=product_id, label=format_product_label(product_id), count=count)
        for product_id, count in ranked
    ]
