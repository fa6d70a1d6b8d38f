"""
Trial cancellation: which trial devices of a period never paid.

Conversion is looked up over the app's whole purchase history rather than
the analysed period, so a device that trialled this week and paid a year
ago counts as converted.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence

from .models import PurchaseRecord, TrialCancellation


def trial_device_ids(purchases: Sequence[PurchaseRecord]) -> List[str]:
    """Distinct device ids with at least one trial purchase, in first-seen order."""

    seen = {}
    for purchase in purchases:
        if purchase.is_trial and purchase.device_id:
            seen.setdefault(purchase.device_id, None)
    return list(seen)


def resolve_trial_cancellation(
    trial_ids: Sequence[str],
    converted_ids: Iterable[str],
) -> TrialCancellation:
    trial_set = set(trial_ids)
    converted = {device_id for device_id in converted_ids if device_id} & trial_set
    total = len(trial_set)
    cancelled = total - len(converted)
    rate = round(cancelled / total * 100, 2) if total else 0.0
    return TrialCancellation(total_trials=total, converted=len(converted), cancelled=cancelled, rate=rate)
