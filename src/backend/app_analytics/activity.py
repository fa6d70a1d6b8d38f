from __future__ import annotations

import math
import re
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .models import (
    ActiveUsersPoint,
    CountryShare,
    DeviceLabel,
    DeviceRecord,
    GeoBreakdown,
    LiveSession,
    Period,
    SessionRecord,
    SessionStats,
)
from .timeutils import day_key, epoch_day

ACTIVE_SESSION_WINDOW_SECONDS = 30
TOP_COUNTRIES = 8
UNKNOWN_COUNTRY = "UNKNOWN"

DEFAULT_LIVE_WINDOW_SECONDS = 600
MIN_LIVE_WINDOW_SECONDS = 30
MAX_LIVE_WINDOW_SECONDS = 3600
MAX_LIVE_SESSIONS = 500
_LEADING_INTEGER = re.compile(r"\s*([+-]?\d+)")


def active_users_series(
    devices: Sequence[DeviceRecord],
    period: Period,
    window_days: int,
) -> List[ActiveUsersPoint]:
    """
    Count, for every day of ``period``, the distinct devices last seen within
    the trailing ``window_days`` ending on that day.

    Snapshots are sorted once by last-seen day and swept with two pointers;
    a per-device reference count keeps devices with several snapshots in the
    window from being counted twice.
    """

    span = max(1, window_days) - 1
    snapshots: List[Tuple[int, str]] = sorted(
        (epoch_day(device.last_seen_at), device.device_id)
        for device in devices
        if device.device_id and device.last_seen_at is not None
    )

    in_window: Counter = Counter()
    head = 0
    tail = 0
    series: List[ActiveUsersPoint] = []
    for bucket in range(period.start_day, period.end_day + 1):
        while head < len(snapshots) and snapshots[head][0] <= bucket:
            in_window[snapshots[head][1]] += 1
            head += 1
        while tail < head and snapshots[tail][0] < bucket - span:
            device_id = snapshots[tail][1]
            in_window[device_id] -= 1
            if not in_window[device_id]:
                del in_window[device_id]
            tail += 1
        series.append(ActiveUsersPoint(date=day_key(bucket), active_users=len(in_window)))
    return series


def session_stats(sessions: Sequence[SessionRecord]) -> SessionStats:
    durations = [
        (session.last_heartbeat - session.session_started_at).total_seconds()
        for session in sessions
        if session.session_started_at is not None
        and session.last_heartbeat is not None
        and session.last_heartbeat > session.session_started_at
    ]
    average = round(sum(durations) / len(durations), 2) if durations else None
    return SessionStats(
        active_sessions=len(sessions),
        average_duration_seconds=average,
        sample_size=len(durations),
    )


def normalize_country_code(value: Any) -> str:
    if value is None:
        return UNKNOWN_COUNTRY
    code = str(value).strip().upper()
    return code or UNKNOWN_COUNTRY


def geo_distribution(sessions: Sequence[SessionRecord], limit: int = TOP_COUNTRIES) -> GeoBreakdown:
    counts = Counter(normalize_country_code(session.country_code) for session in sessions)
    total = sum(counts.values())
    # sorted() is stable, so equal counts keep first-seen order.
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)[:limit]
    return GeoBreakdown(
        total_sessions=total,
        countries=tuple(
            CountryShare(code=code, count=count, percent=round(count / total * 100, 2) if total else 0.0)
            for code, count in ranked
        ),
    )


def resolve_live_window_seconds(value: Any) -> int:
    """Leading integer of ``value`` clamped to the live window bounds ("45s" is 45)."""

    if value is None or isinstance(value, bool):
        return DEFAULT_LIVE_WINDOW_SECONDS
    match = _LEADING_INTEGER.match(str(value))
    if match is None:
        return DEFAULT_LIVE_WINDOW_SECONDS
    parsed = int(match.group(1))
    return min(max(parsed, MIN_LIVE_WINDOW_SECONDS), MAX_LIVE_WINDOW_SECONDS)


def _coordinate(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def _device_name(session: SessionRecord, labels: Dict[str, DeviceLabel]) -> str:
    label = labels.get(session.device_id) if session.device_id else None
    if label is not None and label.name:
        return label.name
    if label is not None and label.device_id:
        return label.device_id
    if session.device_id:
        return f"Device {str(session.device_id)[-6:]}"
    return "Unknown device"


def locate_live_sessions(
    sessions: Sequence[SessionRecord],
    labels: Sequence[DeviceLabel] = (),
) -> List[LiveSession]:
    """Keep sessions with usable coordinates and attach a display name."""

    by_id = {label.id: label for label in labels if label.id}
    located: List[LiveSession] = []
    for session in sessions:
        latitude = _coordinate(session.latitude)
        longitude = _coordinate(session.longitude)
        if latitude is None or longitude is None:
            continue
        located.append(
            LiveSession(
                id=session.id,
                device_id=session.device_id,
                device_name=_device_name(session, by_id),
                latitude=latitude,
                longitude=longitude,
                country_code=session.country_code or None,
                region=session.region or None,
                city=session.city or None,
                last_heartbeat=session.last_heartbeat,
                session_started_at=session.session_started_at,
            )
        )
    return located


def distinct_device_ids(sessions: Sequence[SessionRecord]) -> List[str]:
    seen: Dict[str, None] = {}
    for session in sessions:
        if session.device_id:
            seen.setdefault(session.device_id, None)
    return list(seen)


def heartbeat_cutoff(now: datetime, seconds: int) -> datetime:
    return now - timedelta(seconds=seconds)
