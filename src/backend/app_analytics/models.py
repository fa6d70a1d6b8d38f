from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from .timeutils import day_key, day_start


@dataclass(frozen=True)
class AppRecord:
    """Tenant an analytics request is scoped to."""

    id: str
    app_id: str
    name: Optional[str] = None


@dataclass(frozen=True)
class PurchaseRecord:
    """
    A purchase row as stored by the ingestion side.

    ``price`` is kept as delivered (number, decimal or string) and parsed by
    the aggregator, which skips values that are not finite numbers.
    Timestamps are already normalised to aware UTC datetimes, or ``None``
    when the stored value was missing or unparseable.
    """

    price: Any = None
    created_at: Optional[datetime] = None
    is_trial: bool = False
    device_id: Optional[str] = None
    purchase_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    product_id: Optional[str] = None


@dataclass(frozen=True)
class DeviceRecord:
    device_id: Optional[str]
    created_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None


@dataclass(frozen=True)
class SessionRecord:
    session_started_at: Optional[datetime] = None
    last_heartbeat: Optional[datetime] = None
    country_code: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    latitude: Any = None
    longitude: Any = None
    id: Optional[str] = None
    device_id: Optional[str] = None


@dataclass(frozen=True)
class DeviceLabel:
    id: str
    device_id: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class Period:
    """
    Inclusive run of UTC days expressed as epoch-day integers.

    ``start``/``end`` give the datetime boundaries used for store queries:
    midnight of the first day and the last microsecond of the final day.
    """

    start_day: int
    end_day: int

    @property
    def days(self) -> int:
        return self.end_day - self.start_day + 1

    @property
    def start(self) -> datetime:
        return day_start(self.start_day)

    @property
    def end(self) -> datetime:
        return day_start(self.end_day + 1) - timedelta(microseconds=1)

    def contains_day(self, day: int) -> bool:
        return self.start_day <= day <= self.end_day

    def offset(self, day: int) -> Optional[int]:
        """Index of ``day`` inside the period, or ``None`` when outside it."""

        if not self.contains_day(day):
            return None
        return day - self.start_day


@dataclass(frozen=True)
class PeriodWindow:
    range_days: int
    current: Period
    previous: Period


@dataclass(frozen=True)
class AggregateSnapshot:
    total_revenue: float
    total_trial_revenue: float
    paid_count: int
    trial_count: int
    total_purchases: int
    new_users: int
    revenue_by_day: Optional[Tuple[float, ...]] = None
    trial_revenue_by_day: Optional[Tuple[float, ...]] = None
    users_by_day: Optional[Tuple[int, ...]] = None


@dataclass(frozen=True)
class MetricWithDelta:
    current: Optional[float]
    previous: Optional[float]
    delta_percent: Optional[float]


@dataclass(frozen=True)
class TrialCancellation:
    total_trials: int
    converted: int
    cancelled: int
    rate: float


@dataclass(frozen=True)
class SubscriptionDuration:
    average_days: Optional[float]
    sample_size: int


@dataclass(frozen=True)
class SessionStats:
    active_sessions: int
    average_duration_seconds: Optional[float]
    sample_size: int


@dataclass(frozen=True)
class ChartPoint:
    date: str
    revenue: float
    trial_revenue: float
    new_users: int


@dataclass(frozen=True)
class ActiveUsersPoint:
    date: str
    active_users: int


@dataclass(frozen=True)
class ProductCount:
    product_id: str
    label: str
    count: int


@dataclass(frozen=True)
class CountryShare:
    code: str
    count: int
    percent: float


@dataclass(frozen=True)
class GeoBreakdown:
    total_sessions: int
    countries: Sequence[CountryShare] = field(default_factory=tuple)


@dataclass(frozen=True)
class LiveSession:
    id: Optional[str]
    device_id: Optional[str]
    device_name: str
    latitude: float
    longitude: float
    country_code: Optional[str]
    region: Optional[str]
    city: Optional[str]
    last_heartbeat: Optional[datetime]
    session_started_at: Optional[datetime]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "deviceId": self.device_id,
            "deviceName": self.device_name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "countryCode": self.country_code,
            "region": self.region,
            "city": self.city,
            "lastHeartbeat": _isoformat(self.last_heartbeat),
            "sessionStartedAt": _isoformat(self.session_started_at),
        }


@dataclass(frozen=True)
class AnalyticsResult:
    app: AppRecord
    window: PeriodWindow
    generated_at: datetime
    active_session_window_seconds: int
    current: AggregateSnapshot
    previous: AggregateSnapshot
    revenue: MetricWithDelta
    new_users: MetricWithDelta
    revenue_per_user: MetricWithDelta
    conversion_rate: MetricWithDelta
    subscription: SubscriptionDuration
    previous_subscription: SubscriptionDuration
    subscription_delta: Optional[float]
    trials: TrialCancellation
    previous_trials: TrialCancellation
    trial_cancellation_delta: Optional[float]
    sessions: SessionStats
    chart: Sequence[ChartPoint]
    active_window_days: int
    active_users: Sequence[ActiveUsersPoint]
    purchases_by_product: Sequence[ProductCount]
    geography: GeoBreakdown
    allowed_ranges: Sequence[int]
    allowed_active_windows: Sequence[int]

    def as_dict(self) -> Dict[str, Any]:
        """
        Render the response document shipped to the dashboard.

        Keys are camelCase to match what the frontend charts read.
        """

        current = self.window.current
        return {
            "app": {"id": self.app.id, "app_id": self.app.app_id, "name": self.app.name},
            "range": {
                "days": self.window.range_days,
                "start": current.start.isoformat(),
                "end": day_start(current.end_day).isoformat(),
            },
            "metrics": {
                "activeSessions": {
                    "total": self.sessions.active_sessions,
                    "windowSeconds": self.active_session_window_seconds,
                    "asOf": self.generated_at.isoformat(),
                    "delta": None,
                },
                "averageSubscription": {
                    "days": self.subscription.average_days,
                    "previousDays": self.previous_subscription.average_days,
                    "sampleSize": self.subscription.sample_size,
                    "previousSampleSize": self.previous_subscription.sample_size,
                    "delta": self.subscription_delta,
                },
                "trialCancellation": {
                    "rate": self.trials.rate,
                    "previousRate": self.previous_trials.rate,
                    "totalTrials": self.trials.total_trials,
                    "cancelledTrials": self.trials.cancelled,
                    "previousTotalTrials": self.previous_trials.total_trials,
                    "previousCancelledTrials": self.previous_trials.cancelled,
                    "delta": self.trial_cancellation_delta,
                },
                "revenue": {
                    "total": self.current.total_revenue,
                    "trial": self.current.total_trial_revenue,
                    "currency": "USD",
                    "count": self.current.paid_count,
                    "trialCount": self.current.trial_count,
                    "previous": self.previous.total_revenue,
                    "previousTrial": self.previous.total_trial_revenue,
                    "previousCount": self.previous.paid_count,
                    "previousTrialCount": self.previous.trial_count,
                    "delta": self.revenue.delta_percent,
                },
                "newUsers": {
                    "total": self.current.new_users,
                    "previous": self.previous.new_users,
                    "delta": self.new_users.delta_percent,
                },
                "session": {
                    "averageDurationSeconds": self.sessions.average_duration_seconds,
                    "sampleSize": self.sessions.sample_size,
                },
                "revenuePerUser": self.revenue_per_user.current,
                "revenuePerUserPrevious": self.revenue_per_user.previous,
                "revenuePerUserDelta": self.revenue_per_user.delta_percent,
                "conversionRate": self.conversion_rate.current,
                "conversionRatePrevious": self.conversion_rate.previous,
                "conversionRateDelta": self.conversion_rate.delta_percent,
            },
            "chart": [
                {
                    "date": point.date,
                    "revenue": point.revenue,
                    "trialRevenue": point.trial_revenue,
                    "newUsers": point.new_users,
                }
                for point in self.chart
            ],
            "activeUsers": {
                "windowDays": self.active_window_days,
                "series": [
                    {"date": point.date, "activeUsers": point.active_users}
                    for point in self.active_users
                ],
            },
            "purchasesByProduct": [
                {"productId": row.product_id, "label": row.label, "count": row.count}
                for row in self.purchases_by_product
            ],
            "geography": {
                "totalSessions": self.geography.total_sessions,
                "countries": [
                    {"code": row.code, "count": row.count, "percent": row.percent}
                    for row in self.geography.countries
                ],
            },
            "options": {
                "allowedRanges": list(self.allowed_ranges),
                "activeWindows": list(self.allowed_active_windows),
            },
        }


def build_chart(
    period: Period,
    snapshot: AggregateSnapshot,
) -> Tuple[ChartPoint, ...]:
    """Zip the per-day breakdowns of a bucketed snapshot into chart points."""

    revenue = snapshot.revenue_by_day or (0.0,) * period.days
    trial_revenue = snapshot.trial_revenue_by_day or (0.0,) * period.days
    users = snapshot.users_by_day or (0,) * period.days
    return tuple(
        ChartPoint(
            date=day_key(period.start_day + offset),
            revenue=round(revenue[offset], 2),
            trial_revenue=round(trial_revenue[offset], 2),
            new_users=users[offset],
        )
        for offset in range(period.days)
    )


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def serialize_sessions(sessions: Iterable[LiveSession]) -> list:
    return [session.as_dict() for session in sessions]
