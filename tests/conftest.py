# ============================================================================
# Test Configuration & Fixtures
# ============================================================================
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

import pytest

from backend.app_analytics.models import (
    AppRecord,
    DeviceLabel,
    DeviceRecord,
    PurchaseRecord,
    SessionRecord,
)
from backend.app_analytics.repository import AnalyticsDataRepository

# Sunday; the default 7-day range covers 2026-03-09 .. 2026-03-15.
NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _between(value: Optional[datetime], start: datetime, end: datetime) -> bool:
    return value is not None and start <= value <= end


class FakeRepository(AnalyticsDataRepository):
    """In-memory repository that filters the way the SQL one does."""

    def __init__(
        self,
        apps: Iterable[AppRecord] = (AppRecord(id="1", app_id="app_demo", name="Demo"),),
        purchases: Sequence[PurchaseRecord] = (),
        devices: Sequence[DeviceRecord] = (),
        sessions: Sequence[SessionRecord] = (),
        lifetime_paid_device_ids: Sequence[str] = (),
        labels: Sequence[DeviceLabel] = (),
        failing: Iterable[str] = (),
    ):
        self.apps = {app.app_id: app for app in apps}
        self.purchase_rows = list(purchases)
        self.device_rows = list(devices)
        self.session_rows = list(sessions)
        self.lifetime_paid_device_ids = set(lifetime_paid_device_ids)
        self.labels = list(labels)
        self.failing = set(failing)
        self.calls: List[str] = []

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")

    def get_app(self, app_id):
        self._record("get_app")
        return self.apps.get(app_id)

    def purchases(self, app_id, start, end):
        self._record("purchases")
        return tuple(row for row in self.purchase_rows if _between(row.created_at, start, end))

    def devices_created(self, app_id, start, end):
        self._record("devices_created")
        return tuple(row for row in self.device_rows if _between(row.created_at, start, end))

    def devices_last_seen(self, app_id, start, end):
        self._record("devices_last_seen")
        return tuple(row for row in self.device_rows if _between(row.last_seen_at, start, end))

    def sessions_by_heartbeat(self, app_id, since, limit=None):
        self._record("sessions_by_heartbeat")
        rows = sorted(
            (row for row in self.session_rows if row.last_heartbeat is not None and row.last_heartbeat >= since),
            key=lambda row: row.last_heartbeat,
            reverse=True,
        )
        return tuple(rows[:limit] if limit is not None else rows)

    def sessions_started(self, app_id, start, end):
        self._record("sessions_started")
        return tuple(row for row in self.session_rows if _between(row.session_started_at, start, end))

    def converted_device_ids(self, app_id, device_ids):
        self._record("converted_device_ids")
        return tuple(device_id for device_id in device_ids if device_id in self.lifetime_paid_device_ids)

    def device_labels(self, app_id, ids):
        self._record("device_labels")
        return tuple(label for label in self.labels if label.id in set(ids))


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def week_repository() -> FakeRepository:
    """Three $10 paid and two free trial purchases, five new devices this week."""

    purchases = [
        PurchaseRecord(price="10.00", created_at=utc(2026, 3, 9, 8), device_id="d1", product_id="pro_monthly"),
        PurchaseRecord(price=10, created_at=utc(2026, 3, 12, 9), device_id="d2", product_id="pro_monthly"),
        PurchaseRecord(price=10.0, created_at=utc(2026, 3, 15, 10), device_id="d3", product_id="pro-yearly"),
        PurchaseRecord(price=0, created_at=utc(2026, 3, 10), is_trial=True, device_id="d4"),
        PurchaseRecord(price=0, created_at=utc(2026, 3, 11), is_trial=True, device_id="d5"),
        # previous period
        PurchaseRecord(price=20, created_at=utc(2026, 3, 3), device_id="p1", product_id="pro_monthly"),
        PurchaseRecord(price=0, created_at=utc(2026, 3, 4), is_trial=True, device_id="p2"),
        PurchaseRecord(price=0, created_at=utc(2026, 3, 5), is_trial=True, device_id="p3"),
    ]
    devices = [
        DeviceRecord(device_id=f"d{index}", created_at=utc(2026, 3, 8 + index), last_seen_at=utc(2026, 3, 8 + index, 20))
        for index in range(1, 6)
    ] + [
        DeviceRecord(device_id="p1", created_at=utc(2026, 3, 2), last_seen_at=utc(2026, 3, 6)),
        DeviceRecord(device_id="p2", created_at=utc(2026, 3, 3), last_seen_at=utc(2026, 3, 14)),
    ]
    sessions = [
        SessionRecord(
            id="s1",
            device_id="1",
            session_started_at=utc(2026, 3, 15, 11, 50),
            last_heartbeat=utc(2026, 3, 15, 11, 59, 50),
            country_code="us",
            latitude=40.7,
            longitude=-74.0,
        ),
        SessionRecord(
            id="s2",
            device_id="2",
            session_started_at=utc(2026, 3, 15, 11, 59, 0),
            last_heartbeat=utc(2026, 3, 15, 11, 59, 40),
            country_code="US",
            latitude="51.5",
            longitude="-0.12",
        ),
        SessionRecord(
            id="s3",
            session_started_at=utc(2026, 3, 12),
            last_heartbeat=utc(2026, 3, 12, 0, 5),
            country_code="CA",
        ),
        SessionRecord(
            id="s4",
            session_started_at=utc(2026, 3, 13),
            last_heartbeat=utc(2026, 3, 13, 0, 1),
            country_code=None,
        ),
    ]
    return FakeRepository(
        purchases=purchases,
        devices=devices,
        sessions=sessions,
        lifetime_paid_device_ids=["d1", "d4", "p1"],
        labels=[DeviceLabel(id="1", device_id="ios-abc", name="Ana's iPhone")],
    )
