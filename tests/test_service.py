# ============================================================================
# Analytics service tests
# ============================================================================
import pytest

from conftest import NOW, FakeRepository, utc
from backend.app_analytics import service
from backend.app_analytics.errors import (
    DependentLookupFailure,
    ResourceNotFound,
    UnexpectedComputationFailure,
    UpstreamFetchFailure,
)
from backend.app_analytics.models import PurchaseRecord
from backend.app_analytics.service import AnalyticsService


class TestAnalyticsBuild:
    """End-to-end aggregation over the fake store"""

    @pytest.mark.asyncio
    async def test_week_totals(self, week_repository):
        result = await AnalyticsService(week_repository).build("app_demo", "7", None, now=NOW)
        metrics = result.as_dict()["metrics"]

        assert metrics["revenue"]["total"] == 30.0
        assert metrics["revenue"]["count"] == 3
        assert metrics["revenue"]["trialCount"] == 2
        assert metrics["revenue"]["previous"] == 20.0
        assert metrics["revenue"]["delta"] == 50.0
        assert metrics["newUsers"] == {"total": 5, "previous": 2, "delta": 150.0}
        assert metrics["conversionRate"] == 60.0
        assert metrics["conversionRatePrevious"] == 50.0
        assert metrics["conversionRateDelta"] == 20.0
        assert metrics["revenuePerUser"] == 6.0
        assert metrics["revenuePerUserDelta"] == -40.0

    @pytest.mark.asyncio
    async def test_trial_cancellation(self, week_repository):
        result = await AnalyticsService(week_repository).build("app_demo", now=NOW)
        trials = result.as_dict()["metrics"]["trialCancellation"]

        assert trials["totalTrials"] == 2
        assert trials["cancelledTrials"] == 1
        assert trials["rate"] == 50.0
        assert trials["previousRate"] == 100.0
        assert trials["delta"] == -50.0
        assert week_repository.calls.count("converted_device_ids") == 2

    @pytest.mark.asyncio
    async def test_sessions_geo_and_active_users(self, week_repository):
        document = (await AnalyticsService(week_repository).build("app_demo", now=NOW)).as_dict()

        assert document["metrics"]["activeSessions"]["total"] == 2
        assert document["metrics"]["activeSessions"]["windowSeconds"] == 30
        assert document["metrics"]["session"] == {"averageDurationSeconds": 315.0, "sampleSize": 2}
        assert document["geography"]["totalSessions"] == 4
        assert [row["code"] for row in document["geography"]["countries"]] == ["US", "CA", "UNKNOWN"]
        assert document["activeUsers"]["windowDays"] == 7
        assert [point["activeUsers"] for point in document["activeUsers"]["series"]] == [2, 3, 4, 5, 5, 6, 6]

    @pytest.mark.asyncio
    async def test_chart_range_and_options(self, week_repository):
        document = (await AnalyticsService(week_repository).build("app_demo", "bogus", "3", now=NOW)).as_dict()

        assert document["range"] == {
            "days": 7,
            "start": "2026-03-09T00:00:00+00:00",
            "end": "2026-03-15T00:00:00+00:00",
        }
        assert [point["date"] for point in document["chart"]][-1] == "2026-03-15"
        assert [point["revenue"] for point in document["chart"]] == [10.0, 0.0, 0.0, 10.0, 0.0, 0.0, 10.0]
        assert [point["newUsers"] for point in document["chart"]] == [1, 1, 1, 1, 1, 0, 0]
        assert document["activeUsers"]["windowDays"] == 3
        assert document["options"] == {"allowedRanges": [7, 14, 30, 90, 180], "activeWindows": [7, 6, 5, 4, 3, 2, 1]}
        assert document["purchasesByProduct"][0] == {"productId": "pro_monthly", "label": "Pro Monthly", "count": 2}
        assert document["app"]["app_id"] == "app_demo"

    @pytest.mark.asyncio
    async def test_subscription_duration_delta(self):
        repo = FakeRepository(
            purchases=[
                PurchaseRecord(
                    price=5,
                    created_at=utc(2026, 3, 10),
                    purchase_date=utc(2026, 3, 10),
                    expiration_date=utc(2026, 4, 9),
                ),
                PurchaseRecord(
                    price=5,
                    created_at=utc(2026, 3, 3),
                    purchase_date=utc(2026, 3, 3),
                    expiration_date=utc(2026, 3, 28),
                ),
            ]
        )

        document = (await AnalyticsService(repo).build("app_demo", now=NOW)).as_dict()
        subscription = document["metrics"]["averageSubscription"]

        assert subscription["days"] == 30.0
        assert subscription["previousDays"] == 25.0
        assert subscription["delta"] == 20.0

    @pytest.mark.asyncio
    async def test_empty_store_has_null_deltas(self):
        document = (await AnalyticsService(FakeRepository()).build("app_demo", now=NOW)).as_dict()

        assert document["metrics"]["revenue"]["delta"] is None
        assert document["metrics"]["newUsers"]["delta"] is None
        assert document["metrics"]["conversionRate"] == 0.0
        assert document["metrics"]["trialCancellation"]["rate"] == 0.0
        assert document["metrics"]["session"]["averageDurationSeconds"] is None

    @pytest.mark.asyncio
    async def test_no_trials_skips_conversion_lookup(self):
        repo = FakeRepository()

        await AnalyticsService(repo).build("app_demo", now=NOW)

        assert "converted_device_ids" not in repo.calls


class TestAnalyticsFailures:
    """Every fetch failure is fatal to the request"""

    @pytest.mark.asyncio
    async def test_unknown_app(self, week_repository):
        with pytest.raises(ResourceNotFound):
            await AnalyticsService(week_repository).build("missing", now=NOW)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method",
        ["get_app", "purchases", "devices_created", "devices_last_seen", "sessions_by_heartbeat", "sessions_started"],
    )
    async def test_first_round_failure(self, week_repository, method):
        week_repository.failing.add(method)

        with pytest.raises(UpstreamFetchFailure) as excinfo:
            await AnalyticsService(week_repository).build("app_demo", now=NOW)

        assert excinfo.value.status_code == 502

    @pytest.mark.asyncio
    async def test_conversion_lookup_failure(self, week_repository):
        week_repository.failing.add("converted_device_ids")

        with pytest.raises(DependentLookupFailure):
            await AnalyticsService(week_repository).build("app_demo", now=NOW)

    @pytest.mark.asyncio
    async def test_aggregation_error_is_unexpected_failure(self, week_repository, monkeypatch):
        def broken_geo_distribution(sessions):
            raise ZeroDivisionError("no sessions")

        monkeypatch.setattr(service, "geo_distribution", broken_geo_distribution)

        with pytest.raises(UnexpectedComputationFailure) as excinfo:
            await AnalyticsService(week_repository).build("app_demo", now=NOW)

        assert excinfo.value.status_code == 500
        assert excinfo.value.error_code == "UNEXPECTED_ERROR"
        assert isinstance(excinfo.value.__cause__, ZeroDivisionError)


class TestLiveSessions:
    """Live session listing"""

    @pytest.mark.asyncio
    async def test_listing_newest_first_with_labels(self, week_repository):
        window, sessions = await AnalyticsService(week_repository).live_sessions("app_demo", "60", now=NOW)

        assert window == 60
        assert [session.id for session in sessions] == ["s1", "s2"]
        assert sessions[0].device_name == "Ana's iPhone"
        assert sessions[1].device_name == "Device 2"
        assert sessions[1].latitude == 51.5

    @pytest.mark.asyncio
    async def test_label_failure_is_not_fatal(self, week_repository):
        week_repository.failing.add("device_labels")

        _, sessions = await AnalyticsService(week_repository).live_sessions("app_demo", now=NOW)

        assert sessions[0].device_name == "Device 1"

    @pytest.mark.asyncio
    async def test_session_fetch_failure(self, week_repository):
        week_repository.failing.add("sessions_by_heartbeat")

        with pytest.raises(UpstreamFetchFailure):
            await AnalyticsService(week_repository).live_sessions("app_demo", now=NOW)
