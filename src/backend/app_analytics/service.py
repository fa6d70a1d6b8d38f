from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence, Tuple

from .activity import (
    ACTIVE_SESSION_WINDOW_SECONDS,
    MAX_LIVE_SESSIONS,
    active_users_series,
    distinct_device_ids,
    geo_distribution,
    heartbeat_cutoff,
    locate_live_sessions,
    resolve_live_window_seconds,
    session_stats,
)
from .aggregation import aggregate_period, average_subscription_duration, purchases_by_product
from .errors import (
    AnalyticsError,
    DependentLookupFailure,
    ResourceNotFound,
    UnexpectedComputationFailure,
    UpstreamFetchFailure,
)
from .metrics import (
    conversion_rate_metric,
    new_users_metric,
    percent_delta,
    revenue_metric,
    revenue_per_user_metric,
)
from .models import (
    AnalyticsResult,
    AppRecord,
    DeviceRecord,
    LiveSession,
    PeriodWindow,
    PurchaseRecord,
    SessionRecord,
    build_chart,
)
from .periods import (
    ALLOWED_ACTIVE_WINDOWS,
    ALLOWED_RANGES,
    active_window_period,
    resolve_active_window_days,
    resolve_period_window,
    resolve_range_days,
)
from .repository import AnalyticsDataRepository
from .timeutils import ensure_utc
from .trials import resolve_trial_cancellation, trial_device_ids

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _FirstRound:
    purchases: Sequence[PurchaseRecord]
    devices: Sequence[DeviceRecord]
    previous_purchases: Sequence[PurchaseRecord]
    previous_devices: Sequence[DeviceRecord]
    live_sessions: Sequence[SessionRecord]
    active_devices: Sequence[DeviceRecord]
    geo_sessions: Sequence[SessionRecord]


class AnalyticsService:
    """
    Builds the per-app analytics document.

    Raw rows are fetched in two concurrent rounds; the second round (trial
    conversion lookups) is keyed by the first round's output. Aggregation
    itself runs synchronously over the fetched, immutable rows. Any failed
    fetch fails the whole request.
    """

    def __init__(self, repository: AnalyticsDataRepository) -> None:
        self.repository = repository

    async def build(
        self,
        app_id: str,
        range_value: Any = None,
        active_window_value: Any = None,
        now: Optional[datetime] = None,
    ) -> AnalyticsResult:
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        range_days = resolve_range_days(range_value)
        window_days = resolve_active_window_days(active_window_value)
        window = resolve_period_window(range_days, now)
        logger.debug(
            "Analytics for %s: range=%s window=%s current=%s..%s",
            app_id,
            range_days,
            window_days,
            window.current.start,
            window.current.end,
        )

        app = await self._load_app(app_id)

        current = window.current
        previous = window.previous
        active_span = active_window_period(current, window_days)
        repo = self.repository
        try:
            fetched = _FirstRound(
                *await asyncio.gather(
                    asyncio.to_thread(repo.purchases, app_id, current.start, current.end),
                    asyncio.to_thread(repo.devices_created, app_id, current.start, current.end),
                    asyncio.to_thread(repo.purchases, app_id, previous.start, previous.end),
                    asyncio.to_thread(repo.devices_created, app_id, previous.start, previous.end),
                    asyncio.to_thread(
                        repo.sessions_by_heartbeat,
                        app_id,
                        heartbeat_cutoff(now, ACTIVE_SESSION_WINDOW_SECONDS),
                    ),
                    asyncio.to_thread(repo.devices_last_seen, app_id, active_span.start, current.end),
                    asyncio.to_thread(repo.sessions_started, app_id, current.start, current.end),
                )
            )
        except Exception as exc:
            logger.exception("Error fetching analytics data for %s", app_id)
            raise UpstreamFetchFailure() from exc

        trial_ids = trial_device_ids(fetched.purchases)
        previous_trial_ids = trial_device_ids(fetched.previous_purchases)
        try:
            converted, previous_converted = await asyncio.gather(
                self._converted(app_id, trial_ids),
                self._converted(app_id, previous_trial_ids),
            )
        except Exception as exc:
            logger.exception("Error resolving trial conversion data for %s", app_id)
            raise DependentLookupFailure() from exc

        try:
            return self._assemble(
                app=app,
                window=window,
                window_days=window_days,
                now=now,
                fetched=fetched,
                trial_ids=trial_ids,
                converted=converted,
                previous_trial_ids=previous_trial_ids,
                previous_converted=previous_converted,
            )
        except AnalyticsError:
            raise
        except Exception as exc:
            logger.exception("Unexpected analytics error for %s", app_id)
            raise UnexpectedComputationFailure() from exc

    async def live_sessions(
        self,
        app_id: str,
        window_seconds_value: Any = None,
        now: Optional[datetime] = None,
    ) -> Tuple[int, List[LiveSession]]:
        """
        Sessions with a heartbeat inside the window, newest first, that carry
        plottable coordinates. Device labels are best effort.
        """

        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        window_seconds = resolve_live_window_seconds(window_seconds_value)
        try:
            sessions = await asyncio.to_thread(
                self.repository.sessions_by_heartbeat,
                app_id,
                heartbeat_cutoff(now, window_seconds),
                MAX_LIVE_SESSIONS,
            )
        except Exception as exc:
            logger.exception("Failed to fetch active sessions for %s", app_id)
            raise UpstreamFetchFailure("Failed to load active sessions.") from exc

        labels: Sequence = ()
        device_ids = distinct_device_ids(sessions)
        if device_ids:
            try:
                labels = await asyncio.to_thread(self.repository.device_labels, app_id, device_ids)
            except Exception as exc:
                logger.warning("Failed to fetch session devices for %s: %s", app_id, exc)
                labels = ()
        return window_seconds, locate_live_sessions(sessions, labels)

    async def _load_app(self, app_id: str) -> AppRecord:
        try:
            app = await asyncio.to_thread(self.repository.get_app, app_id)
        except Exception as exc:
            logger.exception("Error fetching app %s for analytics", app_id)
            raise UpstreamFetchFailure("Failed to fetch app metadata.") from exc
        if app is None:
            raise ResourceNotFound()
        return app

    async def _converted(self, app_id: str, device_ids: Sequence[str]) -> Sequence[str]:
        if not device_ids:
            return ()
        return await asyncio.to_thread(self.repository.converted_device_ids, app_id, list(device_ids))

    def _assemble(
        self,
        *,
        app: AppRecord,
        window: PeriodWindow,
        window_days: int,
        now: datetime,
        fetched: _FirstRound,
        trial_ids: Sequence[str],
        converted: Sequence[str],
        previous_trial_ids: Sequence[str],
        previous_converted: Sequence[str],
    ) -> AnalyticsResult:
        current_snapshot = aggregate_period(fetched.purchases, fetched.devices, window.current)
        previous_snapshot = aggregate_period(fetched.previous_purchases, fetched.previous_devices)
        logger.debug(
            "Aggregated %s purchases / %s devices (previous %s / %s)",
            current_snapshot.total_purchases,
            current_snapshot.new_users,
            previous_snapshot.total_purchases,
            previous_snapshot.new_users,
        )

        subscription = average_subscription_duration(fetched.purchases)
        previous_subscription = average_subscription_duration(fetched.previous_purchases)
        trials = resolve_trial_cancellation(trial_ids, converted)
        previous_trials = resolve_trial_cancellation(previous_trial_ids, previous_converted)

        return AnalyticsResult(
            app=app,
            window=window,
            generated_at=now,
            active_session_window_seconds=ACTIVE_SESSION_WINDOW_SECONDS,
            current=current_snapshot,
            previous=previous_snapshot,
            revenue=revenue_metric(current_snapshot, previous_snapshot),
            new_users=new_users_metric(current_snapshot, previous_snapshot),
            revenue_per_user=revenue_per_user_metric(current_snapshot, previous_snapshot),
            conversion_rate=conversion_rate_metric(current_snapshot, previous_snapshot),
            subscription=subscription,
            previous_subscription=previous_subscription,
            subscription_delta=percent_delta(subscription.average_days, previous_subscription.average_days),
            trials=trials,
            previous_trials=previous_trials,
            trial_cancellation_delta=percent_delta(trials.rate, previous_trials.rate),
            sessions=session_stats(fetched.live_sessions),
            chart=build_chart(window.current, current_snapshot),
            active_window_days=window_days,
            active_users=active_users_series(fetched.active_devices, window.current, window_days),
            purchases_by_product=purchases_by_product(fetched.purchases),
            geography=geo_distribution(fetched.geo_sessions),
            allowed_ranges=ALLOWED_RANGES,
            allowed_active_windows=ALLOWED_ACTIVE_WINDOWS,
        )
