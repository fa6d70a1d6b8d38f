"""
Per-app product analytics.

Turns raw purchase, device and session rows into comparable current/previous
period metrics for the dashboard: UTC day buckets, revenue and conversion
totals with percent deltas, trial cancellation, active-user windows and a
geographic breakdown.
"""

from .errors import (  # noqa: F401
    AnalyticsError,
    AuthenticationRequired,
    DependentLookupFailure,
    RepositoryNotConfigured,
    ResourceNotFound,
    UnexpectedComputationFailure,
    UpstreamFetchFailure,
)
from .models import (  # noqa: F401
    AggregateSnapshot,
    AnalyticsResult,
    AppRecord,
    DeviceLabel,
    DeviceRecord,
    MetricWithDelta,
    Period,
    PeriodWindow,
    PurchaseRecord,
    SessionRecord,
)
from .repository import (  # noqa: F401
    AnalyticsDataRepository,
    SQLAnalyticsRepository,
    build_repository_from_env,
)
from .service import AnalyticsService  # noqa: F401
