from __future__ import annotations

from typing import Optional


class AnalyticsError(Exception):
    """Base error for a failed analytics request; always fatal to the request."""

    def __init__(
        self,
        detail: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
    ):
        self.detail = detail
        self.status_code = status_code
        self.error_code = error_code or "ANALYTICS_ERROR"
        super().__init__(self.detail)


class AuthenticationRequired(AnalyticsError):
    def __init__(self, detail: str = "You must be logged in to view analytics."):
        super().__init__(detail=detail, status_code=401, error_code="AUTHENTICATION_REQUIRED")


class ResourceNotFound(AnalyticsError):
    def __init__(self, detail: str = "App was not found."):
        super().__init__(detail=detail, status_code=404, error_code="RESOURCE_NOT_FOUND")


class UpstreamFetchFailure(AnalyticsError):
    def __init__(self, detail: str = "Failed to fetch analytics data."):
        super().__init__(detail=detail, status_code=502, error_code="UPSTREAM_FETCH_FAILED")


class DependentLookupFailure(AnalyticsError):
    def __init__(self, detail: str = "Failed to compute trial cancellation metrics."):
        super().__init__(detail=detail, status_code=502, error_code="DEPENDENT_LOOKUP_FAILED")


class UnexpectedComputationFailure(AnalyticsError):
    def __init__(self, detail: str = "Unexpected error fetching analytics."):
        super().__init__(detail=detail, status_code=500, error_code="UNEXPECTED_ERROR")


class RepositoryNotConfigured(AnalyticsError):
    def __init__(self):
        super().__init__(
            detail="ANALYTICS_DATABASE_URL is not configured.",
            status_code=503,
            error_code="REPOSITORY_NOT_CONFIGURED",
        )
