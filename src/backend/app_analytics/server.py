from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import AnalyticsSettings, configure_logging, load_settings
from .errors import AnalyticsError, AuthenticationRequired, RepositoryNotConfigured, UpstreamFetchFailure
from .models import serialize_sessions
from .repository import AnalyticsDataRepository, build_repository_from_env
from .service import AnalyticsService

logger = logging.getLogger(__name__)

settings: AnalyticsSettings = load_settings()
configure_logging(settings)

app = FastAPI(title="App Analytics API", version="0.1.0")
repository: Optional[AnalyticsDataRepository] = build_repository_from_env(settings)

# The dashboard frontend calls the API from the browser.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)


@app.exception_handler(AnalyticsError)
async def analytics_error_handler(request: Request, exc: AnalyticsError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "code": exc.error_code},
    )


def get_settings() -> AnalyticsSettings:
    return settings


def get_repository() -> AnalyticsDataRepository:
    if repository is None:
        raise RepositoryNotConfigured()
    return repository


def get_clock() -> datetime:
    return datetime.now(timezone.utc)


def require_session(
    authorization: Optional[str] = Header(default=None),
    config: AnalyticsSettings = Depends(get_settings),
) -> None:
    """
    Check the bearer token when ``ANALYTICS_API_TOKEN`` is configured.

    Real session validation belongs to the auth provider in front of this
    API; without a configured token every request is let through.
    """

    if not config.api_token:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or token.strip() != config.api_token:
        raise AuthenticationRequired()


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/apps/{app_id}/analytics", dependencies=[Depends(require_session)])
async def analytics_endpoint(
    app_id: str,
    range_value: Optional[str] = Query(default=None, alias="range"),
    active_window: Optional[str] = Query(default=None, alias="activeWindow"),
    repo: AnalyticsDataRepository = Depends(get_repository),
    config: AnalyticsSettings = Depends(get_settings),
    now: datetime = Depends(get_clock),
) -> Dict[str, Any]:
    service = AnalyticsService(repo)
    try:
        result = await asyncio.wait_for(
            service.build(app_id, range_value, active_window, now=now),
            timeout=config.request_timeout_seconds,
        )
    except asyncio.TimeoutError as exc:
        logger.error("Analytics request for %s timed out after %ss", app_id, config.request_timeout_seconds)
        raise UpstreamFetchFailure("Analytics request timed out.") from exc
    return result.as_dict()


@app.get("/apps/{app_id}/sessions", dependencies=[Depends(require_session)])
async def sessions_endpoint(
    app_id: str,
    window_seconds: Optional[str] = Query(default=None, alias="windowSeconds"),
    repo: AnalyticsDataRepository = Depends(get_repository),
    now: datetime = Depends(get_clock),
) -> Dict[str, Any]:
    service = AnalyticsService(repo)
    resolved_window, sessions = await service.live_sessions(app_id, window_seconds, now=now)
    return {
        "sessions": serialize_sessions(sessions),
        "windowSeconds": resolved_window,
        "total": len(sessions),
    }
