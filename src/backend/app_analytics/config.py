"""
Environment-driven settings for the analytics API.

Values are read from the process environment, after loading a ``.env`` file
from the working directory if one exists.
"""

from __future__ import annotations

import logging
import math
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class AnalyticsSettings(BaseModel):
    database_url: Optional[str] = None
    api_token: Optional[str] = None
    request_timeout_seconds: float = 30.0
    log_level: str = "INFO"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_positive_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if not math.isfinite(value) or value <= 0:
        return default
    return value


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default)
    items = [item.strip() for item in raw.split(",") if item.strip()]
    return items or list(default)


def load_settings() -> AnalyticsSettings:
    load_dotenv()
    defaults = AnalyticsSettings()
    return AnalyticsSettings(
        database_url=_env_str("ANALYTICS_DATABASE_URL", defaults.database_url),
        api_token=_env_str("ANALYTICS_API_TOKEN", defaults.api_token),
        request_timeout_seconds=_env_positive_float(
            "ANALYTICS_REQUEST_TIMEOUT_SECONDS", defaults.request_timeout_seconds
        ),
        log_level=(_env_str("ANALYTICS_LOG_LEVEL", defaults.log_level) or defaults.log_level).upper(),
        cors_origins=_env_list("ANALYTICS_CORS_ORIGINS", defaults.cors_origins),
    )


def configure_logging(settings: AnalyticsSettings) -> None:
    level = getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("backend.app_analytics").setLevel(level)
