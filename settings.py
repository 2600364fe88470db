from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


_API_BASE_URL_ENV = "SONDE_API_BASE_URL"
_EXPORT_URL_ENV = "SONDE_EXPORT_URL"
_TIMEOUT_ENV = "UPSTREAM_TIMEOUT"
_TIMEZONE_ENV = "SONDE_TIMEZONE"
_CHART_WIDTH_ENV = "CHART_WIDTH"
_CHART_HEIGHT_ENV = "CHART_HEIGHT"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    api_base_url: str
    export_url: str
    upstream_timeout: float
    timezone: str
    chart_width: int
    chart_height: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_timeout(default: float) -> float:
    value = os.getenv(_TIMEOUT_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        api_base_url=_read_str_env(_API_BASE_URL_ENV, "https://sonde.r7tec.com").rstrip("/"),
        export_url=_read_str_env(
            _EXPORT_URL_ENV,
            "http://172.16.100.36:8087/db/sounding/export/sounding_instrument_new",
        ),
        upstream_timeout=_read_timeout(30.0),
        timezone=_read_str_env(_TIMEZONE_ENV, "Asia/Shanghai"),
        chart_width=_read_positive_int(_CHART_WIDTH_ENV, 950),
        chart_height=_read_positive_int(_CHART_HEIGHT_ENV, 300),
        log_level=_read_log_level("INFO"),
    )
