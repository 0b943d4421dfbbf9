from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Optional


_APP_MODE_ENV = "APP_MODE"
_API_BASE_URL_ENV = "API_BASE_URL"
_API_TOKEN_ENV = "API_TOKEN"
_USE_PROXY_ENV = "USE_PROXY"
_TIMEOUT_ENV = "API_TIMEOUT"
_FLUSH_INTERVAL_ENV = "STREAM_FLUSH_MS"
_SETTINGS_PATH_ENV = "SETTINGS_PERSISTENCE_PATH"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUTHY = {"1", "true", "yes", "on"}


class AppMode(str, Enum):
    """Deployment flavour selecting the data source."""

    simulation = "SIMULATION"
    dev = "DEV"
    prod = "PROD"


@dataclass(frozen=True)
class Settings:
    app_mode: AppMode
    api_base_url: str
    api_token: Optional[str]
    use_proxy: bool
    request_timeout: float
    flush_interval_ms: int
    settings_path: Optional[str]
    log_level: str

    @property
    def requires_api(self) -> bool:
        return self.app_mode is not AppMode.simulation


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip()


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if not candidate:
        return default
    return candidate in _TRUTHY


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
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


def _read_app_mode(default: AppMode) -> AppMode:
    value = os.getenv(_APP_MODE_ENV)
    if value is None:
        return default
    candidate = value.strip().upper()
    try:
        return AppMode(candidate)
    except ValueError:
        return default


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
        app_mode=_read_app_mode(AppMode.simulation),
        api_base_url=_read_str_env(_API_BASE_URL_ENV, "http://127.0.0.1:8080").rstrip("/"),
        api_token=_read_optional_env(_API_TOKEN_ENV, None),
        use_proxy=_read_bool_env(_USE_PROXY_ENV, False),
        request_timeout=_read_positive_float(_TIMEOUT_ENV, 10.0),
        flush_interval_ms=_read_positive_int(_FLUSH_INTERVAL_ENV, 100),
        settings_path=_read_optional_env(_SETTINGS_PATH_ENV, "./tmp/dashboard_settings.json"),
        log_level=_read_log_level("INFO"),
    )
