from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from settings import AppMode, get_settings

DEFAULT_REFRESH_INTERVAL = 1.0
DEFAULT_WATCH_DURATION = 30.0

_REFRESH_INTERVAL_ENV = "CLI_REFRESH_INTERVAL"
_WATCH_DURATION_ENV = "CLI_WATCH_DURATION"


@dataclass(frozen=True)
class CLIConfig:
    base_url: str
    token: Optional[str] = None
    use_proxy: bool = False
    app_mode: AppMode = AppMode.simulation
    request_timeout: float = 10.0
    flush_interval: float = 0.1
    refresh_interval: float = DEFAULT_REFRESH_INTERVAL
    watch_duration: float = DEFAULT_WATCH_DURATION


def _read_float(value: Optional[str], default: float) -> float:
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


def load_config(
    base_url: Optional[str] = None,
    token: Optional[str] = None,
    use_proxy: Optional[bool] = None,
    refresh_interval: Optional[float] = None,
    watch_duration: Optional[float] = None,
) -> CLIConfig:
    settings = get_settings()
    url = base_url if base_url is not None else settings.api_base_url
    if refresh_interval is None:
        refresh_interval = _read_float(os.getenv(_REFRESH_INTERVAL_ENV), DEFAULT_REFRESH_INTERVAL)
    if watch_duration is None:
        watch_duration = _read_float(os.getenv(_WATCH_DURATION_ENV), DEFAULT_WATCH_DURATION)
    return CLIConfig(
        base_url=url.rstrip("/"),
        token=token or settings.api_token,
        use_proxy=settings.use_proxy if use_proxy is None else use_proxy,
        app_mode=settings.app_mode,
        request_timeout=settings.request_timeout,
        flush_interval=settings.flush_interval_ms / 1000.0,
        refresh_interval=refresh_interval,
        watch_duration=watch_duration,
    )
