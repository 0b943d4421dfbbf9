"""Acquisition parameters consumed by the acquisition controller."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from models.records import ensure_aware


class AcquisitionMode(str, Enum):
    simulation = "simulation"
    live = "live"


class DateRangeMode(str, Enum):
    """Which slice of history the dashboard shows."""

    realtime = "realtime"
    today = "today"
    custom = "custom"


class AcquisitionState(str, Enum):
    """Lifecycle state of the current acquisition epoch."""

    idle = "idle"
    awaiting_input = "awaiting_input"
    loading = "loading"
    streaming = "streaming"
    static = "static"
    disconnected = "disconnected"


class FailureKind(str, Enum):
    network = "network"
    validation = "validation"
    stream = "stream"


@dataclass(frozen=True)
class AcquisitionParameters:
    """Immutable input for one acquisition epoch.

    Any change to these values ends the running epoch and starts a new one.
    """

    mode: AcquisitionMode = AcquisitionMode.simulation
    date_range_mode: DateRangeMode = DateRangeMode.realtime
    custom_start: Optional[datetime] = None
    custom_end: Optional[datetime] = None
    poll_interval_ms: int = 3000
    max_data_points: int = 120

    def __post_init__(self) -> None:
        if self.poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be positive")
        if self.max_data_points <= 0:
            raise ValueError("max_data_points must be positive")
        if self.custom_start is not None:
            object.__setattr__(self, "custom_start", ensure_aware(self.custom_start))
        if self.custom_end is not None:
            object.__setattr__(self, "custom_end", ensure_aware(self.custom_end))
        if (
            self.custom_start is not None
            and self.custom_end is not None
            and self.custom_start > self.custom_end
        ):
            raise ValueError("custom_start must not be after custom_end")

    @property
    def has_custom_range(self) -> bool:
        return self.custom_start is not None and self.custom_end is not None

    @property
    def awaits_input(self) -> bool:
        return self.date_range_mode is DateRangeMode.custom and not self.has_custom_range

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000.0
