"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Lane(str, Enum):
    """Track lane a sensor reading was taken on."""

    left = "Left"
    right = "Right"


def lane_from_wire(value: int) -> Lane:
    """Convert the wire lane code (0/1) into a :class:`Lane`."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid lane value {value!r}; expected 0 or 1.")
    if value == 0:
        return Lane.left
    if value == 1:
        return Lane.right
    raise ValueError(f"Invalid lane value {value!r}; expected 0 or 1.")


def lane_to_wire(lane: Lane) -> int:
    if lane is Lane.left:
        return 0
    if lane is Lane.right:
        return 1
    raise ValueError(f"Unknown lane {lane!r}.")


def ensure_aware(value: datetime) -> datetime:
    """Attach the local timezone to naive datetimes."""
    if value.tzinfo is None:
        return value.astimezone()
    return value


def format_timestamp(value: datetime) -> str:
    """Render a datetime as an ISO-8601 UTC string with a ``Z`` suffix."""
    utc_value = ensure_aware(value).astimezone(timezone.utc)
    return utc_value.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class SpeedReading:
    """A single speed observation from a trackside sensor."""

    id: int
    sensor_name: Optional[str]
    speed: float
    lane: Lane
    timestamp: datetime

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sensor_name": self.sensor_name,
            "speed": self.speed,
            "lane": lane_to_wire(self.lane),
            "created_at": format_timestamp(self.timestamp),
        }
