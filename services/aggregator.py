"""Aggregation logic for speed readings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from models.records import SpeedReading

UNKNOWN_SENSOR = "Unknown"


def _round_speed(value: float) -> float:
    return round(value, 1)


@dataclass
class SpeedSummary:
    """Computed statistics for a set of speed readings."""

    total_readings: int = 0
    avg_speed: float | None = None
    min_speed: float | None = None
    max_speed: float | None = None
    per_sensor_count: Dict[str, int] = field(default_factory=dict)
    per_sensor_avg_speed: Dict[str, float] = field(default_factory=dict)
    per_lane_count: Dict[str, int] = field(default_factory=dict)


class Aggregator:
    """Pure aggregation component that can be unit tested in isolation."""

    def aggregate(self, readings: Iterable[SpeedReading]) -> SpeedSummary:
        summary = SpeedSummary()
        total = 0.0
        per_sensor_total: Dict[str, float] = {}

        for reading in readings:
            summary.total_readings += 1
            speed = reading.speed
            total += speed

            if summary.min_speed is None or speed < summary.min_speed:
                summary.min_speed = speed
            if summary.max_speed is None or speed > summary.max_speed:
                summary.max_speed = speed

            sensor = reading.sensor_name or UNKNOWN_SENSOR
            summary.per_sensor_count[sensor] = summary.per_sensor_count.get(sensor, 0) + 1
            per_sensor_total[sensor] = per_sensor_total.get(sensor, 0.0) + speed

            lane = reading.lane.value
            summary.per_lane_count[lane] = summary.per_lane_count.get(lane, 0) + 1

        if summary.total_readings:
            summary.avg_speed = _round_speed(total / summary.total_readings)
            summary.min_speed = _round_speed(summary.min_speed)  # type: ignore[arg-type]
            summary.max_speed = _round_speed(summary.max_speed)  # type: ignore[arg-type]
            summary.per_sensor_avg_speed = {
                sensor: _round_speed(per_sensor_total[sensor] / count)
                for sensor, count in summary.per_sensor_count.items()
            }

        return summary

    def available_sensors(self, readings: Iterable[SpeedReading]) -> List[str]:
        """Sorted distinct sensor names, skipping readings without one."""
        return sorted({reading.sensor_name for reading in readings if reading.sensor_name})
