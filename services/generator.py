"""Synthetic speed readings for simulation mode."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

from models.records import Lane, SpeedReading

SENSOR_CATALOG: Sequence[str] = (
    "Sector 1 Entry",
    "Sector 1 Exit",
    "Sector 2 Entry",
    "Sector 2 Exit",
    "Sector 3 Entry",
    "Sector 3 Exit",
    "Finish Line",
    "Pit Entry",
)

MIN_SPEED = 80.0
MAX_SPEED = 350.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReadingGenerator:
    """Produces plausible racing speeds between 80 and 350 km/h."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sensors: Sequence[str] = SENSOR_CATALOG,
    ) -> None:
        self._rng = rng or random.Random()
        self._clock = clock or _utcnow
        self._sensors = tuple(sensors)

    def generate(self, next_id: int, timestamp: Optional[datetime] = None) -> SpeedReading:
        base_speed = 150 + self._rng.random() * 150
        variation = (self._rng.random() - 0.5) * 40
        speed = max(MIN_SPEED, min(MAX_SPEED, base_speed + variation))
        lane = Lane.left if self._rng.random() > 0.5 else Lane.right
        return SpeedReading(
            id=next_id,
            sensor_name=self._rng.choice(self._sensors),
            speed=round(speed, 1),
            lane=lane,
            timestamp=timestamp or self._clock(),
        )

    def history(
        self, count: int = 120, spacing: timedelta = timedelta(minutes=1)
    ) -> List[SpeedReading]:
        """Back-fill ``count`` readings ending one ``spacing`` before now, oldest first."""
        now = self._clock()
        readings = [
            self.generate(index + 1, timestamp=now - spacing * (count - index))
            for index in range(count)
        ]
        readings.sort(key=lambda reading: reading.timestamp)
        return readings
