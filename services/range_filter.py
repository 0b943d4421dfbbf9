"""Client-side narrowing of a reading window to the requested date range."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from models.acquisition import DateRangeMode
from models.records import SpeedReading, ensure_aware


def local_day_bounds(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Return local midnight today and local midnight tomorrow.

    Each bound gets its own UTC offset, so days with a DST change are 23 or
    25 hours long.
    """
    current = ensure_aware(now).astimezone() if now is not None else datetime.now().astimezone()
    today = current.date()
    tomorrow = today + timedelta(days=1)
    return (
        datetime(today.year, today.month, today.day).astimezone(),
        datetime(tomorrow.year, tomorrow.month, tomorrow.day).astimezone(),
    )


def filter_readings(
    readings: Iterable[SpeedReading],
    date_range_mode: DateRangeMode,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> List[SpeedReading]:
    if date_range_mode is DateRangeMode.realtime:
        return list(readings)

    if date_range_mode is DateRangeMode.today:
        day_start, day_end = local_day_bounds(now)
        return [reading for reading in readings if day_start <= reading.timestamp < day_end]

    # A missing custom bound leaves that side open.
    lower = ensure_aware(start) if start is not None else None
    upper = ensure_aware(end) if end is not None else None
    return [
        reading
        for reading in readings
        if (lower is None or reading.timestamp >= lower)
        and (upper is None or reading.timestamp <= upper)
    ]
