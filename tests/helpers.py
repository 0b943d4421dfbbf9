from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence

from models.records import Lane, SpeedReading
from services.errors import FetchError


def make_reading(
    reading_id: int,
    speed: float = 200.0,
    lane: Lane = Lane.left,
    sensor_name: Optional[str] = "Finish Line",
    timestamp: Optional[datetime] = None,
) -> SpeedReading:
    return SpeedReading(
        id=reading_id,
        sensor_name=sensor_name,
        speed=speed,
        lane=lane,
        timestamp=timestamp or datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc),
    )


class FakeBatchClient:
    """Stands in for ``SpeedStreamClient`` in controller tests.

    Each ``fetch_batch`` call returns the next entry of ``batches`` (raising it
    when it is an exception). With ``gated=True`` every call blocks until its
    gate is set and ignores cancellation, so late results can be observed.
    """

    def __init__(self, batches: Sequence[Any], *, gated: bool = False) -> None:
        self.batches = list(batches)
        self.gated = gated
        self.queries: List[Any] = []
        self.gates: List[asyncio.Event] = []

    async def fetch_batch(self, query: Any) -> List[SpeedReading]:
        index = len(self.queries)
        self.queries.append(query)
        if self.gated:
            gate = asyncio.Event()
            self.gates.append(gate)
            try:
                await gate.wait()
            except asyncio.CancelledError:
                pass
        result = self.batches[index]
        if isinstance(result, FetchError):
            raise result
        return list(result)

    def open_stream(self):
        raise AssertionError("stream should not be opened in this test")

    async def aclose(self) -> None:
        return None


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.01)
