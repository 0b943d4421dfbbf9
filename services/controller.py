"""Acquisition controller: the single owner of the live reading window.

Each call to :meth:`AcquisitionController.start` begins a new *epoch*. Ending
an epoch cancels its tasks, closes its connection handle, cancels the pending
flush and clears the window. Every asynchronous completion checks that its
epoch is still the current one before touching shared state, so results from a
superseded epoch are dropped even when they arrive after cancellation.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Callable, Coroutine, List, Optional, Sequence, Set, Union

from models.acquisition import (
    AcquisitionMode,
    AcquisitionParameters,
    AcquisitionState,
    DateRangeMode,
    FailureKind,
)
from models.records import SpeedReading
from services.errors import FetchError
from services.generator import ReadingGenerator
from services.range_filter import filter_readings
from services.transport import (
    BatchQuery,
    RangeQuery,
    RecentQuery,
    SpeedStreamClient,
    StreamFailed,
    StreamHandle,
    StreamOpened,
    StreamReading,
    TodayQuery,
)

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class SimulationTimer:
    """Connection handle for simulation mode, wrapping the generator task."""

    def __init__(self, task: "asyncio.Task[None]") -> None:
        self._task = task
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def finished(self) -> bool:
        return self._task.done()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._task.cancel()

    async def wait_closed(self) -> None:
        with contextlib.suppress(asyncio.CancelledError):
            await self._task


ConnectionHandle = Union[SimulationTimer, StreamHandle]


@dataclass
class _Epoch:
    number: int
    params: AcquisitionParameters
    tasks: Set["asyncio.Task[None]"] = field(default_factory=set)
    handle: Optional[ConnectionHandle] = None
    flush_timer: Optional[asyncio.TimerHandle] = None
    pending: List[SpeedReading] = field(default_factory=list)


class AcquisitionController:
    """Selects the data source for the current parameters and maintains the window."""

    def __init__(
        self,
        client: Optional[SpeedStreamClient] = None,
        generator: Optional[ReadingGenerator] = None,
        *,
        flush_interval: float = 0.1,
        history_size: int = 120,
        today_limit: int = 1000,
    ) -> None:
        self._client = client
        self._generator = generator or ReadingGenerator()
        self._flush_interval = flush_interval
        self._history_size = history_size
        self._today_limit = today_limit

        self._window: List[SpeedReading] = []
        self._state = AcquisitionState.idle
        self._connection_status = False
        self._last_error: Optional[FailureKind] = None
        self._params: Optional[AcquisitionParameters] = None
        self._epoch: Optional[_Epoch] = None
        self._epoch_counter = 0
        self._next_id = 0
        self._listeners: List[Listener] = []
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._closing: Set[ConnectionHandle] = set()

    # -- read-only view ---------------------------------------------------
    @property
    def readings(self) -> List[SpeedReading]:
        return list(self._window)

    @property
    def state(self) -> AcquisitionState:
        return self._state

    @property
    def connection_status(self) -> bool:
        return self._connection_status

    @property
    def is_loading(self) -> bool:
        return self._state is AcquisitionState.loading

    @property
    def last_error(self) -> Optional[FailureKind]:
        return self._last_error

    @property
    def params(self) -> Optional[AcquisitionParameters]:
        return self._params

    @property
    def epoch(self) -> int:
        return self._epoch_counter

    @property
    def pending_count(self) -> int:
        return len(self._epoch.pending) if self._epoch is not None else 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -- lifecycle --------------------------------------------------------
    def apply_parameters(self, params: AcquisitionParameters) -> bool:
        """Restart acquisition only when ``params`` differ from the running epoch."""
        if self._epoch is not None and self._epoch.params == params:
            return False
        self.start(params)
        return True

    def start(self, params: AcquisitionParameters) -> None:
        if params.mode is AcquisitionMode.live and self._client is None:
            raise RuntimeError("Live acquisition requires a SpeedStreamClient.")
        loop = asyncio.get_running_loop()

        self._end_epoch()
        self._epoch_counter += 1
        epoch = _Epoch(number=self._epoch_counter, params=params)
        self._epoch = epoch
        self._params = params
        self._window = []
        self._last_error = None
        logger.info(
            "Starting acquisition epoch",
            extra={
                "epoch": epoch.number,
                "mode": params.mode.value,
                "date_range_mode": params.date_range_mode.value,
            },
        )

        if params.awaits_input:
            self._transition(AcquisitionState.awaiting_input, connected=False)
            return

        self._transition(AcquisitionState.loading, connected=False)
        if params.mode is AcquisitionMode.simulation:
            self._start_simulation(epoch, loop)
        else:
            self._spawn(epoch, self._run_live(epoch))

    def stop(self) -> None:
        if self._epoch is None and self._state is AcquisitionState.idle:
            return
        self._end_epoch()
        self._transition(AcquisitionState.idle, connected=False)

    async def aclose(self) -> None:
        """Stop acquisition and wait for cancelled work to unwind."""
        self.stop()
        for task in list(self._tasks):
            with contextlib.suppress(asyncio.CancelledError):
                await task
        closing, self._closing = list(self._closing), set()
        for handle in closing:
            await handle.wait_closed()

    # -- incoming readings ------------------------------------------------
    def apply_incoming(self, reading: SpeedReading) -> None:
        """Queue a reading for the next batched flush into the window."""
        epoch = self._epoch
        if epoch is None:
            logger.debug("Dropping reading outside an epoch", extra={"reading_id": reading.id})
            return
        epoch.pending.append(reading)
        if epoch.flush_timer is None:
            loop = asyncio.get_running_loop()
            epoch.flush_timer = loop.call_later(self._flush_interval, self._flush_epoch, epoch)

    def flush(self) -> None:
        """Apply pending readings immediately instead of waiting for the timer."""
        epoch = self._epoch
        if epoch is None:
            return
        if epoch.flush_timer is not None:
            epoch.flush_timer.cancel()
        self._flush_epoch(epoch)

    def _flush_epoch(self, epoch: _Epoch) -> None:
        epoch.flush_timer = None
        if not self._is_current(epoch):
            return
        batch, epoch.pending = epoch.pending, []
        if not batch:
            return
        self._window = self._bounded(self._window + batch, epoch.params)
        logger.debug("Flushed incoming readings", extra={"epoch": epoch.number, "pending": len(batch)})
        self._notify()

    # -- sources ----------------------------------------------------------
    def _start_simulation(self, epoch: _Epoch, loop: asyncio.AbstractEventLoop) -> None:
        params = epoch.params
        history = self._generator.history(self._history_size)
        if history:
            self._next_id = max(self._next_id, history[-1].id)

        if params.date_range_mode is DateRangeMode.realtime:
            self._window = self._bounded(history, params)
            epoch.handle = SimulationTimer(
                loop.create_task(self._run_simulation(epoch), name=f"simulation-{epoch.number}")
            )
            self._transition(AcquisitionState.streaming, connected=True)
            return

        selected = filter_readings(
            history, params.date_range_mode, params.custom_start, params.custom_end
        )
        self._window = self._bounded(selected, params)
        self._transition(AcquisitionState.static, connected=True)

    async def _run_simulation(self, epoch: _Epoch) -> None:
        interval = epoch.params.poll_interval
        while self._is_current(epoch):
            await asyncio.sleep(interval)
            if not self._is_current(epoch):
                return
            self._next_id += 1
            self.apply_incoming(self._generator.generate(self._next_id))

    async def _run_live(self, epoch: _Epoch) -> None:
        client = self._client
        if client is None:
            raise RuntimeError("Live acquisition requires a SpeedStreamClient.")
        params = epoch.params
        try:
            batch = await client.fetch_batch(self._initial_query(params))
        except FetchError as exc:
            if not self._is_current(epoch):
                return
            logger.warning(
                "Initial batch fetch failed",
                extra={
                    "epoch": epoch.number,
                    "status_code": exc.status_code,
                    "reason": str(exc),
                },
            )
            self._last_error = exc.kind
            self._window = []
            self._transition(AcquisitionState.disconnected, connected=False)
            return

        if not self._is_current(epoch):
            logger.debug("Discarding batch from a superseded epoch", extra={"epoch": epoch.number})
            return

        self._window = self._bounded(batch, params)
        if params.date_range_mode is not DateRangeMode.realtime:
            self._transition(AcquisitionState.static, connected=True)
            return

        handle = client.open_stream()
        epoch.handle = handle
        # Stay loading until the server accepts the stream.
        self._transition(AcquisitionState.loading, connected=False)
        async for event in handle:
            if not self._is_current(epoch):
                break
            if isinstance(event, StreamOpened):
                self._transition(AcquisitionState.streaming, connected=True)
            elif isinstance(event, StreamReading):
                self.apply_incoming(event.reading)
            elif isinstance(event, StreamFailed):
                logger.warning(
                    "Speed stream failed",
                    extra={
                        "epoch": epoch.number,
                        "status_code": event.error.status_code,
                        "reason": str(event.error),
                    },
                )
                self.flush()
                handle.close()
                self._last_error = FailureKind.stream
                self._transition(AcquisitionState.disconnected, connected=False)
                break

    def _initial_query(self, params: AcquisitionParameters) -> BatchQuery:
        if params.date_range_mode is DateRangeMode.realtime:
            return RecentQuery(limit=params.max_data_points)
        if params.date_range_mode is DateRangeMode.today:
            return TodayQuery(limit=self._today_limit)
        if params.custom_start is None or params.custom_end is None:
            raise ValueError("Custom range requires both bounds.")
        return RangeQuery(start=params.custom_start, end=params.custom_end)

    # -- internals --------------------------------------------------------
    def _is_current(self, epoch: _Epoch) -> bool:
        return self._epoch is epoch

    def _spawn(self, epoch: _Epoch, coro: Coroutine[object, object, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=f"acquisition-{epoch.number}")
        epoch.tasks.add(task)
        self._tasks.add(task)
        task.add_done_callback(epoch.tasks.discard)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: "asyncio.Task[None]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Acquisition task crashed", exc_info=exc)

    def _end_epoch(self) -> None:
        epoch = self._epoch
        if epoch is None:
            return
        self._epoch = None
        if epoch.flush_timer is not None:
            epoch.flush_timer.cancel()
            epoch.flush_timer = None
        epoch.pending.clear()
        if epoch.handle is not None:
            epoch.handle.close()
            self._closing.add(epoch.handle)
            epoch.handle = None
        for task in list(epoch.tasks):
            task.cancel()
        self._closing = {handle for handle in self._closing if not handle.finished}
        logger.debug("Ended acquisition epoch", extra={"epoch": epoch.number})

    def _transition(self, state: AcquisitionState, *, connected: bool) -> None:
        self._state = state
        self._connection_status = connected
        logger.debug(
            "Acquisition state changed",
            extra={"epoch": self._epoch_counter, "state": state.value},
        )
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    @staticmethod
    def _bounded(
        readings: Sequence[SpeedReading], params: AcquisitionParameters
    ) -> List[SpeedReading]:
        return list(readings[-params.max_data_points:])
