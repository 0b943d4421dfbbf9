"""Read-only dashboard view model derived from the acquisition controller."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from models.acquisition import AcquisitionMode, AcquisitionState, DateRangeMode, FailureKind
from models.records import SpeedReading
from services.controller import AcquisitionController
from services.range_filter import filter_readings

SnapshotListener = Callable[["DashboardSnapshot"], None]


@dataclass(frozen=True)
class DashboardSnapshot:
    """What presentation components may rely on."""

    readings: List[SpeedReading] = field(default_factory=list)
    connection_status: bool = False
    is_loading: bool = False
    mode: str = AcquisitionMode.simulation.value
    state: AcquisitionState = AcquisitionState.idle
    last_error: Optional[FailureKind] = None
    epoch: int = 0


class DashboardViewModel:
    """Keeps a range-filtered snapshot in sync with the controller."""

    def __init__(
        self,
        controller: AcquisitionController,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._controller = controller
        self._clock = clock
        self._listeners: List[SnapshotListener] = []
        self._snapshot = self._build()
        self._unsubscribe = controller.subscribe(self._on_change)

    @property
    def snapshot(self) -> DashboardSnapshot:
        return self._snapshot

    def refresh(self) -> DashboardSnapshot:
        """Rebuild the snapshot; the today filter moves with the clock."""
        self._snapshot = self._build()
        return self._snapshot

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        self._unsubscribe()
        self._listeners.clear()

    def _on_change(self) -> None:
        snapshot = self.refresh()
        for listener in list(self._listeners):
            listener(snapshot)

    def _build(self) -> DashboardSnapshot:
        controller = self._controller
        params = controller.params
        readings = controller.readings
        mode = AcquisitionMode.simulation
        if params is not None:
            mode = params.mode
            if params.date_range_mode is not DateRangeMode.realtime:
                now = self._clock() if self._clock is not None else None
                readings = filter_readings(
                    readings,
                    params.date_range_mode,
                    params.custom_start,
                    params.custom_end,
                    now=now,
                )
        return DashboardSnapshot(
            readings=readings,
            connection_status=controller.connection_status,
            is_loading=controller.is_loading,
            mode=mode.value,
            state=controller.state,
            last_error=controller.last_error,
            epoch=controller.epoch,
        )
