"""Dashboard orchestration: settings, acquisition and derived statistics."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Iterable, List, Mapping, Optional

from app.schemas import DashboardSettings
from datastore.settings_store import SettingsStore, build_default_settings_store
from models.acquisition import AcquisitionMode, AcquisitionParameters
from models.records import SpeedReading
from services.aggregator import Aggregator, SpeedSummary
from services.controller import AcquisitionController
from services.transport import SpeedStreamClient
from services.view_model import DashboardSnapshot, DashboardViewModel
from settings import AppMode, get_settings

logger = logging.getLogger(__name__)


def select_readings(
    readings: Iterable[SpeedReading], settings: DashboardSettings
) -> List[SpeedReading]:
    """Apply the operator's sensor, lane and alert-threshold filters."""
    selected_sensors = set(settings.selected_sensors)
    selected_lanes = set(settings.selected_lanes)
    result: List[SpeedReading] = []
    for reading in readings:
        if selected_sensors and (reading.sensor_name or "") not in selected_sensors:
            continue
        if reading.lane not in selected_lanes:
            continue
        if settings.enable_alerts and not (
            settings.speed_threshold_min <= reading.speed <= settings.speed_threshold_max
        ):
            continue
        result.append(reading)
    return result


class DashboardService:
    """Coordinates the settings store, the acquisition controller and the view model."""

    def __init__(
        self,
        store: SettingsStore,
        controller: AcquisitionController,
        *,
        app_mode: AppMode = AppMode.simulation,
        aggregator: Optional[Aggregator] = None,
        client: Optional[SpeedStreamClient] = None,
    ) -> None:
        self.store = store
        self.controller = controller
        self.view = DashboardViewModel(controller)
        self.aggregator = aggregator or Aggregator()
        self.app_mode = app_mode
        self._client = client

    def parameters_for(self, settings: DashboardSettings) -> AcquisitionParameters:
        mode = (
            AcquisitionMode.simulation
            if self.app_mode is AppMode.simulation
            else AcquisitionMode.live
        )
        return AcquisitionParameters(
            mode=mode,
            date_range_mode=settings.date_range_mode,
            custom_start=settings.custom_start_date,
            custom_end=settings.custom_end_date,
            poll_interval_ms=settings.update_interval,
            max_data_points=settings.max_data_points,
        )

    def start(self) -> None:
        """Begin acquisition with the stored settings; needs a running event loop."""
        self.controller.apply_parameters(self.parameters_for(self.store.get()))

    def update_settings(self, changes: Mapping[str, Any]) -> DashboardSettings:
        updated = self.store.update(changes)
        if self.controller.apply_parameters(self.parameters_for(updated)):
            logger.info("Acquisition restarted after settings change", extra={"epoch": self.controller.epoch})
        return updated

    def reset_settings(self) -> DashboardSettings:
        defaults = self.store.reset()
        self.controller.apply_parameters(self.parameters_for(defaults))
        return defaults

    def snapshot(self) -> DashboardSnapshot:
        return self.view.refresh()

    def displayed_readings(self, snapshot: Optional[DashboardSnapshot] = None) -> List[SpeedReading]:
        current = snapshot or self.snapshot()
        return select_readings(current.readings, self.store.get())

    def summary(self, readings: Iterable[SpeedReading]) -> SpeedSummary:
        return self.aggregator.aggregate(readings)

    def available_sensors(self) -> List[str]:
        return self.aggregator.available_sensors(self.controller.readings)

    async def shutdown(self) -> None:
        await self.controller.aclose()
        self.view.close()
        if self._client is not None:
            await self._client.aclose()


@lru_cache
def build_default_service() -> DashboardService:
    """Factory that wires the dashboard with settings from the environment."""
    settings = get_settings()
    client = SpeedStreamClient.from_settings(settings) if settings.requires_api else None
    controller = AcquisitionController(
        client,
        flush_interval=settings.flush_interval_ms / 1000.0,
    )
    return DashboardService(
        store=build_default_settings_store(),
        controller=controller,
        app_mode=settings.app_mode,
        client=client,
    )
