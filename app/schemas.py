"""Pydantic schemas for the telemetry wire format and the HTTP API layer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models.acquisition import AcquisitionState, DateRangeMode, FailureKind
from models.records import Lane, SpeedReading, ensure_aware, lane_from_wire


class SpeedReadingPayload(BaseModel):
    """A reading as served by the telemetry API (``lane`` encoded as 0/1)."""

    model_config = ConfigDict(extra="ignore")

    id: int = Field(..., gt=0)
    sensor_name: Optional[str] = None
    speed: float = Field(..., ge=0, le=500)
    lane: Literal[0, 1]
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def to_reading(self) -> SpeedReading:
        return SpeedReading(
            id=self.id,
            sensor_name=self.sensor_name,
            speed=self.speed,
            lane=lane_from_wire(self.lane),
            timestamp=self.created_at,
        )


class CreateSpeedPayload(BaseModel):
    """Body accepted by ``POST /api/speeds``."""

    sensor_name: Optional[str] = None
    speed: float = Field(..., ge=0, le=500)
    lane: Literal[0, 1]


class HealthStatus(BaseModel):
    status: str
    message: Optional[str] = None
    timestamp: Optional[str] = None


class DashboardSettings(BaseModel):
    """Operator preferences persisted between sessions."""

    selected_sensors: List[str] = Field(default_factory=list)
    selected_lanes: List[Lane] = Field(default_factory=lambda: [Lane.left, Lane.right])

    update_interval: int = Field(default=3000, gt=0, description="Milliseconds between updates.")
    max_data_points: int = Field(default=120, gt=0)

    date_range_mode: DateRangeMode = DateRangeMode.realtime
    custom_start_date: Optional[datetime] = None
    custom_end_date: Optional[datetime] = None

    show_lane_distribution: bool = True
    show_sensor_stats: bool = True
    show_speed_chart: bool = True
    show_hourly_trend: bool = True
    show_speed_records: bool = True
    show_speed_distribution: bool = True
    show_average_speed_by_sensor: bool = True
    show_activity_heatmap: bool = True

    speed_threshold_min: float = Field(default=80, ge=0)
    speed_threshold_max: float = Field(default=350, ge=0)
    enable_alerts: bool = False

    @field_validator("custom_start_date", "custom_end_date")
    @classmethod
    def _attach_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(value) if value is not None else None

    @model_validator(mode="after")
    def _check_ranges(self) -> "DashboardSettings":
        if self.speed_threshold_min > self.speed_threshold_max:
            raise ValueError("speed_threshold_min must not exceed speed_threshold_max")
        if (
            self.custom_start_date is not None
            and self.custom_end_date is not None
            and self.custom_start_date > self.custom_end_date
        ):
            raise ValueError("custom_start_date must not be after custom_end_date")
        return self


class SettingsUpdate(BaseModel):
    """Partial settings update; omitted fields keep their stored value."""

    model_config = ConfigDict(extra="forbid")

    selected_sensors: Optional[List[str]] = None
    selected_lanes: Optional[List[Lane]] = None
    update_interval: Optional[int] = None
    max_data_points: Optional[int] = None
    date_range_mode: Optional[DateRangeMode] = None
    custom_start_date: Optional[datetime] = None
    custom_end_date: Optional[datetime] = None
    show_lane_distribution: Optional[bool] = None
    show_sensor_stats: Optional[bool] = None
    show_speed_chart: Optional[bool] = None
    show_hourly_trend: Optional[bool] = None
    show_speed_records: Optional[bool] = None
    show_speed_distribution: Optional[bool] = None
    show_average_speed_by_sensor: Optional[bool] = None
    show_activity_heatmap: Optional[bool] = None
    speed_threshold_min: Optional[float] = None
    speed_threshold_max: Optional[float] = None
    enable_alerts: Optional[bool] = None


class ReadingOut(BaseModel):
    id: int
    sensor_name: Optional[str] = None
    speed: float
    lane: Lane
    timestamp: datetime

    @classmethod
    def from_reading(cls, reading: SpeedReading) -> "ReadingOut":
        return cls(
            id=reading.id,
            sensor_name=reading.sensor_name,
            speed=reading.speed,
            lane=reading.lane,
            timestamp=reading.timestamp,
        )


class SpeedSummaryOut(BaseModel):
    """Aggregate statistics over the displayed readings."""

    total_readings: int = Field(..., ge=0)
    avg_speed: Optional[float] = None
    min_speed: Optional[float] = None
    max_speed: Optional[float] = None
    per_sensor_count: Dict[str, int] = Field(default_factory=dict)
    per_sensor_avg_speed: Dict[str, float] = Field(default_factory=dict)
    per_lane_count: Dict[str, int] = Field(default_factory=dict)


class DashboardResponse(BaseModel):
    """View model exposed to presentation clients."""

    mode: str
    state: AcquisitionState
    connection_status: bool
    is_loading: bool
    last_error: Optional[FailureKind] = None
    readings: List[ReadingOut] = Field(default_factory=list)
    summary: SpeedSummaryOut
    available_sensors: List[str] = Field(default_factory=list)
