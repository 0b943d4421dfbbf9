"""HTTP route definitions for the service."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from app.schemas import (
    DashboardResponse,
    DashboardSettings,
    ReadingOut,
    SettingsUpdate,
    SpeedSummaryOut,
)
from services.aggregator import SpeedSummary
from services.dashboard import DashboardService, build_default_service

router = APIRouter()


def get_service() -> DashboardService:
    return build_default_service()


def summary_to_schema(summary: SpeedSummary) -> SpeedSummaryOut:
    return SpeedSummaryOut(
        total_readings=summary.total_readings,
        avg_speed=summary.avg_speed,
        min_speed=summary.min_speed,
        max_speed=summary.max_speed,
        per_sensor_count=dict(summary.per_sensor_count),
        per_sensor_avg_speed=dict(summary.per_sensor_avg_speed),
        per_lane_count=dict(summary.per_lane_count),
    )


@router.get(
    "/dashboard",
    response_model=DashboardResponse,
    summary="Current readings, connection status and aggregate statistics.",
)
async def get_dashboard(
    service: DashboardService = Depends(get_service),
) -> DashboardResponse:
    snapshot = service.snapshot()
    readings = service.displayed_readings(snapshot)
    return DashboardResponse(
        mode=snapshot.mode,
        state=snapshot.state,
        connection_status=snapshot.connection_status,
        is_loading=snapshot.is_loading,
        last_error=snapshot.last_error,
        readings=[ReadingOut.from_reading(reading) for reading in readings],
        summary=summary_to_schema(service.summary(readings)),
        available_sensors=service.available_sensors(),
    )


@router.get(
    "/settings",
    response_model=DashboardSettings,
    summary="Fetch the stored dashboard settings.",
)
async def get_dashboard_settings(
    service: DashboardService = Depends(get_service),
) -> DashboardSettings:
    return service.store.get()


@router.patch(
    "/settings",
    response_model=DashboardSettings,
    summary="Update dashboard settings; acquisition restarts when its parameters change.",
)
async def update_dashboard_settings(
    changes: SettingsUpdate,
    service: DashboardService = Depends(get_service),
) -> DashboardSettings:
    try:
        return service.update_settings(changes.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc


@router.post(
    "/settings/reset",
    response_model=DashboardSettings,
    summary="Restore default dashboard settings.",
)
async def reset_dashboard_settings(
    service: DashboardService = Depends(get_service),
) -> DashboardSettings:
    return service.reset_settings()


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /dashboard for live readings and /ui for the HTML view."}
