from __future__ import annotations

from typing import Any, Iterable, Sequence

import typer

from app.schemas import DashboardSettings, HealthStatus
from models.records import SpeedReading
from services.aggregator import SpeedSummary
from services.view_model import DashboardSnapshot


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def format_reading(reading: SpeedReading) -> str:
    timestamp = reading.timestamp.astimezone().strftime("%Y-%m-%d %H:%M:%S")
    sensor = reading.sensor_name or "Unknown"
    return f"#{reading.id:<6} {timestamp}  {sensor:<16} {reading.lane.value:<5} {reading.speed:6.1f} km/h"


def render_health(health: HealthStatus) -> None:
    echo_heading("API Health")
    echo_key_values(
        [
            ("status", health.status),
            ("message", health.message or "-"),
        ]
    )


def render_readings(readings: Sequence[SpeedReading], limit: int | None = None) -> None:
    echo_heading(f"Readings ({len(readings)})")
    if not readings:
        typer.echo("No readings available.")
        return
    shown = readings[-limit:] if limit else readings
    for reading in shown:
        typer.echo(f"  {format_reading(reading)}")


def render_summary(summary: SpeedSummary) -> None:
    echo_heading("Summary")
    if not summary.total_readings:
        typer.echo("No readings to summarize.")
        return
    echo_key_values(
        [
            ("total_readings", summary.total_readings),
            ("avg_speed", summary.avg_speed),
            ("min_speed", summary.min_speed),
            ("max_speed", summary.max_speed),
        ]
    )
    typer.echo("per_sensor:")
    for sensor, count in sorted(summary.per_sensor_count.items()):
        typer.echo(f"  - {sensor}: {count} passes, avg {summary.per_sensor_avg_speed[sensor]} km/h")
    typer.echo("per_lane:")
    for lane, count in sorted(summary.per_lane_count.items()):
        typer.echo(f"  - {lane}: {count}")


def render_snapshot_line(snapshot: DashboardSnapshot) -> None:
    color = typer.colors.GREEN if snapshot.connection_status else typer.colors.YELLOW
    latest = format_reading(snapshot.readings[-1]) if snapshot.readings else "-"
    error = f" error={snapshot.last_error.value}" if snapshot.last_error else ""
    typer.secho(
        f"[{snapshot.mode}] state={snapshot.state.value} readings={len(snapshot.readings)}"
        f"{error} latest={latest}",
        fg=color,
    )


def render_settings(settings: DashboardSettings) -> None:
    echo_heading("Dashboard Settings")
    echo_key_values(settings.model_dump(mode="json").items())
