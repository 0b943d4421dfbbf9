from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, TypeVar

import typer

from app.schemas import HealthStatus
from cli.config import CLIConfig, load_config
from cli.render import (
    render_health,
    render_readings,
    render_settings,
    render_snapshot_line,
    render_summary,
)
from datastore.settings_store import build_default_settings_store
from logging_config import configure_logging
from models.acquisition import AcquisitionMode, AcquisitionParameters, DateRangeMode
from models.records import SpeedReading
from services.aggregator import Aggregator
from services.controller import AcquisitionController
from services.errors import FetchError
from services.transport import BatchQuery, RangeQuery, RecentQuery, SpeedStreamClient, TodayQuery
from services.view_model import DashboardSnapshot, DashboardViewModel
from settings import AppMode

T = TypeVar("T")

_DATETIME_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S%z"]


@dataclass
class CLIState:
    config: CLIConfig


app = typer.Typer(
    help="Utilities for watching and querying racing speed telemetry.",
    context_settings={"help_option_names": ["-h", "--help"]},
)
settings_app = typer.Typer(help="Inspect and change the persisted dashboard settings.")
app.add_typer(settings_app, name="settings")


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.find_root().obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


def _build_client(config: CLIConfig) -> SpeedStreamClient:
    return SpeedStreamClient(
        config.base_url,
        token=config.token,
        use_proxy=config.use_proxy,
        timeout=config.request_timeout,
    )


def _run_with_client(
    config: CLIConfig, call: Callable[[SpeedStreamClient], Awaitable[T]]
) -> T:
    async def runner() -> T:
        client = _build_client(config)
        try:
            return await call(client)
        finally:
            await client.aclose()

    try:
        return asyncio.run(runner())
    except FetchError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Telemetry API base URL (defaults to API_BASE_URL env).",
    ),
    token: Optional[str] = typer.Option(
        None,
        "--token",
        help="Bearer token for the telemetry API (defaults to API_TOKEN env).",
    ),
    use_proxy: Optional[bool] = typer.Option(
        None,
        "--proxy/--no-proxy",
        help="Route requests through the same-origin proxy paths.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Entry point for the CLI."""
    configure_logging("DEBUG" if verbose else None, force=verbose)
    config = load_config(base_url=base_url, token=token, use_proxy=use_proxy)
    ctx.obj = CLIState(config=config)


@app.command("health")
def health_command(ctx: typer.Context) -> None:
    """Check telemetry API health."""
    state = _get_state(ctx)
    health: HealthStatus = _run_with_client(state.config, lambda client: client.check_health())
    render_health(health)


@app.command("latest")
def latest_command(ctx: typer.Context) -> None:
    """Show the most recent reading."""
    state = _get_state(ctx)
    reading: SpeedReading = _run_with_client(state.config, lambda client: client.get_latest())
    render_readings([reading])


@app.command("fetch")
def fetch_command(
    ctx: typer.Context,
    limit: int = typer.Option(100, "--limit", "-n", min=1, help="Maximum readings to fetch."),
    today: bool = typer.Option(False, "--today", help="Fetch today's readings."),
    start: Optional[datetime] = typer.Option(
        None, "--start", formats=_DATETIME_FORMATS, help="Range start (local time)."
    ),
    end: Optional[datetime] = typer.Option(
        None, "--end", formats=_DATETIME_FORMATS, help="Range end (local time)."
    ),
) -> None:
    """Fetch a batch of readings (recent, today, or a custom range)."""
    state = _get_state(ctx)
    query: BatchQuery
    if start is not None or end is not None:
        if start is None or end is None:
            raise typer.BadParameter("Both --start and --end are required for a range query.")
        # Naive values are local time; offsets given on the command line win.
        start, end = start.astimezone(), end.astimezone()
        if start > end:
            raise typer.BadParameter("--start must not be after --end.")
        query = RangeQuery(start=start, end=end)
    elif today:
        query = TodayQuery(limit=limit)
    else:
        query = RecentQuery(limit=limit)

    readings: List[SpeedReading] = _run_with_client(
        state.config, lambda client: client.fetch_batch(query)
    )
    render_readings(readings)
    typer.echo()
    render_summary(Aggregator().aggregate(readings))


async def _watch(
    config: CLIConfig,
    params: AcquisitionParameters,
    duration: float,
    refresh: float,
) -> DashboardSnapshot:
    client = _build_client(config) if params.mode is AcquisitionMode.live else None
    controller = AcquisitionController(client, flush_interval=config.flush_interval)
    view = DashboardViewModel(controller)
    loop = asyncio.get_running_loop()
    try:
        controller.start(params)
        deadline = loop.time() + duration
        while True:
            render_snapshot_line(view.refresh())
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(refresh, remaining))
        controller.flush()
        return view.refresh()
    finally:
        await controller.aclose()
        view.close()
        if client is not None:
            await client.aclose()


@app.command("watch")
def watch_command(
    ctx: typer.Context,
    simulate: Optional[bool] = typer.Option(
        None,
        "--simulate/--live",
        help="Use synthetic readings or the live API (defaults to APP_MODE).",
    ),
    interval: int = typer.Option(1000, "--interval", min=1, help="Simulation interval in ms."),
    max_points: int = typer.Option(120, "--max-points", min=1, help="Readings kept in memory."),
    range_mode: DateRangeMode = typer.Option(
        DateRangeMode.realtime, "--range", case_sensitive=False, help="Date range mode."
    ),
    start: Optional[datetime] = typer.Option(None, "--start", formats=_DATETIME_FORMATS),
    end: Optional[datetime] = typer.Option(None, "--end", formats=_DATETIME_FORMATS),
    duration: Optional[float] = typer.Option(None, "--duration", help="Seconds to watch."),
    refresh: Optional[float] = typer.Option(None, "--refresh", help="Seconds between status lines."),
) -> None:
    """Run the acquisition loop and print the dashboard state as it changes."""
    state = _get_state(ctx)
    config = state.config
    if simulate is None:
        simulate = config.app_mode is AppMode.simulation
    try:
        params = AcquisitionParameters(
            mode=AcquisitionMode.simulation if simulate else AcquisitionMode.live,
            date_range_mode=range_mode,
            custom_start=start,
            custom_end=end,
            poll_interval_ms=interval,
            max_data_points=max_points,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    snapshot = asyncio.run(
        _watch(
            config,
            params,
            duration if duration is not None else config.watch_duration,
            refresh if refresh is not None else config.refresh_interval,
        )
    )
    typer.echo()
    render_readings(snapshot.readings, limit=10)
    typer.echo()
    render_summary(Aggregator().aggregate(snapshot.readings))


@settings_app.command("show")
def settings_show_command() -> None:
    """Print the stored dashboard settings."""
    render_settings(build_default_settings_store().get())


@settings_app.command("set")
def settings_set_command(
    interval: Optional[int] = typer.Option(None, "--interval", help="Update interval in ms."),
    max_points: Optional[int] = typer.Option(None, "--max-points"),
    range_mode: Optional[DateRangeMode] = typer.Option(None, "--range", case_sensitive=False),
    start: Optional[datetime] = typer.Option(None, "--start", formats=_DATETIME_FORMATS),
    end: Optional[datetime] = typer.Option(None, "--end", formats=_DATETIME_FORMATS),
    alerts: Optional[bool] = typer.Option(None, "--alerts/--no-alerts"),
    threshold_min: Optional[float] = typer.Option(None, "--min-speed"),
    threshold_max: Optional[float] = typer.Option(None, "--max-speed"),
    sensors: Optional[List[str]] = typer.Option(None, "--sensor", help="Repeat to select sensors."),
) -> None:
    """Update stored settings; only the given options change."""
    candidates = {
        "update_interval": interval,
        "max_data_points": max_points,
        "date_range_mode": range_mode,
        "custom_start_date": start,
        "custom_end_date": end,
        "enable_alerts": alerts,
        "speed_threshold_min": threshold_min,
        "speed_threshold_max": threshold_max,
        "selected_sensors": sensors or None,
    }
    changes = {key: value for key, value in candidates.items() if value is not None}
    if not changes:
        raise typer.BadParameter("Provide at least one setting to change.")
    try:
        updated = build_default_settings_store().update(changes)
    except ValueError as exc:
        typer.secho(f"Invalid settings: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    typer.secho("Settings saved.", fg=typer.colors.GREEN)
    render_settings(updated)


@settings_app.command("reset")
def settings_reset_command() -> None:
    """Restore default settings."""
    render_settings(build_default_settings_store().reset())
