from __future__ import annotations

import asyncio
import json
import logging
import random
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from helpers import FakeBatchClient, make_reading, settle, wait_for
from models.acquisition import (
    AcquisitionMode,
    AcquisitionParameters,
    AcquisitionState,
    DateRangeMode,
    FailureKind,
)
from services.controller import AcquisitionController
from services.errors import FetchError
from services.generator import ReadingGenerator
from services.transport import RangeQuery, RecentQuery, SpeedStreamClient, TodayQuery


def _simulation(**overrides) -> AcquisitionParameters:
    values = dict(mode=AcquisitionMode.simulation, poll_interval_ms=10, max_data_points=3)
    values.update(overrides)
    return AcquisitionParameters(**values)


def _live(**overrides) -> AcquisitionParameters:
    values = dict(mode=AcquisitionMode.live)
    values.update(overrides)
    return AcquisitionParameters(**values)


def _wire(reading_id: int) -> dict:
    return make_reading(reading_id).to_wire()


def test_window_keeps_only_the_newest_readings() -> None:
    async def scenario():
        controller = AcquisitionController(history_size=0, flush_interval=60)
        controller.start(_simulation(date_range_mode=DateRangeMode.today))
        for reading_id in range(1, 11):
            controller.apply_incoming(make_reading(reading_id))
        pending = controller.pending_count
        before = controller.readings
        controller.flush()
        after = controller.readings
        await controller.aclose()
        return pending, before, after

    pending, before, after = asyncio.run(scenario())

    assert pending == 10
    assert before == []
    assert [reading.id for reading in after] == [8, 9, 10]


def test_incoming_readings_are_batched_by_flush_timer() -> None:
    async def scenario():
        controller = AcquisitionController(history_size=0, flush_interval=0.02)
        notifications = []
        controller.subscribe(lambda: notifications.append(controller.readings))
        controller.start(_simulation(date_range_mode=DateRangeMode.today, max_data_points=10))
        notifications.clear()
        for reading_id in range(1, 5):
            controller.apply_incoming(make_reading(reading_id))
        assert controller.readings == []
        await asyncio.sleep(0.1)
        await controller.aclose()
        return notifications

    notifications = asyncio.run(scenario())

    assert len(notifications) >= 1
    assert [reading.id for reading in notifications[0]] == [1, 2, 3, 4]


def test_simulation_realtime_seeds_history_and_streams() -> None:
    async def scenario():
        generator = ReadingGenerator(rng=random.Random(3))
        controller = AcquisitionController(
            generator=generator, history_size=5, flush_interval=0.005
        )
        controller.start(_simulation())
        seeded = [reading.id for reading in controller.readings]
        status = (controller.state, controller.connection_status, controller.is_loading)
        await wait_for(lambda: controller.readings[-1].id > 5)
        streamed = controller.readings
        controller.stop()
        controller.stop()
        stopped = (controller.state, controller.connection_status)
        await controller.aclose()
        return seeded, status, streamed, stopped

    seeded, status, streamed, stopped = asyncio.run(scenario())

    assert seeded == [3, 4, 5]
    assert status == (AcquisitionState.streaming, True, False)
    assert len(streamed) == 3
    ids = [reading.id for reading in streamed]
    assert ids == sorted(ids)
    assert stopped == (AcquisitionState.idle, False)


def test_simulation_with_empty_history_fills_from_generator() -> None:
    async def scenario():
        controller = AcquisitionController(history_size=0, flush_interval=0.005)
        controller.start(_simulation(max_data_points=2))
        await wait_for(lambda: len(controller.readings) == 2)
        await asyncio.sleep(0.05)
        readings = controller.readings
        await controller.aclose()
        return readings

    readings = asyncio.run(scenario())

    assert len(readings) == 2
    assert readings[0].id < readings[1].id


def test_simulation_custom_range_is_static() -> None:
    now = datetime.now(timezone.utc)

    async def scenario():
        generator = ReadingGenerator(rng=random.Random(1), clock=lambda: now)
        controller = AcquisitionController(generator=generator, history_size=120)
        controller.start(
            _simulation(
                date_range_mode=DateRangeMode.custom,
                custom_start=now - timedelta(minutes=10),
                custom_end=now - timedelta(minutes=5),
                max_data_points=120,
            )
        )
        result = (controller.state, controller.connection_status, controller.readings)
        await controller.aclose()
        return result

    state, connected, readings = asyncio.run(scenario())

    assert state is AcquisitionState.static
    assert connected is True
    assert len(readings) == 6


def test_stop_and_aclose_are_idempotent() -> None:
    async def scenario():
        controller = AcquisitionController(history_size=2)
        controller.stop()
        controller.start(_simulation())
        controller.stop()
        controller.stop()
        await controller.aclose()
        await controller.aclose()
        return controller.state, controller.readings

    state, readings = asyncio.run(scenario())

    assert state is AcquisitionState.idle
    assert len(readings) == 2


def test_apply_parameters_ignores_unchanged_parameters() -> None:
    async def scenario():
        controller = AcquisitionController(history_size=1)
        params = _simulation()
        first = controller.apply_parameters(params)
        second = controller.apply_parameters(_simulation())
        third = controller.apply_parameters(_simulation(max_data_points=5))
        epoch = controller.epoch
        await controller.aclose()
        return first, second, third, epoch

    assert asyncio.run(scenario()) == (True, False, True, 2)


def test_live_mode_requires_a_client() -> None:
    async def scenario():
        AcquisitionController().start(_live())

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())


def test_custom_range_waits_for_both_bounds_then_fetches_once() -> None:
    start = datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)
    end = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)
    client = FakeBatchClient([[make_reading(1), make_reading(2)]])

    async def scenario():
        controller = AcquisitionController(client)
        controller.start(_live(date_range_mode=DateRangeMode.custom, custom_start=start))
        waiting = (controller.state, controller.connection_status, list(client.queries))
        controller.apply_parameters(
            _live(date_range_mode=DateRangeMode.custom, custom_start=start, custom_end=end)
        )
        loading = controller.is_loading
        await wait_for(lambda: controller.state is AcquisitionState.static)
        result = (controller.readings, controller.connection_status)
        await controller.aclose()
        return waiting, loading, result

    waiting, loading, (readings, connected) = asyncio.run(scenario())

    assert waiting == (AcquisitionState.awaiting_input, False, [])
    assert loading is True
    assert client.queries == [RangeQuery(start=start, end=end)]
    assert [reading.id for reading in readings] == [1, 2]
    assert connected is True


def test_live_today_bounds_the_fetched_batch() -> None:
    client = FakeBatchClient([[make_reading(i) for i in range(1, 6)]])

    async def scenario():
        controller = AcquisitionController(client, today_limit=500)
        controller.start(_live(date_range_mode=DateRangeMode.today, max_data_points=3))
        await wait_for(lambda: controller.state is AcquisitionState.static)
        readings = controller.readings
        await controller.aclose()
        return readings

    readings = asyncio.run(scenario())

    assert client.queries == [TodayQuery(limit=500)]
    assert [reading.id for reading in readings] == [3, 4, 5]


def test_superseded_fetch_results_are_discarded() -> None:
    stale = [make_reading(100), make_reading(101)]
    fresh = [make_reading(1)]
    client = FakeBatchClient([stale, fresh], gated=True)

    async def scenario():
        controller = AcquisitionController(client)
        controller.start(_live(date_range_mode=DateRangeMode.today))
        await settle()
        controller.start(_live(date_range_mode=DateRangeMode.today, max_data_points=50))
        await settle()
        between = (controller.state, controller.readings)
        client.gates[0].set()
        await settle()
        client.gates[1].set()
        await wait_for(lambda: controller.state is AcquisitionState.static)
        result = controller.readings
        await controller.aclose()
        return between, result, controller.epoch

    (state_between, readings_between), readings, epoch = asyncio.run(scenario())

    assert state_between is AcquisitionState.loading
    assert readings_between == []
    assert [reading.id for reading in readings] == [1]
    assert epoch == 2


def test_failed_fetch_moves_to_disconnected() -> None:
    client = FakeBatchClient([FetchError("boom", status_code=500)])

    async def scenario():
        controller = AcquisitionController(client)
        controller.start(_live())
        await wait_for(lambda: controller.state is AcquisitionState.disconnected)
        result = (
            controller.readings,
            controller.connection_status,
            controller.is_loading,
            controller.last_error,
        )
        await controller.aclose()
        return result

    assert asyncio.run(scenario()) == ([], False, False, FailureKind.network)


def test_stream_skips_malformed_frames_and_keeps_window_on_failure(caplog) -> None:
    caplog.set_level(logging.WARNING)
    frames = ["{broken", "null", json.dumps({"id": 3}), "[]", json.dumps({**_wire(4), "lane": 5})]
    frames.append(json.dumps(_wire(3)))
    body = "".join(f"data: {frame}\n\n" for frame in frames).encode()
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/api/speeds":
            return httpx.Response(200, json=[_wire(1), _wire(2)])
        return httpx.Response(200, content=body)

    async def scenario():
        client = SpeedStreamClient("http://telemetry.test", transport=httpx.MockTransport(handler))
        controller = AcquisitionController(client, flush_interval=0.01)
        controller.start(_live())
        await wait_for(lambda: controller.state is AcquisitionState.disconnected)
        result = (controller.readings, controller.last_error, controller.connection_status)
        await controller.aclose()
        await client.aclose()
        return result

    readings, last_error, connected = asyncio.run(scenario())

    assert [reading.id for reading in readings] == [1, 2, 3]
    assert last_error is FailureKind.stream
    assert connected is False
    assert requests[0].url.params["limit"] == "120"
    malformed = [
        record
        for record in caplog.records
        if record.name == "services.transport" and record.message == "Skipping malformed stream frame"
    ]
    assert len(malformed) == 5


def test_live_realtime_streams_until_stopped() -> None:
    async def endless():
        for reading_id in (10, 11):
            yield f"data: {json.dumps(_wire(reading_id))}\n\n".encode()
        await asyncio.sleep(3600)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/speeds":
            return httpx.Response(200, json=[_wire(1)])
        return httpx.Response(200, content=endless())

    async def scenario():
        client = SpeedStreamClient("http://telemetry.test", transport=httpx.MockTransport(handler))
        controller = AcquisitionController(client, flush_interval=0.01)
        controller.start(_live(max_data_points=2))
        await wait_for(lambda: [r.id for r in controller.readings] == [10, 11])
        streaming = (controller.state, controller.connection_status)
        controller.stop()
        await controller.aclose()
        await client.aclose()
        return streaming, controller.state

    streaming, final_state = asyncio.run(scenario())

    assert streaming == (AcquisitionState.streaming, True)
    assert final_state is AcquisitionState.idle


def test_fetch_uses_recent_query_sized_to_window() -> None:
    client = FakeBatchClient([[make_reading(1)]], gated=True)

    async def scenario():
        controller = AcquisitionController(client)
        controller.start(_live(max_data_points=42))
        await settle()
        controller.stop()
        await controller.aclose()

    asyncio.run(scenario())

    assert client.queries == [RecentQuery(limit=42)]


def test_deeply_nested_frame_does_not_stall_the_stream() -> None:
    body = f"data: {'[' * 200_000}\n\ndata: {json.dumps(_wire(2))}\n\n".encode()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/speeds":
            return httpx.Response(200, json=[_wire(1)])
        return httpx.Response(200, content=body)

    async def scenario():
        client = SpeedStreamClient("http://telemetry.test", transport=httpx.MockTransport(handler))
        controller = AcquisitionController(client, flush_interval=0.01)
        controller.start(_live())
        await wait_for(lambda: controller.state is AcquisitionState.disconnected)
        result = (controller.readings, controller.last_error)
        await controller.aclose()
        await client.aclose()
        return result

    readings, last_error = asyncio.run(scenario())

    assert [reading.id for reading in readings] == [1, 2]
    assert last_error is FailureKind.stream


def test_live_realtime_stays_loading_until_stream_opens() -> None:
    async def endless():
        yield f"data: {json.dumps(_wire(5))}\n\n".encode()
        await asyncio.sleep(3600)

    async def scenario():
        opened = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/speeds":
                return httpx.Response(200, json=[_wire(1)])
            await opened.wait()
            return httpx.Response(200, content=endless())

        client = SpeedStreamClient("http://telemetry.test", transport=httpx.MockTransport(handler))
        controller = AcquisitionController(client, flush_interval=0.01)
        controller.start(_live())
        await wait_for(lambda: bool(controller.readings))
        await settle()
        before = (controller.state, controller.connection_status, controller.is_loading)
        opened.set()
        await wait_for(lambda: controller.state is AcquisitionState.streaming)
        after = (controller.connection_status, controller.is_loading)
        await controller.aclose()
        await client.aclose()
        return before, after

    before, after = asyncio.run(scenario())

    assert before == (AcquisitionState.loading, False, True)
    assert after == (True, False)
