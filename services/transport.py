"""Async HTTP and Server-Sent Events client for the telemetry API."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from app.schemas import CreateSpeedPayload, HealthStatus, SpeedReadingPayload
from models.acquisition import FailureKind
from models.records import Lane, SpeedReading, format_timestamp, lane_to_wire
from services.errors import FetchError, StreamError, ValidationError
from settings import Settings

logger = logging.getLogger(__name__)

_REST_PROXY_PREFIX = "/api/proxy"
_STREAM_PATH = "/api/speeds/stream"
_STREAM_PROXY_PATH = "/api/proxy-stream/speeds/stream"
_DATA_PREFIX = "data:"


@dataclass(frozen=True)
class RecentQuery:
    limit: int = 100


@dataclass(frozen=True)
class TodayQuery:
    limit: int = 1000


@dataclass(frozen=True)
class RangeQuery:
    start: datetime
    end: datetime


BatchQuery = Union[RecentQuery, TodayQuery, RangeQuery]


@dataclass(frozen=True)
class StreamOpened:
    """The server accepted the stream request."""


@dataclass(frozen=True)
class StreamReading:
    reading: SpeedReading


@dataclass(frozen=True)
class StreamFailed:
    error: StreamError


StreamEvent = Union[StreamOpened, StreamReading, StreamFailed]

_END_OF_STREAM = object()


def parse_reading(data: Any) -> SpeedReading:
    try:
        payload = SpeedReadingPayload.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(str(exc)) from exc
    return payload.to_reading()


def parse_readings(data: Any) -> List[SpeedReading]:
    if not isinstance(data, list):
        raise ValidationError("Expected a JSON array of readings.")
    return [parse_reading(item) for item in data]


def decode_frame(payload: str) -> SpeedReading:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid JSON in stream frame: {exc.msg}") from exc
    except RecursionError as exc:
        raise ValidationError("Stream frame is nested too deeply.") from exc
    return parse_reading(data)


def _query_request(query: BatchQuery) -> Tuple[str, Dict[str, Any]]:
    if isinstance(query, RecentQuery):
        return "/api/speeds", {"limit": query.limit}
    if isinstance(query, TodayQuery):
        return "/api/speeds/today", {"limit": query.limit}
    if isinstance(query, RangeQuery):
        return "/api/speeds/range", {
            "start_date": format_timestamp(query.start),
            "end_date": format_timestamp(query.end),
        }
    raise TypeError(f"Unsupported batch query {query!r}")


class SseFrameDecoder:
    """Splits decoded stream text into ``data:`` payloads.

    Text may arrive cut at arbitrary points; the trailing partial line is
    buffered until the next chunk completes it.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> List[str]:
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        payloads: List[str] = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith(_DATA_PREFIX):
                continue
            payload = line[len(_DATA_PREFIX):]
            if payload.startswith(" "):
                payload = payload[1:]
            payloads.append(payload)
        return payloads

    def flush(self) -> List[str]:
        remaining, self._buffer = self._buffer, ""
        return self.feed(remaining + "\n") if remaining else []


class StreamHandle:
    """Owns one live stream connection and exposes its events as an async iterator.

    Events arrive in order: ``StreamOpened``, any number of ``StreamReading``,
    then at most one ``StreamFailed``. Iteration stops after a failure or once
    the handle is closed.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        path: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[httpx.Timeout] = None,
    ) -> None:
        self.skipped_frames = 0
        self._events: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False
        self._task = asyncio.get_running_loop().create_task(
            self._pump(client, path, headers or {}, timeout), name="speed-stream"
        )

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
        self._events.put_nowait(_END_OF_STREAM)

    async def wait_closed(self) -> None:
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    def __aiter__(self) -> "StreamHandle":
        return self

    async def __anext__(self) -> StreamEvent:
        event = await self._events.get()
        if event is _END_OF_STREAM:
            self._events.put_nowait(_END_OF_STREAM)
            raise StopAsyncIteration
        return event  # type: ignore[return-value]

    def _emit(self, event: StreamEvent) -> None:
        if not self._closed:
            self._events.put_nowait(event)

    def _fail(self, error: StreamError) -> None:
        self._emit(StreamFailed(error))
        self._events.put_nowait(_END_OF_STREAM)

    def _dispatch(self, payloads: List[str]) -> None:
        for payload in payloads:
            if not payload.strip():
                continue
            try:
                reading = decode_frame(payload)
            except ValidationError as exc:
                self.skipped_frames += 1
                logger.warning("Skipping malformed stream frame", extra={"reason": str(exc)})
                continue
            self._emit(StreamReading(reading))

    async def _pump(
        self,
        client: httpx.AsyncClient,
        path: str,
        headers: Dict[str, str],
        timeout: Optional[httpx.Timeout],
    ) -> None:
        request_kwargs: Dict[str, Any] = {"headers": headers}
        if timeout is not None:
            request_kwargs["timeout"] = timeout
        try:
            async with client.stream("GET", path, **request_kwargs) as response:
                if not response.is_success:
                    self._fail(
                        StreamError(
                            f"Stream request failed with status {response.status_code}",
                            status_code=response.status_code,
                        )
                    )
                    return
                logger.info("Speed stream connected", extra={"path": path})
                self._emit(StreamOpened())
                decoder = SseFrameDecoder()
                async for text in response.aiter_text():
                    self._dispatch(decoder.feed(text))
                self._dispatch(decoder.flush())
        except httpx.HTTPError as exc:
            logger.warning("Speed stream connection failed", extra={"path": path, "reason": str(exc)})
            self._fail(StreamError(f"Stream connection failed: {exc}"))
            return
        except Exception as exc:
            logger.exception("Speed stream reader crashed", extra={"path": path})
            self._fail(StreamError(f"Stream reader crashed: {exc}"))
            return
        logger.info("Speed stream closed by server", extra={"path": path})
        self._fail(StreamError("Stream closed by server."))


class SpeedStreamClient:
    """Async client for the SpeedStream telemetry API."""

    def __init__(
        self,
        base_url: str = "",
        *,
        token: Optional[str] = None,
        use_proxy: bool = False,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._use_proxy = use_proxy
        self._timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "SpeedStreamClient":
        return cls(
            settings.api_base_url,
            token=settings.api_token,
            use_proxy=settings.use_proxy,
            timeout=settings.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "SpeedStreamClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _path(self, path: str) -> str:
        return f"{_REST_PROXY_PREFIX}{path}" if self._use_proxy else path

    async def fetch_batch(self, query: BatchQuery) -> List[SpeedReading]:
        path, params = _query_request(query)
        data, status_code = await self._get_json(path, params)
        try:
            return parse_readings(data)
        except ValidationError as exc:
            raise FetchError(
                f"Invalid readings payload from {path}: {exc}",
                kind=FailureKind.validation,
                status_code=status_code,
            ) from exc

    async def get_latest(self) -> SpeedReading:
        path = "/api/speeds/latest"
        data, status_code = await self._get_json(path)
        try:
            return parse_reading(data)
        except ValidationError as exc:
            raise FetchError(
                f"Invalid reading payload from {path}: {exc}",
                kind=FailureKind.validation,
                status_code=status_code,
            ) from exc

    async def get_paginated(self, offset: int = 0, limit: int = 100) -> List[SpeedReading]:
        path = "/api/speeds/paginated"
        data, status_code = await self._get_json(path, {"offset": offset, "limit": limit})
        try:
            return parse_readings(data)
        except ValidationError as exc:
            raise FetchError(
                f"Invalid readings payload from {path}: {exc}",
                kind=FailureKind.validation,
                status_code=status_code,
            ) from exc

    async def create_speed(
        self, speed: float, lane: Lane, sensor_name: Optional[str] = None
    ) -> bool:
        body = CreateSpeedPayload(sensor_name=sensor_name, speed=speed, lane=lane_to_wire(lane))
        try:
            response = await self._client.post(
                self._path("/api/speeds"), json=body.model_dump(exclude_none=True)
            )
        except httpx.HTTPError as exc:
            logger.error("Error creating speed measurement", extra={"reason": str(exc)})
            return False
        return response.status_code == 201

    async def check_health(self) -> HealthStatus:
        data, status_code = await self._get_json("/health")
        try:
            return HealthStatus.model_validate(data)
        except PydanticValidationError as exc:
            raise FetchError(
                f"Invalid health payload: {exc}",
                kind=FailureKind.validation,
                status_code=status_code,
            ) from exc

    def open_stream(self) -> StreamHandle:
        """Open the live reading stream; must be called from a running event loop."""
        path = _STREAM_PROXY_PATH if self._use_proxy else _STREAM_PATH
        return StreamHandle(
            self._client,
            path,
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            timeout=httpx.Timeout(self._timeout, read=None),
        )

    async def _get_json(
        self, path: str, params: Optional[Dict[str, Any]] = None
    ) -> Tuple[Any, int]:
        url = self._path(path)
        logger.debug("Requesting %s", url, extra={"query": params})
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise FetchError(f"Request to {url} failed: {exc}") from exc
        if not response.is_success:
            raise FetchError(
                f"Request to {url} failed with status {response.status_code}: "
                f"{self._detail(response) or 'no detail provided.'}",
                status_code=response.status_code,
            )
        try:
            return response.json(), response.status_code
        except ValueError as exc:
            raise FetchError(
                f"Response from {url} is not valid JSON.",
                kind=FailureKind.validation,
                status_code=response.status_code,
            ) from exc

    @staticmethod
    def _detail(response: httpx.Response) -> Optional[str]:
        try:
            data = response.json()
        except ValueError:
            return response.text.strip() or None
        if isinstance(data, dict):
            detail = data.get("detail") or data.get("message")
            return str(detail) if detail is not None else None
        return None
