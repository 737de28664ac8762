"""
Tests for the hub transport: frame codec, reconnect schedule, and the
negotiate / handshake / listen cycle against in-memory sockets.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest
from websockets.exceptions import ConnectionClosed

from ingest.feed.transport import (
    RECORD_SEPARATOR,
    FeedConnectionError,
    HubTransport,
    encode_record,
    hub_socket_url,
    parse_frame,
    reconnect_delay,
)
from shared.models.enums import ConnectionState
from shared.utils.http_client import UpstreamHTTPClient

RS = RECORD_SEPARATOR


class FakeSocket:
    """Scripted websocket: recv() replays frames, then blocks."""

    def __init__(self, *frames: Any) -> None:
        self.frames: asyncio.Queue[Any] = asyncio.Queue()
        for frame in frames:
            self.frames.put_nowait(frame)
        self.sent: list[str] = []
        self.closed = False

    def push(self, frame: Any) -> None:
        self.frames.put_nowait(frame)

    async def send(self, message: str) -> None:
        self.sent.append(message)

    async def recv(self) -> Any:
        frame = await self.frames.get()
        if isinstance(frame, Exception):
            raise frame
        return frame

    async def close(self) -> None:
        self.closed = True


class FakeConnector:
    def __init__(self, *sockets: FakeSocket) -> None:
        self.sockets = list(sockets)
        self.urls: list[str] = []

    async def __call__(self, url: str) -> FakeSocket:
        self.urls.append(url)
        return self.sockets.pop(0)


class Recorder:
    def __init__(self) -> None:
        self.events: list[tuple[str, list[Any]]] = []
        self.states: list[ConnectionState] = []
        self.connected_twice = asyncio.Event()

    def on_event(self, target: str, arguments: list[Any]) -> None:
        self.events.append((target, arguments))

    def on_state(self, state: ConnectionState) -> None:
        self.states.append(state)
        if self.states.count(ConnectionState.CONNECTED) >= 2:
            self.connected_twice.set()


def _negotiate_client(body: Any, requests: list[httpx.Request] | None = None) -> UpstreamHTTPClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(200, json=body)

    return UpstreamHTTPClient("hub", timeout_s=1.0, max_retries=1, transport=httpx.MockTransport(handler))


async def _no_sleep(delays: list[float], delay: float) -> None:
    delays.append(delay)
    await asyncio.sleep(0)


def _invocation(target: str, *arguments: Any) -> str:
    return json.dumps({"type": 1, "target": target, "arguments": list(arguments)}) + RS


# ── Frame codec ─────────────────────────────────────────────────────────

class TestFrames:

    def test_parse_multiple_records(self) -> None:
        frame = '{"type":6}' + RS + _invocation("ReceiveAllLiveMatches", [])
        records = parse_frame(frame)
        assert [r["type"] for r in records] == [6, 1]
        assert records[1]["target"] == "ReceiveAllLiveMatches"

    def test_parse_bytes(self) -> None:
        assert parse_frame(b'{"type":6}\x1e') == [{"type": 6}]

    def test_undecodable_and_non_object_records_dropped(self) -> None:
        frame = "{oops" + RS + "[1,2]" + RS + '{"type":7}' + RS
        assert parse_frame(frame) == [{"type": 7}]

    def test_encode_record(self) -> None:
        assert encode_record({"protocol": "json", "version": 1}) == '{"protocol":"json","version":1}' + RS


class TestReconnectSchedule:

    @pytest.mark.parametrize("attempt,expected", [(0, 0.0), (1, 2.0), (2, 5.0), (3, 10.0), (4, 20.0), (9, 20.0)])
    def test_last_delay_repeats(self, attempt: int, expected: float) -> None:
        assert reconnect_delay(attempt, [0.0, 2.0, 5.0, 10.0, 20.0]) == expected

    def test_empty_schedule(self) -> None:
        assert reconnect_delay(3, []) == 0.0


class TestSocketUrl:

    def test_scheme_mapping(self) -> None:
        assert hub_socket_url("https://hub.test/livematchhub", "tok") == "wss://hub.test/livematchhub?id=tok"
        assert hub_socket_url("http://hub.test/h", "tok") == "ws://hub.test/h?id=tok"

    def test_existing_query_and_quoting(self) -> None:
        assert hub_socket_url("https://hub.test/h?x=1", "a/b+c") == "wss://hub.test/h?x=1&id=a%2Fb%2Bc"


# ── Connection cycle ────────────────────────────────────────────────────

class TestHubTransport:

    @pytest.mark.asyncio
    async def test_handshake_and_dispatch(self, settings) -> None:
        requests: list[httpx.Request] = []
        socket = FakeSocket("{}" + RS + _invocation("ReceiveAllLiveMatches", [{"id": "m1"}]))
        connector = FakeConnector(socket)
        recorder = Recorder()
        transport = HubTransport(
            recorder.on_event,
            recorder.on_state,
            settings=settings,
            http=_negotiate_client({"connectionToken": "tok"}, requests),
            connect=connector,
        )

        await transport.start()
        try:
            assert transport.state == ConnectionState.CONNECTED
            assert recorder.states == [ConnectionState.CONNECTED]
            assert connector.urls == ["wss://hub.test/livematchhub?id=tok"]
            assert requests[0].method == "POST"
            assert requests[0].url.path == "/livematchhub/negotiate"
            assert requests[0].url.params["negotiateVersion"] == "1"
            assert json.loads(socket.sent[0].rstrip(RS)) == {"protocol": "json", "version": 1}
            assert recorder.events == [("ReceiveAllLiveMatches", [[{"id": "m1"}]])]
        finally:
            await transport.stop()

        assert socket.closed
        assert transport.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_connection_id_fallback(self, settings) -> None:
        connector = FakeConnector(FakeSocket("{}" + RS))
        transport = HubTransport(
            lambda target, args: None,
            settings=settings,
            http=_negotiate_client({"connectionId": "cid"}),
            connect=connector,
        )
        await transport.start()
        await transport.stop()
        assert connector.urls == ["wss://hub.test/livematchhub?id=cid"]

    @pytest.mark.asyncio
    async def test_negotiate_without_token_fails(self, settings) -> None:
        transport = HubTransport(
            lambda target, args: None,
            settings=settings,
            http=_negotiate_client({"availableTransports": []}),
            connect=FakeConnector(),
        )
        with pytest.raises(FeedConnectionError):
            await transport.start()
        await transport.stop()

    @pytest.mark.asyncio
    async def test_rejected_handshake_fails(self, settings) -> None:
        socket = FakeSocket('{"error":"unsupported protocol"}' + RS)
        transport = HubTransport(
            lambda target, args: None,
            settings=settings,
            http=_negotiate_client({"connectionToken": "tok"}),
            connect=FakeConnector(socket),
        )
        with pytest.raises(FeedConnectionError, match="unsupported protocol"):
            await transport.start()
        assert socket.closed
        await transport.stop()

    @pytest.mark.asyncio
    async def test_ping_is_answered(self, settings) -> None:
        socket = FakeSocket("{}" + RS)
        recorder = Recorder()
        transport = HubTransport(
            recorder.on_event,
            settings=settings,
            http=_negotiate_client({"connectionToken": "tok"}),
            connect=FakeConnector(socket),
        )
        await transport.start()
        try:
            socket.push('{"type":6}' + RS)
            for _ in range(5):
                await asyncio.sleep(0)
            assert socket.sent[-1] == encode_record({"type": 6})
        finally:
            await transport.stop()

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_kill_the_loop(self, settings) -> None:
        seen: list[str] = []

        def on_event(target: str, arguments: list[Any]) -> None:
            seen.append(target)
            if target == "Boom":
                raise RuntimeError("handler bug")

        socket = FakeSocket("{}" + RS)
        transport = HubTransport(
            on_event,
            settings=settings,
            http=_negotiate_client({"connectionToken": "tok"}),
            connect=FakeConnector(socket),
        )
        await transport.start()
        try:
            socket.push(_invocation("Boom") + _invocation("After"))
            for _ in range(5):
                await asyncio.sleep(0)
            assert seen == ["Boom", "After"]
        finally:
            await transport.stop()

    @pytest.mark.asyncio
    async def test_reconnects_after_drop(self, settings) -> None:
        first = FakeSocket("{}" + RS, ConnectionClosed(None, None))
        second = FakeSocket("{}" + RS)
        recorder = Recorder()
        delays: list[float] = []
        transport = HubTransport(
            recorder.on_event,
            recorder.on_state,
            settings=settings,
            http=_negotiate_client({"connectionToken": "tok"}),
            connect=FakeConnector(first, second),
            sleep=lambda delay: _no_sleep(delays, delay),
        )
        await transport.start()
        try:
            await asyncio.wait_for(recorder.connected_twice.wait(), timeout=2.0)
        finally:
            await transport.stop()

        assert recorder.states[:3] == [
            ConnectionState.CONNECTED,
            ConnectionState.RECONNECTING,
            ConnectionState.CONNECTED,
        ]
        assert delays == [0.0]
        assert first.closed

    @pytest.mark.asyncio
    async def test_server_close_triggers_reconnect(self, settings) -> None:
        first = FakeSocket("{}" + RS, '{"type":7,"error":"server restarting"}' + RS)
        second = FakeSocket("{}" + RS)
        recorder = Recorder()
        transport = HubTransport(
            recorder.on_event,
            recorder.on_state,
            settings=settings,
            http=_negotiate_client({"connectionToken": "tok"}),
            connect=FakeConnector(first, second),
            sleep=lambda delay: _no_sleep([], delay),
        )
        await transport.start()
        try:
            await asyncio.wait_for(recorder.connected_twice.wait(), timeout=2.0)
        finally:
            await transport.stop()

        assert ConnectionState.RECONNECTING in recorder.states

    @pytest.mark.asyncio
    async def test_unexpected_reconnect_error_reports_disconnected(self, settings) -> None:
        first = FakeSocket("{}" + RS, ConnectionClosed(None, None))
        connector = FakeConnector(first)
        recorder = Recorder()
        gave_up = asyncio.Event()

        def on_state(state: ConnectionState) -> None:
            recorder.on_state(state)
            if state == ConnectionState.DISCONNECTED:
                gave_up.set()

        async def connect(url: str) -> FakeSocket:
            if connector.sockets:
                return await connector(url)
            raise ValueError(f"unusable hub url: {url}")

        transport = HubTransport(
            recorder.on_event,
            on_state,
            settings=settings,
            http=_negotiate_client({"connectionToken": "tok"}),
            connect=connect,
            sleep=lambda delay: _no_sleep([], delay),
        )
        await transport.start()
        try:
            await asyncio.wait_for(gave_up.wait(), timeout=2.0)
            assert transport.state == ConnectionState.DISCONNECTED
            assert recorder.states == [
                ConnectionState.CONNECTED,
                ConnectionState.RECONNECTING,
                ConnectionState.DISCONNECTED,
            ]
        finally:
            await transport.stop()
