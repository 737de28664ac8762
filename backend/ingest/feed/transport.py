"""
Push transport for the live match hub (SignalR JSON hub protocol).

Connection sequence:
  1. POST {hub}/negotiate?negotiateVersion=1 -> connectionToken
  2. WebSocket to the hub URL with ?id=<token>
  3. send {"protocol":"json","version":1}<RS>, expect {}<RS>

Frames carry one or more JSON records terminated by the record separator
0x1E. Invocations (type 1) are handed to on_event(target, arguments);
pings (type 6) are answered; close (type 7) ends the connection.

After a drop the transport reconnects on a fixed schedule, holding the last
delay forever. A failure of the very first connect is raised as
FeedConnectionError; rescheduling that is the session's job.
"""
from __future__ import annotations

import asyncio
import json
from enum import IntEnum
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence
from urllib.parse import quote

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from shared.config import Settings, get_settings
from shared.models.enums import ConnectionState
from shared.utils.http_client import UpstreamHTTPClient
from shared.utils.logging import get_logger
from shared.utils.metrics import FEED_RECONNECTS

logger = get_logger(__name__)

RECORD_SEPARATOR = "\x1e"
HANDSHAKE = {"protocol": "json", "version": 1}


class FeedConnectionError(Exception):
    """Negotiate, socket open or handshake failed."""


class MessageType(IntEnum):
    INVOCATION = 1
    STREAM_ITEM = 2
    COMPLETION = 3
    PING = 6
    CLOSE = 7


class HubConnection(Protocol):
    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[HubConnection]]
EventHandler = Callable[[str, list[Any]], None]
StateHandler = Callable[[ConnectionState], None]


def reconnect_delay(attempt: int, schedule: Sequence[float]) -> float:
    """Delay before reconnect attempt N (0-based); the last entry repeats."""
    if not schedule:
        return 0.0
    return schedule[min(max(attempt, 0), len(schedule) - 1)]


def encode_record(record: dict[str, Any]) -> str:
    return json.dumps(record, separators=(",", ":")) + RECORD_SEPARATOR


def parse_frame(frame: str | bytes) -> list[dict[str, Any]]:
    """Split a frame into its JSON records. Undecodable records are dropped."""
    if isinstance(frame, bytes):
        frame = frame.decode("utf-8", errors="replace")
    records: list[dict[str, Any]] = []
    for chunk in frame.split(RECORD_SEPARATOR):
        if not chunk.strip():
            continue
        try:
            record = json.loads(chunk)
        except json.JSONDecodeError:
            logger.warning("hub_record_undecodable", size=len(chunk))
            continue
        if isinstance(record, dict):
            records.append(record)
    return records


def hub_socket_url(hub_url: str, token: str) -> str:
    if hub_url.startswith("https://"):
        base = "wss://" + hub_url[len("https://"):]
    elif hub_url.startswith("http://"):
        base = "ws://" + hub_url[len("http://"):]
    else:
        base = hub_url
    joiner = "&" if "?" in base else "?"
    return f"{base}{joiner}id={quote(token, safe='')}"


async def _default_connect(url: str) -> HubConnection:
    return await websockets.connect(
        url,
        ping_interval=20,
        ping_timeout=20,
        close_timeout=5,
        max_size=2**23,
        compression=None,
    )


class HubTransport:
    """
    One logical hub connection with automatic reconnection.

    State changes are reported through on_state; hub invocations through
    on_event. Both callbacks run on the event loop and must not block.
    """

    def __init__(
        self,
        on_event: EventHandler,
        on_state: Optional[StateHandler] = None,
        settings: Optional[Settings] = None,
        http: Optional[UpstreamHTTPClient] = None,
        connect: Optional[Connector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._on_event = on_event
        self._on_state = on_state
        self._http = http or UpstreamHTTPClient(
            "hub",
            timeout_s=self._settings.feed_handshake_timeout_s,
            max_retries=1,
        )
        self._connect = connect or _default_connect
        self._sleep = sleep
        self._ws: Optional[HubConnection] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._stopping = False
        self._state = ConnectionState.DISCONNECTED

    @property
    def state(self) -> ConnectionState:
        return self._state

    async def start(self) -> None:
        """
        Open the first connection and start listening.

        Raises:
            FeedConnectionError: when negotiate or handshake fails.
        """
        self._stopping = False
        await self._http.start()
        await self._open()
        self._task = asyncio.create_task(self._run(), name="hub-transport")
        self._task.add_done_callback(self._on_run_done)

    async def stop(self) -> None:
        self._stopping = True
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_socket()
        await self._http.close()
        self._set_state(ConnectionState.DISCONNECTED)

    # ── Connection ──────────────────────────────────────────────────────

    async def _negotiate(self) -> str:
        try:
            resp = await self._http.post(
                self._settings.feed_negotiate_url,
                params={"negotiateVersion": 1},
            )
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise FeedConnectionError(f"negotiate failed: {exc}") from exc
        token = (body.get("connectionToken") or body.get("connectionId")) if isinstance(body, dict) else None
        if not token:
            raise FeedConnectionError("negotiate returned no connection token")
        return str(token)

    async def _open(self) -> None:
        token = await self._negotiate()
        url = hub_socket_url(self._settings.feed_hub_url, token)
        timeout = self._settings.feed_handshake_timeout_s
        try:
            ws = await asyncio.wait_for(self._connect(url), timeout=timeout)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            raise FeedConnectionError(f"socket open failed: {exc}") from exc

        try:
            await ws.send(encode_record(HANDSHAKE))
            reply = await asyncio.wait_for(ws.recv(), timeout=timeout)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            await ws.close()
            raise FeedConnectionError(f"handshake failed: {exc}") from exc

        records = parse_frame(reply)
        if not records or records[0].get("error"):
            await ws.close()
            error = records[0].get("error") if records else "empty handshake reply"
            raise FeedConnectionError(f"handshake rejected: {error}")

        self._ws = ws
        self._set_state(ConnectionState.CONNECTED)
        logger.info("feed_connected", hub=self._settings.feed_hub_url)
        # Records that shared the handshake frame
        for record in records[1:]:
            await self._handle_record(record)

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as exc:
                logger.debug("feed_socket_close_failed", error=str(exc))

    # ── Receive loop ────────────────────────────────────────────────────

    async def _run(self) -> None:
        while not self._stopping:
            await self._listen()
            if self._stopping:
                break
            await self._close_socket()
            self._set_state(ConnectionState.RECONNECTING)
            logger.warning("feed_connection_dropped")
            await self._reconnect()

    def _on_run_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled() or task.exception() is None:
            return
        exc = task.exception()
        logger.error("feed_transport_crashed", error=str(exc), exc_info=exc)
        self._set_state(ConnectionState.DISCONNECTED)

    async def _reconnect(self) -> None:
        schedule = self._settings.feed_reconnect_delays_s
        attempt = 0
        while not self._stopping:
            delay = reconnect_delay(attempt, schedule)
            logger.info("feed_reconnect_scheduled", attempt=attempt + 1, delay_s=delay)
            await self._sleep(delay)
            if self._stopping:
                return
            try:
                await self._open()
            except FeedConnectionError as exc:
                FEED_RECONNECTS.labels(outcome="failure").inc()
                logger.warning("feed_reconnect_failed", attempt=attempt + 1, error=str(exc))
                attempt += 1
                continue
            FEED_RECONNECTS.labels(outcome="success").inc()
            return

    async def _listen(self) -> None:
        ws = self._ws
        if ws is None:
            return
        while not self._stopping:
            try:
                frame = await ws.recv()
            except ConnectionClosed as exc:
                logger.warning("feed_socket_closed", code=exc.rcvd.code if exc.rcvd else None)
                return
            except (OSError, WebSocketException) as exc:
                logger.error("feed_socket_error", error=str(exc))
                return
            for record in parse_frame(frame):
                if not await self._handle_record(record):
                    return

    async def _handle_record(self, record: dict[str, Any]) -> bool:
        """Dispatch one hub record. False when the server closed the session."""
        kind = record.get("type")
        if kind == MessageType.INVOCATION:
            target = record.get("target")
            arguments = record.get("arguments")
            if not isinstance(target, str):
                return True
            try:
                self._on_event(target, arguments if isinstance(arguments, list) else [])
            except Exception as exc:
                logger.error("feed_event_handler_failed", target=target, error=str(exc), exc_info=True)
            return True
        if kind == MessageType.PING:
            ws = self._ws
            if ws is not None:
                try:
                    await ws.send(encode_record({"type": int(MessageType.PING)}))
                except (OSError, WebSocketException) as exc:
                    logger.debug("feed_ping_reply_failed", error=str(exc))
            return True
        if kind == MessageType.CLOSE:
            logger.warning("feed_server_closed", error=record.get("error"))
            return False
        return True

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        if self._on_state is not None:
            self._on_state(state)
