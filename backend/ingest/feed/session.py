"""
Live feed session: connection lifecycle plus snapshot routing.

    DISCONNECTED -> CONNECTING -> CONNECTED <-> RECONNECTING
          ^              |
          +-- restart ---+   (initial connect failed, retried after a delay)

    stop() from any state is terminal.

Hub snapshots are normalized on arrival, parked in a SnapshotBuffer and
merged by the RefreshScheduler's drain, so a burst of ticks produces one
published list. Prediction pushes go straight to the PredictionStore.
The pause flag drops incoming snapshots without touching the connection.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, Protocol

from builder.buffer import SnapshotBuffer
from builder.merger import IncrementalStateMerger
from ingest.feed.transport import EventHandler, FeedConnectionError, HubTransport, StateHandler
from ingest.normalization.normalizer import MatchRecordTransformer, parse_prediction_payload
from ingest.providers.predictions import PredictionPoller
from scheduler.engine.refresh import LoopTimers, RefreshScheduler, TimerHandle, Timers
from shared.config import Settings, get_settings
from shared.models.domain import CanonicalMatch
from shared.models.enums import HUB_EVENT_FEEDS, ConnectionState, FeedKind, HubEvent
from shared.prediction_store import PredictionStore
from shared.utils.logging import get_logger
from shared.utils.metrics import FEED_CONNECTED, FEED_SESSION_RESTARTS, FEED_SNAPSHOTS, PREDICTION_LOADS

logger = get_logger(__name__)

Listener = Callable[[FeedKind, list[CanonicalMatch]], None]


class FeedTransport(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...


TransportFactory = Callable[[EventHandler, StateHandler], FeedTransport]


class LiveFeedSession:
    """
    Owns one hub connection and the merged per-feed match lists.

    Args:
        store: Prediction store updated by hub pushes and the poller.
        transport_factory: Builds the transport from (on_event, on_state).
        timers: Scheduling backend for debounce, drain and restarts.
        poller: Optional prediction poller started and stopped with the session.
    """

    def __init__(
        self,
        store: PredictionStore,
        *,
        transport_factory: Optional[TransportFactory] = None,
        transformer: Optional[MatchRecordTransformer] = None,
        timers: Optional[Timers] = None,
        poller: Optional[PredictionPoller] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store
        self._transformer = transformer or MatchRecordTransformer()
        self._timers = timers or LoopTimers()
        self._poller = poller
        self._transport_factory = transport_factory or (
            lambda on_event, on_state: HubTransport(on_event, on_state, settings=self._settings)
        )

        self._buffer = SnapshotBuffer()
        self._mergers: dict[FeedKind, IncrementalStateMerger] = {
            feed: IncrementalStateMerger(feed) for feed in FeedKind
        }
        self._scheduler = RefreshScheduler(
            self._drain,
            self._timers,
            debounce_s=self._settings.feed_debounce_s,
            interval_s=self._settings.feed_drain_interval_s,
        )
        self._listeners: list[Listener] = []

        self._state = ConnectionState.DISCONNECTED
        self._transport: Optional[FeedTransport] = None
        self._restart_handle: Optional[TimerHandle] = None
        self._restart_task: Optional[asyncio.Task[None]] = None
        self._paused = False
        self._stopped = False

    # ── Status ──────────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def store(self) -> PredictionStore:
        return self._store

    def matches(self, feed: FeedKind = FeedKind.ALL) -> list[CanonicalMatch]:
        return self._mergers[feed].matches

    def get_match(self, match_id: str, feed: FeedKind = FeedKind.ALL) -> Optional[CanonicalMatch]:
        return self._mergers[feed].get(match_id)

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._stopped:
            raise RuntimeError("LiveFeedSession was stopped and cannot be restarted")
        if self._state != ConnectionState.DISCONNECTED or self._restart_handle is not None:
            return
        self._scheduler.start()
        if self._poller is not None:
            self._poller.start()
        await self._connect()

    async def stop(self) -> None:
        """Tear down: timers, poller, transport, buffered snapshots, predictions."""
        if self._stopped:
            return
        self._stopped = True
        self._scheduler.close()
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None
        restart_task, self._restart_task = self._restart_task, None
        if restart_task is not None and not restart_task.done():
            restart_task.cancel()
            try:
                await restart_task
            except asyncio.CancelledError:
                pass
        if self._poller is not None:
            await self._poller.stop()
        await self._stop_transport()
        self._buffer.clear()
        self._store.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("feed_session_stopped")

    def pause(self) -> None:
        if not self._paused:
            self._paused = True
            logger.info("feed_paused")

    def resume(self) -> None:
        if self._paused:
            self._paused = False
            logger.info("feed_resumed")

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register for merged lists. Returns the unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _connect(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        await self._stop_transport()
        transport = self._transport_factory(self._on_hub_event, self._on_transport_state)
        self._transport = transport
        try:
            await transport.start()
        except FeedConnectionError as exc:
            await self._stop_transport()
            if self._stopped:
                return
            self._set_state(ConnectionState.DISCONNECTED)
            logger.error("feed_session_connect_failed", error=str(exc), retry_in_s=self._settings.feed_restart_delay_s)
            self._schedule_restart()
            return

        if self._stopped:
            await self._stop_transport()
            return
        self._set_state(ConnectionState.CONNECTED)

    def _schedule_restart(self) -> None:
        if self._restart_handle is not None:
            return
        FEED_SESSION_RESTARTS.inc()
        self._restart_handle = self._timers.call_later(self._settings.feed_restart_delay_s, self._restart)

    def _restart(self) -> None:
        self._restart_handle = None
        if self._stopped:
            return
        logger.info("feed_session_restarting")
        self._restart_task = asyncio.create_task(self._connect(), name="feed-session-restart")

    async def _stop_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.stop()

    # ── Routing ─────────────────────────────────────────────────────────

    def _on_transport_state(self, state: ConnectionState) -> None:
        if self._stopped or self._state == ConnectionState.CONNECTING:
            return
        self._set_state(state)
        # The transport gave up on its own; rebuild it
        if state == ConnectionState.DISCONNECTED:
            logger.warning("feed_transport_lost", retry_in_s=self._settings.feed_restart_delay_s)
            self._schedule_restart()

    def _on_hub_event(self, target: str, arguments: list[Any]) -> None:
        if self._stopped:
            return
        try:
            event = HubEvent(target)
        except ValueError:
            logger.debug("hub_event_ignored", target=target)
            return

        payload = arguments[0] if arguments else None
        if event == HubEvent.PREDICTION_DATA:
            self._on_prediction_push(payload)
            return

        feed = HUB_EVENT_FEEDS[event]
        if self._paused:
            FEED_SNAPSHOTS.labels(feed=feed.value, outcome="paused").inc()
            return

        snapshot = self._transformer.build_snapshot(payload)
        if snapshot is None:
            FEED_SNAPSHOTS.labels(feed=feed.value, outcome="invalid").inc()
            return

        FEED_SNAPSHOTS.labels(feed=feed.value, outcome="accepted").inc()
        self._buffer.offer(feed, snapshot)
        self._scheduler.notify()

    def _on_prediction_push(self, payload: Any) -> None:
        parsed = parse_prediction_payload(payload, transformer=self._transformer)
        if parsed is None:
            PREDICTION_LOADS.labels(source="push", outcome="not_loaded").inc()
            return
        self._store.set(parsed, source="push")
        PREDICTION_LOADS.labels(source="push", outcome="loaded").inc()

    def _drain(self) -> None:
        if self._stopped:
            return
        for feed, snapshot in self._buffer.take().items():
            merged = self._mergers[feed].apply(snapshot)
            self._publish(feed, merged)

    def _publish(self, feed: FeedKind, merged: list[CanonicalMatch]) -> None:
        for listener in list(self._listeners):
            try:
                listener(feed, merged)
            except Exception as exc:
                logger.error("feed_listener_failed", feed=feed.value, error=str(exc), exc_info=True)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        FEED_CONNECTED.set(1 if state == ConnectionState.CONNECTED else 0)
        logger.info("feed_state_changed", previous=previous.value, state=state.value)
