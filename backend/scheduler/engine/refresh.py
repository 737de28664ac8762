"""
Debounced + periodic refresh scheduling for merged snapshots.

Two scheduled sources drive a single drain callback:
  - a debounce timer, re-armed on every notify(), absorbs bursts of ticks
  - a steady periodic tick drains a snapshot that has already waited a full
    debounce window, bounding staleness while notifies keep re-arming it

States:

    IDLE --notify--> PENDING --debounce/tick--> DRAINING --> IDLE
      any --close--> CLOSED (terminal, all timers cancelled)

At most one drain runs per cycle. Timers are injected so the whole machine
runs without wall-clock delays in tests.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, Optional, Protocol

from shared.utils.logging import get_logger

logger = get_logger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timers(Protocol):
    """Anything that can run a callback after a delay, e.g. an event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def time(self) -> float: ...


class LoopTimers:
    """Timers backed by the running asyncio loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)

    def time(self) -> float:
        return (self._loop or asyncio.get_running_loop()).time()


class RefreshState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    DRAINING = "draining"
    CLOSED = "closed"


class RefreshScheduler:
    """Coalesces notify() calls into at most one drain per cycle."""

    def __init__(
        self,
        drain: Callable[[], None],
        timers: Timers,
        *,
        debounce_s: float,
        interval_s: float,
    ) -> None:
        self._drain = drain
        self._timers = timers
        self._debounce_s = debounce_s
        self._interval_s = interval_s
        self._state = RefreshState.IDLE
        self._debounce_handle: Optional[TimerHandle] = None
        self._tick_handle: Optional[TimerHandle] = None
        self._renotified = False
        self._pending_since = 0.0

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state == RefreshState.CLOSED

    def start(self) -> None:
        """Arm the periodic tick. Idempotent."""
        if self.closed or self._tick_handle is not None:
            return
        self._tick_handle = self._timers.call_later(self._interval_s, self._on_tick)

    def notify(self) -> None:
        """Something new is waiting; (re)arm the debounce window."""
        if self.closed:
            return
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = self._timers.call_later(self._debounce_s, self._on_debounce)
        if self._state == RefreshState.IDLE or (self._state == RefreshState.DRAINING and not self._renotified):
            self._pending_since = self._timers.time()
        if self._state == RefreshState.DRAINING:
            self._renotified = True
        else:
            self._state = RefreshState.PENDING

    def close(self) -> None:
        self._state = RefreshState.CLOSED
        for handle in (self._debounce_handle, self._tick_handle):
            if handle is not None:
                handle.cancel()
        self._debounce_handle = None
        self._tick_handle = None

    # ── Timer callbacks ─────────────────────────────────────────────────

    def _on_debounce(self) -> None:
        self._debounce_handle = None
        self._run_drain()

    def _on_tick(self) -> None:
        self._tick_handle = None
        if self.closed:
            return
        self._tick_handle = self._timers.call_later(self._interval_s, self._on_tick)
        # A fresh snapshot is left to its debounce window
        waited = self._timers.time() - self._pending_since
        if self._state == RefreshState.PENDING and waited >= self._debounce_s:
            if self._debounce_handle is not None:
                self._debounce_handle.cancel()
                self._debounce_handle = None
            self._run_drain()

    def _run_drain(self) -> None:
        if self._state != RefreshState.PENDING:
            return
        self._state = RefreshState.DRAINING
        self._renotified = False
        try:
            self._drain()
        except Exception as exc:
            logger.error("refresh_drain_failed", error=str(exc), exc_info=True)
        finally:
            if self._state == RefreshState.DRAINING:
                self._state = RefreshState.PENDING if self._renotified else RefreshState.IDLE
