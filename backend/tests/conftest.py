"""Shared fixtures: a manual clock for timer-driven code and raw record builders."""
from __future__ import annotations

import heapq
import itertools
from typing import Any, Callable

import pytest

from ingest.feed.transport import EventHandler, FeedConnectionError, StateHandler
from shared.config import Settings


class FakeHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimers:
    """Timers implementation driven by advance() instead of wall-clock time."""

    def __init__(self) -> None:
        self.now = 0.0
        self._queue: list[tuple[float, int, FakeHandle, Callable[[], None]]] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle()
        heapq.heappush(self._queue, (self.now + delay, next(self._seq), handle, callback))
        return handle

    def time(self) -> float:
        return self.now

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle, callback = heapq.heappop(self._queue)
            self.now = when
            if not handle.cancelled:
                callback()
        self.now = target


class FakeTransport:
    """In-memory hub transport exposing the session callbacks."""

    def __init__(self, on_event: EventHandler, on_state: StateHandler, *, fail: bool = False) -> None:
        self.on_event = on_event
        self.on_state = on_state
        self.fail = fail
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        if self.fail:
            raise FeedConnectionError("negotiate failed: connection refused")
        self.started = True

    async def stop(self) -> None:
        self.stopped = True


class TransportFactory:
    """Hands out FakeTransports; the first `failures` of them fail to start."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.created: list[FakeTransport] = []

    def __call__(self, on_event: EventHandler, on_state: StateHandler) -> FakeTransport:
        transport = FakeTransport(on_event, on_state, fail=len(self.created) < self.failures)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


@pytest.fixture
def fake_timers() -> FakeTimers:
    return FakeTimers()


@pytest.fixture
def factory() -> TransportFactory:
    return TransportFactory()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        feed_hub_url="https://hub.test/livematchhub",
        feed_reconnect_delays_s=[0.0, 2.0, 5.0, 10.0, 20.0],
        feed_restart_delay_s=5.0,
        feed_handshake_timeout_s=1.0,
        feed_debounce_s=0.08,
        feed_drain_interval_s=0.5,
        prediction_api_url="https://predictions.test/api/prediction-data",
        prediction_page_size=2,
        prediction_max_pages=5,
        prediction_load_retries=2,
        prediction_retry_delay_s=0.0,
        matcher_max_edit_distance=2,
        metrics_enabled=False,
    )


def _live_record(
    match_id: Any = "m1",
    home: str = "Arsenal",
    away: str = "Chelsea",
    played_time: str = "10:00",
    status: str = "1H",
    **extra: Any,
) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": match_id,
        "seasonId": "2024",
        "teams": {
            "home": {"id": f"{match_id}-h", "name": home},
            "away": {"id": f"{match_id}-a", "name": away},
        },
        "tournamentName": "Premier League",
        "score": "0:0",
        "period": "1",
        "matchStatus": status,
        "playedTime": played_time,
        "markets": [
            {
                "id": "mk1",
                "description": "1X2",
                "specifier": "",
                "favourite": "home",
                "profitPercentage": "2.5",
                "margin": "4.1",
                "outcomes": [
                    {"id": "o1", "description": "1", "odds": "1.85", "stakePercentage": "55"},
                    {"id": "o2", "description": "X", "odds": "3.40", "stakePercentage": "25"},
                    {"id": "o3", "description": "2", "odds": "4.20", "stakePercentage": "20"},
                ],
            }
        ],
        "lastUpdated": "2024-05-01T12:00:00Z",
    }
    record.update(extra)
    return record


def _prediction_record(
    record_id: Any = "p1",
    home: str = "Arsenal",
    away: str = "Chelsea",
    **extra: Any,
) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": record_id,
        "homeTeam": {"name": home, "position": 2, "form": "WWDLW", "averageGoalsScored": 1.9},
        "awayTeam": {"name": away, "position": 5, "form": "LDWWD", "averageGoalsScored": 1.4},
        "date": "2024-05-01",
        "time": "9:30",
        "venue": "Emirates Stadium",
        "positionGap": 3,
        "favorite": "home",
        "confidenceScore": 72,
        "averageGoals": 2.8,
        "expectedGoals": 2.6,
        "defensiveStrength": 1.1,
        "reasonsForPrediction": ["Home form"],
    }
    record.update(extra)
    return record


@pytest.fixture
def make_live_record() -> Callable[..., dict[str, Any]]:
    return _live_record


@pytest.fixture
def make_prediction_record() -> Callable[..., dict[str, Any]]:
    return _prediction_record
