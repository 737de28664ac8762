"""
Tests for the debounce + periodic refresh state machine, driven by a
manual clock.
"""
from __future__ import annotations

from scheduler.engine.refresh import RefreshScheduler, RefreshState


class DrainCounter:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> None:
        self.calls += 1


def _scheduler(fake_timers, drain, debounce_s: float = 0.08, interval_s: float = 0.5) -> RefreshScheduler:
    return RefreshScheduler(drain, fake_timers, debounce_s=debounce_s, interval_s=interval_s)


# ── Debounce ────────────────────────────────────────────────────────────

def test_burst_coalesces_into_one_drain(fake_timers) -> None:
    drain = DrainCounter()
    scheduler = _scheduler(fake_timers, drain)

    scheduler.notify()
    fake_timers.advance(0.04)
    scheduler.notify()
    fake_timers.advance(0.07)
    assert drain.calls == 0

    fake_timers.advance(0.02)
    assert drain.calls == 1
    assert scheduler.state == RefreshState.IDLE

    fake_timers.advance(1.0)
    assert drain.calls == 1


def test_notify_moves_to_pending(fake_timers) -> None:
    scheduler = _scheduler(fake_timers, DrainCounter())
    assert scheduler.state == RefreshState.IDLE
    scheduler.notify()
    assert scheduler.state == RefreshState.PENDING


# ── Periodic tick ───────────────────────────────────────────────────────

def test_tick_bounds_staleness_under_steady_notifies(fake_timers) -> None:
    drain = DrainCounter()
    scheduler = _scheduler(fake_timers, drain, debounce_s=0.4, interval_s=0.5)
    scheduler.start()

    scheduler.notify()
    fake_timers.advance(0.3)
    scheduler.notify()
    fake_timers.advance(0.3)
    # Tick at 0.5 found a snapshot pending since 0.0
    assert drain.calls == 1

    # The debounce re-armed at 0.3 was cancelled by the tick
    fake_timers.advance(2.0)
    assert drain.calls == 1


def test_tick_leaves_fresh_pending_to_debounce(fake_timers) -> None:
    drain = DrainCounter()
    scheduler = _scheduler(fake_timers, drain)
    scheduler.start()

    fake_timers.advance(0.47)
    scheduler.notify()
    fake_timers.advance(0.04)
    assert drain.calls == 0
    assert scheduler.state == RefreshState.PENDING

    scheduler.notify()
    fake_timers.advance(0.2)
    assert drain.calls == 1
    assert scheduler.state == RefreshState.IDLE


def test_tick_without_pending_does_nothing(fake_timers) -> None:
    drain = DrainCounter()
    scheduler = _scheduler(fake_timers, drain)
    scheduler.start()

    fake_timers.advance(5.0)
    assert drain.calls == 0
    assert fake_timers.pending == 1


def test_start_is_idempotent(fake_timers) -> None:
    scheduler = _scheduler(fake_timers, DrainCounter())
    scheduler.start()
    scheduler.start()
    assert fake_timers.pending == 1


# ── Re-entrancy / failures ──────────────────────────────────────────────

def test_notify_during_drain_schedules_another(fake_timers) -> None:
    calls: list[int] = []
    scheduler: RefreshScheduler

    def drain() -> None:
        calls.append(1)
        if len(calls) == 1:
            scheduler.notify()

    scheduler = _scheduler(fake_timers, drain)
    scheduler.notify()
    fake_timers.advance(0.08)

    assert len(calls) == 1
    assert scheduler.state == RefreshState.PENDING

    fake_timers.advance(0.08)
    assert len(calls) == 2
    assert scheduler.state == RefreshState.IDLE


def test_drain_failure_is_contained(fake_timers) -> None:
    calls: list[int] = []

    def drain() -> None:
        calls.append(1)
        raise RuntimeError("boom")

    scheduler = _scheduler(fake_timers, drain)
    scheduler.notify()
    fake_timers.advance(0.1)
    assert scheduler.state == RefreshState.IDLE

    scheduler.notify()
    fake_timers.advance(0.1)
    assert len(calls) == 2


# ── close ───────────────────────────────────────────────────────────────

def test_close_cancels_everything(fake_timers) -> None:
    drain = DrainCounter()
    scheduler = _scheduler(fake_timers, drain)
    scheduler.start()
    scheduler.notify()

    scheduler.close()
    assert fake_timers.pending == 0
    assert scheduler.state == RefreshState.CLOSED

    scheduler.notify()
    scheduler.start()
    fake_timers.advance(5.0)
    assert drain.calls == 0
    assert fake_timers.pending == 0
