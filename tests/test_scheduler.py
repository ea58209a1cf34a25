"""
Unit tests for ics_aggregator.domain.scheduler.RefreshScheduler

Covers:
- trigger state transitions and success/failure bookkeeping
- coalescing of triggers while a refresh is in flight
- retry delay backoff after failures
- start/stop loop lifecycle, including stop during an in-flight refresh
"""

import asyncio
import logging
import random
from types import SimpleNamespace
from typing import Optional

import pytest

from ics_aggregator.domain.event_store import EventStore, RefreshOutcome
from ics_aggregator.domain.scheduler import RefreshScheduler, SchedulerState
from tests.fixtures.mock_ics_data import FakeFetcher

pytestmark = [pytest.mark.unit, pytest.mark.fast]


class FakeStore:
    """Store double whose refresh can be held open with an event."""

    def __init__(self, published: bool = True, gate: Optional[asyncio.Event] = None, error: Optional[Exception] = None):
        self.settings = SimpleNamespace(refresh_interval_seconds=3600, retry_backoff_factor=2.0)
        self.published = published
        self.gate = gate
        self.error = error
        self.calls = 0
        self.completed = 0

    async def refresh(self) -> RefreshOutcome:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        self.completed += 1
        return RefreshOutcome(published=self.published, source_count=1, definition_count=3)


async def _wait_for(predicate, timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def seeded_random(monkeypatch):
    """Make jitter deterministic: random.uniform returns the midpoint."""
    monkeypatch.setattr(random, "uniform", lambda a, b: (a + b) / 2)


@pytest.mark.asyncio
async def test_trigger_when_refresh_succeeds_then_idle_and_success_recorded(caplog) -> None:
    store = FakeStore()
    scheduler = RefreshScheduler(store)

    with caplog.at_level(logging.INFO, logger="ics_aggregator.domain.scheduler"):
        ran = await scheduler.trigger()

    assert ran
    assert scheduler.state is SchedulerState.IDLE
    assert scheduler.consecutive_failures == 0
    assert scheduler.last_success_at is not None
    assert scheduler.last_outcome.definition_count == 3
    assert any("Refresh succeeded" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_trigger_when_all_sources_fail_then_failure_counted_and_logged(caplog) -> None:
    scheduler = RefreshScheduler(FakeStore(published=False))

    with caplog.at_level(logging.ERROR, logger="ics_aggregator.domain.scheduler"):
        await scheduler.trigger()
        await scheduler.trigger()

    assert scheduler.consecutive_failures == 2
    assert scheduler.last_success_at is None
    assert any(r.levelno == logging.ERROR for r in caplog.records)


@pytest.mark.asyncio
async def test_trigger_when_first_refresh_fails_for_every_source_then_failure_and_backoff(
    simple_settings, make_sources, seeded_random, caplog
) -> None:
    simple_settings.sources = make_sources("work")
    store = EventStore(simple_settings, fetcher=FakeFetcher({"work": "ERROR: connection refused"}))
    scheduler = RefreshScheduler(store)

    with caplog.at_level(logging.INFO, logger="ics_aggregator.domain.scheduler"):
        await scheduler.trigger()

    assert store.snapshot.generation == 1
    assert scheduler.consecutive_failures == 1
    assert scheduler.last_success_at is None
    assert scheduler.next_delay() == pytest.approx(2.4)
    assert not any("Refresh succeeded" in r.getMessage() for r in caplog.records)
    assert any(r.levelno == logging.ERROR for r in caplog.records)


@pytest.mark.asyncio
async def test_trigger_when_refresh_raises_then_state_reset_and_not_propagated() -> None:
    scheduler = RefreshScheduler(FakeStore(error=RuntimeError("boom")))

    assert await scheduler.trigger()
    assert scheduler.state is SchedulerState.IDLE
    assert scheduler.consecutive_failures == 1


@pytest.mark.asyncio
async def test_trigger_when_already_refreshing_then_coalesced() -> None:
    gate = asyncio.Event()
    store = FakeStore(gate=gate)
    scheduler = RefreshScheduler(store)

    first = asyncio.create_task(scheduler.trigger())
    await _wait_for(lambda: scheduler.state is SchedulerState.REFRESHING)

    assert await scheduler.trigger() is False
    gate.set()

    assert await first is True
    assert store.calls == 1
    assert scheduler.state is SchedulerState.IDLE


@pytest.mark.asyncio
async def test_trigger_when_success_after_failures_then_counter_reset() -> None:
    store = FakeStore(published=False)
    scheduler = RefreshScheduler(store)
    await scheduler.trigger()

    store.published = True
    await scheduler.trigger()

    assert scheduler.consecutive_failures == 0


def test_next_delay_when_healthy_then_full_interval() -> None:
    scheduler = RefreshScheduler(FakeStore(), interval_seconds=600)
    assert scheduler.next_delay() == 600


def test_next_delay_when_failing_then_backoff_grows_and_is_capped(seeded_random) -> None:
    scheduler = RefreshScheduler(FakeStore(), interval_seconds=60, retry_backoff_factor=2.0)

    scheduler.consecutive_failures = 1
    first = scheduler.next_delay()
    scheduler.consecutive_failures = 3
    third = scheduler.next_delay()
    scheduler.consecutive_failures = 20
    capped = scheduler.next_delay()

    assert first == pytest.approx(2.0 * 1.2)
    assert third == pytest.approx(8.0 * 1.2)
    assert capped == 60


def test_scheduler_when_no_overrides_then_reads_store_settings() -> None:
    scheduler = RefreshScheduler(FakeStore())

    assert scheduler.interval_seconds == 3600
    assert scheduler.retry_backoff_factor == 2.0
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_start_then_initial_refresh_runs_and_stop_ends_loop() -> None:
    store = FakeStore()
    scheduler = RefreshScheduler(store, interval_seconds=3600)

    scheduler.start()
    await _wait_for(lambda: store.completed == 1)
    assert scheduler.is_running

    await asyncio.wait_for(scheduler.stop(), timeout=1.0)

    assert not scheduler.is_running
    assert store.calls == 1


@pytest.mark.asyncio
async def test_start_when_short_interval_then_refreshes_repeatedly() -> None:
    store = FakeStore()
    scheduler = RefreshScheduler(store, interval_seconds=0.01)

    scheduler.start()
    await _wait_for(lambda: store.completed >= 3)
    await scheduler.stop()

    assert store.completed >= 3


@pytest.mark.asyncio
async def test_stop_when_refresh_in_flight_then_refresh_completes() -> None:
    gate = asyncio.Event()
    store = FakeStore(gate=gate)
    scheduler = RefreshScheduler(store, interval_seconds=3600)

    scheduler.start()
    await _wait_for(lambda: scheduler.state is SchedulerState.REFRESHING)

    stopping = asyncio.create_task(scheduler.stop())
    await asyncio.sleep(0.01)
    assert not stopping.done()

    gate.set()
    await asyncio.wait_for(stopping, timeout=1.0)

    assert store.completed == 1
    assert scheduler.state is SchedulerState.IDLE
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_start_when_called_twice_then_same_task() -> None:
    scheduler = RefreshScheduler(FakeStore(), interval_seconds=3600)

    first = scheduler.start()
    second = scheduler.start()
    await scheduler.stop()

    assert first is second
