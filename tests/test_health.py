"""Tests for the model health circuit breaker."""
from __future__ import annotations

import asyncio

import pytest

from media_orchestrator.health import ModelHealthTracker

from conftest import FakeClock


@pytest.mark.asyncio
async def test_unknown_model_is_healthy():
    tracker = ModelHealthTracker()
    h = tracker.get_health("never-used")
    assert h.healthy is True
    assert h.success_rate == 100.0
    assert h.consecutive_failures == 0


@pytest.mark.asyncio
async def test_trips_after_threshold_consecutive_failures():
    tracker = ModelHealthTracker(threshold=3)
    for _ in range(2):
        await tracker.record_outcome("m", False)
    assert tracker.is_healthy("m")
    await tracker.record_outcome("m", False)
    assert not tracker.is_healthy("m")
    assert tracker.get_health("m").consecutive_failures == 3


@pytest.mark.asyncio
async def test_success_resets_streak_but_keeps_lifetime_counters():
    tracker = ModelHealthTracker(threshold=3)
    for _ in range(3):
        await tracker.record_outcome("m", False)
    rec = await tracker.record_outcome("m", True)
    assert tracker.is_healthy("m")
    assert rec.attempts == 4
    assert rec.failures == 3
    assert rec.consecutive_failures == 0
    assert tracker.get_health("m").success_rate == pytest.approx(25.0)


@pytest.mark.asyncio
async def test_failure_timestamp_uses_clock():
    clock = FakeClock(now=500.0)
    tracker = ModelHealthTracker(clock=clock)
    await tracker.record_outcome("m", False)
    clock.advance(10)
    rec = await tracker.record_outcome("m", False)
    assert rec.last_failure_at == 510.0


@pytest.mark.asyncio
async def test_returned_record_is_a_copy():
    tracker = ModelHealthTracker()
    rec = await tracker.record_outcome("m", False)
    rec.consecutive_failures = 99
    assert tracker.get_health("m").consecutive_failures == 1


@pytest.mark.asyncio
async def test_concurrent_outcomes_are_all_counted():
    tracker = ModelHealthTracker(threshold=1000)
    outcomes = [i % 3 != 0 for i in range(90)]
    await asyncio.gather(*(tracker.record_outcome("m", ok) for ok in outcomes))
    rec = tracker.records()["m"]
    assert rec.attempts == 90
    assert rec.failures == 30


@pytest.mark.asyncio
async def test_models_are_tracked_independently():
    tracker = ModelHealthTracker(threshold=1)
    await tracker.record_outcome("a", False)
    await tracker.record_outcome("b", True)
    assert not tracker.is_healthy("a")
    assert tracker.is_healthy("b")
    assert list(tracker.snapshot()) == ["a", "b"]


@pytest.mark.asyncio
async def test_persisted_and_reloaded(store):
    tracker = ModelHealthTracker(threshold=2, store=store)
    await tracker.record_outcome("m", False)
    await tracker.record_outcome("m", False)

    reloaded = ModelHealthTracker(threshold=2, store=store)
    await reloaded.load()
    assert not reloaded.is_healthy("m")
    assert reloaded.records()["m"].attempts == 2


@pytest.mark.asyncio
async def test_reset_one_and_all(store):
    tracker = ModelHealthTracker(threshold=1, store=store)
    await tracker.record_outcome("a", False)
    await tracker.record_outcome("b", False)

    await tracker.reset("a")
    assert tracker.is_healthy("a")
    assert not tracker.is_healthy("b")
    assert set(await store.load_health()) == {"b"}

    await tracker.reset()
    assert tracker.records() == {}
    assert await store.load_health() == {}


class YieldingStore:
    """Health persistence that suspends on every write, like a real database."""

    def __init__(self, gate: asyncio.Event | None = None) -> None:
        self.gate = gate
        self.saved: dict = {}
        self.writing = asyncio.Event()

    async def save_health(self, rec) -> None:
        self.writing.set()
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        self.saved[rec.model_id] = rec

    async def delete_health(self, model_id) -> None:
        if model_id is None:
            self.saved.clear()
        else:
            self.saved.pop(model_id, None)


@pytest.mark.asyncio
@pytest.mark.parametrize("trailing,healthy", [(0, True), (2, True), (3, False), (5, False)])
async def test_concurrent_streak_counts_trailing_failures(trailing, healthy):
    tracker = ModelHealthTracker(store=YieldingStore())
    outcomes = [i % 3 != 0 for i in range(30)] + [False] * trailing
    assert outcomes[29] is True
    await asyncio.gather(*(tracker.record_outcome("m", ok) for ok in outcomes))

    rec = tracker.records()["m"]
    assert rec.attempts == 30 + trailing
    assert rec.failures == 10 + trailing
    assert rec.consecutive_failures == trailing
    assert tracker.is_healthy("m") is healthy


@pytest.mark.asyncio
async def test_reset_waits_for_an_outcome_being_recorded():
    gate = asyncio.Event()
    store = YieldingStore(gate)
    tracker = ModelHealthTracker(store=store)

    recording = asyncio.create_task(tracker.record_outcome("m", False))
    await store.writing.wait()
    resetting = asyncio.create_task(tracker.reset("m"))
    await asyncio.sleep(0)
    gate.set()
    await asyncio.gather(recording, resetting)

    assert tracker.records() == {}
    assert store.saved == {}
