"""Tests for StateManager (aiosqlite persistence)."""
from __future__ import annotations

import pytest

from media_orchestrator.models import (
    GenerationConfig, GroupStatus, HealthRecord, ModelCategory, Quality, Shot,
    Task, TaskState,
)
from media_orchestrator.state import StateManager

from conftest import make_groups


@pytest.mark.asyncio
async def test_group_round_trip_keeps_every_field(store):
    group = make_groups((3, 4), batch_id="ep1")[0]
    group.shots = [Shot("s1", 3, shot_number=1, scene="Harbour", characters=("Mia", "Jon"),
                        camera_movement="dolly in", visual_description="fog", dialogue="hi")]
    group.shot_ids = ["s1"]
    group.config = GenerationConfig(aspect_ratio="9:16", duration="25", quality=Quality.PRO)
    group.prompt = "p"
    group.reference_media = "https://img.test/r.png"
    group.status = GroupStatus.PROCESSING
    group.progress = 42
    group.model_id = "sora-2-kie"
    group.provider = "kie"
    group.tasks.append(Task("kie-1", "kie", "sora-2-kie", submitted_at=123.5,
                            state=TaskState.PROCESSING, progress=42))
    await store.save_group(group)

    loaded = await store.load_group(group.id)
    assert loaded == group


@pytest.mark.asyncio
async def test_missing_group_is_none(store):
    assert await store.load_group("nope") is None


@pytest.mark.asyncio
async def test_load_groups_by_batch_in_task_order(store):
    await store.save_groups(list(reversed(make_groups((8, 8, 8), batch_id="a"))))
    await store.save_groups(make_groups((8,), batch_id="b"))

    assert [g.id for g in await store.load_groups("a")] == ["a-tg01", "a-tg02", "a-tg03"]
    assert len(await store.load_groups()) == 4
    batches = {b["batch_id"]: b["groups"] for b in await store.list_batches()}
    assert batches == {"a": 3, "b": 1}


@pytest.mark.asyncio
async def test_load_in_flight_only_returns_active_groups(store):
    groups = make_groups((8, 8, 8, 8, 8), batch_id="a")
    for group, status in zip(groups, (GroupStatus.UPLOADING, GroupStatus.QUEUED,
                                      GroupStatus.PROCESSING, GroupStatus.COMPLETED,
                                      GroupStatus.PROMPT_READY)):
        group.status = status
    other = make_groups((8,), batch_id="z")[0]
    other.status = GroupStatus.QUEUED
    await store.save_groups(groups + [other])

    assert [g.id for g in await store.load_in_flight("a")] == ["a-tg01", "a-tg02", "a-tg03"]
    assert len(await store.load_in_flight()) == 4


@pytest.mark.asyncio
async def test_delete_batch(store):
    await store.save_groups(make_groups((8, 8), batch_id="a"))
    await store.delete_batch("a")
    assert await store.load_groups("a") == []


@pytest.mark.asyncio
async def test_health_records(store):
    await store.save_health(HealthRecord("m1", attempts=5, failures=2,
                                         consecutive_failures=1, last_failure_at=9.0))
    await store.save_health(HealthRecord("m2", attempts=1))
    records = await store.load_health()
    assert records["m1"] == HealthRecord("m1", 5, 2, 1, 9.0)

    await store.delete_health("m1")
    assert set(await store.load_health()) == {"m2"}
    await store.delete_health()
    assert await store.load_health() == {}


@pytest.mark.asyncio
async def test_priorities(store):
    await store.save_priority(ModelCategory.VIDEO, ["b", "a"])
    await store.save_priority(ModelCategory.VIDEO, ["c"])
    assert await store.load_priorities() == {ModelCategory.VIDEO: ["c"]}
    await store.delete_priority(ModelCategory.VIDEO)
    assert await store.load_priorities() == {}


@pytest.mark.asyncio
async def test_resume_ledger_claims_once_per_session(store):
    assert await store.mark_resumed("s1", "job-1", "g1") is True
    assert await store.mark_resumed("s1", "job-1", "g1") is False
    assert await store.mark_resumed("s2", "job-1", "g1") is True
    assert await store.mark_resumed("s1", "job-2", "g2") is True


@pytest.mark.asyncio
async def test_state_survives_reopen(db_path):
    first = StateManager(db_path)
    await first.save_groups(make_groups((8, 8), batch_id="a"))
    await first.close()

    second = StateManager(db_path)
    try:
        assert len(await second.load_groups("a")) == 2
    finally:
        await second.close()


@pytest.mark.asyncio
async def test_creates_parent_directory(tmp_path):
    sm = StateManager(tmp_path / "nested" / "dir" / "state.db")
    try:
        await sm.save_groups(make_groups())
    finally:
        await sm.close()
    assert (tmp_path / "nested" / "dir" / "state.db").exists()
