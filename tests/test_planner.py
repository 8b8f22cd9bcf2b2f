"""Tests for task-group planning and the plain story prompt."""
from __future__ import annotations

import random

import pytest

from media_orchestrator.errors import ValidationError
from media_orchestrator.models import GenerationConfig, Quality, Shot
from media_orchestrator.planner import TaskGroupPlanner, plan_task_groups
from media_orchestrator.prompts import build_story_prompt


def _shots(*durations):
    return [Shot(id=f"s{i}", duration=d) for i, d in enumerate(durations, start=1)]


# ─── Packing ──────────────────────────────────────────────────────────────────

def test_greedy_packing_closes_before_overflow():
    groups = plan_task_groups(_shots(4, 5, 6, 3), 10, batch_id="b")
    assert [g.shot_ids for g in groups] == [["s1", "s2"], ["s3", "s4"]]
    assert [g.total_duration for g in groups] == [9, 9]


def test_exact_fit_stays_in_group():
    groups = plan_task_groups(_shots(5, 5, 5), 10, batch_id="b")
    assert [g.shot_ids for g in groups] == [["s1", "s2"], ["s3"]]


def test_over_long_shot_gets_its_own_group():
    groups = plan_task_groups(_shots(3, 20, 2), 10, batch_id="b")
    assert [g.shot_ids for g in groups] == [["s1"], ["s2"], ["s3"]]
    assert groups[1].total_duration == 20


def test_over_long_first_shot():
    groups = plan_task_groups(_shots(25, 4, 4), 15, batch_id="b")
    assert [g.shot_ids for g in groups] == [["s1"], ["s2", "s3"]]


def test_missing_and_negative_durations_count_as_zero():
    shots = [Shot("a", 0), Shot("b", -4), Shot("c", 10), Shot("d", None)]
    groups = plan_task_groups(shots, 10, batch_id="b")
    assert [g.shot_ids for g in groups] == [["a", "b", "c", "d"]]
    assert groups[0].total_duration == 10


def test_numbering_ids_and_batch():
    groups = plan_task_groups(_shots(8, 8, 8), 10, batch_id="ep01")
    assert [g.task_number for g in groups] == [1, 2, 3]
    assert [g.id for g in groups] == ["ep01-tg01", "ep01-tg02", "ep01-tg03"]
    assert all(g.batch_id == "ep01" for g in groups)


def test_config_is_copied_into_each_group():
    cfg = GenerationConfig(aspect_ratio="9:16", duration="10", quality=Quality.HD)
    groups = plan_task_groups(_shots(8, 8), 10, config=cfg, batch_id="b")
    assert groups[0].config == cfg
    assert groups[0].config is not groups[1].config
    groups[0].config.duration = "15"
    assert groups[1].config.duration == "10"


def test_generated_batch_id_when_missing():
    groups = plan_task_groups(_shots(1), 10)
    assert groups[0].batch_id.startswith("batch-")
    assert groups[0].id == f"{groups[0].batch_id}-tg01"


def test_empty_shot_list_rejected():
    with pytest.raises(ValidationError, match="no shots selected"):
        plan_task_groups([], 10)


@pytest.mark.parametrize("bound", [0, -5])
def test_non_positive_bound_rejected(bound):
    with pytest.raises(ValidationError):
        plan_task_groups(_shots(1), bound)


def test_planner_class_uses_its_bound_and_config():
    planner = TaskGroupPlanner(max_duration=15, config=GenerationConfig(aspect_ratio="9:16"))
    groups = planner.plan(_shots(10, 10, 5), batch_id="b")
    assert [g.shot_ids for g in groups] == [["s1"], ["s2", "s3"]]
    assert groups[0].config.aspect_ratio == "9:16"


def test_packing_properties_on_random_shot_lists():
    rng = random.Random(7)
    for _ in range(200):
        durations = [rng.randint(0, 20) for _ in range(rng.randint(1, 25))]
        bound = rng.randint(1, 15)
        shots = _shots(*durations)
        groups = plan_task_groups(shots, bound, batch_id="b")

        # every shot exactly once, in order
        flat = [sid for g in groups for sid in g.shot_ids]
        assert flat == [s.id for s in shots]
        for g in groups:
            assert g.total_duration <= bound or len(g.shot_ids) == 1
        # greedy: the next group's first shot would not have fit
        for a, b in zip(groups, groups[1:]):
            assert a.total_duration + b.shots[0].duration > bound


# ─── Story prompt ─────────────────────────────────────────────────────────────

def test_story_prompt_format():
    shots = [
        Shot("a", 4, visual_description="A cat on a roof"),
        Shot("b", 2.5, visual_description="The cat jumps"),
    ]
    assert build_story_prompt(shots) == (
        "Shot 1:\nduration: 4.0sec\nScene: A cat on a roof\n\n"
        "Shot 2:\nduration: 2.5sec\nScene: The cat jumps"
    )


def test_story_prompt_defaults_missing_duration():
    assert "duration: 5.0sec" in build_story_prompt([Shot("a", 0)])
