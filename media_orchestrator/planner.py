"""
Task Group Planner: packs an ordered shot list into duration-bounded groups.

Greedy single pass, order preserving:
  close the current group when adding the next shot would push it past the
  bound and the group is not empty; then always append the shot.

A shot longer than the bound therefore ends up alone in a group that exceeds
the bound. The planner never splits or reorders shots.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Iterable, Optional, Sequence

from .errors import ValidationError
from .models import GenerationConfig, Shot, TaskGroup

logger = logging.getLogger("media_orchestrator.planner")


def new_batch_id() -> str:
    return f"batch-{uuid.uuid4().hex[:8]}"


def _duration(shot: Shot) -> float:
    # missing or negative durations count as zero
    return max(float(shot.duration or 0), 0.0)


def plan_task_groups(
    shots: Sequence[Shot],
    max_duration: float,
    config: Optional[GenerationConfig] = None,
    batch_id: Optional[str] = None,
) -> list[TaskGroup]:
    if not shots:
        raise ValidationError("no shots selected")
    if max_duration <= 0:
        raise ValidationError(f"max group duration must be positive, got {max_duration}")

    batch_id = batch_id or new_batch_id()
    config = config or GenerationConfig()
    groups: list[TaskGroup] = []
    current: list[Shot] = []
    running = 0.0

    def close() -> None:
        number = len(groups) + 1
        groups.append(TaskGroup(
            id=f"{batch_id}-tg{number:02d}",
            batch_id=batch_id,
            task_number=number,
            shot_ids=[s.id for s in current],
            shots=list(current),
            total_duration=running,
            config=replace(config),
        ))

    for shot in shots:
        d = _duration(shot)
        if current and running + d > max_duration:
            close()
            current, running = [], 0.0
        current.append(shot)
        running += d
    if current:
        close()

    logger.info(
        f"Planned {len(groups)} task group(s) from {len(shots)} shot(s) "
        f"(max {max_duration:g}s per group, batch={batch_id})"
    )
    return groups


class TaskGroupPlanner:
    """Holds the per-batch duration bound and config shared by every planned group."""

    def __init__(self, max_duration: float = 15.0,
                 config: Optional[GenerationConfig] = None) -> None:
        self.max_duration = max_duration
        self.config = config or GenerationConfig()

    def plan(self, shots: Iterable[Shot], batch_id: Optional[str] = None) -> list[TaskGroup]:
        return plan_task_groups(list(shots), self.max_duration, self.config, batch_id)
