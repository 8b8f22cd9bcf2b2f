"""Shared fixtures: a scripted provider, a fake clock and small task groups."""
from __future__ import annotations

import asyncio
from typing import Callable, Optional

import pytest
import pytest_asyncio

from media_orchestrator.errors import ProviderError
from media_orchestrator.health import ModelHealthTracker
from media_orchestrator.models import (
    GenerationConfig, ModelCategory, ModelInfo, Shot, SubmitResult, TaskGroup,
    TaskState, TaskStatus,
)
from media_orchestrator.planner import plan_task_groups
from media_orchestrator.priority import ModelPriorityResolver
from media_orchestrator.providers.base import ProviderAdapter
from media_orchestrator.state import StateManager

SCRIPTED_MODEL = ModelInfo("scripted-video", ModelCategory.VIDEO, "scripted", "scripted-v1", 1)

DONE = TaskStatus(TaskState.COMPLETED, 100, result_url="https://cdn.test/out.mp4")


class ScriptedProvider(ProviderAdapter):
    """Replays `statuses` for every probe; the last one repeats forever."""
    name = "scripted"
    display_name = "Scripted"

    def __init__(self, statuses=(DONE,), fail_prompts=(),
                 on_check: Optional[Callable[[], None]] = None, **kwargs):
        super().__init__(**kwargs)
        self.statuses = list(statuses)
        self.fail_prompts = tuple(fail_prompts)
        self.on_check = on_check
        self.submitted: list[str] = []
        self.references: list[Optional[str]] = []
        self.checks: list[str] = []

    def transform_config(self, config: GenerationConfig) -> dict:
        return {}

    async def _submit(self, prompt, config, model, reference_media):
        if any(p in prompt for p in self.fail_prompts):
            raise ProviderError(self.name, 500, "rejected")
        self.submitted.append(prompt)
        self.references.append(reference_media)
        return SubmitResult(provider_task_id=f"job-{len(self.submitted)}")

    async def _check(self, provider_task_id):
        self.checks.append(provider_task_id)
        if self.on_check is not None:
            self.on_check()
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def make_groups(durations=(5,), max_duration: float = 10, batch_id: str = "b1") -> list[TaskGroup]:
    shots = [Shot(id=f"s{i}", duration=d, visual_description=f"scene {i}")
             for i, d in enumerate(durations, start=1)]
    return plan_task_groups(shots, max_duration, batch_id=batch_id)


@pytest.fixture
def health():
    return ModelHealthTracker()


@pytest.fixture
def resolver(health):
    return ModelPriorityResolver(health, models=[SCRIPTED_MODEL])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "state.db"


@pytest_asyncio.fixture
async def store(db_path):
    sm = StateManager(db_path)
    yield sm
    await sm.close()
