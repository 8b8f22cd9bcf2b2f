"""
Mock Video Provider
===================
In-process provider for dry runs and tests. No network calls.

Features:
- Step-wise progress: each probe advances a job by one step until done
- Submit failures and terminal generation failures on demand
- Synchronous mode: the result is known at submit time
- Jobs that never finish, for timeout handling
- Seeded jobs, so a restarted process can probe ids it never submitted
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Optional

from ..errors import ProviderError
from ..models import (
    GenerationConfig, ModelInfo, ProviderCapabilities, SubmitResult,
    TaskState, TaskStatus,
)
from .base import ProviderAdapter

logger = logging.getLogger("media_orchestrator.providers.mock")


class MockProvider(ProviderAdapter):
    name = "mock"
    display_name = "Mock"
    capabilities = ProviderCapabilities(
        image_reference=True,
        durations=("10", "15", "25"),
        aspect_ratios=("16:9", "9:16"),
    )

    def __init__(
        self,
        simulate_delay: float = 0.0,
        processing_steps: int = 3,
        fail_submit: bool = False,
        fail_generation: bool = False,
        synchronous: bool = False,
        never_finishes: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.simulate_delay = simulate_delay
        self.processing_steps = processing_steps
        self.fail_submit = fail_submit
        self.fail_generation = fail_generation
        self.synchronous = synchronous
        self.never_finishes = never_finishes
        self.submissions: list[dict[str, Any]] = []
        self.probes: list[str] = []
        self._steps: dict[str, int] = {}
        self._scripts: dict[str, list[TaskStatus]] = {}

    def transform_config(self, config: GenerationConfig) -> dict[str, Any]:
        return {
            "aspect_ratio": config.aspect_ratio,
            "duration": config.duration,
            "quality": config.quality.value,
        }

    def seed(self, provider_task_id: str, *statuses: TaskStatus) -> None:
        """Register a job this instance did not submit; probes replay `statuses`."""
        self._steps[provider_task_id] = 0
        if statuses:
            self._scripts[provider_task_id] = list(statuses)

    async def _submit(self, prompt: str, config: GenerationConfig, model: ModelInfo,
                      reference_media: Optional[str]) -> SubmitResult:
        if self.simulate_delay:
            await asyncio.sleep(self.simulate_delay)
        self.submissions.append({
            "prompt": prompt,
            "model": model.wire_name(config),
            "reference_media": reference_media,
            **self.transform_config(config),
        })
        if self.fail_submit:
            raise ProviderError(self.name, 503, "simulated submit failure")

        task_id = f"mock_{uuid.uuid4().hex[:12]}"
        self._steps[task_id] = 0
        logger.info(f"Mock: created job {task_id}")

        if self.synchronous:
            status = self._final_status(task_id)
            self._remember_terminal(task_id, status)
            return SubmitResult(provider_task_id=task_id, state=status.state)
        return SubmitResult(provider_task_id=task_id, state=TaskState.QUEUED)

    async def _check(self, provider_task_id: str) -> TaskStatus:
        if self.simulate_delay:
            await asyncio.sleep(self.simulate_delay)
        self.probes.append(provider_task_id)
        if provider_task_id not in self._steps:
            raise ProviderError(self.name, 404, f"job {provider_task_id} not found")

        script = self._scripts.get(provider_task_id)
        if script:
            # last scripted status repeats once the script is exhausted
            return script.pop(0) if len(script) > 1 else script[0]

        step = self._steps[provider_task_id] + 1
        self._steps[provider_task_id] = step
        if self.never_finishes or step < self.processing_steps:
            progress = min(95, int(step * 100 / max(self.processing_steps, 1)))
            return TaskStatus(state=TaskState.PROCESSING, progress=progress)
        return self._final_status(provider_task_id)

    def _final_status(self, provider_task_id: str) -> TaskStatus:
        if self.fail_generation:
            return TaskStatus(state=TaskState.ERROR, error_message="simulated generation failure")
        return TaskStatus(
            state=TaskState.COMPLETED,
            progress=100,
            result_url=f"https://mock.invalid/videos/{provider_task_id}.mp4",
        )
