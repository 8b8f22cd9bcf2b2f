"""
GenerationSupervisor: runs every task group of a batch concurrently
====================================================================
One TaskOrchestrator per group, all started together (no worker-pool cap);
a failing group never aborts its siblings.

Restart recovery (resume_in_flight):
  for each persisted group in uploading / queued / processing
    no provider task id      → back to prompt_ready (nothing was accepted remotely;
                               an uploading group's tasks are earlier attempts)
    already in the ledger    → skip (this session already took it over)
    otherwise                → record in the ledger, probe exactly once
        terminal             → apply directly
        non-terminal, stale  → fail with a timeout message
        non-terminal         → resume polling
        probe raised         → fail

The ledger is keyed by (session_id, provider_task_id), so a second
resume_in_flight() in the same session can never probe or fail a task twice.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import AsyncIterator, Callable, Iterable, Mapping, Optional, Sequence

from .errors import GenerationTimeoutError, ProviderError
from .hooks import HookRegistry
from .models import (
    ACTIVE_STATUSES, BatchStatus, GroupStatus, TaskGroup,
)
from .priority import ModelPriorityResolver
from .prompts import build_story_prompt
from .providers.base import ProviderAdapter
from .state import StateManager
from .streaming import (
    BatchCompleted, BatchStarted, GenerationEventBus, GroupResumed, StreamEvent,
)
from .task_runner import TaskOrchestrator

logger = logging.getLogger("media_orchestrator.supervisor")


class GenerationSupervisor:

    def __init__(
        self,
        groups: Iterable[TaskGroup],
        providers: Mapping[str, ProviderAdapter],
        resolver: ModelPriorityResolver,
        store: Optional[StateManager] = None,
        hooks: Optional[HookRegistry] = None,
        bus: Optional[GenerationEventBus] = None,
        poll_interval: float = 5.0,
        task_timeout: float = 600.0,
        stale_after: float = 600.0,
        session_id: Optional[str] = None,
        prompt_builder: Callable[[Sequence], str] = build_story_prompt,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.providers = providers
        self.resolver = resolver
        self.store = store
        self.hooks = hooks or HookRegistry()
        self.bus = bus
        self.poll_interval = poll_interval
        self.task_timeout = task_timeout
        self.stale_after = stale_after
        self.session_id = session_id or uuid.uuid4().hex
        self.prompt_builder = prompt_builder
        self._clock = clock
        self._orchestrators: dict[str, TaskOrchestrator] = {}
        # fallback ledger when no store is configured
        self._resumed: set[str] = set()
        for group in groups:
            self._adopt(group)

    # ─────────────────────────────────────────
    # Group registry
    # ─────────────────────────────────────────

    def _adopt(self, group: TaskGroup) -> TaskOrchestrator:
        existing = self._orchestrators.get(group.id)
        if existing is not None and existing.is_running:
            return existing
        orch = TaskOrchestrator(
            group, self.providers, self.resolver,
            store=self.store, hooks=self.hooks, bus=self.bus,
            poll_interval=self.poll_interval, task_timeout=self.task_timeout,
            clock=self._clock,
        )
        self._orchestrators[group.id] = orch
        return orch

    @property
    def groups(self) -> list[TaskGroup]:
        return sorted((o.group for o in self._orchestrators.values()),
                      key=lambda g: (g.batch_id, g.task_number))

    def orchestrator(self, group_id: str) -> TaskOrchestrator:
        try:
            return self._orchestrators[group_id]
        except KeyError:
            raise KeyError(f"Unknown task group: {group_id!r}") from None

    async def load(self, batch_id: Optional[str] = None) -> list[TaskGroup]:
        """Adopt persisted groups (one batch, or all)."""
        if self.store is None:
            return self.groups
        for group in await self.store.load_groups(batch_id):
            self._adopt(group)
        return self.groups

    async def save(self) -> None:
        if self.store is not None:
            await self.store.save_groups(self.groups)

    # ─────────────────────────────────────────
    # Generation
    # ─────────────────────────────────────────

    async def generate_all(self, group_ids: Optional[Iterable[str]] = None) -> list[TaskGroup]:
        """
        Start every eligible group at once and wait for all of them.
        Completed and already-active groups are skipped.
        """
        wanted = set(group_ids) if group_ids is not None else None
        targets: list[TaskOrchestrator] = []
        for orch in self._orchestrators.values():
            group = orch.group
            if wanted is not None and group.id not in wanted:
                continue
            if group.status == GroupStatus.COMPLETED or group.status in ACTIVE_STATUSES \
                    or orch.is_running:
                logger.debug(f"{group.id}: skipped ({group.status.value})")
                continue
            if not group.prompt:
                orch.set_prompt(self.prompt_builder(group.shots))
            targets.append(orch)

        logger.info(f"Generating {len(targets)} task group(s) "
                    f"({len(self._orchestrators) - len(targets)} skipped)")
        results = await asyncio.gather(*(o.generate() for o in targets),
                                       return_exceptions=True)
        for orch, result in zip(targets, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error(f"{orch.group.id}: not generated: {result}")
        return [o.group for o in targets]

    def cancel(self, group_id: str) -> None:
        self.orchestrator(group_id).cancel()

    # ─────────────────────────────────────────
    # Aggregation
    # ─────────────────────────────────────────

    def overall_status(self) -> BatchStatus:
        """An empty batch has nothing completed yet and reports processing."""
        groups = self.groups
        if groups and all(g.status == GroupStatus.COMPLETED for g in groups):
            return BatchStatus.COMPLETED
        if any(g.status == GroupStatus.FAILED for g in groups):
            return BatchStatus.FAILED
        return BatchStatus.PROCESSING

    def overall_progress(self) -> float:
        groups = self.groups
        if not groups:
            return 0.0
        return sum(g.progress for g in groups) / len(groups)

    # ─────────────────────────────────────────
    # Restart recovery
    # ─────────────────────────────────────────

    async def resume_in_flight(self, batch_id: Optional[str] = None) -> list[TaskGroup]:
        if self.store is not None:
            in_flight = await self.store.load_in_flight(batch_id)
        else:
            in_flight = [o.group for o in self._orchestrators.values()
                         if o.group.is_active and batch_id in (None, o.group.batch_id)]

        orchestrators: list[TaskOrchestrator] = []
        for group in in_flight:
            # a group this process already holds stays the authoritative copy
            orch = self._orchestrators.get(group.id) or self._adopt(group)
            if orch.group.is_active and not orch.is_running:
                orchestrators.append(orch)
        if orchestrators:
            logger.info(f"Resuming {len(orchestrators)} in-flight task group(s) "
                        f"(session {self.session_id[:8]})")
        results = await asyncio.gather(*(self._resume_one(o) for o in orchestrators),
                                       return_exceptions=True)
        for orch, result in zip(orchestrators, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error(f"{orch.group.id}: resume failed: {result}")
        return [o.group for o in orchestrators]

    async def _claim(self, provider_task_id: str, group_id: str) -> bool:
        if self.store is not None:
            return await self.store.mark_resumed(self.session_id, provider_task_id, group_id)
        if provider_task_id in self._resumed:
            return False
        self._resumed.add(provider_task_id)
        return True

    async def _resume_one(self, orch: TaskOrchestrator) -> None:
        group = orch.group
        task = group.in_flight_task
        if task is None:
            logger.info(f"{group.id}: no provider task id for this attempt; back to prompt_ready")
            await orch.return_to_prompt_ready()
            return

        if not await self._claim(task.provider_task_id, group.id):
            logger.debug(f"{group.id}: task {task.provider_task_id} already resumed")
            return

        adapter = self.providers.get(task.provider)
        if adapter is None:
            logger.warning(f"{group.id}: provider {task.provider!r} not configured; "
                           f"task {task.provider_task_id} left as is")
            return

        try:
            status = await adapter.check_status(task.provider_task_id)
        except ProviderError as exc:
            await orch.force_fail(str(exc))
            return

        if self.bus is not None:
            self.bus.publish_nowait(GroupResumed(group.id, task.provider_task_id))
        if status.state.is_terminal:
            await orch.apply_status(status)
            return

        age = self._clock() - task.submitted_at
        if age > self.stale_after:
            err = GenerationTimeoutError(task.provider_task_id, age, status.state.value)
            logger.warning(f"{group.id}: stale after restart: {err}")
            await orch.force_fail(str(err))
            return

        await orch.resume(initial_status=status)

    # ─────────────────────────────────────────
    # Streaming
    # ─────────────────────────────────────────

    async def run_streaming(
        self,
        resume: bool = False,
        generate: bool = True,
        batch_id: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Run the batch and yield events as they happen. With resume=True the
        in-flight groups of a previous process (optionally one batch) are
        taken over first; generate=False stops after that.
        """
        bus = GenerationEventBus()
        previous = self.bus
        self._set_bus(bus)
        stream = bus.subscribe()
        started = time.monotonic()
        label = batch_id or (self.groups[0].batch_id if self.groups else "")

        async def _drive() -> None:
            try:
                await bus.publish(BatchStarted(label, len(self._orchestrators)))
                if resume:
                    await self.resume_in_flight(batch_id)
                if generate:
                    await self.generate_all()
                groups = self.groups
                await bus.publish(BatchCompleted(
                    batch_id=label,
                    status=self.overall_status().value,
                    groups_completed=sum(g.status == GroupStatus.COMPLETED for g in groups),
                    groups_failed=sum(g.status == GroupStatus.FAILED for g in groups),
                    elapsed_seconds=time.monotonic() - started,
                ))
            finally:
                await bus.close()

        driver = asyncio.create_task(_drive())
        try:
            async for event in stream:
                yield event
            await driver
        finally:
            if not driver.done():
                driver.cancel()
            self._set_bus(previous)

    def _set_bus(self, bus: Optional[GenerationEventBus]) -> None:
        self.bus = bus
        for orch in self._orchestrators.values():
            orch.bus = bus
