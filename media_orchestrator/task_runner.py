"""
TaskOrchestrator: drives one task group through its lifecycle
=============================================================
  idle → prompt_ready → (image_fused)? → uploading → (queued | processing)
       → completed | failed

Every transition is checked against _TRANSITIONS, persisted, fired on the
HookRegistry and published on the event bus. image_fused and any active state
may return to prompt_ready through cancel(); a failed group may be generated
again.

Failures (provider error status, ProviderError, timeout) are terminal for the
current task and recorded against the model's health. There is no automatic
retry: a new generate() re-consults the resolver, which may then choose a
different model.

Cancellation:
  cancel()            user action. Resets the group to prompt_ready at once,
                      aborts the in-flight call and the polling loop, and
                      leaves health untouched.
  task.cancel()       shutdown. The persisted in-flight state is kept so a
                      later process can resume polling.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Mapping, Optional

from .errors import (
    GenerationTimeoutError, IllegalTransitionError, ProviderError, ValidationError,
)
from .hooks import EventType, HookRegistry
from .models import (
    ACTIVE_STATUSES, GroupStatus, ModelCategory, ModelInfo, Task, TaskGroup,
    TaskState, TaskStatus,
)
from .priority import ModelPriorityResolver
from .providers.base import ProviderAdapter
from .state import StateManager
from .streaming import (
    GenerationEventBus, GroupCompleted, GroupFailed, GroupProgress, GroupStatusChanged,
)
from .tracing import traced_group

logger = logging.getLogger("media_orchestrator.task_runner")

S = GroupStatus

_TRANSITIONS: dict[GroupStatus, frozenset[GroupStatus]] = {
    S.IDLE:         frozenset({S.PROMPT_READY}),
    S.PROMPT_READY: frozenset({S.IMAGE_FUSED, S.UPLOADING}),
    S.IMAGE_FUSED:  frozenset({S.UPLOADING, S.PROMPT_READY}),
    S.UPLOADING:    frozenset({S.QUEUED, S.PROCESSING, S.COMPLETED, S.FAILED, S.PROMPT_READY}),
    S.QUEUED:       frozenset({S.PROCESSING, S.COMPLETED, S.FAILED, S.PROMPT_READY}),
    S.PROCESSING:   frozenset({S.COMPLETED, S.FAILED, S.PROMPT_READY}),
    S.FAILED:       frozenset({S.UPLOADING, S.PROMPT_READY}),
    S.COMPLETED:    frozenset(),
}


def can_transition(current: GroupStatus, target: GroupStatus) -> bool:
    return target in _TRANSITIONS[current]


class TaskOrchestrator:

    def __init__(
        self,
        group: TaskGroup,
        providers: Mapping[str, ProviderAdapter],
        resolver: ModelPriorityResolver,
        store: Optional[StateManager] = None,
        hooks: Optional[HookRegistry] = None,
        bus: Optional[GenerationEventBus] = None,
        poll_interval: float = 5.0,
        task_timeout: float = 600.0,
        category: ModelCategory = ModelCategory.VIDEO,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.group = group
        self.providers = providers
        self.resolver = resolver
        self.health = resolver.health
        self.store = store
        self.hooks = hooks or HookRegistry()
        self.bus = bus
        self.poll_interval = poll_interval
        self.task_timeout = task_timeout
        self.category = category
        self._clock = clock
        self._runner: Optional[asyncio.Task] = None
        self._cancel_requested = False
        self.persist_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    # ─────────────────────────────────────────
    # Preparation
    # ─────────────────────────────────────────

    def set_prompt(self, text: str) -> None:
        if not text or not text.strip():
            raise ValidationError("prompt must not be empty")
        status = self.group.status
        if status in ACTIVE_STATUSES or status == S.COMPLETED:
            raise IllegalTransitionError(self.group.id, status.value, S.PROMPT_READY.value)
        self.group.prompt = text
        if status == S.IDLE:
            self._transition(S.PROMPT_READY)

    def attach_reference(self, media: str) -> None:
        if self.group.status != S.IMAGE_FUSED:
            self._transition(S.IMAGE_FUSED)
        self.group.reference_media = media

    # ─────────────────────────────────────────
    # Generation
    # ─────────────────────────────────────────

    async def generate(self) -> TaskGroup:
        """
        Submit the group and poll it to a terminal state. Returns the group;
        failures are reported through group.status/error, not raised.
        """
        group = self.group
        if group.status in ACTIVE_STATUSES or group.status == S.COMPLETED or self.is_running:
            raise IllegalTransitionError(group.id, group.status.value, S.UPLOADING.value)
        if not group.prompt or not group.prompt.strip():
            raise ValidationError(f"Task group {group.id}: prompt is required")

        model = self.resolver.resolve(self.category)
        adapter = self.providers.get(model.provider)
        if adapter is None:
            raise ValidationError(f"Provider {model.provider!r} for model {model.id} is not registered")

        reference = group.reference_media
        if reference and not adapter.capabilities.image_reference:
            logger.warning(f"{group.id}: {adapter.display_name} takes no reference image; "
                           f"submitting text only")
            reference = None

        self._cancel_requested = False
        if group.status == S.IDLE:
            self._transition(S.PROMPT_READY)
        group.model_id = model.id
        group.provider = model.provider
        group.error = None
        group.result_url = None
        group.progress = 0
        self.hooks.fire(EventType.MODEL_SELECTED, group_id=group.id,
                        model_id=model.id, provider=model.provider)
        self._transition(S.UPLOADING)
        await self._persist()
        if self._cancel_requested:
            return group

        return await self._supervise(self._submit_and_poll(model, adapter, reference))

    async def resume(self, initial_status: Optional[TaskStatus] = None) -> TaskGroup:
        """
        Re-attach to the group's current provider task without submitting again.
        `initial_status` is a probe result the caller already holds.
        """
        group = self.group
        task = group.in_flight_task
        if task is None or group.status not in ACTIVE_STATUSES:
            raise IllegalTransitionError(group.id, group.status.value, S.PROCESSING.value)
        if self.is_running:
            raise IllegalTransitionError(group.id, group.status.value, S.PROCESSING.value)
        adapter = self.providers.get(task.provider)
        if adapter is None:
            raise ValidationError(f"Provider {task.provider!r} for task "
                                  f"{task.provider_task_id} is not registered")
        self._cancel_requested = False
        self.hooks.fire(EventType.GROUP_RESUMED, group_id=group.id,
                        provider_task_id=task.provider_task_id)
        return await self._supervise(self._resume_polling(adapter, initial_status))

    def cancel(self) -> None:
        """
        Abort the in-flight work and reset the group to prompt_ready.

        Applies to image_fused and the active states; the reference image is
        kept. idle has no prompt to return to, and prompt_ready, completed and
        failed are left as they are.
        """
        group = self.group
        if group.status not in ACTIVE_STATUSES and group.status != S.IMAGE_FUSED:
            logger.debug(f"{group.id}: cancel ignored in status {group.status.value}")
            return
        self._cancel_requested = True
        if self.is_running:
            self._runner.cancel()
        group.progress = 0
        group.error = None
        self._transition(S.PROMPT_READY)
        logger.info(f"{group.id}: cancelled by user")
        if self._runner is None:
            # no local runner will persist the reset
            self._persist_in_background()

    # ─────────────────────────────────────────
    # Terminal results applied from outside (restored groups)
    # ─────────────────────────────────────────

    async def apply_status(self, status: TaskStatus) -> TaskGroup:
        """Apply one probe result without polling further."""
        await self._apply(status)
        if not status.state.is_terminal:
            await self._persist()
        return self.group

    async def force_fail(self, message: str) -> TaskGroup:
        await self._fail(message)
        return self.group

    async def return_to_prompt_ready(self) -> TaskGroup:
        """A group that never got a provider task id: nothing was accepted remotely."""
        self.group.progress = 0
        self._transition(S.PROMPT_READY)
        await self._persist()
        return self.group

    # ─────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────

    async def _supervise(self, work: Awaitable[None]) -> TaskGroup:
        self._runner = asyncio.ensure_future(work)
        try:
            await self._runner
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            await self._persist()
        finally:
            self._runner = None
        return self.group

    async def _submit_and_poll(self, model: ModelInfo, adapter: ProviderAdapter,
                               reference: Optional[str]) -> None:
        group = self.group
        with traced_group(group.id, model.id) as span:
            try:
                result = await adapter.submit_task(group.prompt, group.config, model, reference)
            except ProviderError as exc:
                span.set_attribute("group.outcome", "submit_failed")
                await self._fail(str(exc))
                return

            group.tasks.append(Task(
                provider_task_id=result.provider_task_id,
                provider=adapter.name,
                model_id=model.id,
                submitted_at=self._clock(),
                state=result.state,
            ))
            span.set_attribute("group.task_id", result.provider_task_id)
            self._transition(S.QUEUED if result.state == TaskState.QUEUED else S.PROCESSING)
            await self._persist()

            await self._poll(adapter, delay_first=not result.state.is_terminal)
            span.set_attribute("group.outcome", group.status.value)

    async def _resume_polling(self, adapter: ProviderAdapter,
                              initial_status: Optional[TaskStatus]) -> None:
        delay_first = False
        if initial_status is not None:
            await self._apply(initial_status)
            if initial_status.state.is_terminal:
                return
            await self._persist()
            delay_first = True
        await self._poll(adapter, delay_first=delay_first)

    async def _poll(self, adapter: ProviderAdapter, delay_first: bool) -> None:
        task = self.group.current_task
        if delay_first:
            await asyncio.sleep(self.poll_interval)
        while True:
            try:
                status = await adapter.check_status(task.provider_task_id)
            except ProviderError as exc:
                await self._fail(str(exc))
                return
            await self._apply(status)
            if status.state.is_terminal:
                return

            age = self._clock() - task.submitted_at
            if age > self.task_timeout:
                err = GenerationTimeoutError(task.provider_task_id, age, status.state.value)
                logger.warning(f"{self.group.id}: {err}")
                await self._fail(str(err))
                return
            await self._persist()
            await asyncio.sleep(self.poll_interval)

    async def _apply(self, status: TaskStatus) -> None:
        group = self.group
        task = group.in_flight_task
        if status.state == TaskState.COMPLETED:
            await self._complete(status)
            return
        if status.state == TaskState.ERROR:
            await self._fail(status.error_message or "generation failed")
            return

        if task is not None:
            task.state = status.state
            task.progress = max(task.progress, status.progress)
        if status.state == TaskState.PROCESSING and group.status != S.PROCESSING:
            self._transition(S.PROCESSING)
        elif status.state == TaskState.QUEUED and group.status == S.UPLOADING:
            self._transition(S.QUEUED)
        # a provider that reports queued again keeps the group in processing
        self._set_progress(status.progress)

    def _set_progress(self, progress: int) -> None:
        progress = max(0, min(int(progress), 100))
        if progress <= self.group.progress:
            return
        self.group.progress = progress
        self.hooks.fire(EventType.GROUP_PROGRESS, group_id=self.group.id, progress=progress)
        self._publish(GroupProgress(self.group.id, progress))

    async def _complete(self, status: TaskStatus) -> None:
        group = self.group
        task = group.in_flight_task
        if not status.result_url:
            logger.warning(f"{group.id}: provider reported completion without a result url")
        if task is not None:
            task.state = TaskState.COMPLETED
            task.progress = 100
            task.result_url = status.result_url
        group.result_url = status.result_url
        self._set_progress(100)
        self._transition(S.COMPLETED)
        logger.info(f"{group.id}: completed with {group.model_id} → {status.result_url}")
        self.hooks.fire(EventType.GROUP_COMPLETED, group_id=group.id,
                        result_url=status.result_url, model_id=group.model_id)
        self._publish(GroupCompleted(group.id, status.result_url or "", group.model_id or ""))
        if group.model_id:
            await self.health.record_outcome(group.model_id, True)
        await self._persist()

    async def _fail(self, message: str) -> None:
        group = self.group
        task = group.in_flight_task
        if task is not None:
            task.state = TaskState.ERROR
            task.error = message
        group.error = message
        self._transition(S.FAILED)
        logger.error(f"{group.id}: failed ({group.model_id}): {message}")
        self.hooks.fire(EventType.GROUP_FAILED, group_id=group.id,
                        error=message, model_id=group.model_id)
        self._publish(GroupFailed(group.id, message, group.model_id))
        if group.model_id:
            await self.health.record_outcome(group.model_id, False)
        await self._persist()

    def _transition(self, target: GroupStatus) -> None:
        old = self.group.status
        if not can_transition(old, target):
            raise IllegalTransitionError(self.group.id, old.value, target.value)
        self.group.status = target
        self.group.updated_at = self._clock()
        logger.debug(f"{self.group.id}: {old.value} → {target.value}")
        self.hooks.fire(EventType.GROUP_STATUS_CHANGED, group_id=self.group.id,
                        old=old, new=target, group=self.group)
        self._publish(GroupStatusChanged(self.group.id, old.value, target.value))

    def _publish(self, event) -> None:
        if self.bus is not None:
            self.bus.publish_nowait(event)

    async def _persist(self) -> None:
        if self.store is not None:
            self.group.updated_at = self._clock()
            await self.store.save_group(self.group)

    def _persist_in_background(self) -> None:
        if self.store is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"{self.group.id}: no running loop; reset saved on next save()")
            return
        self.persist_task = loop.create_task(self._persist())
        self.persist_task.add_done_callback(self._log_persist_failure)

    def _log_persist_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"{self.group.id}: could not persist state: {exc}")
