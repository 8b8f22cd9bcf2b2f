"""
Error taxonomy for the generation orchestrator.
================================================
ValidationError        : rejected before any network call, no state change.
ProviderError          : non-2xx response or network failure at submit/poll.
GenerationTimeoutError : a task outlived the policy timeout while non-terminal.

Cancellation is not an error: it travels as asyncio.CancelledError and
never produces an error record or a health penalty.
"""
from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(OrchestratorError, ValueError):
    """Request rejected locally (missing prompt, no shots selected, ...)."""


class ProviderError(OrchestratorError):
    """
    A provider call failed. Always terminal for the current task and always
    recorded as a health failure for the model that was used.
    """

    def __init__(self, provider: str, code: int | str, message: str,
                 details: dict | None = None):
        self.provider = provider
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{provider.upper()} API] {code}: {message}")


class GenerationTimeoutError(OrchestratorError, TimeoutError):
    """Raised by the orchestrator itself when a task stays non-terminal too long."""

    def __init__(self, provider_task_id: str, age_seconds: float, last_state: str):
        self.provider_task_id = provider_task_id
        self.age_seconds = age_seconds
        self.last_state = last_state
        super().__init__(
            f"Task {provider_task_id} timed out after {int(age_seconds // 60)} min "
            f"({age_seconds:.0f}s) while still {last_state}"
        )


class IllegalTransitionError(OrchestratorError):
    """A status change that the task group lifecycle does not allow."""

    def __init__(self, group_id: str, current: str, target: str):
        self.group_id = group_id
        self.current = current
        self.target = target
        super().__init__(f"Task group {group_id}: illegal transition {current} -> {target}")
