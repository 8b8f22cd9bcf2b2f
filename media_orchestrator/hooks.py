"""
Lifecycle hooks
===============
Synchronous callbacks for task-group events, for consumers that want a plain
function call rather than the async event stream (see streaming.py).

    hooks = HookRegistry()
    remove = hooks.add(EventType.GROUP_COMPLETED, lambda group_id, result_url, **_: ...)
    ...
    remove()

A callback that raises is logged and skipped; it never reaches the polling
loop that fired it.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

logger = logging.getLogger("media_orchestrator.hooks")

Hook = Callable[..., None]


class EventType(str, Enum):
    """
    Keyword arguments passed to callbacks:
      GROUP_STATUS_CHANGED : group_id, old: GroupStatus, new: GroupStatus, group: TaskGroup
      GROUP_PROGRESS       : group_id, progress: int
      GROUP_COMPLETED      : group_id, result_url: str | None, model_id: str
      GROUP_FAILED         : group_id, error: str, model_id: str | None
      MODEL_SELECTED       : group_id, model_id: str, provider: str
      GROUP_RESUMED        : group_id, provider_task_id: str
    """
    GROUP_STATUS_CHANGED = "group_status_changed"
    GROUP_PROGRESS       = "group_progress"
    GROUP_COMPLETED      = "group_completed"
    GROUP_FAILED         = "group_failed"
    MODEL_SELECTED       = "model_selected"
    GROUP_RESUMED        = "group_resumed"


class HookRegistry:

    def __init__(self) -> None:
        self._hooks: dict[EventType, list[Hook]] = {}

    def add(self, event: EventType | str, callback: Hook) -> Callable[[], None]:
        """Register `callback`; the returned function unregisters it."""
        event = EventType(event)
        self._hooks.setdefault(event, []).append(callback)
        return lambda: self.remove(event, callback)

    def remove(self, event: EventType | str, callback: Hook) -> None:
        callbacks = self._hooks.get(EventType(event), [])
        if callback in callbacks:
            callbacks.remove(callback)

    def fire(self, event: EventType | str, **kwargs) -> None:
        event = EventType(event)
        for callback in list(self._hooks.get(event, ())):
            try:
                callback(**kwargs)
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"Hook {getattr(callback, '__name__', callback)!s} "
                               f"failed on {event.value}: {exc}")

    def clear(self, event: EventType | str | None = None) -> None:
        if event is None:
            self._hooks.clear()
        else:
            self._hooks.pop(EventType(event), None)

    def registered_events(self) -> list[EventType]:
        return [event for event, callbacks in self._hooks.items() if callbacks]

    def __len__(self) -> int:
        return sum(len(callbacks) for callbacks in self._hooks.values())
