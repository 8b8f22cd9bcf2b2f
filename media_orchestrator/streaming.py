"""
Event stream for GenerationSupervisor.run_streaming().

Orchestrators publish one dataclass per lifecycle step; GenerationEventBus
copies each event into the queue of every subscriber, so a slow consumer
never holds back polling and several consumers can watch one batch.
"""
from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union


# ── Event dataclasses ─────────────────────────────────────────────────────────

@dataclass
class BatchStarted:
    batch_id: str
    total_groups: int


@dataclass
class GroupStatusChanged:
    group_id: str
    old: str
    new: str


@dataclass
class GroupProgress:
    group_id: str
    progress: int


@dataclass
class GroupResumed:
    group_id: str
    provider_task_id: str


@dataclass
class GroupCompleted:
    group_id: str
    result_url: str
    model_id: str


@dataclass
class GroupFailed:
    group_id: str
    reason: str
    model_id: Optional[str]


@dataclass
class BatchCompleted:
    batch_id: str
    status: str          # BatchStatus.value
    groups_completed: int
    groups_failed: int
    elapsed_seconds: float


StreamEvent = Union[
    BatchStarted, GroupStatusChanged, GroupProgress, GroupResumed,
    GroupCompleted, GroupFailed, BatchCompleted,
]


# ── Event bus ─────────────────────────────────────────────────────────────────

_END = object()


class GenerationEventBus:
    """
    Subscribers see every event published after they subscribed, in order.
    close() ends every stream; later publishes are dropped.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> AsyncIterator[StreamEvent]:
        queue: asyncio.Queue = asyncio.Queue()
        if self._closed:
            queue.put_nowait(_END)
        self._subscribers.append(queue)
        return self._stream(queue)

    async def _stream(self, queue: asyncio.Queue) -> AsyncIterator[StreamEvent]:
        try:
            while True:
                event = await queue.get()
                if event is _END:
                    break
                yield event
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    def publish_nowait(self, event: StreamEvent) -> None:
        """Never blocks (queues are unbounded), so sync code may call it."""
        if self._closed:
            return
        for queue in self._subscribers:
            queue.put_nowait(event)

    async def publish(self, event: StreamEvent) -> None:
        self.publish_nowait(event)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for queue in self._subscribers:
            queue.put_nowait(_END)
