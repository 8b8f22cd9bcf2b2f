"""
Terminal progress renderer for GenerationSupervisor.run_streaming().

Prints compact group-by-group progress to stderr, leaving stdout clean for
piped output. Use quiet=True in tests or when --quiet CLI flag is set.
"""
from __future__ import annotations
import sys
from typing import Any

from .streaming import (
    BatchStarted, GroupStatusChanged, GroupProgress, GroupResumed,
    GroupCompleted, GroupFailed, BatchCompleted,
)


class ProgressRenderer:
    """
    Stateful event handler that prints live progress to stderr.
    Maintains counters so callers can inspect final state.
    """

    def __init__(self, quiet: bool = False) -> None:
        self.quiet = quiet
        self.total: int = 0
        self.completed: int = 0
        self.failed: int = 0
        self._progress: dict[str, int] = {}  # group_id → last printed progress

    def _print(self, text: str) -> None:
        if not self.quiet:
            print(text, file=sys.stderr)

    def handle(self, event: Any) -> None:
        if isinstance(event, BatchStarted):
            self.total = event.total_groups
            self._print(f"\n▶  Batch {event.batch_id}: {event.total_groups} task group(s)")
        elif isinstance(event, GroupStatusChanged):
            self._print(f"   → {event.group_id}  {event.old} → {event.new}")
        elif isinstance(event, GroupProgress):
            # only print in 10% steps
            last = self._progress.get(event.group_id, -10)
            if event.progress - last >= 10:
                self._progress[event.group_id] = event.progress
                self._print(f"     {event.group_id}  {event.progress}%")
        elif isinstance(event, GroupResumed):
            self._print(f"   ↻ {event.group_id}  resumed task {event.provider_task_id}")
        elif isinstance(event, GroupCompleted):
            self.completed += 1
            self._print(
                f"   ✓ {event.group_id}  model={event.model_id}  {event.result_url}  "
                f"[{self.completed}/{self.total}]"
            )
        elif isinstance(event, GroupFailed):
            self.failed += 1
            self._print(f"   ✗ {event.group_id}  FAILED: {event.reason}")
        elif isinstance(event, BatchCompleted):
            marker = "✓" if event.status == "completed" else "✗" if event.status == "failed" else "~"
            self._print(
                f"\n{marker} Batch {event.batch_id} {event.status}  "
                f"{event.elapsed_seconds:.0f}s  "
                f"{event.groups_completed} completed  "
                f"{event.groups_failed} failed"
            )

    def summary(self) -> str:
        return (
            f"{self.completed} completed / {self.total} total, "
            f"{self.failed} failed"
        )
