"""
ApiCallLog: bounded in-memory log of provider submissions and polls
======================================================================
Each adapter call appends one ApiCallRecord (newest first). The log keeps at
most `max_entries` records so a long polling session cannot grow it without
bound.

    log = ApiCallLog()
    adapter = KieProvider(api_key="...", call_log=log)
    ...
    for rec in log.records(kind=CallKind.POLLING):
        print(rec.operation, rec.duration_ms, rec.success)
"""
from __future__ import annotations

import json
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


class CallKind(str, Enum):
    SUBMISSION = "submission"
    POLLING = "polling"


@dataclass
class ApiCallRecord:
    timestamp: float
    provider: str
    operation: str
    kind: CallKind
    duration_ms: float
    success: bool
    error: Optional[str] = None
    request: dict = field(default_factory=dict)


class ApiCallLog:

    def __init__(self, max_entries: int = 30) -> None:
        self._records: deque[ApiCallRecord] = deque(maxlen=max_entries)

    def record(
        self,
        provider: str,
        operation: str,
        kind: CallKind,
        started_at: float,
        success: bool,
        error: Optional[str] = None,
        request: Optional[dict] = None,
    ) -> ApiCallRecord:
        rec = ApiCallRecord(
            timestamp=time.time(),
            provider=provider,
            operation=operation,
            kind=kind,
            duration_ms=(time.monotonic() - started_at) * 1000,
            success=success,
            error=error,
            request=request or {},
        )
        self._records.appendleft(rec)
        return rec

    def records(self, kind: Optional[CallKind] = None) -> list[ApiCallRecord]:
        """Newest-first snapshot, optionally filtered by kind."""
        return [r for r in self._records if kind is None or r.kind == kind]

    def export_jsonl(self, path: str | Path) -> None:
        with open(path, "a", encoding="utf-8") as fh:
            for r in reversed(self._records):
                row = asdict(r)
                row["kind"] = r.kind.value
                fh.write(json.dumps(row) + "\n")

    def __len__(self) -> int:
        return len(self._records)

    def clear(self) -> None:
        self._records.clear()
