"""
Model Health Tracker: circuit breaker over consecutive failures.

Per-model record:
  attempts, failures          lifetime counters
  consecutive_failures        reset to 0 by any success
  last_failure_at             epoch seconds of the latest failure

A model is healthy while consecutive_failures < threshold (default 3). An
unhealthy model is not removed; the resolver only deprioritises it, and it
recovers on its next success. Updates for one model id are serialized by a
per-key asyncio.Lock, and persisted inside that lock when a store is set.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Callable, Optional

from .models import HealthRecord, ModelHealth

if TYPE_CHECKING:
    from .state import StateManager

logger = logging.getLogger("media_orchestrator.health")


class ModelHealthTracker:

    def __init__(
        self,
        threshold: int = 3,
        store: Optional["StateManager"] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.threshold = threshold
        self._store = store
        self._clock = clock
        self._records: dict[str, HealthRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def load(self) -> None:
        """Replace in-memory records with the persisted ones."""
        if self._store is None:
            return
        self._records = await self._store.load_health()
        logger.debug(f"Loaded health records for {len(self._records)} model(s)")

    def _lock_for(self, model_id: str) -> asyncio.Lock:
        lock = self._locks.get(model_id)
        if lock is None:
            lock = self._locks[model_id] = asyncio.Lock()
        return lock

    async def record_outcome(self, model_id: str, success: bool) -> HealthRecord:
        async with self._lock_for(model_id):
            rec = self._records.get(model_id)
            if rec is None:
                rec = self._records[model_id] = HealthRecord(model_id=model_id)
            was_healthy = rec.consecutive_failures < self.threshold

            rec.attempts += 1
            if success:
                rec.consecutive_failures = 0
                if not was_healthy:
                    logger.info(f"Model {model_id} recovered after a success")
            else:
                rec.failures += 1
                rec.consecutive_failures += 1
                rec.last_failure_at = self._clock()
                if was_healthy and rec.consecutive_failures >= self.threshold:
                    logger.warning(
                        f"Circuit breaker tripped for {model_id} "
                        f"after {rec.consecutive_failures} consecutive failures"
                    )

            if self._store is not None:
                await self._store.save_health(rec)
            return HealthRecord(**vars(rec))

    def get_health(self, model_id: str) -> ModelHealth:
        rec = self._records.get(model_id)
        if rec is None or rec.attempts == 0:
            return ModelHealth(healthy=True, success_rate=100.0, consecutive_failures=0)
        return ModelHealth(
            healthy=rec.consecutive_failures < self.threshold,
            success_rate=rec.successes / rec.attempts * 100,
            consecutive_failures=rec.consecutive_failures,
        )

    def is_healthy(self, model_id: str) -> bool:
        return self.get_health(model_id).healthy

    def records(self) -> dict[str, HealthRecord]:
        """Copies of the raw counters, keyed by model id."""
        return {mid: HealthRecord(**vars(r)) for mid, r in self._records.items()}

    def snapshot(self) -> dict[str, ModelHealth]:
        return {mid: self.get_health(mid) for mid in sorted(self._records)}

    async def reset(self, model_id: Optional[str] = None) -> None:
        """Clear one model's record, or every record when model_id is None."""
        if model_id is None:
            self._records.clear()
            if self._store is not None:
                await self._store.delete_health(None)
        else:
            async with self._lock_for(model_id):
                self._records.pop(model_id, None)
                if self._store is not None:
                    await self._store.delete_health(model_id)
        logger.info(f"Health reset: {model_id or 'all models'}")
