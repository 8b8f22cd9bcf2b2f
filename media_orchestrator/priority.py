"""
Model Priority Resolver
=======================
Turns a user's per-category preference list, the set of models whose
provider is actually registered, and current model health into one concrete
model choice.

Candidate order for a category:
  1. models in the user's list that are available, in the user's order
  2. remaining available models, in catalog priority order
Stale entries (models no longer available) are silently dropped.

resolve() picks the first healthy candidate; if every candidate is unhealthy
it still returns the first one, so a request is never refused merely because
all models failed recently.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from .errors import ValidationError
from .health import ModelHealthTracker
from .models import MODEL_CATALOG, ModelCategory, ModelInfo

if TYPE_CHECKING:
    from .state import StateManager

logger = logging.getLogger("media_orchestrator.priority")


class ModelPriorityResolver:

    def __init__(
        self,
        health: ModelHealthTracker,
        providers: Optional[Iterable[str]] = None,
        models: Optional[Sequence[ModelInfo]] = None,
        store: Optional["StateManager"] = None,
    ) -> None:
        """
        `providers` limits the catalog to models whose provider is registered
        (None keeps every catalog entry). `models` replaces the catalog.
        """
        self.health = health
        self._store = store
        pool = list(models) if models is not None else list(MODEL_CATALOG)
        if providers is not None:
            allowed = set(providers)
            pool = [m for m in pool if m.provider in allowed]
        self._models = pool
        self._preferences: dict[ModelCategory, list[str]] = {}

    async def load(self) -> None:
        if self._store is not None:
            self._preferences = await self._store.load_priorities()

    def model_info(self, model_id: str) -> Optional[ModelInfo]:
        for m in self._models:
            if m.id == model_id:
                return m
        return None

    def available_models(self, category: ModelCategory) -> list[ModelInfo]:
        return sorted(
            (m for m in self._models if m.category == category),
            key=lambda m: m.priority,
        )

    def preference(self, category: ModelCategory) -> list[str]:
        return list(self._preferences.get(category, []))

    def candidate_order(self, category: ModelCategory) -> list[ModelInfo]:
        available = self.available_models(category)
        by_id = {m.id: m for m in available}
        ordered: list[ModelInfo] = []
        seen: set[str] = set()
        for model_id in self._preferences.get(category, []):
            if model_id in by_id and model_id not in seen:
                ordered.append(by_id[model_id])
                seen.add(model_id)
        ordered.extend(m for m in available if m.id not in seen)
        return ordered

    def resolve(self, category: ModelCategory) -> ModelInfo:
        candidates = self.candidate_order(category)
        if not candidates:
            raise ValidationError(f"No {category.value} model available")
        for model in candidates:
            if self.health.is_healthy(model.id):
                return model
        logger.warning(
            f"All {category.value} models unhealthy; using {candidates[0].id} anyway"
        )
        return candidates[0]

    def fallback_chain(self, category: ModelCategory) -> list[ModelInfo]:
        """Healthy candidates first, then unhealthy ones, each group in candidate order."""
        candidates = self.candidate_order(category)
        healthy = [m for m in candidates if self.health.is_healthy(m.id)]
        return healthy + [m for m in candidates if not self.health.is_healthy(m.id)]

    async def set_preference(self, category: ModelCategory, model_ids: Sequence[str]) -> None:
        ids = list(dict.fromkeys(model_ids))
        self._preferences[category] = ids
        if self._store is not None:
            await self._store.save_priority(category, ids)
        logger.info(f"Priority for {category.value}: {ids}")

    async def reset_preference(self, category: ModelCategory) -> None:
        self._preferences.pop(category, None)
        if self._store is not None:
            await self._store.delete_priority(category)
        logger.info(f"Priority for {category.value} reset to default order")
