"""
Yunwu adapter.

Orientation replaces aspect ratio, durations are integers and quality maps to
a size class. Status lives in a nested `detail` object together with a real
progress percentage and the list of generations.
"""
from __future__ import annotations

from typing import Any, Optional

from ..errors import ProviderError
from ..models import (
    GenerationConfig, ModelInfo, ProviderCapabilities, SubmitResult,
    TaskState, TaskStatus,
)
from .base import ProviderAdapter

_STATE_MAP: dict[str, TaskState] = {
    "pending": TaskState.QUEUED,
    "queued": TaskState.QUEUED,
    "processing": TaskState.PROCESSING,
    "completed": TaskState.COMPLETED,
    "succeeded": TaskState.COMPLETED,
    "failed": TaskState.ERROR,
    "error": TaskState.ERROR,
}


class YunwuProvider(ProviderAdapter):
    name = "yunwu"
    display_name = "Yunwu API"
    capabilities = ProviderCapabilities(
        image_reference=True,
        durations=("10", "15", "25"),
        aspect_ratios=("16:9", "9:16"),
    )
    default_base_url = "https://yunwu.ai/v1/video"

    def transform_config(self, config: GenerationConfig) -> dict[str, Any]:
        return {
            "orientation": "landscape" if config.landscape else "portrait",
            "duration": int(config.duration),
            "size": "large" if config.hd else "medium",
            "watermark": False,
        }

    async def _submit(self, prompt: str, config: GenerationConfig, model: ModelInfo,
                      reference_media: Optional[str]) -> SubmitResult:
        body = await self._request("POST", "/create", json={
            "prompt": prompt,
            "model": model.wire_name(config),
            "images": [reference_media] if reference_media else [],
            **self.transform_config(config),
        })
        task_id = body.get("id")
        if not task_id:
            raise ProviderError(self.name, 500, "response carries no id", {"result": body})
        return SubmitResult(
            provider_task_id=task_id,
            state=self.map_state(body.get("status", "pending"), _STATE_MAP),
        )

    async def _check(self, provider_task_id: str) -> TaskStatus:
        body = await self._request("GET", "/query", params={"id": provider_task_id})
        detail = body.get("detail") or {}
        state = self.map_state(detail.get("status"), _STATE_MAP)
        progress = int(detail.get("progress_pct") or 0)

        if state == TaskState.ERROR:
            return TaskStatus(state=state, progress=progress,
                              error_message=detail.get("failure_reason") or "video generation failed")
        generations = detail.get("generations") or []
        url = generations[0].get("url") if generations else None
        return TaskStatus(state=state, progress=progress, result_url=url)
