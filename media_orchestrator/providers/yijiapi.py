"""
Yijia API adapter (OpenAI-videos style).

Aspect ratio and quality collapse into a single "WxH" size string. The
service cannot take a reference image, so the capability is off.
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
    "queued": TaskState.QUEUED,
    "processing": TaskState.PROCESSING,
    "completed": TaskState.COMPLETED,
    "failed": TaskState.ERROR,
}


class YijiapiProvider(ProviderAdapter):
    name = "yijiapi"
    display_name = "Yijia API"
    capabilities = ProviderCapabilities(
        image_reference=False,
        durations=("10", "15"),
        aspect_ratios=("16:9", "9:16"),
    )
    default_base_url = "https://ai.yijiarj.cn/v1/videos"
    query_base_url = "http://apius.yijiarj.cn/v1/videos"

    def transform_config(self, config: GenerationConfig) -> dict[str, Any]:
        if not config.landscape:
            # no 1080p portrait on this service
            return {"size": "720x1280"}
        return {"size": "1920x1080" if config.hd else "1280x720"}

    async def _submit(self, prompt: str, config: GenerationConfig, model: ModelInfo,
                      reference_media: Optional[str]) -> SubmitResult:
        body = await self._request("POST", self.base_url, json={
            "prompt": prompt,
            "model": model.wire_name(config),
            **self.transform_config(config),
        })
        task_id = body.get("id")
        if not task_id:
            raise ProviderError(self.name, 500, "response carries no id", {"result": body})
        return SubmitResult(
            provider_task_id=task_id,
            state=self.map_state(body.get("status", "queued"), _STATE_MAP),
        )

    async def _check(self, provider_task_id: str) -> TaskStatus:
        body = await self._request("GET", f"{self.query_base_url}/{provider_task_id}")
        state = self.map_state(body.get("status", "queued"), _STATE_MAP)
        progress = int(body.get("progress") or 0)
        if state == TaskState.ERROR:
            return TaskStatus(state=state, progress=progress,
                              error_message=body.get("error") or body.get("message")
                              or "video generation failed")
        return TaskStatus(state=state, progress=progress, result_url=body.get("url"))
