"""
Sutu (wuyinkeji) adapter.

Standard and Pro tiers are separate endpoints. Submissions are form-encoded
and authenticated with the bare key; the status endpoint reports a numeric
code (0 queued, 1 done, 2 failed, 3 generating).
"""
from __future__ import annotations

from typing import Any, Optional

from ..errors import ProviderError
from ..models import (
    GenerationConfig, ModelInfo, ProviderCapabilities, SubmitResult,
    TaskState, TaskStatus,
)
from .base import ProviderAdapter

_STATE_MAP: dict[int, TaskState] = {
    0: TaskState.QUEUED,
    1: TaskState.COMPLETED,
    2: TaskState.ERROR,
    3: TaskState.PROCESSING,
}


class SutuProvider(ProviderAdapter):
    name = "sutu"
    display_name = "Sutu API"
    capabilities = ProviderCapabilities(
        image_reference=True,
        durations=("10", "15", "25"),
        aspect_ratios=("16:9", "9:16"),
    )
    default_base_url = "https://api.wuyinkeji.com/api"

    def transform_config(self, config: GenerationConfig) -> dict[str, Any]:
        if config.hd:
            # Pro: 15s high definition or 25s standard definition
            duration = "25" if config.duration == "25" else "15"
            return {"aspectRatio": config.aspect_ratio, "duration": duration}
        duration = "15" if config.duration in ("15", "25") else "10"
        # only "small" is accepted on the standard tier
        return {"aspectRatio": config.aspect_ratio, "duration": duration, "size": "small"}

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": self.api_key}

    async def _submit(self, prompt: str, config: GenerationConfig, model: ModelInfo,
                      reference_media: Optional[str]) -> SubmitResult:
        endpoint = "/sora2pro/submit" if config.hd else "/sora2-new/submit"
        form: dict[str, Any] = {"prompt": prompt}
        if reference_media:
            form["url"] = reference_media
        form.update(self.transform_config(config))

        body = await self._request("POST", endpoint, data=form)
        if body.get("code") not in (0, 200):
            raise ProviderError(self.name, body.get("code") or 500,
                                f"API error: {body.get('msg') or 'unknown error'}",
                                {"result": body})
        task_id = (body.get("data") or {}).get("id")
        if not task_id:
            raise ProviderError(self.name, 500, "response carries no task id", {"result": body})
        return SubmitResult(provider_task_id=str(task_id))

    async def _check(self, provider_task_id: str) -> TaskStatus:
        body = await self._request(
            "GET", "/sora2/detail",
            params={"id": provider_task_id, "key": self.api_key},
        )
        data = body.get("data") or {}
        state = self.map_state(data.get("status", 0), _STATE_MAP)

        if state == TaskState.ERROR:
            return TaskStatus(state=state, progress=0,
                              error_message=body.get("msg") or "video generation failed")
        progress = {TaskState.COMPLETED: 100, TaskState.PROCESSING: 50}.get(state, 0)
        return TaskStatus(state=state, progress=progress, result_url=data.get("remote_url"))
