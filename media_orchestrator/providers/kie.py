"""
KIE AI adapter.

Wire format:
  submit  POST {base}/createTask  {"model", "input": {prompt, aspect_ratio,
          n_frames, remove_watermark, image_urls?}}
          → {"code": 200, "msg": "success", "data": {"taskId": "..."}}
  poll    GET  {base}/recordInfo?taskId=...
          → {"code": 200, "data": {"state": "...", "resultJson": "{...}"}}

States: waiting, queuing, generating, success, fail. KIE reports no numeric
progress, so progress is estimated from the state.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

from ..errors import ProviderError
from ..models import (
    GenerationConfig, ModelInfo, ProviderCapabilities, SubmitResult,
    TaskState, TaskStatus,
)
from .base import ProviderAdapter

logger = logging.getLogger("media_orchestrator.providers.kie")

_STATE_MAP: dict[str, TaskState] = {
    "waiting": TaskState.QUEUED,
    "queuing": TaskState.QUEUED,
    "generating": TaskState.PROCESSING,
    "success": TaskState.COMPLETED,
    "fail": TaskState.ERROR,
}

_PROGRESS_MAP: dict[str, int] = {
    "waiting": 10,
    "queuing": 20,
    "generating": 60,
    "success": 100,
    "fail": 0,
}


class KieProvider(ProviderAdapter):
    name = "kie"
    display_name = "KIE AI"
    capabilities = ProviderCapabilities(
        image_reference=True,
        durations=("10", "15", "25"),
        aspect_ratios=("16:9", "9:16"),
    )
    default_base_url = "https://api.kie.ai/api/v1/jobs"

    def transform_config(self, config: GenerationConfig) -> dict[str, Any]:
        return {
            "aspect_ratio": "landscape" if config.landscape else "portrait",
            "n_frames": config.duration,
            # always request the clean render, regardless of quality tier
            "remove_watermark": True,
        }

    async def _submit(self, prompt: str, config: GenerationConfig, model: ModelInfo,
                      reference_media: Optional[str]) -> SubmitResult:
        mode = "image-to-video" if reference_media else "text-to-video"
        payload_input: dict[str, Any] = {"prompt": prompt, **self.transform_config(config)}
        if reference_media:
            payload_input["image_urls"] = [reference_media]

        body = await self._request(
            "POST", "/createTask",
            json={"model": f"{model.wire_name(config)}-{mode}", "input": payload_input},
        )
        if body.get("code") != 200:
            raise ProviderError(self.name, body.get("code") or 500,
                                f"KIE API error: {body.get('msg')}", {"result": body})
        task_id = (body.get("data") or {}).get("taskId")
        if not task_id:
            raise ProviderError(self.name, 500, "response carries no taskId", {"result": body})
        return SubmitResult(provider_task_id=task_id, state=TaskState.QUEUED)

    async def _check(self, provider_task_id: str) -> TaskStatus:
        body = await self._request("GET", "/recordInfo", params={"taskId": provider_task_id})
        if body.get("code") != 200:
            return TaskStatus(
                state=TaskState.ERROR,
                error_message=body.get("message") or body.get("msg") or "status query failed",
            )

        data = body.get("data") or {}
        raw_state = data.get("state") or data.get("status")
        state = self.map_state(raw_state, _STATE_MAP)
        progress = _PROGRESS_MAP.get(raw_state, 50)

        if state == TaskState.ERROR:
            return TaskStatus(
                state=state,
                progress=progress,
                error_message=(data.get("failMsg") or data.get("error")
                               or data.get("message") or "video generation failed"),
            )
        return TaskStatus(state=state, progress=progress, result_url=self._extract_url(data))

    @staticmethod
    def _extract_url(data: dict) -> Optional[str]:
        raw = data.get("resultJson")
        if raw:
            try:
                urls = json.loads(raw).get("resultUrls") or []
            except (ValueError, AttributeError):
                logger.warning(f"Unparseable resultJson: {str(raw)[:200]!r}")
                urls = []
            if urls:
                return urls[0]
        output = data.get("output") or {}
        return output.get("url") or data.get("videoUrl") or data.get("url") or data.get("video_url")
