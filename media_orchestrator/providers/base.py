"""
ProviderAdapter: uniform submit/poll contract over heterogeneous back-ends
===========================================================================
Each external service has its own request shape, status vocabulary and
auth header. Subclasses own that translation entirely; the orchestrator only
ever sees SubmitResult and TaskStatus, so it never branches on provider
identity.

Subclasses implement:
  _submit(prompt, config, model, reference_media) -> SubmitResult
  _check(provider_task_id)                         -> TaskStatus

The public submit_task()/check_status() wrappers add tracing, the API call
log and the synchronous-remote handshake (_remember_terminal).
"""
from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

import httpx

from ..api_log import ApiCallLog, CallKind
from ..errors import ProviderError
from ..models import (
    GenerationConfig, ModelInfo, ProviderCapabilities, ProviderInfo,
    SubmitResult, TaskState, TaskStatus,
)
from ..tracing import traced_provider_call

logger = logging.getLogger("media_orchestrator.providers")


class ProviderAdapter(ABC):
    name: str = ""
    display_name: str = ""
    capabilities: ProviderCapabilities = ProviderCapabilities()
    default_base_url: str = ""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
        call_log: Optional[ApiCallLog] = None,
    ) -> None:
        self.api_key = api_key or ""
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.call_log = call_log
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        # provider_task_id -> status already known at submit time
        self._terminal: dict[str, TaskStatus] = {}

    @property
    def info(self) -> ProviderInfo:
        return ProviderInfo(self.name, self.display_name, self.capabilities)

    # ── Public contract ──────────────────────────────────────────────────────

    async def submit_task(
        self,
        prompt: str,
        config: GenerationConfig,
        model: ModelInfo,
        reference_media: Optional[str] = None,
    ) -> SubmitResult:
        """Submit one job. Returns as soon as the remote accepts it."""
        started = time.monotonic()
        request = {
            "model": model.wire_name(config),
            "aspect_ratio": config.aspect_ratio,
            "duration": config.duration,
            "quality": config.quality.value,
            "has_reference": bool(reference_media),
            "prompt_length": len(prompt),
        }
        with traced_provider_call(self.name, "submit") as span:
            span.set_attribute("provider.model", model.id)
            try:
                result = await self._submit(prompt, config, model, reference_media)
            except ProviderError as exc:
                self._log_call("submit_task", CallKind.SUBMISSION, started, False,
                               str(exc), request)
                raise
            span.set_attribute("provider.task_id", result.provider_task_id)
        self._log_call("submit_task", CallKind.SUBMISSION, started, True, None, request)
        logger.info(f"{self.display_name}: submitted task {result.provider_task_id} "
                    f"(model={model.id})")
        return result

    async def check_status(self, provider_task_id: str) -> TaskStatus:
        """Probe one job and return its normalized status."""
        remembered = self._terminal.pop(provider_task_id, None)
        if remembered is not None:
            return remembered

        started = time.monotonic()
        with traced_provider_call(self.name, "poll") as span:
            span.set_attribute("provider.task_id", provider_task_id)
            try:
                status = await self._check(provider_task_id)
            except ProviderError as exc:
                self._log_call("check_status", CallKind.POLLING, started, False,
                               str(exc), {"task_id": provider_task_id})
                raise
            span.set_attribute("provider.state", status.state.value)
        self._log_call("check_status", CallKind.POLLING, started, True,
                       status.error_message, {"task_id": provider_task_id})
        logger.debug(f"{self.display_name}: {provider_task_id} -> "
                     f"{status.state.value} {status.progress}%")
        return status

    def supports(self, config: GenerationConfig, reference_media: Optional[str] = None) -> bool:
        caps = self.capabilities
        if reference_media and not caps.image_reference:
            return False
        return config.aspect_ratio in caps.aspect_ratios

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ── Subclass hooks ───────────────────────────────────────────────────────

    @abstractmethod
    def transform_config(self, config: GenerationConfig) -> dict[str, Any]:
        """Translate the generic config into this provider's vocabulary."""

    @abstractmethod
    async def _submit(self, prompt: str, config: GenerationConfig, model: ModelInfo,
                      reference_media: Optional[str]) -> SubmitResult:
        ...

    @abstractmethod
    async def _check(self, provider_task_id: str) -> TaskStatus:
        ...

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10.0),
            )
            self._owns_client = True
        return self._client

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: Optional[dict] = None,
        data: Optional[dict] = None,
        params: Optional[dict] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """
        Perform one HTTP call and return the decoded JSON body.
        Network failures and non-2xx responses become ProviderError.
        """
        if not url.startswith("http"):
            url = f"{self.base_url}{url}"
        try:
            response = await self._get_client().request(
                method, url, json=json, data=data, params=params,
                headers=headers if headers is not None else self._auth_headers(),
            )
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, 0, f"network error: {exc}") from exc

        if not response.is_success:
            raise ProviderError(
                self.name, response.status_code,
                f"request failed: {response.text[:500]}",
                {"url": url},
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                self.name, response.status_code,
                f"invalid JSON response: {response.text[:200]}",
            ) from exc

    def _remember_terminal(self, provider_task_id: str, status: TaskStatus) -> None:
        """Synchronous remotes: make the first probe for this id return `status`."""
        self._terminal[provider_task_id] = status

    @staticmethod
    def map_state(raw: Any, table: Mapping[Any, TaskState]) -> TaskState:
        """Unknown or missing codes stay `processing` so a task is never dropped."""
        return table.get(raw, TaskState.PROCESSING)

    def _log_call(self, operation: str, kind: CallKind, started: float,
                  success: bool, error: Optional[str], request: dict) -> None:
        if self.call_log is not None:
            self.call_log.record(self.name, operation, kind, started, success,
                                 error=error, request=request)
