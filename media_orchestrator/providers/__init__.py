"""
Provider adapters and the registry that builds them from settings.
Providers without an API key are not registered, so the resolver never
offers their models.
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..api_log import ApiCallLog
from ..config import Settings
from .base import ProviderAdapter
from .kie import KieProvider
from .mock import MockProvider
from .sutu import SutuProvider
from .yijiapi import YijiapiProvider
from .yunwu import YunwuProvider

logger = logging.getLogger("media_orchestrator.providers")

PROVIDER_CLASSES: dict[str, type[ProviderAdapter]] = {
    "kie": KieProvider,
    "sutu": SutuProvider,
    "yunwu": YunwuProvider,
    "yijiapi": YijiapiProvider,
}


def build_providers(
    settings: Settings,
    include_mock: bool = False,
    client: Optional[httpx.AsyncClient] = None,
    call_log: Optional[ApiCallLog] = None,
) -> dict[str, ProviderAdapter]:
    providers: dict[str, ProviderAdapter] = {}
    for name, cls in PROVIDER_CLASSES.items():
        key = settings.api_key(name)
        if not key:
            continue
        providers[name] = cls(
            api_key=key,
            base_url=settings.base_urls.get(name),
            client=client,
            call_log=call_log,
        )
        logger.info(f"{cls.display_name} adapter initialized")
    if include_mock:
        providers["mock"] = MockProvider(call_log=call_log)
    if not providers:
        logger.warning("No provider API keys configured")
    return providers


def get_provider(name: str) -> type[ProviderAdapter]:
    if name == "mock":
        return MockProvider
    try:
        return PROVIDER_CLASSES[name]
    except KeyError:
        raise KeyError(f"Unknown provider: {name!r}") from None


__all__ = [
    "ProviderAdapter", "KieProvider", "SutuProvider", "YunwuProvider",
    "YijiapiProvider", "MockProvider", "PROVIDER_CLASSES", "build_providers",
    "get_provider",
]
