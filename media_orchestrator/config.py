"""
Runtime settings
================
Settings are read from the process environment after loading a .env file
(`load_dotenv(override=True)`: .env values win over empty system env vars).

Environment variables:
  MEDIA_ORCH_DB                 state database path        (.media_orchestrator/state.db)
  MEDIA_ORCH_POLL_INTERVAL      seconds between probes      (5)
  MEDIA_ORCH_TASK_TIMEOUT       seconds before a live task times out (600)
  MEDIA_ORCH_STALE_AFTER        seconds before a restored task is stale (600)
  MEDIA_ORCH_MAX_GROUP_DURATION max seconds of footage per task group (15)
  MEDIA_ORCH_HEALTH_THRESHOLD   consecutive failures that mark a model unhealthy (3)
  <PROVIDER>_API_KEY            e.g. KIE_API_KEY, SUTU_API_KEY, YUNWU_API_KEY, YIJIAPI_API_KEY
  <PROVIDER>_BASE_URL           optional endpoint override per provider
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .errors import ValidationError

logger = logging.getLogger("media_orchestrator.config")

PROVIDER_NAMES = ("kie", "sutu", "yunwu", "yijiapi")


@dataclass
class Settings:
    db_path: Path = Path(".media_orchestrator/state.db")
    poll_interval: float = 5.0
    task_timeout: float = 600.0
    stale_after: float = 600.0
    max_group_duration: float = 15.0
    health_threshold: int = 3
    api_keys: dict[str, str] = field(default_factory=dict)
    base_urls: dict[str, str] = field(default_factory=dict)

    def api_key(self, provider: str) -> Optional[str]:
        return self.api_keys.get(provider)

    @property
    def configured_providers(self) -> list[str]:
        return [p for p in PROVIDER_NAMES if self.api_keys.get(p)]

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None,
                 dotenv: bool = True) -> "Settings":
        """
        Build settings from `env` (default: os.environ after loading .env).
        Malformed numbers raise ValidationError naming the variable.
        """
        if env is None:
            if dotenv:
                load_dotenv(override=True)
            env = os.environ

        api_keys: dict[str, str] = {}
        base_urls: dict[str, str] = {}
        for provider in PROVIDER_NAMES:
            prefix = provider.upper()
            if env.get(f"{prefix}_API_KEY"):
                api_keys[provider] = env[f"{prefix}_API_KEY"]
            if env.get(f"{prefix}_BASE_URL"):
                base_urls[provider] = env[f"{prefix}_BASE_URL"]

        settings = cls(
            db_path=Path(env.get("MEDIA_ORCH_DB") or cls.db_path),
            poll_interval=_number(env, "MEDIA_ORCH_POLL_INTERVAL", cls.poll_interval),
            task_timeout=_number(env, "MEDIA_ORCH_TASK_TIMEOUT", cls.task_timeout),
            stale_after=_number(env, "MEDIA_ORCH_STALE_AFTER", cls.stale_after),
            max_group_duration=_number(env, "MEDIA_ORCH_MAX_GROUP_DURATION",
                                       cls.max_group_duration),
            health_threshold=int(_number(env, "MEDIA_ORCH_HEALTH_THRESHOLD",
                                         cls.health_threshold)),
            api_keys=api_keys,
            base_urls=base_urls,
        )
        logger.debug(f"Settings loaded: providers={settings.configured_providers} "
                     f"db={settings.db_path}")
        return settings


def _number(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {raw!r}")
    return value
