"""Tests for Settings.from_env()."""
from __future__ import annotations

from pathlib import Path

import pytest

from media_orchestrator.config import Settings
from media_orchestrator.errors import ValidationError


def test_defaults_from_empty_environment():
    settings = Settings.from_env({})
    assert settings.db_path == Path(".media_orchestrator/state.db")
    assert settings.poll_interval == 5.0
    assert settings.task_timeout == 600.0
    assert settings.stale_after == 600.0
    assert settings.max_group_duration == 15.0
    assert settings.health_threshold == 3
    assert settings.configured_providers == []


def test_values_and_provider_keys():
    settings = Settings.from_env({
        "MEDIA_ORCH_DB": "/tmp/x.db",
        "MEDIA_ORCH_POLL_INTERVAL": "2.5",
        "MEDIA_ORCH_TASK_TIMEOUT": "900",
        "MEDIA_ORCH_HEALTH_THRESHOLD": "5",
        "KIE_API_KEY": "k1",
        "YIJIAPI_API_KEY": "k2",
        "SUTU_API_KEY": "",
        "YUNWU_BASE_URL": "https://proxy.test/yunwu",
    })
    assert settings.db_path == Path("/tmp/x.db")
    assert settings.poll_interval == 2.5
    assert settings.task_timeout == 900.0
    assert settings.health_threshold == 5
    assert settings.configured_providers == ["kie", "yijiapi"]
    assert settings.api_key("kie") == "k1"
    assert settings.api_key("sutu") is None
    assert settings.base_urls == {"yunwu": "https://proxy.test/yunwu"}


@pytest.mark.parametrize("value", ["soon", "0", "-3"])
def test_bad_numbers_name_the_variable(value):
    with pytest.raises(ValidationError, match="MEDIA_ORCH_STALE_AFTER"):
        Settings.from_env({"MEDIA_ORCH_STALE_AFTER": value})


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("SUTU_API_KEY", "from-env")
    monkeypatch.setenv("MEDIA_ORCH_MAX_GROUP_DURATION", "25")
    settings = Settings.from_env(dotenv=False)
    assert settings.api_key("sutu") == "from-env"
    assert settings.max_group_duration == 25.0
