from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from switchboard.core.http import RetryPolicy
from switchboard.settings import GatewaySettings, get_settings


def test_defaults() -> None:
    settings = GatewaySettings()

    assert settings.log_level == "INFO"
    assert settings.retry_policy() == RetryPolicy(max_attempts=3, backoff_base=1.0, backoff_max=10.0)
    assert settings.timeout().read == 60.0
    assert settings.timeout().connect == 10.0
    assert settings.models_file is None


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SWITCHBOARD_LOG_LEVEL", "debug")
    monkeypatch.setenv("SWITCHBOARD_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("SWITCHBOARD_REQUEST_TIMEOUT_SECONDS", "12.5")

    settings = GatewaySettings()

    assert settings.log_level == "DEBUG"
    assert settings.retry_policy().max_attempts == 5
    assert settings.timeout().read == 12.5


def test_dotenv_file_is_read(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text("SWITCHBOARD_BACKOFF_MAX_SECONDS=2\n", encoding="utf-8")

    assert GatewaySettings().backoff_max_seconds == 2.0


def test_invalid_values_are_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SWITCHBOARD_LOG_LEVEL", "loud")
    with pytest.raises(ValidationError):
        GatewaySettings()

    monkeypatch.setenv("SWITCHBOARD_LOG_LEVEL", "INFO")
    monkeypatch.setenv("SWITCHBOARD_MAX_ATTEMPTS", "0")
    with pytest.raises(ValidationError):
        GatewaySettings()


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()
