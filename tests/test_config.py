from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from roomy_cli.config import RoomySettings, get_settings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "ROOMY_CLI_DIR",
        "ROOMY_STATE_TTL_SECONDS",
        "ROOMY_LOCK_STALE_SECONDS",
        "ROOMY_LOG_LEVEL",
        "ROOMY_USE_KEYRING",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = RoomySettings(_env_file=None)

    assert settings.config_dir == Path("~/.roomy-cli")
    assert settings.state_ttl_seconds == 3600
    assert settings.lock_stale_seconds == 45
    assert settings.keyserver_url == "https://jazz.keyserver.roomy.chat"
    assert settings.log_level == "WARNING"
    assert settings.use_keyring is True


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ROOMY_CLI_DIR", str(tmp_path))
    monkeypatch.setenv("ROOMY_LOCK_STALE_SECONDS", "10")
    monkeypatch.setenv("ROOMY_LOG_LEVEL", " debug ")
    monkeypatch.setenv("ROOMY_KEYSERVER_URL", "https://keys.example.test/")

    settings = RoomySettings(_env_file=None)

    assert settings.config_dir == tmp_path
    assert settings.lock_stale_seconds == 10
    assert settings.log_level == "DEBUG"
    assert settings.keyserver_url == "https://keys.example.test"


@pytest.mark.parametrize(
    ("name", "value"),
    [("ROOMY_LOG_LEVEL", "chatty"), ("ROOMY_STATE_TTL_SECONDS", "0"), ("ROOMY_SECRET_SERVICE", " ")],
)
def test_invalid_values_rejected(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        RoomySettings(_env_file=None)


def test_get_settings_resolves_config_dir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ROOMY_CLI_DIR", str(tmp_path / "cfg" / ".." / "cfg"))
    get_settings.cache_clear()
    try:
        assert get_settings().config_dir == (tmp_path / "cfg").resolve()
    finally:
        get_settings.cache_clear()
