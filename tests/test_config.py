from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from creeper.config import CreeperSettings, format_duration, parse_duration


@pytest.mark.parametrize(
    "text, expected",
    [
        ("30s", timedelta(seconds=30)),
        ("10m", timedelta(minutes=10)),
        ("2h", timedelta(hours=2)),
        ("5M", timedelta(minutes=5)),
    ],
)
def test_parse_duration_units(text: str, expected: timedelta) -> None:
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "0m", "abc", "10", "5d", "-3s", None])
def test_parse_duration_falls_back_to_default(text: str | None) -> None:
    assert parse_duration(text) == timedelta(minutes=10)
    assert parse_duration(text, timedelta(seconds=7)) == timedelta(seconds=7)


def test_format_duration_uses_largest_whole_unit() -> None:
    assert format_duration(timedelta(hours=1)) == "1h"
    assert format_duration(timedelta(minutes=90)) == "90m"
    assert format_duration(timedelta(seconds=45)) == "45s"


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CREEPER_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("CREEPER_WAIT", "30s")
    monkeypatch.setenv("CREEPER_AUTO_APPLY", "true")
    monkeypatch.setenv("CREEPER_AGENT_TIMEOUT", "5m")
    monkeypatch.setenv("CREEPER_LOG_LEVEL", "debug")
    monkeypatch.setenv("CREEPER_DOMAIN_PATHS", os.pathsep.join([str(tmp_path / "a"), str(tmp_path / "b")]))

    settings = CreeperSettings().resolved()

    assert settings.state_dir == (tmp_path / "state").resolve()
    assert settings.wait == timedelta(seconds=30)
    assert settings.auto_apply is True
    assert settings.agent_timeout == timedelta(minutes=5)
    assert settings.log_level == "DEBUG"
    assert settings.domain_paths == ((tmp_path / "a").resolve(), (tmp_path / "b").resolve())


def test_settings_invalid_wait_uses_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CREEPER_WAIT", "soon")

    assert CreeperSettings().wait == timedelta(minutes=10)


def test_settings_reject_unknown_log_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CREEPER_LOG_LEVEL", "chatty")

    with pytest.raises(ValidationError):
        CreeperSettings()
