"""Configuration management for Creeper."""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os
import re

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_WAIT = timedelta(minutes=10)
DEFAULT_POLL_INTERVAL = timedelta(seconds=5)

_DURATION_RE = re.compile(r"^(\d+)(s|m|h)$", re.IGNORECASE)
_UNITS = {"s": "seconds", "m": "minutes", "h": "hours"}


def parse_duration(text: str | None, default: timedelta = DEFAULT_WAIT) -> timedelta:
    """Parse a compact duration such as ``30s``, ``10m`` or ``2h``.

    Anything that does not match, including a zero amount, yields ``default``.
    """

    if not text:
        return default
    match = _DURATION_RE.match(text.strip())
    if match is None:
        return default
    amount = int(match.group(1))
    if amount == 0:
        return default
    return timedelta(**{_UNITS[match.group(2).lower()]: amount})


def format_duration(value: timedelta) -> str:
    """Render a duration in the same compact form ``parse_duration`` accepts."""

    seconds = int(value.total_seconds())
    if seconds and seconds % 3600 == 0:
        return f"{seconds // 3600}h"
    if seconds and seconds % 60 == 0:
        return f"{seconds // 60}m"
    return f"{seconds}s"


class CreeperSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    state_dir: Path = Field(
        default=Path("~/.claude-creeper"), validation_alias="CREEPER_STATE_DIR"
    )
    transcripts_dir: Path = Field(
        default=Path("~/.claude/projects"), validation_alias="CREEPER_TRANSCRIPTS_DIR"
    )
    wait: timedelta = Field(default=DEFAULT_WAIT, validation_alias="CREEPER_WAIT")
    poll_interval: timedelta = Field(
        default=DEFAULT_POLL_INTERVAL, validation_alias="CREEPER_POLL_INTERVAL"
    )
    auto_apply: bool = Field(default=False, validation_alias="CREEPER_AUTO_APPLY")
    dry_run: bool = Field(default=False, validation_alias="CREEPER_DRY_RUN")
    model: str | None = Field(default=None, validation_alias="CREEPER_MODEL")
    agent_path: str | None = Field(default=None, validation_alias="CREEPER_AGENT_PATH")
    agent_timeout: timedelta | None = Field(default=None, validation_alias="CREEPER_AGENT_TIMEOUT")
    git_path: str = Field(default="git", validation_alias="CREEPER_GIT_PATH")
    gh_path: str = Field(default="gh", validation_alias="CREEPER_GH_PATH")
    domain_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(), validation_alias="CREEPER_DOMAIN_PATHS"
    )
    transcript_scan_lines: int = Field(default=10, validation_alias="CREEPER_TRANSCRIPT_SCAN_LINES")
    history_limit: int = Field(default=50, validation_alias="CREEPER_HISTORY_LIMIT")
    log_level: str = Field(default="INFO", validation_alias="CREEPER_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "CREEPER_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("wait", mode="before")
    @classmethod
    def _parse_wait(cls, value):
        if isinstance(value, str):
            return parse_duration(value, DEFAULT_WAIT)
        return value

    @field_validator("poll_interval", mode="before")
    @classmethod
    def _parse_poll_interval(cls, value):
        if isinstance(value, str):
            return parse_duration(value, DEFAULT_POLL_INTERVAL)
        return value

    @field_validator("agent_timeout", mode="before")
    @classmethod
    def _parse_agent_timeout(cls, value):
        if value is None or value == "":
            return None
        if isinstance(value, str):
            parsed = parse_duration(value, timedelta(0))
            return parsed or None
        return value

    @field_validator("domain_paths", mode="before")
    @classmethod
    def _parse_domain_paths(cls, value):
        if value is None or value == "":
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts)
        raise TypeError("CREEPER_DOMAIN_PATHS must be a list of paths or a path-separated string")

    @field_validator("transcript_scan_lines", "history_limit")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("transcript scan lines and history limit must be >= 1")
        return value

    def resolved(self) -> "CreeperSettings":
        """Return a copy with user-relative paths expanded."""

        return self.model_copy(
            update={
                "state_dir": self.state_dir.expanduser().resolve(),
                "transcripts_dir": self.transcripts_dir.expanduser().resolve(),
                "domain_paths": tuple(path.expanduser().resolve() for path in self.domain_paths),
            }
        )


@lru_cache(maxsize=1)
def get_settings() -> CreeperSettings:
    """Return cached settings instance."""

    return CreeperSettings().resolved()


__all__ = ["CreeperSettings", "get_settings", "parse_duration", "format_duration"]
