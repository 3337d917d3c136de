"""Migration files: recorded transcripts replayed through a cycle."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

MIGRATION_EXTENSION = ".jsonl"
METADATA_KEY = "_migration"
DEFAULT_MIGRATION_MODEL = "haiku"
MIGRATIONS_DIR = Path(".claude") / "migrations"

_NUMBER_RE = re.compile(r"^(\d+)-")


class MigrationError(RuntimeError):
    """Raised when a migration file is missing, empty or has bad metadata."""


@dataclass(slots=True)
class Migration:
    path: Path
    description: str
    model: str
    transcript_content: str
    verify: dict[str, Any] = field(default_factory=dict)

    @property
    def number(self) -> int | None:
        return migration_number(self.path)


def migration_number(path: Path) -> int | None:
    match = _NUMBER_RE.match(Path(path).name)
    return int(match.group(1)) if match else None


def parse_migration(path: Path) -> Migration:
    """Read a migration: a JSON metadata line followed by transcript lines."""

    path = Path(path)
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        raise MigrationError(f"Cannot read migration file {path}: {exc}") from exc
    if not lines or not lines[0].strip():
        raise MigrationError(f"Migration file is empty: {path}")

    try:
        metadata = json.loads(lines[0])
    except ValueError as exc:
        raise MigrationError(f"Migration metadata is not valid JSON in {path}: {exc}") from exc
    if not isinstance(metadata, dict):
        raise MigrationError(f"Migration metadata must be a JSON object in {path}")
    if isinstance(metadata.get(METADATA_KEY), dict):
        metadata = metadata[METADATA_KEY]

    verify = metadata.get("verify")
    return Migration(
        path=path,
        description=str(metadata.get("description") or "Unknown"),
        model=str(metadata.get("model") or DEFAULT_MIGRATION_MODEL),
        transcript_content="\n".join(line for line in lines[1:] if line.strip()),
        verify=verify if isinstance(verify, dict) else {},
    )


def select_migrations(directory: Path, *, to: int | None = None, only: int | None = None) -> list[Path]:
    """Migration files in name order, filtered by ``only`` or ``to``."""

    files = sorted(Path(directory).glob(f"*{MIGRATION_EXTENSION}"))
    if only is not None:
        return [path for path in files if migration_number(path) == only]
    if to is not None:
        return [
            path
            for path in files
            if (number := migration_number(path)) is not None and number <= to
        ]
    return files


__all__ = [
    "MIGRATIONS_DIR",
    "Migration",
    "MigrationError",
    "migration_number",
    "parse_migration",
    "select_migrations",
]
