"""Polling change detection over a project tree."""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

WORKSPACE_DIRNAME = ".creeper-work"

IGNORED_DIRECTORIES = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        ".dart_tool",
        "build",
        "dist",
        "node_modules",
        "coverage",
        "htmlcov",
        "__pycache__",
        ".mypy_cache",
        ".pytest_cache",
        ".ruff_cache",
        ".tox",
        ".venv",
        "venv",
        WORKSPACE_DIRNAME,
    }
)

IGNORED_FILES = frozenset({".flutter-plugins", ".packages", "pubspec.lock", ".coverage"})


class ChangeDetector:
    """Track modification times of every non-ignored file under ``root``.

    Paths are reported relative to ``root`` using forward slashes. A rename
    shows up as the old path (removed) plus the new path (added).
    """

    def __init__(
        self,
        root: Path,
        *,
        ignored_directories: frozenset[str] = IGNORED_DIRECTORIES,
        ignored_files: frozenset[str] = IGNORED_FILES,
    ) -> None:
        self._root = Path(root)
        self._ignored_directories = ignored_directories
        self._ignored_files = ignored_files
        self._entries: dict[str, int] = {}

    @property
    def root(self) -> Path:
        return self._root

    @property
    def entries(self) -> dict[str, int]:
        return dict(self._entries)

    def scan(self) -> dict[str, int]:
        """Walk the tree and return ``relative path -> mtime (ns)``."""

        observed: dict[str, int] = {}
        for current, dirnames, filenames in os.walk(self._root, followlinks=False):
            dirnames[:] = [name for name in dirnames if name not in self._ignored_directories]
            for name in filenames:
                if name in self._ignored_files:
                    continue
                path = Path(current) / name
                try:
                    stat = path.stat()
                except OSError:
                    continue
                observed[path.relative_to(self._root).as_posix()] = stat.st_mtime_ns
        return observed

    def prime(self) -> int:
        """Record the current tree as the baseline; returns the number of files seen."""

        self._entries = self.scan()
        logger.debug("Baseline scan complete", extra={"files": len(self._entries)})
        return len(self._entries)

    def detect_changes(self, previous: dict[str, int] | None = None) -> set[str]:
        """Return paths added, modified or removed since ``previous``.

        ``previous`` defaults to the detector's own record and is updated in
        place so a change is reported only once.
        """

        recorded = self._entries if previous is None else previous
        current = self.scan()
        changed: set[str] = set()

        for path, mtime in current.items():
            last = recorded.get(path)
            if last is None or mtime > last:
                changed.add(path)
                recorded[path] = mtime

        for path in [path for path in recorded if path not in current]:
            changed.add(path)
            del recorded[path]

        return changed


__all__ = ["ChangeDetector", "IGNORED_DIRECTORIES", "IGNORED_FILES", "WORKSPACE_DIRNAME"]
