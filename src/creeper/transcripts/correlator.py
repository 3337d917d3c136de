"""Locate the session transcript that belongs to a watched project."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from itertools import islice
from pathlib import Path

logger = logging.getLogger(__name__)

TRANSCRIPT_EXTENSION = ".jsonl"


@dataclass(frozen=True, slots=True)
class TranscriptCandidate:
    path: Path
    modified: datetime


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TranscriptCorrelator:
    """Search a transcript store for the newest transcript mentioning a project.

    The store holds one directory per agent project context, each containing
    ``.jsonl`` event logs. Only the first ``scan_lines`` lines of a candidate
    are inspected.
    """

    def __init__(self, store_dir: Path, *, scan_lines: int = 10) -> None:
        self._store_dir = Path(store_dir)
        self._scan_lines = scan_lines

    @property
    def store_dir(self) -> Path:
        return self._store_dir

    def candidates(self, since: datetime | None = None) -> list[TranscriptCandidate]:
        """List transcripts modified strictly after ``since`` in discovery order."""

        if not self._store_dir.is_dir():
            logger.debug("Transcript store unavailable", extra={"path": str(self._store_dir)})
            return []

        threshold = _as_utc(since) if since is not None else None
        found: list[TranscriptCandidate] = []
        try:
            contexts = sorted(entry for entry in self._store_dir.iterdir() if entry.is_dir())
        except OSError as exc:
            logger.warning("Cannot list transcript store", extra={"error": str(exc)})
            return []

        for context_dir in contexts:
            try:
                files = sorted(context_dir.glob(f"*{TRANSCRIPT_EXTENSION}"))
            except OSError:
                continue
            for path in files:
                try:
                    stat = path.stat()
                except OSError:
                    continue
                if not path.is_file():
                    continue
                modified = datetime.fromtimestamp(stat.st_mtime, timezone.utc)
                if threshold is not None and modified <= threshold:
                    continue
                found.append(TranscriptCandidate(path=path, modified=modified))
        return found

    def matches(self, candidate: TranscriptCandidate, project_path: Path) -> bool:
        """Check the bounded prefix of a transcript for a reference to the project."""

        absolute = str(Path(project_path).absolute())
        directory_hint = f"/{Path(absolute).name}/"
        try:
            with candidate.path.open("r", encoding="utf-8", errors="replace") as handle:
                for line in islice(handle, self._scan_lines):
                    if absolute in line or directory_hint in line:
                        return True
        except OSError:
            return False
        return False

    def find_transcript(self, project_path: Path, since: datetime | None = None) -> Path | None:
        """Return the most recently modified matching transcript, or None."""

        best: TranscriptCandidate | None = None
        for candidate in self.candidates(since):
            if best is not None and candidate.modified <= best.modified:
                continue
            if self.matches(candidate, project_path):
                best = candidate

        if best is None:
            logger.debug("No transcript found", extra={"project": str(project_path)})
            return None
        logger.info("Selected transcript", extra={"transcript": str(best.path)})
        return best.path


__all__ = ["TranscriptCandidate", "TranscriptCorrelator", "TRANSCRIPT_EXTENSION"]
