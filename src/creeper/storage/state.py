"""JSON file persistence for daemon and per-project state."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from .models import AnalysisRecord, DaemonRecord, ProjectState

logger = logging.getLogger(__name__)

STATE_FILE = "state.json"
PID_FILE = "creeper.pid"
HISTORY_FILE = "history.jsonl"
RECENT_HISTORY = 10


def project_key(project_path: str | Path) -> str:
    """Short deterministic identifier for a project directory."""

    normalized = str(Path(project_path).expanduser().absolute())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:12]


def probe_process(pid: int) -> bool:
    """Return True when ``pid`` names a live process, without signalling it."""

    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class StateStore:
    """Read and write Creeper state under a per-machine directory.

    Layout::

        <base>/state.json                    daemon record
        <base>/creeper.pid                   daemon pid
        <base>/projects/<key>/state.json     project state
        <base>/projects/<key>/history.jsonl  analysis history
    """

    def __init__(
        self,
        base_dir: Path,
        *,
        clock: Callable[[], datetime] | None = None,
        process_probe: Callable[[int], bool] | None = None,
        history_limit: int = 50,
    ) -> None:
        self._base_dir = Path(base_dir)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._probe = process_probe or probe_process
        self._history_limit = history_limit

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def project_dir(self, project_path: str | Path) -> Path:
        return self._base_dir / "projects" / project_key(project_path)

    @staticmethod
    def _write_atomic(path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @staticmethod
    def _read_json(path: Path) -> dict[str, Any] | None:
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.debug("Ignoring unreadable state file", extra={"path": str(path), "error": str(exc)})
            return None
        return document if isinstance(document, dict) else None

    # daemon record

    def read_daemon_record(self) -> DaemonRecord | None:
        document = self._read_json(self._base_dir / STATE_FILE)
        if document is None:
            return None
        try:
            return DaemonRecord.model_validate(document)
        except ValidationError:
            logger.debug("Ignoring malformed daemon record")
            return None

    def write_daemon_record(self, record: DaemonRecord) -> None:
        self._write_atomic(self._base_dir / STATE_FILE, record.model_dump_json())
        self._write_atomic(self._base_dir / PID_FILE, str(record.pid))

    def delete_daemon_record(self) -> None:
        (self._base_dir / STATE_FILE).unlink(missing_ok=True)
        (self._base_dir / PID_FILE).unlink(missing_ok=True)

    def read_pid(self) -> int | None:
        try:
            content = (self._base_dir / PID_FILE).read_text(encoding="utf-8")
        except OSError:
            return None
        try:
            return int(content.strip())
        except ValueError:
            return None

    def is_daemon_running(self) -> bool:
        """Probe the recorded pid, dropping the record when the process is gone."""

        pid = self.read_pid()
        if pid is None:
            return False
        if self._probe(pid):
            return True
        logger.info("Removing stale daemon record", extra={"pid": pid})
        self.delete_daemon_record()
        return False

    # project state

    def load_project_state(self, project_path: str | Path) -> ProjectState | None:
        document = self._read_json(self.project_dir(project_path) / STATE_FILE)
        if document is None:
            return None
        try:
            return ProjectState.model_validate(document)
        except ValidationError:
            logger.debug("Ignoring malformed project state", extra={"project": str(project_path)})
            return None

    def save_project_state(self, state: ProjectState) -> None:
        target = self.project_dir(state.project_path) / STATE_FILE
        self._write_atomic(target, state.model_dump_json(indent=2))

    def update_project_state(self, project_path: str | Path, **changes: Any) -> ProjectState:
        """Merge ``changes`` into the stored project state and persist the result."""

        current = self.load_project_state(project_path) or ProjectState(
            project_path=str(project_path)
        )
        merged = ProjectState.model_validate({**current.model_dump(), **changes})
        self.save_project_state(merged)
        return merged

    # history

    def append_history(self, project_path: str | Path, record: AnalysisRecord) -> None:
        target = self.project_dir(project_path) / HISTORY_FILE
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("a", encoding="utf-8") as handle:
            handle.write(record.model_dump_json() + "\n")

        state = self.load_project_state(project_path) or ProjectState(
            project_path=str(project_path)
        )
        recent = [record, *state.history][:RECENT_HISTORY]
        self.save_project_state(state.model_copy(update={"history": recent}))

    def load_history(self, project_path: str | Path, *, limit: int | None = None) -> list[AnalysisRecord]:
        """Return history records, most recent first."""

        target = self.project_dir(project_path) / HISTORY_FILE
        try:
            lines = target.read_text(encoding="utf-8").splitlines()
        except OSError:
            return []

        limit = self._history_limit if limit is None else limit
        if limit <= 0:
            return []

        records: list[AnalysisRecord] = []
        for line in reversed(lines):
            if not line.strip():
                continue
            try:
                records.append(AnalysisRecord.model_validate_json(line))
            except ValidationError:
                continue
            if len(records) >= limit:
                break
        return records

    def now(self) -> datetime:
        return self._clock()


__all__ = ["StateStore", "project_key", "probe_process"]
