from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

from creeper.storage import (
    AnalysisRecord,
    DaemonRecord,
    PendingImprovement,
    StateStore,
    project_key,
)
from creeper.storage.state import RECENT_HISTORY

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _store(tmp_path: Path, **kwargs) -> StateStore:
    return StateStore(tmp_path / "state", clock=lambda: NOW, **kwargs)


def _record(index: int) -> AnalysisRecord:
    return AnalysisRecord(
        timestamp=NOW + timedelta(minutes=index),
        transcript_id=f"t{index}",
        patterns_detected=[f"pattern-{index}"],
    )


def test_project_key_is_stable(tmp_path: Path) -> None:
    assert project_key(tmp_path) == project_key(str(tmp_path))
    assert len(project_key(tmp_path)) == 12
    assert project_key(tmp_path / "a") != project_key(tmp_path / "b")


def test_update_project_state_merges_fields(tmp_path: Path) -> None:
    store = _store(tmp_path)
    project = tmp_path / "proj"
    pending = PendingImprovement(type="claude_code_automation", description="x", detected=NOW, pr_url="u")

    store.update_project_state(project, current_branch="main", pending=[pending])
    merged = store.update_project_state(project, last_analysis=NOW)

    assert merged.current_branch == "main"
    assert merged.last_analysis == NOW
    assert [item.pr_url for item in merged.pending] == ["u"]

    reloaded = store.load_project_state(project)
    assert reloaded == merged


def test_history_is_returned_most_recent_first(tmp_path: Path) -> None:
    store = _store(tmp_path)
    project = tmp_path / "proj"

    for index in range(RECENT_HISTORY + 3):
        store.append_history(project, _record(index))

    history = store.load_history(project, limit=3)
    assert [record.transcript_id for record in history] == ["t12", "t11", "t10"]

    state = store.load_project_state(project)
    assert state is not None
    assert len(state.history) == RECENT_HISTORY
    assert state.history[0].transcript_id == "t12"


def test_history_limit_defaults_to_store_limit(tmp_path: Path) -> None:
    store = _store(tmp_path, history_limit=2)
    project = tmp_path / "proj"
    for index in range(5):
        store.append_history(project, _record(index))

    assert len(store.load_history(project)) == 2


def test_history_skips_malformed_lines(tmp_path: Path) -> None:
    store = _store(tmp_path)
    project = tmp_path / "proj"
    store.append_history(project, _record(1))
    history_file = store.project_dir(project) / "history.jsonl"
    with history_file.open("a", encoding="utf-8") as handle:
        handle.write("{not json\n")
    store.append_history(project, _record(2))

    assert [record.transcript_id for record in store.load_history(project)] == ["t2", "t1"]


def test_corrupt_project_state_is_treated_as_missing(tmp_path: Path) -> None:
    store = _store(tmp_path)
    project = tmp_path / "proj"
    target = store.project_dir(project) / "state.json"
    target.parent.mkdir(parents=True)
    target.write_text("{broken", encoding="utf-8")

    assert store.load_project_state(project) is None
    state = store.update_project_state(project, current_branch="dev")
    assert state.current_branch == "dev"


def test_stale_daemon_record_is_removed(tmp_path: Path) -> None:
    store = _store(tmp_path, process_probe=lambda pid: False)
    store.write_daemon_record(
        DaemonRecord(pid=4242, started_at=NOW, project_path=str(tmp_path), wait=timedelta(minutes=10))
    )

    assert store.read_pid() == 4242
    assert store.is_daemon_running() is False
    assert store.read_pid() is None
    assert store.read_daemon_record() is None


def test_live_daemon_record_is_kept(tmp_path: Path) -> None:
    store = _store(tmp_path, process_probe=lambda pid: pid == 4242)
    record = DaemonRecord(pid=4242, started_at=NOW, project_path=str(tmp_path), wait=timedelta(seconds=30))
    store.write_daemon_record(record)

    assert store.is_daemon_running() is True
    assert store.read_daemon_record() == record


def test_zero_history_limit_returns_nothing(tmp_path: Path) -> None:
    store = _store(tmp_path)
    project = tmp_path / "proj"
    store.append_history(project, _record(1))

    assert store.load_history(project, limit=0) == []
    assert len(store.load_history(project, limit=None)) == 1
