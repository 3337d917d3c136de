from __future__ import annotations

import asyncio
from datetime import timedelta
from pathlib import Path
from typing import Callable

from creeper.agent import FakeAgentRunner
from creeper.cycle import AnalysisCycle, CycleOutcome, CycleState
from creeper.domains import DomainPipeline
from creeper.daemon import Watcher
from creeper.storage import StateStore
from creeper.transcripts import TranscriptCorrelator
from creeper.workflow import WorkflowManager


class FakeHandle:
    def __init__(self, callback: Callable[[], None]) -> None:
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimers:
    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle(callback)
        self.handles.append(handle)
        return handle

    def fire(self) -> None:
        [handle] = [handle for handle in self.handles if not handle.cancelled]
        handle.cancelled = True
        handle.callback()


class FakeCycle:
    def __init__(self, gate: asyncio.Event | None = None) -> None:
        self.gate = gate
        self.runs: list[list[str]] = []
        self.state = CycleState.IDLE

    async def run(self, changed_files, *, transcript_path=None, transcript_content=None) -> CycleOutcome:
        self.runs.append(list(changed_files))
        self.state = CycleState.RUNNING
        if self.gate is not None:
            await self.gate.wait()
        self.state = CycleState.IDLE
        return CycleOutcome()


def _watcher(tmp_path: Path, cycle: FakeCycle, timers: FakeTimers) -> tuple[Watcher, Path, StateStore]:
    project = tmp_path / "project"
    project.mkdir()
    store = StateStore(tmp_path / "state")
    watcher = Watcher(
        project,
        cycle,  # type: ignore[arg-type]
        store=store,
        correlator=TranscriptCorrelator(tmp_path / "transcripts"),
        wait=timedelta(minutes=10),
        poll_interval=timedelta(seconds=1),
        call_later=timers,
    )
    watcher.detector.prime()
    return watcher, project, store


def test_burst_of_changes_runs_one_cycle(tmp_path: Path) -> None:
    timers, cycle = FakeTimers(), FakeCycle()
    watcher, project, store = _watcher(tmp_path, cycle, timers)

    async def scenario() -> None:
        (project / "a.txt").write_text("a", encoding="utf-8")
        (project / "b.txt").write_text("b", encoding="utf-8")
        assert watcher.poll_once() == {"a.txt", "b.txt"}
        (project / "c.txt").write_text("c", encoding="utf-8")
        watcher.poll_once()
        assert watcher.poll_once() == set()
        assert watcher.state is CycleState.DEBOUNCING

        timers.fire()
        await watcher.wait_idle()

    asyncio.run(scenario())

    assert cycle.runs == [["a.txt", "b.txt", "c.txt"]]
    assert watcher.cycles_run == 1
    assert watcher.state is CycleState.IDLE
    assert store.load_project_state(project).next_scheduled is not None


def test_changes_during_cycle_are_deferred(tmp_path: Path) -> None:
    timers = FakeTimers()
    watcher_holder: dict[str, Watcher] = {}

    async def scenario() -> None:
        gate = asyncio.Event()
        cycle = FakeCycle(gate)
        watcher, project, _ = _watcher(tmp_path, cycle, timers)
        watcher_holder["w"] = watcher

        (project / "a.txt").write_text("a", encoding="utf-8")
        watcher.poll_once()
        timers.fire()
        await asyncio.sleep(0)
        assert watcher.in_progress

        (project / "d.txt").write_text("d", encoding="utf-8")
        watcher.poll_once()
        timers.fire()
        await asyncio.sleep(0)
        assert len(cycle.runs) == 1

        gate.set()
        await watcher.wait_idle()
        assert watcher.scheduler.armed
        assert watcher.scheduler.pending == ["d.txt"]
        assert watcher.store.load_project_state(project).next_scheduled is not None

        timers.fire()
        await watcher.wait_idle()
        assert cycle.runs == [["a.txt"], ["d.txt"]]

    asyncio.run(scenario())

    assert watcher_holder["w"].cycles_run == 2


def test_cycle_exception_is_contained(tmp_path: Path) -> None:
    class ExplodingCycle(FakeCycle):
        async def run(self, changed_files, **kwargs) -> CycleOutcome:
            raise RuntimeError("boom")

    timers = FakeTimers()
    watcher, project, _ = _watcher(tmp_path, ExplodingCycle(), timers)

    assert asyncio.run(watcher.run_pending_cycle()) is None
    assert not watcher.in_progress


def test_run_stops_on_event(tmp_path: Path) -> None:
    timers, cycle = FakeTimers(), FakeCycle()
    watcher, _, _ = _watcher(tmp_path, cycle, timers)

    async def scenario() -> None:
        stop = asyncio.Event()
        stop.set()
        await asyncio.wait_for(watcher.run(stop), timeout=5)

    asyncio.run(scenario())

    assert cycle.runs == []


def test_edits_during_cycle_keep_next_scheduled(tmp_path: Path) -> None:
    timers = FakeTimers()
    project = tmp_path / "project"
    project.mkdir()
    store = StateStore(tmp_path / "state")
    holder: dict[str, Watcher] = {}

    def agent_edits(cwd: Path) -> None:
        (cwd / "CLAUDE.md").write_text("# rules\n", encoding="utf-8")
        holder["watcher"].poll_once()

    cycle = AnalysisCycle(
        project,
        store=store,
        workflow=WorkflowManager(git=str(tmp_path / "no-git")),
        pipeline=DomainPipeline.from_loader(),
        agent_runner=FakeAgentRunner(on_run=agent_edits),
        auto_apply=True,
    )
    watcher = Watcher(
        project,
        cycle,
        store=store,
        correlator=TranscriptCorrelator(tmp_path / "transcripts"),
        wait=timedelta(minutes=10),
        poll_interval=timedelta(seconds=1),
        call_later=timers,
    )
    holder["watcher"] = watcher
    watcher.detector.prime()

    async def scenario() -> None:
        (project / "a.txt").write_text("a", encoding="utf-8")
        watcher.poll_once()
        timers.fire()
        await watcher.wait_idle()

    asyncio.run(scenario())

    assert watcher.cycles_run == 1
    assert watcher.scheduler.armed
    assert watcher.scheduler.pending == ["CLAUDE.md"]
    state = store.load_project_state(project)
    assert state is not None
    assert state.last_analysis is not None
    assert state.next_scheduled is not None
    assert state.next_scheduled > state.last_analysis
