from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from creeper.agent import AgentExecutionResult, FakeAgentRunner
from creeper.cycle import AnalysisCycle, CycleState, transcript_identifier
from creeper.domains import DomainPipeline
from creeper.storage import StateStore
from creeper.workflow import ReviewToolUnavailableError, WorkflowError, WorkspaceHandle

NOW = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)
PR_URL = "https://github.com/acme/app/pull/12"


class FakeWorkflow:
    def __init__(self, *, fail: str | None = None, dirty: bool = True) -> None:
        self.fail = fail
        self.dirty = dirty
        self.calls: list[str] = []
        self.removed = 0
        self.commit_messages: list[str] = []
        self.repository = True

    def _maybe_fail(self, step: str) -> None:
        self.calls.append(step)
        if self.fail == step:
            if step == "review":
                raise ReviewToolUnavailableError("Review-request CLI 'gh' not found")
            raise WorkflowError(f"Failed to {step}", "fatal: boom")

    async def is_repository(self, path: Path) -> bool:
        self.calls.append("rev-parse")
        return self.repository

    async def recent_log(self, path: Path) -> str | None:
        return "abc123 Initial commit"

    async def recent_diff_stat(self, path: Path) -> str | None:
        return None

    async def current_branch(self, path: Path) -> str | None:
        return "main"

    async def create_isolated_workspace(self, base: Path) -> WorkspaceHandle:
        self._maybe_fail("create")
        workspace = base / ".creeper-work"
        workspace.mkdir()
        return WorkspaceHandle(path=workspace, branch="creeper/1")

    async def has_uncommitted_changes(self, path: Path) -> bool:
        self.calls.append("status")
        return self.dirty

    async def list_changed_paths(self, path: Path) -> list[str]:
        return ["CLAUDE.md"]

    async def stage_commit_push(self, path: Path, message: str) -> None:
        self.commit_messages.append(message)
        self._maybe_fail("commit")
        self._maybe_fail("push")

    async def open_review_request(self, path: Path, title: str, body: str) -> str:
        self._maybe_fail("review")
        return PR_URL

    async def remove_isolated_workspace(self, base: Path) -> None:
        self.removed += 1
        workspace = base / ".creeper-work"
        if workspace.exists():
            workspace.rmdir()


def _cycle(
    tmp_path: Path,
    workflow: FakeWorkflow,
    runner: FakeAgentRunner | None,
    *,
    auto_apply: bool = False,
    dry_run: bool = False,
    model: str | None = None,
) -> tuple[AnalysisCycle, StateStore, Path]:
    project = tmp_path / "project"
    project.mkdir(exist_ok=True)
    store = StateStore(tmp_path / "state", clock=lambda: NOW)
    cycle = AnalysisCycle(
        project,
        store=store,
        workflow=workflow,  # type: ignore[arg-type]
        pipeline=DomainPipeline.from_loader(dry_run=dry_run),
        agent_runner=runner,
        auto_apply=auto_apply,
        model=model,
    )
    return cycle, store, project


def test_cycle_without_transcript_or_changes_still_records(tmp_path: Path) -> None:
    workflow = FakeWorkflow(dirty=False)
    cycle, store, project = _cycle(tmp_path, workflow, FakeAgentRunner())

    outcome = asyncio.run(cycle.run())

    assert outcome.published_reference is None
    state = store.load_project_state(project)
    assert state is not None and state.last_analysis == NOW
    assert state.current_branch == "main"
    [record] = store.load_history(project)
    assert record.transcript_id == "none"
    assert record.changes_applied == []
    assert cycle.state is CycleState.IDLE


def test_auto_apply_runs_agent_in_project(tmp_path: Path) -> None:
    workflow = FakeWorkflow()
    runner = FakeAgentRunner()
    cycle, _, project = _cycle(tmp_path, workflow, runner, auto_apply=True)

    outcome = asyncio.run(cycle.run(["lib/main.dart"]))

    assert runner.working_dirs == [project]
    assert "--permission-mode" in runner.invocations[0]
    assert runner.invocations[0][runner.invocations[0].index("--permission-mode") + 1] == "acceptEdits"
    assert "create" not in workflow.calls
    assert workflow.removed == 0
    assert outcome.published_reference is None
    assert CycleState.ISOLATING not in cycle.states


def test_isolated_run_publishes_review_request(tmp_path: Path) -> None:
    workflow = FakeWorkflow()
    runner = FakeAgentRunner()
    cycle, store, project = _cycle(tmp_path, workflow, runner)

    outcome = asyncio.run(cycle.run(["lib/main.dart"], transcript_content='{"type":"user","message":{"content":"hi there"}}'))

    assert runner.working_dirs == [project / ".creeper-work"]
    assert outcome.published_reference == PR_URL
    assert outcome.changed_artifacts == ["CLAUDE.md"]
    assert workflow.commit_messages[0].startswith("creeper: Claude Code Automation improvements")
    assert workflow.removed == 1
    assert not (project / ".creeper-work").exists()

    state = store.load_project_state(project)
    assert state is not None
    assert [item.pr_url for item in state.pending] == [PR_URL]
    [record] = store.load_history(project)
    assert record.pr_url == PR_URL
    assert record.transcript_id.startswith("sha256:")
    assert cycle.states[1:] == [
        CycleState.RUNNING,
        CycleState.ISOLATING,
        CycleState.PUBLISHING,
        CycleState.CLEANUP,
        CycleState.IDLE,
    ]


def test_no_changes_skips_publishing_and_cleans_up(tmp_path: Path) -> None:
    workflow = FakeWorkflow(dirty=False)
    cycle, store, project = _cycle(tmp_path, workflow, FakeAgentRunner())

    outcome = asyncio.run(cycle.run())

    assert workflow.commit_messages == []
    assert "review" not in workflow.calls
    assert workflow.removed == 1
    assert not outcome.has_changes
    assert store.load_history(project)[0].pr_url is None


@pytest.mark.parametrize("step", ["commit", "push", "review"])
def test_publish_failures_always_clean_up(tmp_path: Path, step: str) -> None:
    workflow = FakeWorkflow(fail=step)
    cycle, store, project = _cycle(tmp_path, workflow, FakeAgentRunner())

    outcome = asyncio.run(cycle.run(["a.txt"]))

    assert workflow.removed == 1
    assert not (project / ".creeper-work").exists()
    assert outcome.published_reference is None
    assert outcome.errors
    assert CycleState.ERROR_RECORDED in cycle.states
    [record] = store.load_history(project)
    assert record.pr_url is None
    assert store.load_project_state(project).last_analysis == NOW


def test_workspace_failure_falls_back_to_direct_mode(tmp_path: Path) -> None:
    workflow = FakeWorkflow(fail="create")
    runner = FakeAgentRunner()
    cycle, store, project = _cycle(tmp_path, workflow, runner)

    outcome = asyncio.run(cycle.run())

    assert runner.working_dirs == [project]
    assert workflow.commit_messages == []
    assert workflow.removed == 1
    assert outcome.published_reference is None
    assert len(store.load_history(project)) == 1


def test_agent_unavailable_is_recorded(tmp_path: Path) -> None:
    workflow = FakeWorkflow()
    cycle, store, project = _cycle(tmp_path, workflow, None)

    outcome = asyncio.run(cycle.run())

    assert outcome.errors and "Agent invocation failed" in outcome.errors[0]
    assert workflow.removed == 1
    assert store.load_project_state(project).last_analysis == NOW


def test_dry_run_skips_agent_but_records(tmp_path: Path) -> None:
    workflow = FakeWorkflow()
    runner = FakeAgentRunner()
    cycle, store, project = _cycle(tmp_path, workflow, runner, dry_run=True)

    outcome = asyncio.run(cycle.run(["a.txt"]))

    assert outcome.dry_run
    assert runner.invocations == []
    assert "create" not in workflow.calls
    assert len(store.load_history(project)) == 1


def test_transcript_patterns_are_recorded(tmp_path: Path) -> None:
    transcript = tmp_path / "session-42.jsonl"
    command = {
        "type": "assistant",
        "message": {"content": [{"type": "tool_use", "id": "t", "name": "Bash", "input": {"command": "make test"}}]},
    }
    transcript.write_text("\n".join(json.dumps(command) for _ in range(3)), encoding="utf-8")
    cycle, store, project = _cycle(tmp_path, FakeWorkflow(dirty=False), FakeAgentRunner(), model="opus")

    asyncio.run(cycle.run(transcript_path=transcript))

    [record] = store.load_history(project)
    assert record.transcript_id == "session-42"
    assert record.patterns_detected == ["repeated_command: make test (3x)"]
    invocation = cycle.agent_runner.invocations[0]
    assert invocation[invocation.index("--model") + 1] == "opus"


def test_agent_failure_result_does_not_abort(tmp_path: Path) -> None:
    runner = FakeAgentRunner([AgentExecutionResult(args=(), returncode=1, stdout="", stderr="rate limited")])
    workflow = FakeWorkflow(dirty=False)
    cycle, store, project = _cycle(tmp_path, workflow, runner)

    asyncio.run(cycle.run())

    assert workflow.removed == 1
    assert len(store.load_history(project)) == 1


def test_transcript_identifier() -> None:
    assert transcript_identifier(Path("/x/abc.jsonl"), None) == "abc"
    assert transcript_identifier(None, "content").startswith("sha256:")
    assert transcript_identifier(None, None) == "none"


def test_non_repository_runs_directly(tmp_path: Path) -> None:
    workflow = FakeWorkflow()
    workflow.repository = False
    runner = FakeAgentRunner()
    cycle, _, project = _cycle(tmp_path, workflow, runner)

    outcome = asyncio.run(cycle.run())

    assert runner.working_dirs == [project]
    assert "create" not in workflow.calls
    assert workflow.removed == 1
    assert outcome.published_reference is None


def test_state_history_covers_only_the_latest_run(tmp_path: Path) -> None:
    cycle, _, _ = _cycle(tmp_path, FakeWorkflow(), FakeAgentRunner(), auto_apply=True)

    for _ in range(3):
        asyncio.run(cycle.run())

    assert cycle.states == [CycleState.IDLE, CycleState.RUNNING, CycleState.CLEANUP, CycleState.IDLE]
