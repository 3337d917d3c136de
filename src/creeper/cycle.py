"""One analysis cycle: gather context, run domains, isolate, publish, clean up."""

from __future__ import annotations

import enum
import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from .agent.runner import (
    DEFAULT_MODEL,
    AgentExecutionResult,
    AgentInvocation,
    AgentNotFoundError,
    AgentRunner,
    AgentRunnerError,
    serialize_result,
)
from .domains.models import CycleContext
from .domains.pipeline import DomainPipeline, DomainRun
from .storage.models import AnalysisRecord, PendingImprovement
from .storage.state import StateStore
from .transcripts.events import TranscriptAnalysis
from .workflow import (
    WorkflowError,
    WorkflowManager,
    WorkspaceHandle,
    build_commit_message,
    build_review_body,
)

logger = logging.getLogger(__name__)

OUTPUT_PREVIEW = 2000


class CycleState(str, enum.Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    RUNNING = "running"
    ISOLATING = "isolating"
    PUBLISHING = "publishing"
    ERROR_RECORDED = "error_recorded"
    CLEANUP = "cleanup"


@dataclass(slots=True)
class CycleOutcome:
    """What a cycle produced; an empty outcome is still a valid result."""

    published_reference: str | None = None
    changed_artifacts: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    pending: list[PendingImprovement] = field(default_factory=list)
    dry_run: bool = False

    @property
    def has_changes(self) -> bool:
        return bool(self.changed_artifacts)


def transcript_identifier(path: Path | None, content: str | None) -> str:
    if path is not None:
        return path.stem
    if content:
        return "sha256:" + hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]
    return "none"


class AnalysisCycle:
    """Drives a single cycle through its states for one project.

    Every path that entered ``ISOLATING`` passes through ``CLEANUP``, which
    removes the isolated workspace. History and ``last_analysis`` are written
    whatever happened before.
    """

    def __init__(
        self,
        project_path: Path,
        *,
        store: StateStore,
        workflow: WorkflowManager,
        pipeline: DomainPipeline,
        agent_runner: AgentRunner | None,
        auto_apply: bool = False,
        model: str | None = None,
    ) -> None:
        self.project_path = Path(project_path)
        self.store = store
        self.workflow = workflow
        self.pipeline = pipeline
        self.agent_runner = agent_runner
        self.auto_apply = auto_apply
        self.model = model
        self.states: list[CycleState] = [CycleState.IDLE]

    @property
    def state(self) -> CycleState:
        return self.states[-1]

    def _enter(self, state: CycleState) -> None:
        self.states.append(state)
        logger.debug("Cycle state", extra={"state": state.value, "project": str(self.project_path)})

    async def gather_context(
        self,
        changed_files: Iterable[str] = (),
        *,
        transcript_path: Path | None = None,
        transcript_content: str | None = None,
    ) -> CycleContext:
        if transcript_content is None and transcript_path is not None:
            try:
                transcript_content = Path(transcript_path).read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                logger.warning(
                    "Cannot read transcript",
                    extra={"transcript": str(transcript_path), "error": str(exc)},
                )

        analysis = TranscriptAnalysis.from_content(transcript_content) if transcript_content else None

        return CycleContext(
            project_path=self.project_path,
            changed_files=tuple(dict.fromkeys(changed_files)),
            transcript_path=transcript_path,
            transcript_content=transcript_content,
            git_log=await self.workflow.recent_log(self.project_path),
            git_diff_stat=await self.workflow.recent_diff_stat(self.project_path),
            analysis=analysis,
        )

    async def run(
        self,
        changed_files: Iterable[str] = (),
        *,
        transcript_path: Path | None = None,
        transcript_content: str | None = None,
    ) -> CycleOutcome:
        self.states = [CycleState.IDLE]
        self._enter(CycleState.RUNNING)
        outcome = CycleOutcome(dry_run=self.pipeline.dry_run)
        context: CycleContext | None = None
        try:
            context = await self.gather_context(
                changed_files,
                transcript_path=transcript_path,
                transcript_content=transcript_content,
            )
            for domain_run in self.pipeline.run(context):
                if self.pipeline.dry_run:
                    self._log_dry_run(domain_run)
                    continue
                await self._execute(domain_run, outcome)
        finally:
            if self.state is not CycleState.CLEANUP:
                self._enter(CycleState.CLEANUP)
            await self._record(context, outcome, transcript_path, transcript_content)
            self._enter(CycleState.IDLE)
        return outcome

    def _log_dry_run(self, domain_run: DomainRun) -> None:
        logger.info(
            "Dry run for domain %s\n=== USER PROMPT ===\n%s\n=== SYSTEM PROMPT APPEND ===\n%s",
            domain_run.domain.name,
            domain_run.result.user_prompt,
            domain_run.result.system_prompt_append,
            extra={"domain": domain_run.domain.id},
        )

    def _record_error(self, outcome: CycleOutcome, message: str, exc: Exception) -> None:
        self._enter(CycleState.ERROR_RECORDED)
        outcome.errors.append(f"{message}: {exc}")
        logger.error(message, extra={"error": str(exc), "project": str(self.project_path)})

    async def _execute(self, domain_run: DomainRun, outcome: CycleOutcome) -> None:
        workspace: WorkspaceHandle | None = None
        working_dir = self.project_path
        isolating = not self.auto_apply

        if isolating:
            self._enter(CycleState.ISOLATING)
            try:
                if not await self.workflow.is_repository(self.project_path):
                    raise WorkflowError("Project is not a git repository", str(self.project_path))
                workspace = await self.workflow.create_isolated_workspace(self.project_path)
                working_dir = workspace.path
                logger.info("Workspace created", extra={"branch": workspace.branch, "path": str(workspace.path)})
            except WorkflowError as exc:
                logger.warning(
                    "Could not create isolated workspace; falling back to direct mode",
                    extra={"error": str(exc)},
                )

        try:
            try:
                result = await self._invoke_agent(domain_run, working_dir)
            except AgentRunnerError as exc:
                self._record_error(outcome, "Agent invocation failed", exc)
                return
            self._log_agent_result(result)

            if workspace is not None:
                self._enter(CycleState.PUBLISHING)
                try:
                    await self._publish(domain_run, workspace, outcome)
                except WorkflowError as exc:
                    self._record_error(outcome, "Publishing failed", exc)
        finally:
            if isolating:
                self._enter(CycleState.CLEANUP)
                logger.info("Cleaning up workspace")
                await self.workflow.remove_isolated_workspace(self.project_path)

    async def _invoke_agent(self, domain_run: DomainRun, working_dir: Path) -> AgentExecutionResult:
        if self.agent_runner is None:
            raise AgentNotFoundError("Agent CLI is unavailable")
        result = domain_run.result
        invocation = AgentInvocation(
            prompt=result.user_prompt,
            system_prompt_append=result.system_prompt_append,
            model=self.model or result.recommended_model or DEFAULT_MODEL,
            allowed_tools=list(result.allowed_tools),
            auto_apply=self.auto_apply,
        )
        logger.info(
            "Running agent",
            extra={"domain": domain_run.domain.id, "cwd": str(working_dir), "model": invocation.model},
        )
        return await self.agent_runner.run(invocation, cwd=working_dir)

    @staticmethod
    def _log_agent_result(result: AgentExecutionResult) -> None:
        logger.debug("Agent command finished: %s", serialize_result(result))
        if not result.ok or result.stderr.strip():
            logger.warning(
                "Agent reported a problem",
                extra={"returncode": result.returncode, "stderr": result.stderr[:OUTPUT_PREVIEW]},
            )
        if result.stdout.strip():
            logger.info("Agent result:\n%s", result.stdout[:OUTPUT_PREVIEW])

    async def _publish(
        self, domain_run: DomainRun, workspace: WorkspaceHandle, outcome: CycleOutcome
    ) -> None:
        if not await self.workflow.has_uncommitted_changes(workspace.path):
            logger.info("No changes made by analysis")
            return

        paths = await self.workflow.list_changed_paths(workspace.path)
        outcome.changed_artifacts.extend(paths)
        title = f"{domain_run.domain.name} improvements"

        await self.workflow.stage_commit_push(workspace.path, build_commit_message(title, paths))
        reference = await self.workflow.open_review_request(
            workspace.path,
            f"creeper: {title}",
            build_review_body(
                f"Automated improvements detected by Claude Creeper ({domain_run.domain.description}).",
                paths,
            ),
        )
        outcome.published_reference = reference
        outcome.pending.append(
            PendingImprovement(
                type=domain_run.domain.id,
                description=title,
                detected=self.store.now(),
                pr_url=reference,
            )
        )
        logger.info("Review request created", extra={"reference": reference, "branch": workspace.branch})

    async def _record(
        self,
        context: CycleContext | None,
        outcome: CycleOutcome,
        transcript_path: Path | None,
        transcript_content: str | None,
    ) -> None:
        now = self.store.now()
        analysis = context.analysis if context is not None else None
        record = AnalysisRecord(
            timestamp=now,
            transcript_id=transcript_identifier(transcript_path, transcript_content),
            patterns_detected=analysis.patterns() if analysis is not None else [],
            changes_applied=list(outcome.changed_artifacts),
            pr_url=outcome.published_reference,
        )
        branch = await self.workflow.current_branch(self.project_path)
        try:
            self.store.append_history(self.project_path, record)
            existing = self.store.load_project_state(self.project_path)
            pending = [*(existing.pending if existing else []), *outcome.pending]
            self.store.update_project_state(
                self.project_path,
                last_analysis=now,
                next_scheduled=None,
                current_branch=branch,
                pending=pending,
            )
        except OSError as exc:
            logger.error("Cannot persist cycle outcome", extra={"error": str(exc)})


__all__ = ["AnalysisCycle", "CycleOutcome", "CycleState", "transcript_identifier"]
