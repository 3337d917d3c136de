"""Version-control and review-request operations against external CLIs."""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

from .watch.detector import WORKSPACE_DIRNAME

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "creeper/"


class WorkflowError(RuntimeError):
    """Raised when a git or review-request command fails.

    ``diagnostic`` carries the tool's own error output.
    """

    def __init__(self, message: str, diagnostic: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.diagnostic = diagnostic.strip()

    def __str__(self) -> str:
        if self.diagnostic:
            return f"{self.message}: {self.diagnostic}"
        return self.message


class ReviewToolUnavailableError(WorkflowError):
    """Raised when the review-request CLI is not installed."""


@dataclass(slots=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True, slots=True)
class WorkspaceHandle:
    """A live isolated workspace and the branch it was created on."""

    path: Path
    branch: str


def _bullets(paths: Iterable[str], *, code: bool = False) -> str:
    return "\n".join(f"- `{path}`" if code else f"- {path}" for path in paths)


def build_commit_message(title: str, paths: list[str]) -> str:
    return f"creeper: {title}\n\nChanges:\n{_bullets(paths)}\n\nGenerated by Claude Creeper"


def build_review_body(summary: str, paths: list[str]) -> str:
    return (
        f"## Summary\n\n{summary}\n\n"
        f"## Changes\n\n{_bullets(paths, code=True)}\n\n"
        "---\n\nGenerated by Claude Creeper"
    )


def parse_porcelain(output: str) -> list[str]:
    """Extract paths from ``git status --porcelain`` output."""

    paths: list[str] = []
    for line in output.splitlines():
        if len(line) < 4 or not line.strip():
            continue
        entry = line[3:].strip()
        if " -> " in entry:
            entry = entry.split(" -> ", 1)[1]
        paths.append(entry.strip('"'))
    return paths


class WorkflowManager:
    """Drive ``git`` and ``gh`` through their command-line interfaces."""

    def __init__(
        self,
        *,
        git: str = "git",
        gh: str = "gh",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._git = git
        self._gh = gh
        self._clock = clock

    @staticmethod
    def workspace_path(base: Path) -> Path:
        return Path(base) / WORKSPACE_DIRNAME

    async def _run(self, executable: str, *args: str, cwd: Path) -> CommandResult:
        cmd = [executable, *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError) as exc:
            raise WorkflowError(f"Cannot run {executable}", str(exc)) from exc
        stdout_bytes, stderr_bytes = await process.communicate()
        return CommandResult(
            args=tuple(cmd),
            returncode=process.returncode,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )

    async def _git_checked(self, *args: str, cwd: Path, action: str) -> CommandResult:
        result = await self._run(self._git, *args, cwd=cwd)
        if not result.ok:
            raise WorkflowError(f"Failed to {action}", result.stderr or result.stdout)
        return result

    async def is_repository(self, path: Path) -> bool:
        try:
            result = await self._run(self._git, "rev-parse", "--is-inside-work-tree", cwd=path)
        except WorkflowError:
            return False
        return result.ok

    async def current_branch(self, path: Path) -> str | None:
        try:
            result = await self._run(self._git, "branch", "--show-current", cwd=path)
        except WorkflowError:
            return None
        branch = result.stdout.strip()
        return branch if result.ok and branch else None

    async def default_branch(self, path: Path) -> str:
        """Upstream default branch, falling back to ``main`` then ``master``."""

        result = await self._run(
            self._git, "symbolic-ref", "refs/remotes/origin/HEAD", "--short", cwd=path
        )
        if result.ok and result.stdout.strip():
            return result.stdout.strip().removeprefix("origin/")
        main = await self._run(self._git, "rev-parse", "--verify", "main", cwd=path)
        return "main" if main.ok else "master"

    async def recent_log(self, path: Path, count: int = 15) -> str | None:
        """Best-effort one-line log; None when unavailable."""

        try:
            result = await self._run(
                self._git, "log", "--oneline", f"-{count}", "--no-decorate", cwd=path
            )
        except WorkflowError:
            return None
        text = result.stdout.strip()
        return text if result.ok and text else None

    async def recent_diff_stat(self, path: Path, depth: int = 3) -> str | None:
        """Best-effort ``diff --stat`` against a few commits back; None when unavailable."""

        try:
            result = await self._run(self._git, "diff", "--stat", f"HEAD~{depth}", cwd=path)
        except WorkflowError:
            return None
        text = result.stdout.strip()
        return text if result.ok and text else None

    async def create_isolated_workspace(self, base: Path) -> WorkspaceHandle:
        """Branch a fresh worktree off the default branch, replacing any stale one."""

        workspace = self.workspace_path(base)
        if workspace.exists():
            logger.info("Removing stale workspace", extra={"path": str(workspace)})
            await self.remove_isolated_workspace(base)

        default_branch = await self.default_branch(base)
        branch = f"{BRANCH_PREFIX}{int(self._clock() * 1000)}"
        await self._git_checked(
            "worktree",
            "add",
            "-b",
            branch,
            str(workspace),
            default_branch,
            cwd=base,
            action="create worktree",
        )
        return WorkspaceHandle(path=workspace, branch=branch)

    async def has_uncommitted_changes(self, path: Path) -> bool:
        result = await self._git_checked("status", "--porcelain", cwd=path, action="read status")
        return bool(result.stdout.strip())

    async def list_changed_paths(self, path: Path) -> list[str]:
        result = await self._git_checked("status", "--porcelain", cwd=path, action="read status")
        return parse_porcelain(result.stdout)

    async def stage_commit_push(self, path: Path, message: str) -> None:
        await self._git_checked("add", "-A", cwd=path, action="stage changes")
        await self._git_checked("commit", "-m", message, cwd=path, action="commit")
        await self._git_checked("push", "-u", "origin", "HEAD", cwd=path, action="push")

    async def open_review_request(self, path: Path, title: str, body: str) -> str:
        """Open a pull request and return the reference printed by the review tool."""

        executable = shutil.which(self._gh)
        if executable is None:
            raise ReviewToolUnavailableError(
                f"Review-request CLI '{self._gh}' not found", "install the GitHub CLI (gh)"
            )
        result = await self._run(
            executable, "pr", "create", "--title", title, "--body", body, cwd=path
        )
        if not result.ok:
            raise WorkflowError("Failed to create pull request", result.stderr or result.stdout)
        return result.stdout.strip()

    async def remove_isolated_workspace(self, base: Path) -> None:
        """Remove the workspace directory; safe to call when nothing exists."""

        workspace = self.workspace_path(base)
        if workspace.exists():
            try:
                result = await self._run(
                    self._git, "worktree", "remove", "--force", str(workspace), cwd=base
                )
                if not result.ok:
                    logger.debug("git worktree remove failed", extra={"stderr": result.stderr.strip()})
            except WorkflowError as exc:
                logger.debug("git unavailable for worktree removal", extra={"error": str(exc)})
        if workspace.exists():
            shutil.rmtree(workspace, ignore_errors=True)
        try:
            await self._run(self._git, "worktree", "prune", cwd=base)
        except WorkflowError:
            pass


__all__ = [
    "CommandResult",
    "ReviewToolUnavailableError",
    "WorkflowError",
    "WorkflowManager",
    "WorkspaceHandle",
    "build_commit_message",
    "build_review_body",
    "parse_porcelain",
]
