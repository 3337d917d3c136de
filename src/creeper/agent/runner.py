"""Async runner for the external coding agent CLI."""

from __future__ import annotations

import asyncio
import json
import shutil
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Callable, Iterable, Sequence

from .utils import sanitize_environment

DEFAULT_MODEL = "sonnet"
DEFAULT_ALLOWED_TOOLS = ("Read", "Edit", "Write", "Glob", "Grep", "Bash")


class AgentRunnerError(RuntimeError):
    """Base class for agent runner errors."""


class AgentNotFoundError(AgentRunnerError):
    """Raised when the agent CLI executable cannot be located or started."""


class AgentTimeoutError(AgentRunnerError):
    """Raised when an invocation exceeds the configured timeout."""


@dataclass(slots=True)
class AgentExecutionResult:
    """Holds the outcome of an agent CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(slots=True)
class AgentInvocation:
    """Everything needed to build one agent command line."""

    prompt: str
    system_prompt_append: str
    model: str = DEFAULT_MODEL
    allowed_tools: Sequence[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_TOOLS))
    auto_apply: bool = False

    @property
    def permission_mode(self) -> str:
        return "acceptEdits" if self.auto_apply else "plan"

    def to_args(self) -> list[str]:
        return [
            "-p",
            self.prompt,
            "--append-system-prompt",
            self.system_prompt_append,
            "--output-format",
            "json",
            "--permission-mode",
            self.permission_mode,
            "--allowed-tools",
            ",".join(self.allowed_tools),
            "--model",
            self.model,
        ]


class AgentRunner:
    """Execute agent CLI commands asynchronously."""

    def __init__(self, executable: Path | None = None, *, timeout: timedelta | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._timeout = timeout

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            resolved = shutil.which(str(explicit))
            if resolved is not None:
                return Path(resolved)
            raise AgentNotFoundError(f"Agent executable not found at {candidate}")

        binary = shutil.which("claude")
        if binary is None:
            raise AgentNotFoundError("Agent CLI executable 'claude' not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def run(self, invocation: AgentInvocation, *, cwd: Path) -> AgentExecutionResult:
        return await self._invoke(*invocation.to_args(), cwd=cwd)

    async def _invoke(self, *args: str, cwd: Path | None = None) -> AgentExecutionResult:
        cmd = [str(self._executable_path), *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd is not None else None,
                env=sanitize_environment(),
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise AgentNotFoundError(f"Cannot start agent CLI {self._executable_path}: {exc}") from exc

        timeout = self._timeout.total_seconds() if self._timeout else None
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise AgentTimeoutError(f"Agent CLI did not finish within {timeout:.0f}s") from exc

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return AgentExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeAgentRunner(AgentRunner):
    """Test double that simulates agent CLI responses.

    ``on_run`` receives the working directory of each ``run`` call, letting a
    test play the part of an agent that edits files.
    """

    def __init__(  # type: ignore[override]
        self,
        responses: Iterable[AgentExecutionResult] | None = None,
        *,
        on_run: Callable[[Path], None] | None = None,
    ) -> None:
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []
        self._working_dirs: list[Path] = []
        self._on_run = on_run
        self._executable_path = Path("/tmp/fake-claude")
        self._timeout = None

    async def run(self, invocation: AgentInvocation, *, cwd: Path) -> AgentExecutionResult:  # type: ignore[override]
        self._working_dirs.append(Path(cwd))
        if self._on_run is not None:
            self._on_run(Path(cwd))
        return await self._invoke(*invocation.to_args(), cwd=cwd)

    async def _invoke(self, *args: str, cwd: Path | None = None) -> AgentExecutionResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        if self._responses:
            return self._responses.pop(0)
        return AgentExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations

    @property
    def working_dirs(self) -> list[Path]:
        return self._working_dirs


def serialize_result(result: AgentExecutionResult) -> str:
    """Serialize a command result for logging."""

    return json.dumps(
        {
            "args": list(result.args),
            "returncode": result.returncode,
            "stdout": result.stdout,
            "stderr": result.stderr,
        }
    )
