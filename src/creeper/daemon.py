"""Watch loop and background daemon lifecycle."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from .agent.runner import AgentNotFoundError, AgentRunner
from .config import CreeperSettings, format_duration
from .cycle import AnalysisCycle, CycleOutcome, CycleState
from .domains.loader import DomainLoader
from .domains.pipeline import DomainPipeline
from .storage.models import DaemonRecord
from .storage.state import StateStore
from .transcripts.correlator import TranscriptCorrelator
from .watch.detector import ChangeDetector
from .watch.scheduler import CallLater, DebounceScheduler
from .workflow import WorkflowManager

logger = logging.getLogger(__name__)

DAEMON_LOG = "daemon.log"


class DaemonAlreadyRunningError(RuntimeError):
    """Raised when starting a daemon while a live one is recorded."""

    def __init__(self, pid: int) -> None:
        super().__init__(f"Daemon already running (PID: {pid})")
        self.pid = pid


class DaemonStopError(RuntimeError):
    """Raised when the recorded daemon cannot be signalled."""

    def __init__(self, pid: int, reason: str) -> None:
        super().__init__(f"Cannot stop daemon (PID: {pid}): {reason}")
        self.pid = pid


class Watcher:
    """Poll a project, debounce changes and run one cycle at a time."""

    def __init__(
        self,
        project_path: Path,
        cycle: AnalysisCycle,
        *,
        store: StateStore,
        correlator: TranscriptCorrelator,
        wait: timedelta,
        poll_interval: timedelta,
        detector: ChangeDetector | None = None,
        call_later: CallLater | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.project_path = Path(project_path)
        self.cycle = cycle
        self.store = store
        self.correlator = correlator
        self.poll_interval = poll_interval
        self.detector = detector or ChangeDetector(self.project_path)
        self.scheduler = DebounceScheduler(wait, self._on_trigger, clock=clock, call_later=call_later)
        self._in_progress = False
        self._cycle_task: asyncio.Task | None = None
        self._clock = clock
        self.cycles_run = 0

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def state(self) -> CycleState:
        if self._in_progress:
            return self.cycle.state
        if self.scheduler.armed:
            return CycleState.DEBOUNCING
        return CycleState.IDLE

    def poll_once(self) -> set[str]:
        """Scan for changes and feed them to the scheduler."""

        changes = self.detector.detect_changes()
        if not changes:
            return changes

        self.scheduler.add_changes(sorted(changes))
        logger.info(
            "%d file(s) changed - analysis in %s",
            len(changes),
            format_duration(self.scheduler.wait),
            extra={"running": self._in_progress},
        )
        self._persist_schedule()
        return changes

    def _persist_schedule(self) -> None:
        """Merge-write the armed trigger time into the project state."""

        fire_at = self.scheduler.fire_at
        if fire_at is None:
            return
        remaining = timedelta(seconds=max(fire_at - self._clock(), 0.0))
        try:
            self.store.update_project_state(
                self.project_path, next_scheduled=self.store.now() + remaining
            )
        except OSError as exc:
            logger.warning("Cannot persist schedule", extra={"error": str(exc)})

    def _reschedule_pending(self) -> None:
        if not self.scheduler.pending:
            return
        if not self.scheduler.armed:
            self.scheduler.arm()
        self._persist_schedule()

    def _on_trigger(self) -> None:
        if self._in_progress:
            logger.debug("Trigger fired during a running cycle; deferring")
            return
        self._cycle_task = asyncio.get_running_loop().create_task(self.run_pending_cycle())

    async def run_pending_cycle(self) -> CycleOutcome | None:
        """Run one cycle over the accumulated changes."""

        if self._in_progress:
            return None
        self._in_progress = True
        changed = self.scheduler.take_pending()
        logger.info("Running analysis", extra={"changed_files": len(changed)})
        try:
            state = self.store.load_project_state(self.project_path)
            since = state.last_analysis if state is not None else None
            transcript = self.correlator.find_transcript(self.project_path, since)
            outcome = await self.cycle.run(changed, transcript_path=transcript)
            self.cycles_run += 1
            return outcome
        except Exception:
            logger.exception("Error during analysis")
            return None
        finally:
            self._in_progress = False
            self._reschedule_pending()
            logger.info("Watching for changes...")

    async def wait_idle(self) -> None:
        if self._cycle_task is not None:
            await self._cycle_task

    async def run(self, stop: asyncio.Event) -> None:
        baseline = self.detector.prime()
        logger.info("Watching project", extra={"project": str(self.project_path), "files": baseline})
        interval = self.poll_interval.total_seconds()
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            if stop.is_set():
                break
            try:
                self.poll_once()
            except OSError as exc:
                logger.warning("Scan failed", extra={"error": str(exc)})
        self.scheduler.cancel()
        await self.wait_idle()


def build_store(settings: CreeperSettings) -> StateStore:
    return StateStore(settings.state_dir, history_limit=settings.history_limit)


def build_agent_runner(settings: CreeperSettings) -> AgentRunner | None:
    try:
        return AgentRunner(
            Path(settings.agent_path) if settings.agent_path else None,
            timeout=settings.agent_timeout,
        )
    except AgentNotFoundError as exc:
        logger.error("Agent CLI unavailable", extra={"error": str(exc)})
        return None


def build_cycle(
    settings: CreeperSettings,
    project_path: Path,
    *,
    store: StateStore | None = None,
    auto_apply: bool | None = None,
    dry_run: bool | None = None,
    model: str | None = None,
) -> AnalysisCycle:
    pipeline = DomainPipeline.from_loader(
        DomainLoader(settings.domain_paths),
        dry_run=settings.dry_run if dry_run is None else dry_run,
    )
    return AnalysisCycle(
        project_path,
        store=store or build_store(settings),
        workflow=WorkflowManager(git=settings.git_path, gh=settings.gh_path),
        pipeline=pipeline,
        agent_runner=build_agent_runner(settings),
        auto_apply=settings.auto_apply if auto_apply is None else auto_apply,
        model=model or settings.model,
    )


def build_watcher(settings: CreeperSettings, project_path: Path) -> Watcher:
    store = build_store(settings)
    return Watcher(
        project_path,
        build_cycle(settings, project_path, store=store),
        store=store,
        correlator=TranscriptCorrelator(
            settings.transcripts_dir, scan_lines=settings.transcript_scan_lines
        ),
        wait=settings.wait,
        poll_interval=settings.poll_interval,
    )


async def _watch(watcher: Watcher) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except (NotImplementedError, RuntimeError):
            pass
    await watcher.run(stop)


def run_watch(settings: CreeperSettings, project_path: Path) -> None:
    """Run the watch loop in the foreground until interrupted."""

    store = build_store(settings)
    pid = os.getpid()
    if not store.is_daemon_running():
        store.write_daemon_record(
            DaemonRecord(
                pid=pid,
                started_at=store.now(),
                project_path=str(project_path),
                wait=settings.wait,
                auto_apply=settings.auto_apply,
            )
        )

    watcher = build_watcher(settings, project_path)
    try:
        asyncio.run(_watch(watcher))
    except KeyboardInterrupt:
        pass
    finally:
        if store.read_pid() == pid:
            store.delete_daemon_record()
        logger.info("Watcher stopped")


@dataclass(slots=True)
class DaemonStatus:
    running: bool
    pid: int | None = None
    started_at: datetime | None = None
    project_path: str | None = None
    wait: timedelta | None = None
    auto_apply: bool = False

    def uptime(self, now: datetime | None = None) -> str | None:
        if self.started_at is None:
            return None
        current = now or datetime.now(timezone.utc)
        seconds = max(int((current - self.started_at).total_seconds()), 0)
        days, rest = divmod(seconds, 86400)
        hours, rest = divmod(rest, 3600)
        minutes, seconds = divmod(rest, 60)
        if days:
            return f"{days}d {hours}h"
        if hours:
            return f"{hours}h {minutes}m"
        if minutes:
            return f"{minutes}m"
        return f"{seconds}s"

    def to_dict(self) -> dict[str, object]:
        return {
            "running": self.running,
            "pid": self.pid,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "uptime": self.uptime(),
            "project_path": self.project_path,
            "wait": format_duration(self.wait) if self.wait else None,
            "auto_apply": self.auto_apply,
        }


def daemon_status(store: StateStore) -> DaemonStatus:
    if not store.is_daemon_running():
        return DaemonStatus(running=False)
    record = store.read_daemon_record()
    pid = store.read_pid()
    if record is None:
        return DaemonStatus(running=True, pid=pid)
    return DaemonStatus(
        running=True,
        pid=pid,
        started_at=record.started_at,
        project_path=record.project_path,
        wait=record.wait,
        auto_apply=record.auto_apply,
    )


def start_daemon(
    store: StateStore,
    project_path: Path,
    *,
    wait: timedelta,
    auto_apply: bool = False,
    dry_run: bool = False,
    model: str | None = None,
    spawn: Callable[..., subprocess.Popen] = subprocess.Popen,
) -> int:
    """Spawn a detached ``creeper watch`` process and record it."""

    if store.is_daemon_running():
        raise DaemonAlreadyRunningError(store.read_pid() or 0)

    args = [sys.executable, "-m", "creeper", "watch", str(project_path), "--wait", format_duration(wait)]
    if auto_apply:
        args.append("--auto-apply")
    if dry_run:
        args.append("--dry-run")
    if model:
        args.extend(["--model", model])

    store.base_dir.mkdir(parents=True, exist_ok=True)
    with open(store.base_dir / DAEMON_LOG, "ab") as log_file:
        process = spawn(
            args,
            stdin=subprocess.DEVNULL,
            stdout=log_file,
            stderr=subprocess.STDOUT,
            cwd=str(project_path),
            start_new_session=True,
        )

    store.write_daemon_record(
        DaemonRecord(
            pid=process.pid,
            started_at=store.now(),
            project_path=str(project_path),
            wait=wait,
            auto_apply=auto_apply,
        )
    )
    logger.info("Daemon started", extra={"pid": process.pid, "project": str(project_path)})
    return process.pid


def stop_daemon(store: StateStore, *, kill: Callable[[int, int], None] = os.kill) -> bool:
    """Signal the recorded daemon; returns True when a live process was signalled."""

    pid = store.read_pid()
    if pid is None:
        return False
    try:
        kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        store.delete_daemon_record()
        return False
    except PermissionError as exc:
        raise DaemonStopError(pid, "permission denied") from exc
    store.delete_daemon_record()
    logger.info("Daemon stopped", extra={"pid": pid})
    return True


__all__ = [
    "DaemonAlreadyRunningError",
    "DaemonStatus",
    "DaemonStopError",
    "Watcher",
    "build_cycle",
    "build_store",
    "build_watcher",
    "daemon_status",
    "run_watch",
    "start_daemon",
    "stop_daemon",
]
