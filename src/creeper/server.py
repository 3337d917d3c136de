"""FastMCP status server for Creeper."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from fastmcp import FastMCP

from . import __version__
from .config import CreeperSettings, format_duration, get_settings
from .daemon import build_store, daemon_status
from .storage.state import StateStore

logger = logging.getLogger(__name__)

STATUS_URI = "resource://creeper/status"


@dataclass(slots=True)
class ServerHandles:
    status: Any
    history: Any
    pending: Any


def build_status_payload(
    settings: CreeperSettings, store: StateStore, project_path: Path | None
) -> dict[str, Any]:
    """Summarize daemon, project state and recent history as JSON-ready data."""

    status = daemon_status(store)
    target = project_path or (Path(status.project_path) if status.project_path else None)

    project: dict[str, Any] | None = None
    if target is not None:
        state = store.load_project_state(target)
        recent = store.load_history(target, limit=5)
        project = {
            "path": str(target),
            "last_analysis": state.last_analysis.isoformat() if state and state.last_analysis else None,
            "next_scheduled": state.next_scheduled.isoformat() if state and state.next_scheduled else None,
            "current_branch": state.current_branch if state else None,
            "pending_count": len(state.pending) if state else 0,
            "recent": [record.model_dump(mode="json") for record in recent],
        }

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "daemon": status.to_dict(),
        "settings": {
            "state_dir": str(settings.state_dir),
            "transcripts_dir": str(settings.transcripts_dir),
            "wait": format_duration(settings.wait),
            "auto_apply": settings.auto_apply,
            "dry_run": settings.dry_run,
            "model": settings.model,
        },
        "project": project,
    }


def register_resources(
    server: FastMCP,
    *,
    settings: CreeperSettings,
    store: StateStore,
    project_path: Path | None,
) -> ServerHandles:
    """Register Creeper's read-only resource and tools on the server."""

    def _resolve_project() -> Path | None:
        if project_path is not None:
            return project_path
        record = store.read_daemon_record()
        return Path(record.project_path) if record else None

    def _status() -> str:
        """Return a JSON string summarizing daemon and project state."""

        return json.dumps(build_status_payload(settings, store, _resolve_project()))

    def _history(limit: int = 10) -> list[dict[str, Any]]:
        """Most recent analysis records, newest first."""

        target = _resolve_project()
        if target is None:
            return []
        return [record.model_dump(mode="json") for record in store.load_history(target, limit=limit)]

    def _pending() -> list[dict[str, Any]]:
        """Improvements proposed for review and not yet cleared."""

        target = _resolve_project()
        state = store.load_project_state(target) if target is not None else None
        if state is None:
            return []
        return [item.model_dump(mode="json") for item in state.pending]

    status = server.resource(
        STATUS_URI,
        name="creeper_status",
        description="Daemon status, project state and recent analysis history.",
        mime_type="application/json",
    )(_status)
    history = server.tool(
        name="creeper_history",
        description="List the most recent Creeper analysis records for the watched project.",
    )(_history)
    pending = server.tool(
        name="creeper_pending",
        description="List improvements Creeper proposed as pull requests.",
    )(_pending)

    return ServerHandles(status=status, history=history, pending=pending)


def create_server(
    settings: Optional[CreeperSettings] = None,
    project_path: Path | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server exposing Creeper state."""

    settings = settings or get_settings()
    store = build_store(settings)
    server = FastMCP(
        name="Creeper",
        version=__version__,
        instructions=(
            "Creeper watches a project and proposes .claude/ configuration improvements. "
            "Use these tools to inspect its status, history and open pull requests."
        ),
    )
    handles = register_resources(server, settings=settings, store=store, project_path=project_path)
    setattr(server, "creeper_handles", handles)
    return server


def serve(settings: CreeperSettings, project_path: Path | None = None) -> None:
    server = create_server(settings, project_path)
    logger.info("Launching Creeper MCP server", extra={"version": __version__})
    server.run()


__all__ = ["build_status_payload", "create_server", "register_resources", "serve"]
