"""Command-line interface for Creeper."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from .config import CreeperSettings, format_duration, get_settings, parse_duration
from .daemon import (
    DaemonAlreadyRunningError,
    DaemonStopError,
    build_cycle,
    build_store,
    daemon_status,
    run_watch,
    start_daemon,
    stop_daemon,
)
from .migrations import MIGRATIONS_DIR, MigrationError, parse_migration, select_migrations

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for Creeper."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _settings_from_args(args: argparse.Namespace) -> CreeperSettings:
    settings = get_settings()
    overrides: dict[str, object] = {}
    if getattr(args, "wait", None):
        overrides["wait"] = parse_duration(args.wait, settings.wait)
    if getattr(args, "auto_apply", False):
        overrides["auto_apply"] = True
    if getattr(args, "dry_run", False):
        overrides["dry_run"] = True
    if getattr(args, "model", None):
        overrides["model"] = args.model
    return settings.model_copy(update=overrides) if overrides else settings


def _project_path(args: argparse.Namespace) -> Path:
    project = Path(args.project).expanduser().resolve()
    if not project.is_dir():
        print(f"Error: Project directory not found: {project}")
        raise SystemExit(1)
    return project


def cmd_watch(args: argparse.Namespace) -> None:
    settings = _settings_from_args(args)
    project = _project_path(args)
    print("Claude Creeper started")
    print(f"Watching: {project}")
    print(f"Analysis delay: {format_duration(settings.wait)} after changes")
    print(f"Auto-apply: {'enabled' if settings.auto_apply else 'disabled (plan mode)'}")
    print("Press Ctrl+C to stop\n")
    run_watch(settings, project)


def cmd_start(args: argparse.Namespace) -> None:
    settings = _settings_from_args(args)
    project = _project_path(args)
    store = build_store(settings)
    try:
        pid = start_daemon(
            store,
            project,
            wait=settings.wait,
            auto_apply=settings.auto_apply,
            dry_run=settings.dry_run,
            model=settings.model,
        )
    except DaemonAlreadyRunningError as exc:
        print(str(exc))
        raise SystemExit(1)
    print(f"Creeper daemon started (PID: {pid})")


def cmd_stop(args: argparse.Namespace) -> None:
    store = build_store(get_settings())
    try:
        stopped = stop_daemon(store)
    except DaemonStopError as exc:
        print(str(exc))
        raise SystemExit(1)
    if stopped:
        print("Creeper daemon stopped")
    else:
        print("Creeper daemon is not running")


def cmd_status(args: argparse.Namespace) -> None:
    status = daemon_status(build_store(get_settings()))
    if args.json:
        print(json.dumps(status.to_dict(), indent=2))
        return
    if not status.running:
        print("Creeper daemon is not running")
        return
    print(f"Creeper daemon running (PID: {status.pid})")
    print(f"Uptime: {status.uptime()}")
    print(f"Project: {status.project_path}")
    if status.wait is not None:
        print(f"Wait: {format_duration(status.wait)}")
    print(f"Auto-apply: {'enabled' if status.auto_apply else 'disabled'}")


def cmd_history(args: argparse.Namespace) -> None:
    settings = get_settings()
    project = _project_path(args)
    records = build_store(settings).load_history(project, limit=args.limit)
    if args.json:
        print(json.dumps([record.model_dump(mode="json") for record in records], indent=2))
        return
    if not records:
        print("No analysis history")
        return
    for record in records:
        summary = f"{record.timestamp.isoformat()} [{record.transcript_id}]"
        summary += f" patterns={len(record.patterns_detected)} changes={len(record.changes_applied)}"
        if record.pr_url:
            summary += f" pr={record.pr_url}"
        print(summary)


def cmd_test(args: argparse.Namespace) -> None:
    settings = _settings_from_args(args)
    project = _project_path(args)
    if not args.migration:
        print("Error: test requires --migration=<path>")
        raise SystemExit(1)
    try:
        migration = parse_migration(Path(args.migration))
    except MigrationError as exc:
        print(f"Error: {exc}")
        raise SystemExit(1)

    model = settings.model or migration.model
    print("Claude Creeper TEST MODE")
    print(f"Project: {project}")
    print(f"Migration: {migration.path}")
    print(f"Description: {migration.description}")
    print(f"Model: {model}")
    print(f"Auto-apply: {'enabled' if settings.auto_apply else 'disabled'}")
    print(f"Dry-run: {'enabled' if settings.dry_run else 'disabled'}\n")

    cycle = build_cycle(settings, project, model=model)
    outcome = asyncio.run(cycle.run((), transcript_content=migration.transcript_content))
    if outcome.published_reference:
        print(f"PR created: {outcome.published_reference}")


def cmd_replay(args: argparse.Namespace) -> None:
    settings = _settings_from_args(args)
    project = _project_path(args)
    directory = project / MIGRATIONS_DIR
    if not directory.is_dir():
        print(f"Error: No migrations directory found at {directory}")
        raise SystemExit(1)

    selected = select_migrations(directory, to=args.to, only=args.only)
    if not selected:
        print("No migrations to replay")
        return

    print("Claude Creeper REPLAY MODE")
    print(f"Project: {project}")
    print("Auto-apply: enabled (required for replay)")
    print(f"Migrations to replay: {len(selected)}")
    for path in selected:
        print(f"  - {path.name}")

    store = build_store(settings)
    for path in selected:
        try:
            migration = parse_migration(path)
        except MigrationError as exc:
            print(f"Error: {exc}")
            raise SystemExit(1)
        model = settings.model or migration.model
        print("=" * 60)
        print(f"Migration: {path.name}")
        print(f"Description: {migration.description}")
        print(f"Model: {model}")
        print("=" * 60)
        cycle = build_cycle(settings, project, store=store, auto_apply=True, model=model)
        asyncio.run(cycle.run((), transcript_content=migration.transcript_content))
    print("Replay complete!")


def cmd_mcp(args: argparse.Namespace) -> None:
    from .server import serve

    project = Path(args.project).expanduser().resolve() if args.project else None
    serve(get_settings(), project)


def _add_run_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("project", nargs="?", default=".", help="Project directory (default: current)")
    parser.add_argument("--wait", help="Quiet period after the last change, e.g. 30s, 10m, 1h")
    parser.add_argument("--auto-apply", action="store_true", help="Edit the project directly instead of opening a PR")
    parser.add_argument("--dry-run", action="store_true", help="Log prompts without running the agent")
    parser.add_argument("--model", help="Model passed to the agent CLI")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="creeper",
        description="Watch a project and improve its agent configuration from session transcripts.",
    )
    sub = parser.add_subparsers(dest="cmd")

    p_watch = sub.add_parser("watch", help="Watch for changes in the foreground")
    _add_run_options(p_watch)
    p_watch.set_defaults(func=cmd_watch)

    p_start = sub.add_parser("start", help="Start the watcher as a background daemon")
    _add_run_options(p_start)
    p_start.set_defaults(func=cmd_start)

    p_stop = sub.add_parser("stop", help="Stop the background daemon")
    p_stop.set_defaults(func=cmd_stop)

    p_status = sub.add_parser("status", help="Show daemon status")
    p_status.add_argument("--json", action="store_true", help="Output JSON")
    p_status.set_defaults(func=cmd_status)

    p_history = sub.add_parser("history", help="Show recent analysis records")
    p_history.add_argument("project", nargs="?", default=".")
    p_history.add_argument("--limit", type=int, default=None)
    p_history.add_argument("--json", action="store_true", help="Output JSON")
    p_history.set_defaults(func=cmd_history)

    p_test = sub.add_parser("test", help="Run a single cycle from a migration file")
    _add_run_options(p_test)
    p_test.add_argument("--migration", help="Path to a migration .jsonl file")
    p_test.set_defaults(func=cmd_test)

    p_replay = sub.add_parser("replay", help="Replay project migrations in order")
    _add_run_options(p_replay)
    group = p_replay.add_mutually_exclusive_group()
    group.add_argument("--to", type=int, default=None, help="Replay up to migration N")
    group.add_argument("--only", type=int, default=None, help="Replay only migration N")
    p_replay.set_defaults(func=cmd_replay)

    p_mcp = sub.add_parser("mcp", help="Serve Creeper status over MCP")
    p_mcp.add_argument("project", nargs="?", default=None)
    p_mcp.set_defaults(func=cmd_mcp)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(get_settings().log_level)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
