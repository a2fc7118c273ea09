"""FastMCP server bootstrap for Timekeeper."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import TimekeeperSettings, get_settings
from .storage import ChromaStore, ChromaUnavailableError, ConfigStore, StateStore
from .tools import register_tools, timer_payload
from .tracking import (
    BranchAutomation,
    ConfigChange,
    CrashRecovery,
    SnapshotScheduler,
    TimeTracker,
    install_shutdown_hooks,
)
from .vcs import GitClient, GitClientError, GitWatcher

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the Timekeeper server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def journal_listener(journal: ChromaStore) -> Callable[[ConfigChange], None]:
    """Return a change listener that appends timer activity to the journal."""

    def record(change: ConfigChange) -> None:
        journal.record_change(change)

    return record


def create_server(
    settings: Optional[TimekeeperSettings] = None,
    *,
    git_client: GitClient | None = None,
    clock: Callable[[], datetime] | None = None,
    config_store: ConfigStore | None = None,
    state_store: StateStore | None = None,
    journal: ChromaStore | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server and reconcile state left by the previous run."""

    settings = settings or get_settings()
    config_store = config_store or ConfigStore(settings.config_path)
    state_store = state_store or StateStore(settings.state_path)

    tracker = TimeTracker(
        config_store,
        clock=clock,
        policy=settings.drift_policy(),
        log_limit=settings.log_limit,
    )
    recovery = CrashRecovery(tracker, state_store)
    branches = BranchAutomation(tracker)

    chroma_metadata = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": "timekeeper_events",
        "error": None,
    }
    if journal is None:
        try:
            journal = ChromaStore(settings.chroma_persist_path, clock=clock)
            journal.ping()
        except ChromaUnavailableError as exc:
            chroma_metadata["error"] = str(exc)
            journal = None
    if journal is not None:
        chroma_metadata["available"] = True
        tracker.on_change(journal_listener(journal))

    git_metadata: dict[str, Any] = {
        "available": False,
        "repository": str(settings.repository) if settings.repository else None,
        "branch": None,
        "error": None,
    }
    if git_client is None and settings.repository is not None:
        try:
            git_client = GitClient(
                settings.repository,
                Path(settings.git_path) if settings.git_path else None,
            )
        except GitClientError as exc:
            git_metadata["error"] = str(exc)

    corrections = recovery.detect_unexpected_shutdown()
    resumed = recovery.resume_auto_paused()
    recovery.snapshot()

    branch: str | None = None
    if git_client is not None:
        git_metadata["repository"] = str(git_client.repository)
        try:
            branch = git_client.current_branch()
            git_metadata.update({"available": True, "branch": branch})
        except GitClientError as exc:
            git_metadata["error"] = str(exc)
            logger.warning("Unable to read current branch", extra={"error": str(exc)})
    branches.reconcile_startup(branch)

    startup_report = {
        "drift_corrections": [
            {
                "subtimer_id": correction.subtimer_id,
                "previous_ms": correction.elapsed_before_ms,
                "corrected_ms": correction.corrected_ms,
            }
            for correction in corrections
            if correction.changed
        ],
        "resumed_sessions": [ref.to_dict() for ref in resumed],
        "branch": branch,
    }

    server = FastMCP(
        name="Timekeeper MCP",
        version=__version__,
        instructions=(
            "Timekeeper tracks time spent on tasks as timers made of sessions. "
            "Use the provided tools to start, pause and resume timers, and to report "
            "branch checkouts and commits so branch timers follow your work."
        ),
    )

    handles = register_tools(
        server,
        tracker=tracker,
        branches=branches,
        journal=journal,
    )

    @server.resource(
        "resource://timekeeper/status",
        name="timekeeper_status",
        title="Timekeeper MCP Status",
        description="Provides the current runtime status for the Timekeeper MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        now = tracker.now()
        running = tracker.running_timers()
        timers = tracker.all_timers(include_archived=True)
        policy = tracker.policy
        payload = {
            "timestamp": now.isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "tracking": {
                "enabled": tracker.is_enabled(),
                "current_branch": branches.current_branch,
                "timer_count": len(timers),
                "archived_count": sum(1 for timer in timers if timer.archived),
                "running": [timer_payload(timer, now, log_preview=0) for timer in running],
            },
            "recovery": {
                "snapshot_interval_ms": policy.snapshot_interval_ms,
                "tolerance_ms": policy.tolerance_ms,
                "resume_window_ms": policy.resume_window_ms,
                "startup": startup_report,
            },
            "storage": {
                "config_path": str(config_store.path),
                "state_path": str(state_store.path),
                "chroma": chroma_metadata,
            },
            "git": git_metadata,
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "settings", settings)
    setattr(server, "tracker", tracker)
    setattr(server, "recovery", recovery)
    setattr(server, "branches", branches)
    setattr(server, "git_client", git_client)
    setattr(server, "git_metadata", git_metadata)
    setattr(server, "chroma_store", journal)
    setattr(server, "chroma_metadata", chroma_metadata)
    setattr(server, "startup_report", startup_report)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Timekeeper MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    recovery: CrashRecovery = getattr(server, "recovery")
    scheduler = SnapshotScheduler(recovery, settings.snapshot_interval)
    scheduler.start()

    stop_callbacks = [scheduler.stop]
    git_client: GitClient | None = getattr(server, "git_client")
    if git_client is not None:
        watcher = GitWatcher(git_client, getattr(server, "branches"), interval=settings.git_poll_interval)
        watcher.start()
        stop_callbacks.append(watcher.stop)

    shutdown = install_shutdown_hooks(recovery, before_pause=stop_callbacks)
    logger.info(
        "Launching Timekeeper MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "git_available": getattr(server, "git_metadata", {}).get("available"),
            "chroma_available": getattr(server, "chroma_metadata", {}).get("available"),
        },
    )
    try:
        server.run()
    finally:
        shutdown()


if __name__ == "__main__":
    main()
