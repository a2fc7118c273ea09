"""Tool registration for Timekeeper MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from fastmcp import Context, FastMCP

from ..storage import ChromaStore
from ..tracking import (
    BranchAutomation,
    SubTimer,
    TimeTracker,
    Timer,
    TimerNotFoundError,
    format_elapsed,
    is_subtimer_running,
    is_timer_running,
    subtimer_elapsed,
    timer_elapsed,
)


@dataclass(slots=True)
class ToolHandles:
    start_timer: Any
    stop_timer: Any
    stop_all_timers: Any
    resume_timer: Any
    archive_timer: Any
    delete_timer: Any
    list_timers: Any
    create_folder: Any
    move_timer: Any
    create_subtimer: Any
    start_subtimer: Any
    stop_subtimer: Any
    edit_subtimer: Any
    delete_subtimer: Any
    set_tracking_enabled: Any
    branch_checkout: Any
    record_commit: Any
    timer_history: Any


def subtimer_payload(subtimer: SubTimer, now: datetime) -> dict[str, Any]:
    elapsed_ms = subtimer_elapsed(subtimer, now)
    return {
        "id": subtimer.id,
        "label": subtimer.label,
        "description": subtimer.description,
        "running": is_subtimer_running(subtimer),
        "start_time": subtimer.start_time.isoformat(),
        "end_time": subtimer.end_time.isoformat() if subtimer.end_time else None,
        "elapsed_ms": elapsed_ms,
        "elapsed": format_elapsed(elapsed_ms),
    }


def timer_payload(timer: Timer, now: datetime, *, log_preview: int = 5) -> dict[str, Any]:
    elapsed_ms = timer_elapsed(timer, now)
    return {
        "id": timer.id,
        "label": timer.label,
        "branch_name": timer.branch_name,
        "archived": timer.archived,
        "folder_path": timer.folder_path,
        "running": is_timer_running(timer),
        "start_time": timer.start_time.isoformat(),
        "elapsed_ms": elapsed_ms,
        "elapsed": format_elapsed(elapsed_ms),
        "sessions": [subtimer_payload(subtimer, now) for subtimer in timer.subtimers],
        "recent_logs": timer.logs[-log_preview:] if log_preview else [],
    }


def register_tools(
    server: FastMCP,
    *,
    tracker: TimeTracker,
    branches: BranchAutomation,
    journal: ChromaStore | None,
) -> ToolHandles:
    """Register Timekeeper's MCP tools on the server."""

    def _require_timer(timer_id: str) -> Timer:
        timer = tracker.get_timer(timer_id)
        if timer is None:
            raise TimerNotFoundError(f"Timer '{timer_id}' not found")
        return timer

    def _timer_response(timer_id: str) -> dict[str, Any]:
        return timer_payload(_require_timer(timer_id), tracker.now())

    def _start_timer(
        label: str,
        folder_path: list[int] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Start a new timer, pausing every other running timer."""

        timer = tracker.start_timer(label, folder_path)
        _emit_log(context, "info", "Started timer", extra={"timer_id": timer.id, "label": timer.label})
        return timer_payload(timer, tracker.now())

    def _stop_timer(timer_id: str, context: Context | None = None) -> dict[str, Any]:
        _require_timer(timer_id)
        tracker.stop_timer(timer_id)
        _emit_log(context, "info", "Stopped timer", extra={"timer_id": timer_id})
        return _timer_response(timer_id)

    def _stop_all_timers(
        exclude_timer_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        running_before = [timer.id for timer in tracker.running_timers()]
        tracker.stop_all_timers(exclude_timer_id)
        stopped = [timer_id for timer_id in running_before if timer_id != exclude_timer_id]
        _emit_log(context, "info", "Stopped all timers", extra={"stopped": len(stopped)})
        return {"stopped": stopped}

    def _resume_timer(timer_id: str, context: Context | None = None) -> dict[str, Any]:
        _require_timer(timer_id)
        tracker.resume_timer(timer_id)
        _emit_log(context, "info", "Resumed timer", extra={"timer_id": timer_id})
        return _timer_response(timer_id)

    def _archive_timer(
        timer_id: str,
        archived: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        _require_timer(timer_id)
        tracker.archive_timer(timer_id, archived)
        _emit_log(context, "info", "Archived timer" if archived else "Unarchived timer", extra={"timer_id": timer_id})
        return _timer_response(timer_id)

    def _delete_timer(timer_id: str, context: Context | None = None) -> dict[str, Any]:
        _require_timer(timer_id)
        tracker.delete_timer(timer_id)
        _emit_log(context, "info", "Deleted timer", extra={"timer_id": timer_id})
        return {"timer_id": timer_id, "deleted": True}

    def _list_timers(
        include_archived: bool = False,
        running_only: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """List timers in tree order with their sessions and elapsed time."""

        now = tracker.now()
        timers = tracker.running_timers() if running_only else tracker.all_timers(include_archived)
        payload = [timer_payload(timer, now) for timer in timers]
        _emit_log(context, "debug", "Listed timers", extra={"count": len(payload)})
        return {
            "enabled": tracker.is_enabled(),
            "current_branch": branches.current_branch,
            "count": len(payload),
            "timers": payload,
        }

    def _create_folder(
        name: str,
        parent_path: list[int] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        folder = tracker.create_folder(name, parent_path)
        _emit_log(context, "info", "Created folder", extra={"folder": folder.name})
        return {"name": folder.name, "parent_path": parent_path}

    def _move_timer(
        timer_id: str,
        folder_path: list[int] | None = None,
        offset: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Move a timer into a folder, or up/down within its folder when ``offset`` is given."""

        _require_timer(timer_id)
        if offset is not None:
            tracker.move_timer_by_offset(timer_id, offset)
        else:
            tracker.move_timer_to_folder(timer_id, folder_path)
        _emit_log(context, "info", "Moved timer", extra={"timer_id": timer_id})
        return _timer_response(timer_id)

    def _create_subtimer(
        timer_id: str,
        label: str,
        description: str | None = None,
        start_immediately: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        subtimer = tracker.create_subtimer(timer_id, label, description, start_immediately)
        _emit_log(
            context,
            "info",
            "Created session",
            extra={"timer_id": timer_id, "subtimer_id": subtimer.id},
        )
        return subtimer_payload(subtimer, tracker.now())

    def _start_subtimer(timer_id: str, subtimer_id: str, context: Context | None = None) -> dict[str, Any]:
        _require_timer(timer_id)
        tracker.start_subtimer(timer_id, subtimer_id)
        _emit_log(context, "info", "Started session", extra={"timer_id": timer_id, "subtimer_id": subtimer_id})
        return _timer_response(timer_id)

    def _stop_subtimer(timer_id: str, subtimer_id: str, context: Context | None = None) -> dict[str, Any]:
        _require_timer(timer_id)
        tracker.stop_subtimer(timer_id, subtimer_id)
        _emit_log(context, "info", "Stopped session", extra={"timer_id": timer_id, "subtimer_id": subtimer_id})
        return _timer_response(timer_id)

    def _edit_subtimer(
        timer_id: str,
        subtimer_id: str,
        label: str | None = None,
        description: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        _require_timer(timer_id)
        updates: dict[str, Any] = {}
        if label is not None:
            updates["label"] = label
        if description is not None:
            updates["description"] = description
        tracker.edit_subtimer(timer_id, subtimer_id, updates)
        _emit_log(context, "info", "Edited session", extra={"timer_id": timer_id, "subtimer_id": subtimer_id})
        return _timer_response(timer_id)

    def _delete_subtimer(timer_id: str, subtimer_id: str, context: Context | None = None) -> dict[str, Any]:
        _require_timer(timer_id)
        tracker.delete_subtimer(timer_id, subtimer_id)
        _emit_log(context, "info", "Deleted session", extra={"timer_id": timer_id, "subtimer_id": subtimer_id})
        return _timer_response(timer_id)

    def _set_tracking_enabled(
        enabled: bool,
        auto_create_on_branch_checkout: bool | None = None,
        ignored_branches: list[str] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Toggle tracking and branch automation settings."""

        tracker.set_enabled(enabled)
        if auto_create_on_branch_checkout is not None:
            tracker.set_auto_create_on_branch_checkout(auto_create_on_branch_checkout)
        if ignored_branches is not None:
            tracker.set_ignored_branches(ignored_branches)
        config = tracker.config
        _emit_log(context, "info", "Updated tracking settings", extra={"enabled": config.enabled})
        return {
            "enabled": config.enabled,
            "auto_create_on_branch_checkout": config.auto_create_on_branch_checkout,
            "ignored_branches": config.ignored_branches,
        }

    def _branch_checkout(branch: str, context: Context | None = None) -> dict[str, Any]:
        """Report a branch checkout so its timer takes over."""

        timer = branches.handle_checkout(branch)
        _emit_log(context, "info", "Handled branch checkout", extra={"branch": branch, "changed": timer is not None})
        return {
            "branch": branch,
            "current_branch": branches.current_branch,
            "timer": timer_payload(timer, tracker.now()) if timer is not None else None,
        }

    def _record_commit(message: str, context: Context | None = None) -> dict[str, Any]:
        """Close the current branch session under a commit message and open the next one."""

        session = branches.handle_commit(message)
        _emit_log(context, "info", "Recorded commit", extra={"recorded": session is not None})
        return {
            "recorded": session is not None,
            "current_branch": branches.current_branch,
            "next_session": subtimer_payload(session, tracker.now()) if session is not None else None,
        }

    def _timer_history(
        timer_id: str,
        limit: int = 50,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Return the timer's activity log, plus journal events when persistence is enabled."""

        timer = _require_timer(timer_id)
        events: list[dict[str, Any]] = []
        if journal is not None:
            for event in journal.fetch_timer_events(timer_id, limit=limit):
                events.append(
                    {
                        "event_type": event.event_type,
                        "timestamp": event.timestamp.isoformat(),
                        "sequence": event.sequence,
                        "body": event.body(),
                    }
                )
        _emit_log(context, "debug", "Fetched timer history", extra={"timer_id": timer_id, "events": len(events)})
        return {
            "timer_id": timer_id,
            "label": timer.label,
            "logs": timer.logs[-limit:],
            "events": events,
            "journal_available": journal is not None,
        }

    return ToolHandles(
        start_timer=server.tool(
            name="start_timer",
            description="Start a new timer with a running first session; pauses all other timers.",
        )(_start_timer),
        stop_timer=server.tool(
            name="stop_timer",
            description="Pause every running session of a timer.",
        )(_stop_timer),
        stop_all_timers=server.tool(
            name="stop_all_timers",
            description="Pause every running timer, optionally keeping one running.",
        )(_stop_all_timers),
        resume_timer=server.tool(
            name="resume_timer",
            description="Resume a timer's last session; pauses all other timers.",
        )(_resume_timer),
        archive_timer=server.tool(
            name="archive_timer",
            description="Archive (pausing it first) or unarchive a timer.",
        )(_archive_timer),
        delete_timer=server.tool(
            name="delete_timer",
            description="Delete a timer and all of its sessions.",
        )(_delete_timer),
        list_timers=server.tool(
            name="list_timers",
            description="List timers with sessions, running state and elapsed time.",
        )(_list_timers),
        create_folder=server.tool(
            name="create_folder",
            description="Create a folder at the top level or inside the folder at parent_path.",
        )(_create_folder),
        move_timer=server.tool(
            name="move_timer",
            description="Move a timer to another folder, or reorder it within its folder by offset.",
        )(_move_timer),
        create_subtimer=server.tool(
            name="create_subtimer",
            description="Add a session to a timer, started immediately unless start_immediately is false.",
        )(_create_subtimer),
        start_subtimer=server.tool(
            name="start_subtimer",
            description="Resume a paused session; other sessions of the same timer are paused.",
        )(_start_subtimer),
        stop_subtimer=server.tool(
            name="stop_subtimer",
            description="Pause a running session.",
        )(_stop_subtimer),
        edit_subtimer=server.tool(
            name="edit_subtimer",
            description="Rename a session or change its description.",
        )(_edit_subtimer),
        delete_subtimer=server.tool(
            name="delete_subtimer",
            description="Delete a session; a timer always keeps at least one session.",
        )(_delete_subtimer),
        set_tracking_enabled=server.tool(
            name="set_tracking_enabled",
            description="Enable or disable tracking and configure branch automation.",
        )(_set_tracking_enabled),
        branch_checkout=server.tool(
            name="branch_checkout",
            description="Notify a branch checkout; switches to (or creates) that branch's timer.",
        )(_branch_checkout),
        record_commit=server.tool(
            name="record_commit",
            description="Notify a commit on the current branch; closes the running session under the commit message.",
        )(_record_commit),
        timer_history=server.tool(
            name="timer_history",
            description="Return a timer's activity log and journal events.",
        )(_timer_history),
    )


logger = logging.getLogger(__name__)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "register_tools", "subtimer_payload", "timer_payload"]
