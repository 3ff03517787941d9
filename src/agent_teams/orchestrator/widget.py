"""Plain-text status widget and lifecycle event messages."""

from __future__ import annotations

import re
from collections.abc import Sequence

from agent_teams.orchestrator.activity import format_runtime_summary
from agent_teams.orchestrator.models import (
    CommentEvent,
    CompletedEvent,
    FailedEvent,
    PollEvent,
    StuckEvent,
    WorkerHandle,
    WorkerStatus,
)

WIDGET_KEY = "agent-teams"

STATUS_ICONS = {
    WorkerStatus.SPAWNING: "◐",
    WorkerStatus.RUNNING: "●",
    WorkerStatus.DONE: "✓",
    WorkerStatus.FAILED: "✕",
    WorkerStatus.KILLED: "○",
}

EVENT_ICONS = {
    "completed": "✓",
    "failed": "✕",
    "stuck": "⚠",
    "comment": "💬",
    "alive": "·",
}

_WHITESPACE = re.compile(r"\s+")


def render_status_widget(workers: Sequence[WorkerHandle], width: int = 100) -> list[str]:
    """One header, a row per worker (plus its latest note), and a totals footer."""

    if not workers:
        return []

    lines = [" Teams"]
    name_width = max(len(worker.name) for worker in workers)
    ticket_width = max(len(worker.ticket_id) for worker in workers)
    for worker in workers:
        row = (
            f" {STATUS_ICONS[worker.status]} {worker.name.ljust(name_width)}"
            f" {worker.status.value.ljust(8)}"
            f" · ticket {worker.ticket_id.ljust(ticket_width)}"
            f" · {worker.ticket_status or 'unknown'} · pid {worker.pid}"
        )
        lines.append(row)
        if worker.last_note:
            note = _WHITESPACE.sub(" ", worker.last_note).strip()
            lines.append(f"   ↳ {note}")

    pending = sum(
        1 for worker in workers if worker.status in (WorkerStatus.SPAWNING, WorkerStatus.RUNNING)
    )
    done = sum(1 for worker in workers if worker.status is WorkerStatus.DONE)
    failed = sum(1 for worker in workers if worker.status is WorkerStatus.FAILED)
    lines.append(" " + "─" * max(0, width - 2))
    lines.append(f" Total · {pending} pending · {done} done · {failed} failed")
    lines.append(" /team list · /team kill <name> · /team kill_all")
    return [_truncate(line, width) for line in lines]


def format_poll_event(event: PollEvent) -> str:
    worker = event.worker
    icon = EVENT_ICONS[event.type.value]
    prefix = f'{icon} • Worker "{worker.name}"'
    if isinstance(event, CompletedEvent):
        return f"{prefix} completed ticket #{worker.ticket_id}:\n{event.result}"
    if isinstance(event, FailedEvent):
        return f"{prefix} failed on ticket #{worker.ticket_id}: {event.reason}"
    if isinstance(event, StuckEvent):
        summary = format_runtime_summary(
            has_active_child_process=worker.has_active_child_process,
            active_child_process_count=worker.active_child_process_count,
            current_command=worker.current_command,
            current_command_elapsed_seconds=worker.current_command_elapsed_seconds,
            last_output_at=worker.last_output_at,
        )
        return (
            f"{prefix} may be stuck on ticket #{worker.ticket_id}"
            f" ({event.idle_seconds}s idle) · {summary}"
        )
    if isinstance(event, CommentEvent):
        return f"{prefix} on ticket #{worker.ticket_id}: {event.comment}"
    return f"{prefix} is alive, working on ticket #{worker.ticket_id}"


def _truncate(line: str, width: int) -> str:
    if width <= 0 or len(line) <= width:
        return line
    if width == 1:
        return "…"
    return line[: width - 1] + "…"
