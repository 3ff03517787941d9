"""Per-tick lifecycle event computation from observed worker signals."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta

from agent_teams.orchestrator.activity import evaluate_idle_state
from agent_teams.orchestrator.models import (
    CLOSED_TICKET_STATUSES,
    CommentEvent,
    CompletedEvent,
    FailedEvent,
    PollEvent,
    StuckEvent,
    TicketNote,
    WorkerHandle,
    WorkerStatus,
    utc_now,
)
from agent_teams.orchestrator.state import StatusInput, next_worker_status
from agent_teams.orchestrator.tickets import get_new_notes

DEFAULT_STUCK_THRESHOLD = timedelta(minutes=5)
NO_RESULT_PLACEHOLDER = "(no result)"


@dataclass(slots=True, frozen=True)
class PollInput:
    """Signals observed for one worker in one tick."""

    process_alive: bool
    ticket_status: str
    ticket_notes: Sequence[TicketNote]
    last_seen_comment_count: int
    session_last_activity_at: datetime


@dataclass(slots=True)
class PollResult:
    status: WorkerStatus
    events: list[PollEvent] = field(default_factory=list)


def compute_poll_events(
    worker: WorkerHandle,
    signals: PollInput,
    *,
    stuck_threshold: timedelta = DEFAULT_STUCK_THRESHOLD,
    now: datetime | None = None,
) -> PollResult:
    """Compute the next status and the ordered events for one worker.

    Completion and failure are reported alone: a tick that reaches a terminal
    state emits exactly that one event. Otherwise new notes become comment
    events, followed by at most one stuck event.
    """

    ticket_closed = signals.ticket_status in CLOSED_TICKET_STATUSES
    status = next_worker_status(
        worker.status,
        StatusInput(process_alive=signals.process_alive, ticket_closed=ticket_closed),
    )
    result = PollResult(status=status)
    if worker.status.is_terminal:
        return result

    snapshot = replace(worker, status=status)

    if status is WorkerStatus.DONE:
        last_note = signals.ticket_notes[-1].text if signals.ticket_notes else NO_RESULT_PLACEHOLDER
        result.events.append(CompletedEvent(worker=snapshot, result=last_note))
        return result

    if status is WorkerStatus.FAILED:
        reason = "ticket failed" if signals.process_alive else "process died"
        result.events.append(FailedEvent(worker=snapshot, reason=reason))
        return result

    for note in get_new_notes(signals.ticket_notes, signals.last_seen_comment_count):
        result.events.append(CommentEvent(worker=snapshot, comment=note.text))

    last_heartbeat_at = max(signals.session_last_activity_at, worker.last_activity_at)
    idle = evaluate_idle_state(
        now=now or utc_now(),
        threshold=stuck_threshold,
        has_active_child_process=worker.has_active_child_process,
        last_heartbeat_at=last_heartbeat_at,
        last_process_activity_at=worker.last_process_activity_at or last_heartbeat_at,
    )
    if idle.should_warn_stuck:
        idle_seconds = min(idle.heartbeat_idle_seconds, idle.process_idle_seconds)
        result.events.append(StuckEvent(worker=snapshot, idle_seconds=int(idle_seconds)))

    return result
