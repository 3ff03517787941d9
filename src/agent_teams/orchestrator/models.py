"""Domain models for worker delegation, tickets, and poll events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class WorkerStatus(str, Enum):
    """Worker lifecycle states."""

    SPAWNING = "spawning"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    KILLED = "killed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({WorkerStatus.DONE, WorkerStatus.FAILED, WorkerStatus.KILLED})
CLOSED_TICKET_STATUSES = frozenset({"closed", "done"})


@dataclass(slots=True)
class TicketNote:
    """One entry of a ticket's append-only note log."""

    timestamp: str
    text: str


@dataclass(slots=True)
class Ticket:
    """Ticket record decoded from the ticket CLI ``show`` output."""

    id: str
    status: str
    subject: str
    description: str
    assignee: str | None = None
    tags: list[str] = field(default_factory=list)
    notes: list[TicketNote] = field(default_factory=list)

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_TICKET_STATUSES


@dataclass(slots=True, frozen=True)
class SpawnConfig:
    """Immutable inputs to one worker spawn."""

    ticket_id: str
    worker_name: str
    use_worktree: bool
    cwd: Path
    leader_session_file: str
    model: str | None = None
    has_tools: bool | None = None


@dataclass(slots=True)
class WorkerHandle:
    """Leader-side record of one active delegation."""

    name: str
    pid: int
    ticket_id: str
    session_dir: Path
    session_file: Path
    worktree_path: Path | None
    spawned_at: datetime
    last_activity_at: datetime
    status: WorkerStatus = WorkerStatus.SPAWNING
    ticket_status: str = "open"
    last_note: str | None = None
    model: str | None = None
    base_commit: str | None = None
    last_seen_comment_count: int = 0
    ticket_fetch_failures: int = 0
    has_active_child_process: bool = False
    active_child_process_count: int = 0
    current_command: str | None = None
    current_command_elapsed_seconds: int | None = None
    last_process_activity_at: datetime | None = None
    last_output_at: datetime | None = None
    last_stuck_warning_at: datetime | None = None


class PollEventType(str, Enum):
    """Kinds of lifecycle events produced by one poll tick."""

    COMPLETED = "completed"
    FAILED = "failed"
    STUCK = "stuck"
    COMMENT = "comment"
    ALIVE = "alive"


@dataclass(slots=True, frozen=True)
class CompletedEvent:
    worker: WorkerHandle
    result: str
    type: PollEventType = field(default=PollEventType.COMPLETED, init=False)


@dataclass(slots=True, frozen=True)
class FailedEvent:
    worker: WorkerHandle
    reason: str
    type: PollEventType = field(default=PollEventType.FAILED, init=False)


@dataclass(slots=True, frozen=True)
class StuckEvent:
    worker: WorkerHandle
    idle_seconds: int
    type: PollEventType = field(default=PollEventType.STUCK, init=False)


@dataclass(slots=True, frozen=True)
class CommentEvent:
    worker: WorkerHandle
    comment: str
    type: PollEventType = field(default=PollEventType.COMMENT, init=False)


@dataclass(slots=True, frozen=True)
class AliveEvent:
    worker: WorkerHandle
    type: PollEventType = field(default=PollEventType.ALIVE, init=False)


PollEvent = CompletedEvent | FailedEvent | StuckEvent | CommentEvent | AliveEvent
