"""Worker activity sampling from the OS process table and idle evaluation."""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from agent_teams.orchestrator.commands import run_command
from agent_teams.orchestrator.models import utc_now

logger = logging.getLogger(__name__)

PS_ARGS = ("ps", "-ax", "-o", "pid=,ppid=,pcpu=,etime=,state=,comm=")
THINKING_THRESHOLD = timedelta(minutes=2)

_ROW_PATTERN = re.compile(r"^(\d+)\s+(\d+)\s+([0-9.]+)\s+([0-9:-]+)\s+(\S+)\s+(.+)$")


@dataclass(slots=True, frozen=True)
class ProcessRow:
    pid: int
    ppid: int
    cpu_percent: float
    elapsed_seconds: int
    state: str
    command: str


@dataclass(slots=True, frozen=True)
class WorkerProcessSnapshot:
    """Activity of a worker's process subtree at one instant."""

    root_alive: bool
    has_active_child_process: bool = False
    active_child_process_count: int = 0
    current_command: str | None = None
    current_command_elapsed_seconds: int | None = None
    max_child_cpu_percent: float = 0.0


@dataclass(slots=True, frozen=True)
class IdleState:
    should_warn_stuck: bool
    heartbeat_idle_seconds: float
    process_idle_seconds: float


def parse_elapsed_seconds(raw: str) -> int:
    """Parse ``ps`` etime values: ``mm:ss``, ``hh:mm:ss``, ``dd-hh:mm:ss``."""

    trimmed = raw.strip()
    if not trimmed:
        return 0

    days = 0
    clock = trimmed
    if "-" in trimmed:
        day_part, _, clock = trimmed.partition("-")
        if not day_part.isdigit():
            return 0
        days = int(day_part)

    parts = clock.split(":")
    if not all(part.isdigit() for part in parts):
        return 0
    numbers = [int(part) for part in parts]
    if len(numbers) == 2:
        minutes, seconds = numbers
        return days * 86_400 + minutes * 60 + seconds
    if len(numbers) == 3:
        hours, minutes, seconds = numbers
        return days * 86_400 + hours * 3_600 + minutes * 60 + seconds
    return 0


def parse_process_table(raw: str) -> list[ProcessRow]:
    """Parse ``ps`` output, skipping any row that does not match the expected shape."""

    rows: list[ProcessRow] = []
    for line in raw.splitlines():
        match = _ROW_PATTERN.match(line.strip())
        if match is None:
            continue
        pid_raw, ppid_raw, cpu_raw, etime_raw, state, command = match.groups()
        try:
            cpu_percent = float(cpu_raw)
        except ValueError:
            continue
        rows.append(
            ProcessRow(
                pid=int(pid_raw),
                ppid=int(ppid_raw),
                cpu_percent=cpu_percent,
                elapsed_seconds=parse_elapsed_seconds(etime_raw),
                state=state,
                command=command.strip(),
            ),
        )
    return rows


def derive_worker_process_snapshot(rows: list[ProcessRow], worker_pid: int) -> WorkerProcessSnapshot:
    by_pid = {row.pid: row for row in rows}
    root = by_pid.get(worker_pid)
    if root is None:
        return WorkerProcessSnapshot(root_alive=False)

    children_by_parent: dict[int, list[ProcessRow]] = defaultdict(list)
    for row in rows:
        children_by_parent[row.ppid].append(row)

    subtree: list[ProcessRow] = []
    seen = {worker_pid}
    stack = [worker_pid]
    while stack:
        current = stack.pop()
        for child in children_by_parent.get(current, []):
            if child.pid in seen:
                continue
            seen.add(child.pid)
            subtree.append(child)
            stack.append(child.pid)

    active = [row for row in subtree if not _is_zombie(row.state)]
    busiest: ProcessRow | None = None
    for row in active:
        if busiest is None or (row.cpu_percent, row.elapsed_seconds) > (
            busiest.cpu_percent,
            busiest.elapsed_seconds,
        ):
            busiest = row

    return WorkerProcessSnapshot(
        root_alive=not _is_zombie(root.state),
        has_active_child_process=bool(active),
        active_child_process_count=len(active),
        current_command=busiest.command if busiest else None,
        current_command_elapsed_seconds=busiest.elapsed_seconds if busiest else None,
        max_child_cpu_percent=max((row.cpu_percent for row in active), default=0.0),
    )


async def sample_worker_process_snapshot(
    worker_pid: int,
    *,
    timeout_seconds: float = 5.0,
) -> WorkerProcessSnapshot | None:
    """Sample the process table; ``None`` when ``ps`` is unavailable or fails."""

    result = await run_command(PS_ARGS, timeout_seconds=timeout_seconds)
    if not result.ok:
        logger.debug("Process table sample failed: %s", result.stderr.strip())
        return None
    return derive_worker_process_snapshot(parse_process_table(result.stdout), worker_pid)


def latest_session_activity(session_dir: Path, session_file: Path) -> tuple[Path, datetime] | None:
    """Most recently modified transcript in the session directory and its mtime.

    Agents may name the transcript themselves, so every ``*.jsonl`` file counts.
    """

    candidates = [session_file]
    try:
        candidates.extend(path for path in session_dir.glob("*.jsonl") if path != session_file)
    except OSError:
        pass

    latest: tuple[Path, datetime] | None = None
    for path in candidates:
        try:
            mtime = path.stat().st_mtime
        except OSError:
            continue
        modified_at = datetime.fromtimestamp(mtime, tz=UTC)
        if latest is None or modified_at > latest[1]:
            latest = (path, modified_at)
    return latest


def evaluate_idle_state(
    *,
    threshold: timedelta,
    has_active_child_process: bool,
    last_heartbeat_at: datetime,
    last_process_activity_at: datetime,
    now: datetime | None = None,
) -> IdleState:
    """A worker is stuck only when both signals are stale and no child is running."""

    current = now or utc_now()
    heartbeat_idle = max(timedelta(0), current - last_heartbeat_at)
    process_idle = max(timedelta(0), current - last_process_activity_at)
    return IdleState(
        should_warn_stuck=(
            not has_active_child_process
            and heartbeat_idle >= threshold
            and process_idle >= threshold
        ),
        heartbeat_idle_seconds=heartbeat_idle.total_seconds(),
        process_idle_seconds=process_idle.total_seconds(),
    )


def format_duration(seconds: float) -> str:
    clamped = max(0, int(seconds))
    if clamped < 60:
        return f"{clamped}s"
    if clamped < 3_600:
        minutes, secs = divmod(clamped, 60)
        return f"{minutes}m" if secs == 0 else f"{minutes}m {secs}s"
    hours, rest = divmod(clamped, 3_600)
    minutes = rest // 60
    return f"{hours}h" if minutes == 0 else f"{hours}h {minutes}m"


def format_age(timestamp: datetime | None, now: datetime) -> str:
    if timestamp is None:
        return "n/a"
    seconds = max(0, int((now - timestamp).total_seconds()))
    if seconds < 1:
        return "just now"
    if seconds < 60:
        return f"{seconds}s ago"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    return f"{minutes // 60}h ago"


def format_runtime_summary(  # noqa: PLR0913
    *,
    has_active_child_process: bool,
    active_child_process_count: int = 0,
    current_command: str | None = None,
    current_command_elapsed_seconds: int | None = None,
    last_output_at: datetime | None = None,
    now: datetime | None = None,
) -> str:
    """One-line ``busy|thinking|idle`` description used in stuck warnings."""

    current = now or utc_now()
    if has_active_child_process:
        state = "busy"
    elif last_output_at is not None and current - last_output_at < THINKING_THRESHOLD:
        state = "thinking"
    else:
        state = "idle"

    process_part = state
    if has_active_child_process:
        noun = "child" if active_child_process_count == 1 else "children"
        process_part += f" ({active_child_process_count} {noun})"
        if current_command:
            process_part += f" {current_command}"
            if current_command_elapsed_seconds is not None:
                process_part += f" ({format_duration(current_command_elapsed_seconds)})"

    return f"{process_part} · last output {format_age(last_output_at, current)}"


def _is_zombie(state: str) -> bool:
    return state.upper().startswith("Z")
