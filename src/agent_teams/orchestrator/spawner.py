"""Worker spawning: environment contract, session directory, launch, and signals."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import shutil
import signal
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from agent_teams.config import Settings
from agent_teams.orchestrator.backend import (
    LaunchedProcess,
    LaunchRequest,
    WorkerLauncher,
    WorkerLaunchError,
)
from agent_teams.orchestrator.models import SpawnConfig, WorkerHandle, WorkerStatus, utc_now

logger = logging.getLogger(__name__)

WORKER_FLAG_ENV = "AGENT_TEAMS_WORKER"
TICKET_ID_ENV = "AGENT_TEAMS_TICKET_ID"
WORKER_NAME_ENV = "AGENT_TEAMS_WORKER_NAME"
LEADER_SESSION_ENV = "AGENT_TEAMS_LEADER_SESSION"
SESSION_DIR_ENV = "AGENT_TEAMS_SESSION_DIR"
TICKET_COMMAND_ENV = "AGENT_TEAMS_TICKET_COMMAND"
POLL_INTERVAL_ENV = "AGENT_TEAMS_POLL_INTERVAL_MS"
STUCK_THRESHOLD_ENV = "AGENT_TEAMS_STUCK_THRESHOLD_MS"
HEARTBEAT_ENV = "AGENT_TEAMS_WORKER_HEARTBEAT_MS"

SESSION_FILE_NAME = "session.jsonl"


class SpawnError(RuntimeError):
    """Worker could not be started; no registry entry exists for it."""


@dataclass(slots=True)
class SpawnedWorker:
    handle: WorkerHandle
    launched: LaunchedProcess


def is_worker_process(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    return env.get(WORKER_FLAG_ENV) == "1"


def build_worker_prompt(ticket_id: str, worker_name: str, *, ticket_command: str = "tk") -> str:
    return "\n".join(
        [
            f'You are worker "{worker_name}". You have been assigned ticket {ticket_id}.',
            "",
            "Instructions:",
            f"1. Read your ticket: {ticket_command} show {ticket_id}",
            "2. Do the work described in the ticket.",
            f'3. Comment on the ticket as you work: {ticket_command} add-note {ticket_id} "your progress"',
            "4. When done, close the ticket with a result summary: "
            f'{ticket_command} add-note {ticket_id} "DONE: <summary>" && {ticket_command} close {ticket_id}',
            f'5. If you are blocked, comment: {ticket_command} add-note {ticket_id} "BLOCKED: <reason>"',
            "",
            "Stay focused on the ticket. Do not ask for confirmation - just do the work.",
        ],
    )


def allocate_session_dir(config: SpawnConfig, settings: Settings) -> Path:
    """Pick a fresh per-worker session directory; the caller owns its lifetime."""

    if settings.worker.session_root is not None:
        root = settings.worker.session_root
    elif settings.worker.keep_sessions:
        root = config.cwd / ".agent-teams" / "sessions" / "workers"
    else:
        root = Path(tempfile.gettempdir()) / "agent-teams-sessions"
    stamp = int(utc_now().timestamp() * 1000)
    return root / f"team-{config.worker_name}-{config.ticket_id}-{stamp}"


def build_worker_env(
    config: SpawnConfig,
    settings: Settings,
    *,
    session_dir: Path,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    env = dict(os.environ if base_env is None else base_env)
    env[WORKER_FLAG_ENV] = "1"
    env[TICKET_ID_ENV] = config.ticket_id
    env[WORKER_NAME_ENV] = config.worker_name
    env[LEADER_SESSION_ENV] = config.leader_session_file
    env[SESSION_DIR_ENV] = str(session_dir)
    env[TICKET_COMMAND_ENV] = shlex.join(settings.tickets.command)
    env[POLL_INTERVAL_ENV] = str(int(settings.polling.poll_interval_seconds * 1000))
    env[STUCK_THRESHOLD_ENV] = str(int(settings.polling.stuck_threshold_seconds * 1000))
    env[HEARTBEAT_ENV] = str(int(settings.worker.heartbeat_interval_seconds * 1000))
    return env


async def spawn_worker(
    config: SpawnConfig,
    settings: Settings,
    launcher: WorkerLauncher,
) -> SpawnedWorker:
    """Launch one worker process and build its leader-side handle."""

    session_dir = allocate_session_dir(config, settings)
    request = LaunchRequest(
        command_template=settings.worker.command_template,
        prompt=build_worker_prompt(
            config.ticket_id,
            config.worker_name,
            ticket_command=shlex.join(settings.tickets.command),
        ),
        cwd=config.cwd,
        session_dir=session_dir,
        env=build_worker_env(config, settings, session_dir=session_dir),
        ticket_id=config.ticket_id,
        worker_name=config.worker_name,
        model=config.model,
        has_tools=config.has_tools,
        model_flag=settings.worker.model_flag,
        no_tools_flag=settings.worker.no_tools_flag,
    )
    try:
        launched = await launcher.launch(request)
    except (WorkerLaunchError, OSError) as error:
        if not settings.worker.keep_sessions:
            shutil.rmtree(session_dir, ignore_errors=True)
        raise SpawnError(f"Failed to launch worker {config.worker_name!r}: {error}") from error

    now = utc_now()
    handle = WorkerHandle(
        name=config.worker_name,
        pid=launched.pid,
        ticket_id=config.ticket_id,
        session_dir=session_dir,
        session_file=session_dir / SESSION_FILE_NAME,
        worktree_path=config.cwd if config.use_worktree else None,
        spawned_at=now,
        last_activity_at=now,
        status=WorkerStatus.SPAWNING,
        model=config.model,
    )
    logger.info(
        "Spawned worker %s (pid %d) for ticket %s in %s",
        config.worker_name,
        launched.pid,
        config.ticket_id,
        config.cwd,
    )
    return SpawnedWorker(handle=handle, launched=launched)


def is_process_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


async def terminate_process(pid: int, *, grace_seconds: float = 5.0) -> None:
    """SIGTERM, then SIGKILL if the process outlives the grace period."""

    if not _send_signal(pid, signal.SIGTERM):
        return
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(0.0, grace_seconds)
    while loop.time() < deadline:
        if not is_process_alive(pid):
            return
        await asyncio.sleep(0.1)
    if is_process_alive(pid):
        logger.warning("Worker pid %d ignored SIGTERM; sending SIGKILL", pid)
        _send_signal(pid, signal.SIGKILL)


def _send_signal(pid: int, sig: signal.Signals) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, sig)
    except ProcessLookupError:
        return False
    except PermissionError:
        logger.warning("Not permitted to signal pid %d", pid)
        return False
    return True
