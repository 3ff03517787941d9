"""Team leader: worker registry, polling loop, and event routing."""

from __future__ import annotations

import asyncio
import logging
import os
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path

from agent_teams.config import Settings
from agent_teams.orchestrator.activity import (
    WorkerProcessSnapshot,
    latest_session_activity,
    sample_worker_process_snapshot,
)
from agent_teams.orchestrator.backend import CliWorkerLauncher, LaunchedProcess, WorkerLauncher
from agent_teams.orchestrator.cleanup import CleanupResult, cleanup_worker
from agent_teams.orchestrator.host import LeaderHost
from agent_teams.orchestrator.models import (
    CommentEvent,
    CompletedEvent,
    FailedEvent,
    PollEvent,
    PollEventType,
    SpawnConfig,
    StuckEvent,
    TicketNote,
    WorkerHandle,
    WorkerStatus,
    utc_now,
)
from agent_teams.orchestrator.polling import PollInput, compute_poll_events
from agent_teams.orchestrator.spawner import (
    SpawnError,
    is_process_alive,
    is_worker_process,
    spawn_worker,
)
from agent_teams.orchestrator.tickets import MalformedTicketError, TicketClient, TicketCommandError
from agent_teams.orchestrator.widget import WIDGET_KEY, format_poll_event, render_status_widget
from agent_teams.orchestrator.worktree import (
    create_worktree,
    done_branch_name,
    remove_worktree,
    worker_worktree_path,
    worktree_branch_name,
)

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 500
NO_NOTES_PLACEHOLDER = "(no notes left by worker)"
MAX_TICKET_FETCH_FAILURES = 3
UNKNOWN_TICKET_STATUS = "unknown"


class DuplicateWorkerError(ValueError):
    """A worker with this name is still active."""


class WorkerNotFoundError(LookupError):
    """No registered worker has this name."""


class WorkerRegistry:
    """Active workers keyed by name, owned by exactly one leader."""

    def __init__(self) -> None:
        self._workers: dict[str, WorkerHandle] = {}

    def add(self, handle: WorkerHandle) -> None:
        existing = self._workers.get(handle.name)
        if existing is not None and not existing.status.is_terminal:
            raise DuplicateWorkerError(f'Worker "{handle.name}" is already active.')
        self._workers[handle.name] = handle

    def get(self, name: str) -> WorkerHandle | None:
        return self._workers.get(name)

    def remove(self, handle: WorkerHandle) -> None:
        if self._workers.get(handle.name) is handle:
            del self._workers[handle.name]

    def all(self) -> list[WorkerHandle]:
        return list(self._workers.values())

    def active(self) -> list[WorkerHandle]:
        return [worker for worker in self._workers.values() if not worker.status.is_terminal]

    def is_active(self, name: str) -> bool:
        worker = self._workers.get(name)
        return worker is not None and not worker.status.is_terminal

    def __len__(self) -> int:
        return len(self._workers)


class TeamLeader:
    """Delegates tickets to worker processes and supervises them by polling."""

    def __init__(  # noqa: PLR0913
        self,
        host: LeaderHost,
        *,
        settings: Settings | None = None,
        registry: WorkerRegistry | None = None,
        tickets: TicketClient | None = None,
        launcher: WorkerLauncher | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.host = host
        self.settings = settings or Settings.from_env()
        self.registry = registry if registry is not None else WorkerRegistry()
        self.tickets = tickets or TicketClient(
            command=self.settings.tickets.command,
            cwd=host.cwd,
            timeout_seconds=self.settings.tickets.timeout_seconds,
        )
        self.launcher = launcher or CliWorkerLauncher()
        self.show_comments = self.settings.polling.show_comments
        self._environ = os.environ if environ is None else environ
        self._processes: dict[str, LaunchedProcess] = {}
        self._notified_terminal: set[str] = set()
        self.retired_counts: Counter[PollEventType] = Counter()
        self._poll_task: asyncio.Task[None] | None = None

    @property
    def repo_dir(self) -> Path:
        return Path(self.host.cwd)

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def get_workers(self) -> list[WorkerHandle]:
        return self.registry.all()

    def get_worker(self, name: str) -> WorkerHandle | None:
        return self.registry.get(name)

    async def delegate(  # noqa: PLR0913
        self,
        ticket_id: str,
        worker_name: str,
        use_worktree: bool = True,
        model: str | None = None,
        has_tools: bool | None = None,
    ) -> WorkerHandle:
        """Spawn a worker for ``ticket_id`` and start supervising it.

        Raises ``DuplicateWorkerError`` or ``SpawnError``; on failure nothing is
        registered and a freshly created worktree is rolled back.
        """

        if self.registry.is_active(worker_name):
            raise DuplicateWorkerError(f'Worker "{worker_name}" is already active.')

        if use_worktree and is_worker_process(self._environ):
            logger.info("Nested worker %s shares the parent working directory", worker_name)
            use_worktree = False

        repo_dir = self.repo_dir
        cwd = repo_dir
        base_commit: str | None = None
        if use_worktree:
            worktree_path = worker_worktree_path(
                repo_dir,
                worker_name,
                dirname=self.settings.git.worktree_dirname,
            )
            created = await create_worktree(
                repo_dir,
                worker_name,
                ticket_id,
                worktree_path,
                timeout_seconds=self.settings.git.timeout_seconds,
            )
            if not created.success:
                raise SpawnError(f"Worktree creation failed: {created.error}")
            cwd = worktree_path
            base_commit = created.base_commit

        config = SpawnConfig(
            ticket_id=ticket_id,
            worker_name=worker_name,
            use_worktree=use_worktree,
            cwd=cwd,
            leader_session_file=self.host.session_file or "",
            model=self._resolve_worker_model(model),
            has_tools=has_tools,
        )
        try:
            spawned = await spawn_worker(config, self.settings, self.launcher)
        except SpawnError:
            if use_worktree:
                await remove_worktree(
                    repo_dir,
                    cwd,
                    worktree_branch_name(worker_name, ticket_id),
                    keep_branch=False,
                    timeout_seconds=self.settings.git.timeout_seconds,
                )
            raise

        handle = spawned.handle
        handle.base_commit = base_commit
        self.registry.add(handle)
        self._processes[worker_name] = spawned.launched
        self._notified_terminal.discard(_terminal_key(handle))
        self.render_widget()
        self.start_polling()
        return handle

    def start_polling(self) -> None:
        """Arm the polling task; it disarms itself once the registry is empty."""

        if self.is_polling or len(self.registry) == 0:
            return
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    async def run_until_idle(self) -> None:
        """Poll in the foreground until every worker has retired."""

        self.start_polling()
        task = self._poll_task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            await self.shutdown()
            raise

    def stop_polling(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    async def poll_once(self) -> None:
        """Poll every non-terminal worker once, sequentially."""

        for worker in self.registry.active():
            try:
                await self._poll_worker(worker)
            except Exception:
                logger.exception("Polling worker %s failed", worker.name)

    async def kill(self, worker_name: str) -> None:
        """Force ``killed``, retire the worker, and drop it from the registry."""

        worker = self.registry.get(worker_name)
        if worker is None:
            raise WorkerNotFoundError(f'No worker named "{worker_name}".')
        if worker.status.is_terminal:
            # Already retiring on the polling path; cleanup is idempotent, keep its branch rule.
            await self._cleanup(worker, preserve_branch=worker.worktree_path is not None)
            self._forget(worker)
            self.render_widget()
            return

        worker.status = WorkerStatus.KILLED
        worker.last_activity_at = utc_now()
        try:
            await self.tickets.close(worker.ticket_id)
        except TicketCommandError as error:
            logger.debug("Closing ticket %s for killed worker failed: %s", worker.ticket_id, error)
        await self._cleanup(worker, preserve_branch=False)
        self._forget(worker)
        self.render_widget()
        logger.info("Killed worker %s", worker_name)

    async def kill_all(self) -> None:
        for worker in self.registry.all():
            try:
                await self.kill(worker.name)
            except WorkerNotFoundError:
                continue
        self.render_widget()

    async def shutdown(self) -> None:
        self.stop_polling()
        await self.kill_all()

    def render_widget(self) -> None:
        workers = self.registry.all()
        self.host.set_widget(WIDGET_KEY, render_status_widget(workers) if workers else None)

    def notify(self, event: PollEvent) -> None:
        """Route one lifecycle event into the host conversation."""

        if event.type in (PollEventType.COMPLETED, PollEventType.FAILED):
            key = _terminal_key(event.worker)
            if key in self._notified_terminal:
                return
            self._notified_terminal.add(key)
        if isinstance(event, CommentEvent):
            if event.comment.startswith("DONE:") or not self.show_comments:
                return

        self.host.send_message(
            format_poll_event(event),
            trigger_turn=event.type is not PollEventType.STUCK,
        )

    async def _poll_loop(self) -> None:
        try:
            while len(self.registry) > 0:
                await asyncio.sleep(self.settings.polling.poll_interval_seconds)
                await self.poll_once()
        finally:
            if self._poll_task is asyncio.current_task():
                self._poll_task = None

    async def _poll_worker(self, worker: WorkerHandle) -> None:
        # Liveness is sampled before the ticket: a worker closes its ticket before exiting.
        process_alive = self._is_alive(worker)
        try:
            ticket = await self.tickets.show(worker.ticket_id)
        except (TicketCommandError, MalformedTicketError) as error:
            worker.ticket_fetch_failures += 1
            logger.debug("Ticket %s unavailable this tick: %s", worker.ticket_id, error)
            if process_alive or worker.ticket_fetch_failures < MAX_TICKET_FETCH_FAILURES:
                return
            logger.warning(
                "Worker %s exited and ticket %s stayed unreadable for %d ticks",
                worker.name,
                worker.ticket_id,
                worker.ticket_fetch_failures,
            )
            ticket = None
        else:
            worker.ticket_fetch_failures = 0
        snapshot = await sample_worker_process_snapshot(
            worker.pid,
            timeout_seconds=self.settings.tickets.timeout_seconds,
        )
        session = await asyncio.to_thread(
            latest_session_activity,
            worker.session_dir,
            worker.session_file,
        )
        if worker.status.is_terminal:
            return

        now = utc_now()
        if snapshot is not None and snapshot.root_alive:
            _apply_process_snapshot(worker, snapshot, now)
        session_activity_at = worker.spawned_at
        if session is not None:
            worker.session_file, session_activity_at = session
            if worker.last_output_at is None or session_activity_at > worker.last_output_at:
                worker.last_output_at = session_activity_at

        ticket_status = UNKNOWN_TICKET_STATUS
        ticket_notes: Sequence[TicketNote] = ()
        if ticket is not None:
            ticket_status, ticket_notes = ticket.status, ticket.notes
            worker.ticket_status = ticket.status
            if ticket.notes:
                worker.last_note = ticket.notes[-1].text

        result = compute_poll_events(
            worker,
            PollInput(
                process_alive=process_alive,
                ticket_status=ticket_status,
                ticket_notes=ticket_notes,
                last_seen_comment_count=worker.last_seen_comment_count,
                session_last_activity_at=session_activity_at,
            ),
            stuck_threshold=timedelta(seconds=self.settings.polling.stuck_threshold_seconds),
            now=now,
        )
        worker.status = result.status

        if result.status.is_terminal:
            for event in result.events:
                await self._retire(worker, event)
            return

        if len(ticket_notes) > worker.last_seen_comment_count:
            worker.last_seen_comment_count = len(ticket_notes)
            worker.last_activity_at = now

        stuck_reported = False
        for event in result.events:
            if isinstance(event, StuckEvent):
                stuck_reported = True
                if self._stuck_warning_due(worker, now):
                    worker.last_stuck_warning_at = now
                    self.notify(event)
                continue
            self.notify(event)
        if not stuck_reported:
            worker.last_stuck_warning_at = None

        self.render_widget()

    async def _retire(self, worker: WorkerHandle, event: PollEvent) -> None:
        stderr_tail = await asyncio.to_thread(_read_stderr_tail, worker.session_dir)
        cleanup = await self._cleanup(worker, preserve_branch=worker.worktree_path is not None)
        self.retired_counts[event.type] += 1

        try:
            if isinstance(event, CompletedEvent):
                result = event.result
                if cleanup is not None and cleanup.branch_preserved:
                    branch = cleanup.branch or done_branch_name(worker.name, worker.ticket_id)
                    result += (
                        f'\nBranch "{branch}" preserved - merge when ready: git merge {branch}'
                    )
                self.notify(replace(event, result=result))
            elif isinstance(event, FailedEvent):
                last_note = worker.last_note or NO_NOTES_PLACEHOLDER
                reason = f"{event.reason}. Last note: {last_note}"
                if stderr_tail:
                    reason += f"\nstderr: {stderr_tail}"
                if cleanup is not None and cleanup.branch_preserved:
                    reason += f'\nPartial work kept on branch "{cleanup.branch}"'
                self.notify(replace(event, reason=reason))
            else:
                self.notify(event)
        finally:
            self._forget(worker)
            self.render_widget()

    async def _cleanup(self, worker: WorkerHandle, *, preserve_branch: bool) -> CleanupResult | None:
        try:
            return await cleanup_worker(
                self.repo_dir,
                worker,
                preserve_branch=preserve_branch,
                keep_sessions=self.settings.worker.keep_sessions,
                kill_grace_seconds=self.settings.worker.kill_grace_seconds,
                git_timeout_seconds=self.settings.git.timeout_seconds,
            )
        except Exception:
            logger.exception("Cleanup of worker %s failed", worker.name)
            return None

    def _forget(self, worker: WorkerHandle) -> None:
        self.registry.remove(worker)
        self._notified_terminal.discard(_terminal_key(worker))
        launched = self._processes.get(worker.name)
        if launched is not None and launched.pid == worker.pid:
            del self._processes[worker.name]

    def _is_alive(self, worker: WorkerHandle) -> bool:
        launched = self._processes.get(worker.name)
        if launched is not None and launched.process is not None and launched.pid == worker.pid:
            return launched.process.returncode is None
        return is_process_alive(worker.pid)

    def _stuck_warning_due(self, worker: WorkerHandle, now: datetime) -> bool:
        if worker.last_stuck_warning_at is None:
            return True
        cooldown = timedelta(seconds=self.settings.polling.stuck_warning_cooldown_seconds)
        return now - worker.last_stuck_warning_at >= cooldown

    def _resolve_worker_model(self, requested: str | None) -> str | None:
        """Use the requested model when the host offers it, else the host's own model."""

        if not requested:
            return requested
        available = self.host.available_models()
        if available is None:
            return requested

        needle = requested.lower()
        if any(
            model.lower() == needle or model.rsplit("/", 1)[-1].lower() == needle
            for model in available
        ):
            return requested

        fallback = self.host.current_model()
        self.host.send_message(
            f'⚠ Model "{requested}" not available - falling back to {fallback or "default"}.',
            trigger_turn=False,
        )
        return fallback


def _apply_process_snapshot(
    worker: WorkerHandle,
    snapshot: WorkerProcessSnapshot,
    now: datetime,
) -> None:
    if worker.status is WorkerStatus.SPAWNING:
        worker.status = WorkerStatus.RUNNING
    worker.has_active_child_process = snapshot.has_active_child_process
    worker.active_child_process_count = snapshot.active_child_process_count
    worker.current_command = snapshot.current_command
    worker.current_command_elapsed_seconds = snapshot.current_command_elapsed_seconds
    if snapshot.has_active_child_process:
        worker.last_process_activity_at = now


def _read_stderr_tail(session_dir: Path, limit: int = STDERR_TAIL_CHARS) -> str:
    try:
        raw = (session_dir / "stderr.log").read_text("utf-8", errors="replace").strip()
    except OSError:
        return ""
    return raw[-limit:]


def _terminal_key(worker: WorkerHandle) -> str:
    return f"{worker.name}:{worker.ticket_id}:terminal"
