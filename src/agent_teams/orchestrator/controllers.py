"""Controllers for agent-teams CLI commands."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from agent_teams.config import Settings
from agent_teams.orchestrator.leader import TeamLeader
from agent_teams.orchestrator.models import PollEventType
from agent_teams.orchestrator.tickets import MalformedTicketError, TicketClient, TicketCommandError
from agent_teams.orchestrator.tool import TeamTask, delegate_tasks
from agent_teams.orchestrator.worker import WorkerRuntime, run_command

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DelegateCommand:
    """CLI input for a foreground delegation run."""

    tasks: tuple[str, ...]
    assignees: tuple[str, ...] = ()
    use_worktree: bool = True
    model: str | None = None
    has_tools: bool | None = None
    repo: Path | None = None


@dataclass(slots=True)
class TicketShowCommand:
    """CLI input for ticket inspection."""

    ticket_id: str
    repo: Path | None = None


@dataclass(slots=True)
class WorkerCommentCommand:
    """CLI input for a worker-side ticket comment."""

    message: str


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for the worker-side task loop wrapper."""

    argv: tuple[str, ...]


@dataclass(slots=True)
class CommandOutcome:
    """Lines to render in CLI plus the overall verdict."""

    lines: list[str]
    success: bool
    exit_code: int = 0


@dataclass(slots=True)
class ConsoleHost:
    """Leader host for a terminal session: messages go straight to ``emit``."""

    cwd: Path
    emit: Callable[[str], None] = print
    session_file: str | None = None
    messages: list[str] = field(default_factory=list)
    widget: list[str] = field(default_factory=list)

    def send_message(self, content: str, *, trigger_turn: bool) -> None:
        del trigger_turn
        self.messages.append(content)
        self.emit(content)

    def set_widget(self, key: str, lines: Sequence[str] | None) -> None:
        del key
        self.widget = list(lines or [])

    def available_models(self) -> Sequence[str] | None:
        return None

    def current_model(self) -> str | None:
        return None


class TeamsCliController:
    """Coordinates delegation, ticket inspection, and worker-side CLI operations."""

    def delegate(
        self,
        command: DelegateCommand,
        *,
        emit: Callable[[str], None] = print,
    ) -> CommandOutcome:
        settings = Settings.from_env()
        settings.validate()
        repo = (command.repo or Path.cwd()).resolve()
        host = ConsoleHost(cwd=repo, emit=emit)
        return asyncio.run(self._delegate(command, settings=settings, host=host))

    def ticket_show(self, command: TicketShowCommand) -> CommandOutcome:
        settings = Settings.from_env()
        client = TicketClient(
            command=settings.tickets.command,
            cwd=command.repo,
            timeout_seconds=settings.tickets.timeout_seconds,
        )
        try:
            ticket = asyncio.run(client.show(command.ticket_id))
        except (TicketCommandError, MalformedTicketError) as error:
            return CommandOutcome(lines=[f"Ticket unavailable: {error}"], success=False)

        lines = [
            f"Ticket: {ticket.id}",
            f"Subject: {ticket.subject}",
            f"Status: {ticket.status}",
            f"Assignee: {ticket.assignee or '-'}",
            f"Tags: {', '.join(ticket.tags) or '-'}",
        ]
        if ticket.description:
            lines += ["", ticket.description]
        if ticket.notes:
            lines += ["", f"Notes: {len(ticket.notes)}"]
            lines += [f"- [{note.timestamp}] {note.text}" for note in ticket.notes]
        return CommandOutcome(lines=lines, success=True)

    def worker_comment(self, command: WorkerCommentCommand) -> CommandOutcome:
        runtime = WorkerRuntime.from_env()
        if runtime is None:
            return CommandOutcome(lines=["Not running as a team worker."], success=False)
        result = asyncio.run(runtime.comment(command.message))
        return CommandOutcome(lines=[result.text], success=not result.is_error)

    def worker_run(self, command: WorkerRunCommand) -> CommandOutcome:
        runtime = WorkerRuntime.from_env()
        if runtime is None:
            return CommandOutcome(lines=["Not running as a team worker."], success=False, exit_code=2)
        code = asyncio.run(run_command(runtime, command.argv))
        return CommandOutcome(
            lines=[f"Worker command exited with status {code}"],
            success=code == 0,
            exit_code=code,
        )

    async def _delegate(
        self,
        command: DelegateCommand,
        *,
        settings: Settings,
        host: ConsoleHost,
    ) -> CommandOutcome:
        leader = TeamLeader(host, settings=settings)
        tasks = [
            TeamTask(
                text=text,
                assignee=command.assignees[index] if index < len(command.assignees) else None,
            )
            for index, text in enumerate(command.tasks)
        ]
        outcomes = await delegate_tasks(
            leader,
            leader.tickets,
            tasks,
            use_worktree=command.use_worktree,
            model=command.model,
            has_tools=command.has_tools,
            team_tag=settings.tickets.team_tag,
        )
        for outcome in outcomes:
            host.emit(outcome.line)

        spawned = sum(1 for outcome in outcomes if outcome.spawned)
        logger.info("Delegated %d of %d tasks", spawned, len(tasks))
        await leader.run_until_idle()

        failed = leader.retired_counts[PollEventType.FAILED]
        return CommandOutcome(
            lines=[f"Workers retired: spawned={spawned} failed={failed}"],
            success=spawned == len(tasks) and failed == 0,
        )
