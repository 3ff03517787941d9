"""The ``teams`` tool: delegate, list, and kill workers from the host conversation."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from agent_teams.orchestrator.host import ToolResult
from agent_teams.orchestrator.leader import DuplicateWorkerError, TeamLeader, WorkerNotFoundError
from agent_teams.orchestrator.models import WorkerHandle
from agent_teams.orchestrator.spawner import SpawnError
from agent_teams.orchestrator.tickets import TicketClient, TicketCommandError

logger = logging.getLogger(__name__)

TOOL_NAME = "teams"
TOOL_DESCRIPTION = """Coordinate a team of worker agents.

Actions:
- delegate: Create tickets and spawn workers. Provide "tasks" array with { text, assignee? }.
- list: Show all active workers and their status.
- kill: Kill a specific worker by name.
- kill_all: Kill all workers."""

ACTIONS = ("delegate", "list", "kill", "kill_all")


@dataclass(slots=True, frozen=True)
class TeamTask:
    text: str
    assignee: str | None = None


@dataclass(slots=True, frozen=True)
class DelegationOutcome:
    """Result line for one delegated task, with the handle when a worker was spawned."""

    line: str
    handle: WorkerHandle | None = None

    @property
    def spawned(self) -> bool:
        return self.handle is not None


@dataclass(slots=True)
class TeamsToolRequest:
    """Validated parameters of one ``teams`` tool call."""

    action: str = "delegate"
    tasks: list[TeamTask] = field(default_factory=list)
    name: str | None = None
    use_worktree: bool = True
    model: str | None = None
    has_tools: bool | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> TeamsToolRequest:
        raw_tasks = params.get("tasks") or []
        tasks = [
            TeamTask(text=str(task["text"]), assignee=task.get("assignee") or None)
            for task in raw_tasks
            if isinstance(task, Mapping) and task.get("text")
        ]
        use_worktree = params.get("useWorktree", params.get("use_worktree", True))
        return cls(
            action=str(params.get("action") or "delegate"),
            tasks=tasks,
            name=params.get("name") or None,
            use_worktree=bool(use_worktree),
            model=params.get("model") or None,
            has_tools=params.get("hasTools", params.get("has_tools")),
        )


class TeamsTool:
    """Executes ``teams`` tool requests; every failure becomes an error result."""

    def __init__(
        self,
        leader: TeamLeader,
        *,
        tickets: TicketClient | None = None,
        team_tag: str | None = None,
    ) -> None:
        self.leader = leader
        self.tickets = tickets or leader.tickets
        self.team_tag = team_tag or leader.settings.tickets.team_tag

    async def __call__(self, params: dict[str, Any]) -> ToolResult:
        return await self.execute(TeamsToolRequest.from_params(params))

    async def execute(self, request: TeamsToolRequest) -> ToolResult:
        if request.action == "list":
            return self._list()
        if request.action == "kill":
            return await self._kill(request.name)
        if request.action == "kill_all":
            await self.leader.kill_all()
            return ToolResult("All workers killed.")
        if request.action == "delegate":
            return await self._delegate(request)
        return ToolResult(f"Unknown action: {request.action}", is_error=True)

    def _list(self) -> ToolResult:
        workers = self.leader.get_workers()
        if not workers:
            return ToolResult("No active workers.")
        return ToolResult(
            "\n".join(
                f"{worker.name}: {worker.status.value} | ticket #{worker.ticket_id} | pid {worker.pid}"
                for worker in workers
            ),
        )

    async def _kill(self, name: str | None) -> ToolResult:
        if not name:
            return ToolResult("Provide worker name.", is_error=True)
        try:
            await self.leader.kill(name)
        except WorkerNotFoundError as error:
            return ToolResult(str(error), is_error=True)
        return ToolResult(f'Killed worker "{name}"')

    async def _delegate(self, request: TeamsToolRequest) -> ToolResult:
        if not request.tasks:
            return ToolResult("Provide tasks array.", is_error=True)

        outcomes = await delegate_tasks(
            self.leader,
            self.tickets,
            request.tasks,
            use_worktree=request.use_worktree,
            model=request.model,
            has_tools=request.has_tools,
            team_tag=self.team_tag,
        )
        self.leader.start_polling()
        return ToolResult("\n".join(outcome.line for outcome in outcomes))


async def delegate_tasks(  # noqa: PLR0913
    leader: TeamLeader,
    tickets: TicketClient,
    tasks: Sequence[TeamTask],
    *,
    use_worktree: bool = True,
    model: str | None = None,
    has_tools: bool | None = None,
    team_tag: str = "team",
) -> list[DelegationOutcome]:
    """Create, start, and delegate one ticket per task; one outcome each."""

    outcomes: list[DelegationOutcome] = []
    for index, task in enumerate(tasks, start=1):
        worker_name = task.assignee or f"worker-{index}"
        try:
            ticket_id = await tickets.create(
                task.text,
                description=task.text,
                tags=(team_tag,),
                assignee=worker_name,
            )
        except TicketCommandError as error:
            line = f'Failed to create ticket for "{task.text}": {error}'
            outcomes.append(DelegationOutcome(line))
            continue

        try:
            await tickets.start(ticket_id)
        except TicketCommandError as error:
            logger.warning("Could not start ticket %s: %s", ticket_id, error)

        try:
            handle = await leader.delegate(
                ticket_id,
                worker_name,
                use_worktree=use_worktree,
                model=model,
                has_tools=has_tools,
            )
        except (DuplicateWorkerError, SpawnError) as error:
            outcomes.append(DelegationOutcome(f'Failed to spawn "{worker_name}": {error}'))
            continue
        outcomes.append(
            DelegationOutcome(
                f'Spawned "{worker_name}" → ticket #{ticket_id} (pid {handle.pid})',
                handle=handle,
            )
        )
    return outcomes
