"""CLI entrypoint for agent-teams."""

import logging
from pathlib import Path

import rich_click as click

from agent_teams import __version__
from agent_teams.orchestrator.controllers import (
    CommandOutcome,
    DelegateCommand,
    TeamsCliController,
    TicketShowCommand,
    WorkerCommentCommand,
    WorkerRunCommand,
)

click.rich_click.USE_MARKDOWN = True
TEAMS_CONTROLLER = TeamsCliController()


@click.group()
@click.version_option(version=__version__, prog_name="agent-teams")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def agent_teams(verbose: bool) -> None:
    """Delegate tickets to a team of worker agents."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@agent_teams.command("delegate")
@click.argument("tasks", nargs=-1, required=True)
@click.option(
    "--assignee",
    "assignees",
    multiple=True,
    help="Worker name for the task at the same position. Can be repeated.",
)
@click.option(
    "--worktree/--no-worktree",
    "use_worktree",
    default=True,
    show_default=True,
    help="Give each worker its own git worktree and branch.",
)
@click.option("--model", default=None, help="Model id for the workers.")
@click.option("--no-tools", "no_tools", is_flag=True, default=False, help="Run workers without tools.")
@click.option(
    "--repo",
    type=click.Path(path_type=Path, file_okay=False, exists=True),
    default=None,
    help="Repository the workers operate on (defaults to the current directory).",
)
def delegate(  # noqa: PLR0913
    tasks: tuple[str, ...],
    assignees: tuple[str, ...],
    use_worktree: bool,
    model: str | None,
    no_tools: bool,
    repo: Path | None,
) -> None:
    """Create one ticket per task, spawn workers, and follow them until they retire."""

    try:
        outcome = TEAMS_CONTROLLER.delegate(
            DelegateCommand(
                tasks=tasks,
                assignees=assignees,
                use_worktree=use_worktree,
                model=model,
                has_tools=False if no_tools else None,
                repo=repo,
            ),
            emit=click.echo,
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_outcome(outcome, failure="Delegation finished with failures.")


@agent_teams.group()
def ticket() -> None:
    """Ticket commands."""


@ticket.command("show")
@click.argument("ticket_id")
@click.option(
    "--repo",
    type=click.Path(path_type=Path, file_okay=False, exists=True),
    default=None,
    help="Directory to run the ticket CLI in.",
)
def ticket_show(ticket_id: str, repo: Path | None) -> None:
    """Show a parsed ticket with its notes."""

    _emit_outcome(
        TEAMS_CONTROLLER.ticket_show(TicketShowCommand(ticket_id=ticket_id, repo=repo)),
        failure="Ticket show failed.",
    )


@agent_teams.group()
def worker() -> None:
    """Worker-side commands (run inside a spawned worker)."""


@worker.command("comment")
@click.argument("message")
def worker_comment(message: str) -> None:
    """Comment on the ticket assigned to this worker."""

    _emit_outcome(
        TEAMS_CONTROLLER.worker_comment(WorkerCommentCommand(message=message)),
        failure="Comment failed.",
    )


@worker.command("run", context_settings={"ignore_unknown_options": True})
@click.argument("argv", nargs=-1, required=True, type=click.UNPROCESSED)
def worker_run(argv: tuple[str, ...]) -> None:
    """Run an agent command with heartbeats; close the ticket when it succeeds."""

    outcome = TEAMS_CONTROLLER.worker_run(WorkerRunCommand(argv=argv))
    _emit_lines(outcome.lines)
    if not outcome.success:
        click.get_current_context().exit(outcome.exit_code or 1)


def _emit_outcome(outcome: CommandOutcome, *, failure: str) -> None:
    _emit_lines(outcome.lines)
    if not outcome.success:
        raise click.ClickException(failure)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_teams()
