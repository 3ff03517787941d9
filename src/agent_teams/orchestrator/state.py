"""Pure worker lifecycle transition function."""

from __future__ import annotations

from dataclasses import dataclass

from agent_teams.orchestrator.models import WorkerStatus


@dataclass(slots=True, frozen=True)
class StatusInput:
    process_alive: bool
    ticket_closed: bool


def next_worker_status(current: WorkerStatus, signals: StatusInput) -> WorkerStatus:
    """Fold one tick of liveness signals into the next lifecycle state.

    Terminal states are absorbing. A closed ticket wins over a dead process,
    so a worker that closes its ticket and exits is never reported as failed.
    """

    if current.is_terminal:
        return current
    if signals.ticket_closed:
        return WorkerStatus.DONE
    if not signals.process_alive:
        return WorkerStatus.FAILED
    return WorkerStatus.RUNNING
