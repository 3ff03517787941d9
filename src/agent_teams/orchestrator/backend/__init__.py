"""Worker process launcher implementations."""

from agent_teams.orchestrator.backend.base import LaunchedProcess, LaunchRequest, WorkerLauncher
from agent_teams.orchestrator.backend.cli_backend import CliWorkerLauncher, WorkerLaunchError

__all__ = [
    "CliWorkerLauncher",
    "LaunchRequest",
    "LaunchedProcess",
    "WorkerLaunchError",
    "WorkerLauncher",
]
