"""Host entry point: become a worker or a leader depending on the environment."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from agent_teams.config import Settings
from agent_teams.orchestrator.host import LeaderHost, WorkerHost
from agent_teams.orchestrator.leader import TeamLeader
from agent_teams.orchestrator.spawner import is_worker_process
from agent_teams.orchestrator.tool import TOOL_DESCRIPTION, TOOL_NAME, TeamsTool
from agent_teams.orchestrator.worker import WorkerRuntime, register_worker

logger = logging.getLogger(__name__)


class ExtensionHost(WorkerHost, LeaderHost, Protocol):
    """A host that can register tools and also receive leader messages."""


def activate(
    host: ExtensionHost,
    *,
    settings: Settings | None = None,
    environ: Mapping[str, str] | None = None,
) -> TeamLeader | WorkerRuntime | None:
    """Install the worker runtime inside workers, the ``teams`` tool everywhere else."""

    if is_worker_process(environ):
        runtime = WorkerRuntime.from_env(environ)
        if runtime is not None:
            register_worker(host, runtime)
        return runtime

    leader = TeamLeader(host, settings=settings, environ=environ)
    host.register_tool(TOOL_NAME, TOOL_DESCRIPTION, TeamsTool(leader))

    async def on_shutdown(_payload: dict[str, Any]) -> None:
        await leader.shutdown()

    host.on("session_shutdown", on_shutdown)
    logger.debug("Team leader active in %s", host.cwd)
    return leader
