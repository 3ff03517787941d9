from __future__ import annotations

import asyncio
import shlex
from collections.abc import Awaitable
from dataclasses import dataclass, field

import allure
from conftest import FAKE_TK_COMMAND, RecordingHost

from agent_teams.orchestrator.extension import activate
from agent_teams.orchestrator.host import EventHandler, ToolHandler
from agent_teams.orchestrator.leader import TeamLeader
from agent_teams.orchestrator.tool import TOOL_NAME
from agent_teams.orchestrator.worker import COMMENT_TOOL_NAME, WorkerRuntime

pytestmark = [
    allure.epic("Team Leader"),
    allure.feature("Host Integration"),
]


@dataclass
class ExtensionRecordingHost(RecordingHost):
    tools: dict[str, ToolHandler] = field(default_factory=dict)
    handlers: dict[str, list[EventHandler]] = field(default_factory=dict)

    def register_tool(self, name: str, description: str, handler: ToolHandler) -> None:
        self.tools[name] = handler

    def on(self, event: str, handler: EventHandler) -> None:
        self.handlers.setdefault(event, []).append(handler)

    async def emit(self, event: str) -> None:
        for handler in self.handlers.get(event, []):
            outcome = handler({})
            if isinstance(outcome, Awaitable):
                await outcome


def test_activate_outside_worker_installs_teams_tool(git_repo, fast_settings) -> None:
    host = ExtensionRecordingHost(cwd=git_repo)

    leader = activate(host, settings=fast_settings, environ={})

    assert isinstance(leader, TeamLeader)
    assert set(host.tools) == {TOOL_NAME}
    assert "session_shutdown" in host.handlers

    async def scenario() -> str:
        result = await host.tools[TOOL_NAME]({"action": "list"})
        await host.emit("session_shutdown")
        return result.text

    assert asyncio.run(scenario()) == "No active workers."
    assert not leader.is_polling


def test_activate_inside_worker_installs_comment_tool(git_repo, fast_settings, tmp_path) -> None:
    host = ExtensionRecordingHost(cwd=git_repo)
    session_dir = tmp_path / "session"
    session_dir.mkdir()
    environ = {
        "AGENT_TEAMS_WORKER": "1",
        "AGENT_TEAMS_TICKET_ID": "p-abc1",
        "AGENT_TEAMS_WORKER_NAME": "alice",
        "AGENT_TEAMS_SESSION_DIR": str(session_dir),
        "AGENT_TEAMS_TICKET_COMMAND": shlex.join(FAKE_TK_COMMAND),
    }

    runtime = activate(host, settings=fast_settings, environ=environ)

    assert isinstance(runtime, WorkerRuntime)
    assert set(host.tools) == {COMMENT_TOOL_NAME}
    assert TOOL_NAME not in host.tools
    asyncio.run(host.emit("session_shutdown"))
    assert runtime.heartbeat_path.exists()


def test_activate_worker_without_ticket_registers_nothing(git_repo, fast_settings) -> None:
    host = ExtensionRecordingHost(cwd=git_repo)

    runtime = activate(host, settings=fast_settings, environ={"AGENT_TEAMS_WORKER": "1"})

    assert runtime is None
    assert host.tools == {}
