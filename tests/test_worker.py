from __future__ import annotations

import asyncio
import json
import shlex
import sys
from collections.abc import Awaitable

import allure
from conftest import FAKE_TK_COMMAND, write_ticket

from agent_teams.orchestrator.host import EventHandler, ToolHandler
from agent_teams.orchestrator.tickets import TicketClient
from agent_teams.orchestrator.worker import (
    COMMENT_TOOL_NAME,
    HEARTBEAT_ENTRY_TYPE,
    WorkerRuntime,
    register_worker,
    run_command,
)

pytestmark = [
    allure.epic("Worker Runtime"),
    allure.feature("Worker Capabilities"),
]


class FakeAgentHost:
    def __init__(self) -> None:
        self.tools: dict[str, ToolHandler] = {}
        self.handlers: dict[str, list[EventHandler]] = {}

    def register_tool(self, name: str, description: str, handler: ToolHandler) -> None:
        self.tools[name] = handler

    def on(self, event: str, handler: EventHandler) -> None:
        self.handlers.setdefault(event, []).append(handler)

    async def emit(self, event: str, payload: dict | None = None) -> None:
        for handler in self.handlers.get(event, []):
            outcome = handler(payload or {})
            if isinstance(outcome, Awaitable):
                await outcome


def _worker_env(git_repo, session_dir, **overrides) -> dict[str, str]:
    env = {
        "AGENT_TEAMS_WORKER": "1",
        "AGENT_TEAMS_TICKET_ID": "p-abc1",
        "AGENT_TEAMS_WORKER_NAME": "alice",
        "AGENT_TEAMS_SESSION_DIR": str(session_dir),
        "AGENT_TEAMS_TICKET_COMMAND": shlex.join(FAKE_TK_COMMAND),
        "AGENT_TEAMS_WORKER_HEARTBEAT_MS": "1000",
    }
    env.update(overrides)
    return env


def _runtime(git_repo, tmp_path) -> WorkerRuntime:
    session_dir = tmp_path / "session"
    session_dir.mkdir()
    runtime = WorkerRuntime.from_env(_worker_env(git_repo, session_dir))
    assert runtime is not None
    runtime.tickets.cwd = git_repo
    return runtime


def _heartbeat_events(runtime: WorkerRuntime) -> list[str]:
    lines = runtime.heartbeat_path.read_text("utf-8").splitlines()
    entries = [json.loads(line) for line in lines]
    assert all(entry["type"] == HEARTBEAT_ENTRY_TYPE for entry in entries)
    return [entry["event"] for entry in entries]


def test_from_env_outside_a_worker_is_none() -> None:
    assert WorkerRuntime.from_env({}) is None
    assert WorkerRuntime.from_env({"AGENT_TEAMS_WORKER": "0"}) is None


def test_from_env_requires_ticket_id(caplog, tmp_path) -> None:
    runtime = WorkerRuntime.from_env({"AGENT_TEAMS_WORKER": "1"})

    assert runtime is None
    assert "AGENT_TEAMS_TICKET_ID" in caplog.text


def test_from_env_reads_identity_and_clamps_heartbeat(git_repo, tmp_path) -> None:
    env = _worker_env(git_repo, tmp_path, AGENT_TEAMS_WORKER_HEARTBEAT_MS="250")

    runtime = WorkerRuntime.from_env(env)

    assert runtime is not None
    assert runtime.ticket_id == "p-abc1"
    assert runtime.worker_name == "alice"
    assert runtime.tickets.command == FAKE_TK_COMMAND
    assert runtime.heartbeat_interval_seconds == 5.0


def test_comment_and_finish_update_ticket(git_repo, tickets_root, tmp_path) -> None:
    write_ticket(tickets_root, "p-abc1", "Add a result file", assignee="alice")
    runtime = _runtime(git_repo, tmp_path)
    client = TicketClient(command=FAKE_TK_COMMAND, cwd=git_repo)

    async def scenario() -> None:
        result = await runtime.comment("halfway there")
        assert not result.is_error
        assert result.text == "Commented on ticket #p-abc1"
        await runtime.finish()
        ticket = await client.show("p-abc1")
        assert ticket.status == "closed"
        assert [note.text for note in ticket.notes] == ["halfway there", "DONE: Task completed."]

    asyncio.run(scenario())
    assert _heartbeat_events(runtime) == ["agent_end"]


def test_comment_failure_is_an_error_result(git_repo, tickets_root, tmp_path) -> None:
    runtime = _runtime(git_repo, tmp_path)

    result = asyncio.run(runtime.comment("nobody home"))

    assert result.is_error
    assert result.text.startswith("Failed to comment:")


def test_finish_swallows_ticket_failures(git_repo, tickets_root, tmp_path) -> None:
    runtime = _runtime(git_repo, tmp_path)

    asyncio.run(runtime.finish())


def test_register_worker_wires_tool_and_heartbeats(git_repo, tickets_root, tmp_path) -> None:
    write_ticket(tickets_root, "p-abc1", "Add a result file", assignee="alice")
    runtime = _runtime(git_repo, tmp_path)
    host = FakeAgentHost()

    heartbeat = register_worker(host, runtime)

    async def scenario() -> None:
        await host.emit("agent_start")
        await host.emit("tool_call", {"toolName": "bash"})
        result = await host.tools[COMMENT_TOOL_NAME]({"message": "progress"})
        assert not result.is_error
        empty = await host.tools[COMMENT_TOOL_NAME]({"message": "  "})
        assert empty.is_error
        await host.emit("agent_end")

    asyncio.run(scenario())
    heartbeat.join(timeout=5)

    assert not heartbeat.is_alive()
    events = _heartbeat_events(runtime)
    assert events[:3] == ["worker_init", "agent_start", "tool_call"]
    assert events[-1] == "agent_end"
    ticket = asyncio.run(TicketClient(command=FAKE_TK_COMMAND, cwd=git_repo).show("p-abc1"))
    assert ticket.status == "closed"


def test_run_command_closes_ticket_only_on_success(git_repo, tickets_root, tmp_path) -> None:
    write_ticket(tickets_root, "p-abc1", "Add a result file", assignee="alice")
    runtime = _runtime(git_repo, tmp_path)
    client = TicketClient(command=FAKE_TK_COMMAND, cwd=git_repo)

    failed = asyncio.run(run_command(runtime, [sys.executable, "-c", "raise SystemExit(4)"]))
    assert failed == 4
    assert asyncio.run(client.show("p-abc1")).status == "open"

    succeeded = asyncio.run(run_command(runtime, [sys.executable, "-c", "pass"]))
    assert succeeded == 0
    assert asyncio.run(client.show("p-abc1")).status == "closed"
