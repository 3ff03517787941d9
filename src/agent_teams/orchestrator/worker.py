"""Worker-side runtime: ticket comments, completion, and heartbeats."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from agent_teams.config import resolve_heartbeat_interval_ms
from agent_teams.orchestrator.host import EventHandler, ToolResult, WorkerHost
from agent_teams.orchestrator.models import utc_now
from agent_teams.orchestrator.spawner import (
    HEARTBEAT_ENV,
    SESSION_DIR_ENV,
    TICKET_COMMAND_ENV,
    TICKET_ID_ENV,
    WORKER_NAME_ENV,
    is_worker_process,
)
from agent_teams.orchestrator.tickets import TicketClient, TicketCommandError

logger = logging.getLogger(__name__)

HEARTBEAT_ENTRY_TYPE = "teams-worker-heartbeat"
HEARTBEAT_FILE_NAME = "heartbeat.jsonl"
COMMENT_TOOL_NAME = "team_comment"
DONE_NOTE = "DONE: Task completed."

HEARTBEAT_EVENTS = ("agent_start", "turn_start", "tool_call", "tool_result", "turn_end")


@dataclass(slots=True)
class WorkerRuntime:
    """Identity and capabilities of the process running as a worker."""

    ticket_id: str
    worker_name: str
    session_dir: Path | None
    tickets: TicketClient
    heartbeat_interval_seconds: float = 5.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> WorkerRuntime | None:
        """Build the runtime from the worker environment; ``None`` outside a worker."""

        env = os.environ if environ is None else environ
        if not is_worker_process(env):
            return None
        ticket_id = env.get(TICKET_ID_ENV, "").strip()
        if not ticket_id:
            logger.error("%s is not set; worker runtime disabled", TICKET_ID_ENV)
            return None

        session_dir = env.get(SESSION_DIR_ENV, "").strip()
        ticket_command = shlex.split(env.get(TICKET_COMMAND_ENV, "tk")) or ["tk"]
        return cls(
            ticket_id=ticket_id,
            worker_name=env.get(WORKER_NAME_ENV, "").strip() or "worker",
            session_dir=Path(session_dir) if session_dir else None,
            tickets=TicketClient(command=ticket_command),
            heartbeat_interval_seconds=resolve_heartbeat_interval_ms(env.get(HEARTBEAT_ENV)) / 1000,
        )

    @property
    def heartbeat_path(self) -> Path | None:
        if self.session_dir is None:
            return None
        return self.session_dir / HEARTBEAT_FILE_NAME

    async def comment(self, message: str) -> ToolResult:
        try:
            await self.tickets.add_note(self.ticket_id, message)
        except TicketCommandError as error:
            return ToolResult(f"Failed to comment: {error}", is_error=True)
        return ToolResult(f"Commented on ticket #{self.ticket_id}")

    async def finish(self) -> None:
        """Leave the completion note and close the ticket; failures are only logged."""

        self.write_heartbeat("agent_end")
        try:
            await self.tickets.add_note(self.ticket_id, DONE_NOTE)
            await self.tickets.close(self.ticket_id)
        except TicketCommandError as error:
            logger.warning("Could not close ticket %s: %s", self.ticket_id, error)

    def write_heartbeat(self, event: str, **details: Any) -> None:
        path = self.heartbeat_path
        if path is None:
            return
        entry = {
            "type": HEARTBEAT_ENTRY_TYPE,
            "event": event,
            "ticketId": self.ticket_id,
            "workerName": self.worker_name,
            "timestamp": int(utc_now().timestamp() * 1000),
            **details,
        }
        try:
            with path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry) + "\n")
        except OSError as error:
            logger.debug("Heartbeat write failed: %s", error)

    def start_heartbeat(self) -> HeartbeatThread:
        thread = HeartbeatThread(self)
        thread.start()
        return thread


class HeartbeatThread(threading.Thread):
    """Appends a ``tick`` heartbeat every interval until stopped."""

    def __init__(self, runtime: WorkerRuntime) -> None:
        super().__init__(name=f"heartbeat-{runtime.worker_name}", daemon=True)
        self.runtime = runtime
        self._stopped = threading.Event()

    def run(self) -> None:
        while not self._stopped.wait(self.runtime.heartbeat_interval_seconds):
            self.runtime.write_heartbeat("tick")

    def stop(self) -> None:
        self._stopped.set()


def register_worker(host: WorkerHost, runtime: WorkerRuntime) -> HeartbeatThread:
    """Wire the comment tool and lifecycle heartbeats into the hosting agent."""

    runtime.write_heartbeat("worker_init")
    heartbeat = runtime.start_heartbeat()

    def on_lifecycle(event: str) -> EventHandler:
        def handler(payload: dict[str, Any]) -> None:
            details: dict[str, Any] = {}
            if "toolName" in payload:
                details["toolName"] = payload["toolName"]
            if "isError" in payload:
                details["isError"] = payload["isError"]
            runtime.write_heartbeat(event, **details)

        return handler

    for event in HEARTBEAT_EVENTS:
        host.on(event, on_lifecycle(event))

    def on_shutdown(_payload: dict[str, Any]) -> None:
        heartbeat.stop()

    async def on_agent_end(_payload: dict[str, Any]) -> None:
        heartbeat.stop()
        await runtime.finish()

    async def team_comment(params: dict[str, Any]) -> ToolResult:
        message = str(params.get("message") or "").strip()
        if not message:
            return ToolResult("Provide a message.", is_error=True)
        return await runtime.comment(message)

    host.on("session_shutdown", on_shutdown)
    host.on("agent_end", on_agent_end)
    host.register_tool(
        COMMENT_TOOL_NAME,
        f"Comment on your assigned ticket ({runtime.ticket_id}). "
        "Use this to report progress, ask questions, or flag blockers.",
        team_comment,
    )
    return heartbeat


async def run_command(runtime: WorkerRuntime, argv: Sequence[str]) -> int:
    """Run ``argv`` as the worker's task loop; a zero exit finishes the ticket."""

    runtime.write_heartbeat("agent_start")
    heartbeat = runtime.start_heartbeat()
    try:
        process = await asyncio.create_subprocess_exec(*argv)
        code = await process.wait()
    finally:
        heartbeat.stop()

    if code == 0:
        await runtime.finish()
    else:
        runtime.write_heartbeat("agent_end", exitCode=code)
        logger.warning("Worker command exited with status %d; ticket left open", code)
    return code
