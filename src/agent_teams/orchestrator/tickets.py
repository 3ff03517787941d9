"""Ticket CLI contract: ``show`` output parser and async command client."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from pathlib import Path

from agent_teams.orchestrator.commands import CommandResult, run_command
from agent_teams.orchestrator.models import Ticket, TicketNote

logger = logging.getLogger(__name__)

_ARRAY_KEYS = frozenset({"tags", "deps", "links"})
_NOTE_MARKER = re.compile(r"^\*\*(.*?)\*\*$")
_NOTES_HEADING = "## Notes"


class MalformedTicketError(ValueError):
    """Ticket text does not follow the front-matter-plus-body convention."""


class TicketCommandError(RuntimeError):
    """Ticket CLI invocation failed, with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


def parse_ticket_show(raw: str) -> Ticket:
    """Decode ``tk show`` output into a :class:`Ticket`.

    The metadata block must be delimited by ``---`` lines. Everything after
    it is a ``# subject`` heading, a free-text description, and an optional
    ``## Notes`` section of ``**timestamp**`` markers.
    """

    lines = raw.split("\n")
    start = _find_delimiter(lines, begin=0)
    end = _find_delimiter(lines, begin=start + 1) if start != -1 else -1
    if start == -1 or end == -1:
        raise MalformedTicketError("Invalid ticket format: missing YAML front matter")

    metadata = _parse_front_matter(lines[start + 1 : end])
    subject, description, notes = _parse_body(lines[end + 1 :])
    tags = metadata.get("tags")
    assignee = metadata.get("assignee")
    return Ticket(
        id=str(metadata.get("id", "")),
        status=str(metadata.get("status", "")),
        assignee=assignee if isinstance(assignee, str) else None,
        subject=subject,
        description=description,
        tags=list(tags) if isinstance(tags, list) else [],
        notes=notes,
    )


def get_new_notes(notes: Sequence[TicketNote], last_seen_count: int) -> list[TicketNote]:
    """Notes appended since the leader last counted ``last_seen_count`` of them."""

    return list(notes[max(0, last_seen_count) :])


def _find_delimiter(lines: list[str], *, begin: int) -> int:
    for index in range(begin, len(lines)):
        if lines[index].strip() == "---":
            return index
    return -1


def _parse_front_matter(lines: list[str]) -> dict[str, str | list[str]]:
    metadata: dict[str, str | list[str]] = {}
    for line in lines:
        stripped = line.strip()
        if not stripped or ":" not in stripped:
            continue
        key, _, value = stripped.partition(":")
        key = key.strip()
        value = value.strip()
        if key in _ARRAY_KEYS:
            if value.startswith("[") and value.endswith("]"):
                content = value[1:-1].strip()
                metadata[key] = [part.strip() for part in content.split(",")] if content else []
            continue
        if not value:
            continue
        metadata[key] = value
    return metadata


def _parse_body(lines: list[str]) -> tuple[str, str, list[TicketNote]]:
    subject = ""
    description_lines: list[str] = []
    notes: list[TicketNote] = []
    section = "subject"

    index = 0
    while index < len(lines):
        line = lines[index]
        index += 1

        if section != "notes" and line.startswith("# ") and not subject:
            subject = line[2:].strip()
            section = "description"
            continue
        if line.strip() == _NOTES_HEADING:
            section = "notes"
            continue

        if section == "description":
            description_lines.append(line)
        elif section == "notes":
            marker = _NOTE_MARKER.match(line)
            if marker is None:
                continue
            body: list[str] = []
            while (
                index < len(lines)
                and not lines[index].startswith("**")
                and not lines[index].startswith("## ")
            ):
                body.append(lines[index])
                index += 1
            text = "\n".join(body).strip()
            if text:
                notes.append(TicketNote(timestamp=marker.group(1), text=text))

    return subject, "\n".join(description_lines).strip(), notes


class TicketClient:
    """Async wrapper around the ticket CLI with a bounded per-call timeout."""

    def __init__(
        self,
        *,
        command: Sequence[str] = ("tk",),
        cwd: Path | None = None,
        timeout_seconds: float = 5.0,
    ) -> None:
        self.command = tuple(command)
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds

    async def create(
        self,
        subject: str,
        *,
        description: str | None = None,
        tags: Sequence[str] = (),
        assignee: str | None = None,
    ) -> str:
        args = ["create", subject]
        if description:
            args += ["-d", description]
        if tags:
            args += ["--tags", ",".join(tags)]
        if assignee:
            args += ["-a", assignee]
        result = await self._run(*args)
        ticket_id = result.stdout.strip()
        if not ticket_id:
            raise TicketCommandError("Ticket CLI create returned no ticket id.", transient=False)
        return ticket_id

    async def start(self, ticket_id: str) -> None:
        await self._run("start", ticket_id)

    async def add_note(self, ticket_id: str, text: str) -> None:
        await self._run("add-note", ticket_id, text)

    async def close(self, ticket_id: str) -> None:
        await self._run("close", ticket_id)

    async def show(self, ticket_id: str) -> Ticket:
        result = await self._run("show", ticket_id)
        return parse_ticket_show(result.stdout)

    async def list_by_tag(self, tag: str) -> list[str]:
        result = await self._run("ls", "--tags", tag)
        return [line for line in result.stdout.splitlines() if line.strip()]

    async def _run(self, *args: str) -> CommandResult:
        result = await run_command(
            [*self.command, *args],
            cwd=self.cwd,
            timeout_seconds=self.timeout_seconds,
        )
        if result.timed_out:
            raise TicketCommandError(
                f"Ticket CLI {args[0]} timed out after {self.timeout_seconds}s.",
                transient=True,
            )
        if result.code != 0:
            detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.code}"
            raise TicketCommandError(f"Ticket CLI {args[0]} failed: {detail}", transient=True)
        return result
