"""File-backed stand-in for the ``tk`` ticket CLI used by integration tests.

Tickets live in the nearest ``.tickets/`` directory above the working
directory, one ``<id>.md`` file each, in exactly the format ``tk show`` prints.
"""

from __future__ import annotations

import argparse
import sys
from datetime import UTC, datetime
from pathlib import Path

TICKETS_DIRNAME = ".tickets"


def tickets_dir(start: Path) -> Path:
    for candidate in (start, *start.parents):
        if (candidate / TICKETS_DIRNAME).is_dir():
            return candidate / TICKETS_DIRNAME
    created = start / TICKETS_DIRNAME
    created.mkdir(parents=True, exist_ok=True)
    return created


def render_ticket(  # noqa: PLR0913
    ticket_id: str,
    subject: str,
    *,
    status: str = "open",
    description: str = "",
    assignee: str | None = None,
    tags: list[str] | None = None,
) -> str:
    lines = [
        "---",
        f"id: {ticket_id}",
        f"status: {status}",
        "deps: []",
        "links: []",
        f"created: {_timestamp()}",
        "type: task",
        "priority: 2",
    ]
    if assignee:
        lines.append(f"assignee: {assignee}")
    lines.append(f"tags: [{', '.join(tags or [])}]")
    lines += ["---", f"# {subject}", ""]
    if description:
        lines += [description, ""]
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:  # noqa: C901
    parser = argparse.ArgumentParser(prog="tk")
    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create")
    create.add_argument("subject")
    create.add_argument("-d", "--description", default="")
    create.add_argument("--tags", default="")
    create.add_argument("-a", "--assignee", default=None)

    for name in ("start", "close", "show"):
        sub = commands.add_parser(name)
        sub.add_argument("ticket_id")

    note = commands.add_parser("add-note")
    note.add_argument("ticket_id")
    note.add_argument("text")

    listing = commands.add_parser("ls")
    listing.add_argument("--tags", default="")

    args = parser.parse_args(argv)
    root = tickets_dir(Path.cwd())

    if args.command == "create":
        ticket_id = f"p-{len(list(root.glob('*.md'))) + 1:04x}"
        tags = [tag for tag in args.tags.split(",") if tag]
        (root / f"{ticket_id}.md").write_text(
            render_ticket(
                ticket_id,
                args.subject,
                description=args.description,
                assignee=args.assignee,
                tags=tags,
            ),
            "utf-8",
        )
        print(ticket_id)
        return 0

    if args.command == "ls":
        for path in sorted(root.glob("*.md")):
            text = path.read_text("utf-8")
            if not args.tags or f"{args.tags}" in _tags_line(text):
                print(path.stem)
        return 0

    path = root / f"{args.ticket_id}.md"
    if not path.exists():
        print(f"Error: ticket '{args.ticket_id}' not found", file=sys.stderr)
        return 1
    text = path.read_text("utf-8")

    if args.command == "show":
        sys.stdout.write(text)
        return 0
    if args.command == "start":
        path.write_text(_set_status(text, "in_progress"), "utf-8")
        return 0
    if args.command == "close":
        path.write_text(_set_status(text, "closed"), "utf-8")
        return 0
    if args.command == "add-note":
        if "\n## Notes\n" not in text:
            text = text.rstrip("\n") + "\n\n## Notes\n"
        text += f"\n**{_timestamp()}**\n\n{args.text}\n"
        path.write_text(text, "utf-8")
        return 0
    return 2


def _set_status(text: str, status: str) -> str:
    lines = text.split("\n")
    for index, line in enumerate(lines):
        if line.startswith("status:"):
            lines[index] = f"status: {status}"
            break
    return "\n".join(lines)


def _tags_line(text: str) -> str:
    for line in text.split("\n"):
        if line.startswith("tags:"):
            return line
    return ""


def _timestamp() -> str:
    return datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


if __name__ == "__main__":
    sys.exit(main())
