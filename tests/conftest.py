"""Shared test fixtures."""

from __future__ import annotations

import subprocess
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from agent_teams.config import GitSettings, PollingSettings, Settings, TicketSettings, WorkerSettings
from agent_teams.orchestrator.tickets import TicketClient

FAKE_TK = Path(__file__).with_name("fake_tk.py")
FAKE_TK_COMMAND = (sys.executable, str(FAKE_TK))

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m agent_teams.orchestrator.backend.echo_agent "
    "--session-dir {session_dir} -p {prompt}"
)

_GIT_IDENTITY = {
    "GIT_AUTHOR_NAME": "Test Author",
    "GIT_AUTHOR_EMAIL": "author@example.com",
    "GIT_COMMITTER_NAME": "Test Author",
    "GIT_COMMITTER_EMAIL": "author@example.com",
}


@dataclass
class RecordingHost:
    """Leader host that records everything the leader tells it."""

    cwd: Path
    session_file: str | None = "leader-session.jsonl"
    models: Sequence[str] | None = None
    model: str | None = None
    messages: list[tuple[str, bool]] = field(default_factory=list)
    widgets: dict[str, list[str] | None] = field(default_factory=dict)

    def send_message(self, content: str, *, trigger_turn: bool) -> None:
        self.messages.append((content, trigger_turn))

    def set_widget(self, key: str, lines: Sequence[str] | None) -> None:
        self.widgets[key] = list(lines) if lines is not None else None

    def available_models(self) -> Sequence[str] | None:
        return self.models

    def current_model(self) -> str | None:
        return self.model

    @property
    def texts(self) -> list[str]:
        return [content for content, _ in self.messages]


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def branch_exists(repo: Path, branch: str) -> bool:
    result = subprocess.run(
        ["git", "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"],
        cwd=repo,
        capture_output=True,
        check=False,
    )
    return result.returncode == 0


@pytest.fixture()
def git_repo(tmp_path, monkeypatch) -> Path:
    """Repository with one commit and a deterministic identity."""

    for name, value in _GIT_IDENTITY.items():
        monkeypatch.setenv(name, value)
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "--quiet")
    (repo / ".git" / "info" / "exclude").write_text(".worktrees/\n.tickets/\n", "utf-8")
    (repo / "README.md").write_text("# demo\n", "utf-8")
    git(repo, "add", "README.md")
    git(repo, "commit", "--quiet", "-m", "initial")
    return repo


@pytest.fixture()
def tickets_root(git_repo) -> Path:
    root = git_repo / ".tickets"
    root.mkdir()
    return root


@pytest.fixture()
def ticket_client(git_repo, tickets_root) -> TicketClient:
    return TicketClient(command=FAKE_TK_COMMAND, cwd=git_repo, timeout_seconds=10.0)


@pytest.fixture()
def fast_settings(tmp_path) -> Settings:
    """Settings tuned for quick integration runs against the echo agent."""

    return Settings(
        polling=PollingSettings(poll_interval_seconds=0.05),
        worker=WorkerSettings(
            command_template=ECHO_AGENT_COMMAND_TEMPLATE,
            kill_grace_seconds=1.0,
            session_root=tmp_path / "sessions",
        ),
        tickets=TicketSettings(command=FAKE_TK_COMMAND, timeout_seconds=10.0),
        git=GitSettings(timeout_seconds=30.0),
    )


@pytest.fixture()
def recording_host(git_repo) -> RecordingHost:
    return RecordingHost(cwd=git_repo)


def write_ticket(  # noqa: PLR0913
    tickets_root: Path,
    ticket_id: str,
    subject: str,
    *,
    status: str = "open",
    assignee: str | None = None,
    tags: Sequence[str] = ("team",),
) -> Path:
    """Store a ticket in the fake CLI's format."""

    lines = [
        "---",
        f"id: {ticket_id}",
        f"status: {status}",
        "deps: []",
        "links: []",
        "type: task",
        "priority: 2",
    ]
    if assignee:
        lines.append(f"assignee: {assignee}")
    lines += [f"tags: [{', '.join(tags)}]", "---", f"# {subject}", ""]
    path = tickets_root / f"{ticket_id}.md"
    path.write_text("\n".join(lines), "utf-8")
    return path
