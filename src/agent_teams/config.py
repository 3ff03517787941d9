"""Runtime configuration for the team leader and its workers."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_WORKER_COMMAND = "pi --non-interactive --session-dir {session_dir} -p {prompt}"

POLL_INTERVAL_MIN_MS = 250
STUCK_THRESHOLD_MIN_MS = 30_000
HEARTBEAT_MIN_MS = 1_000


@dataclass(slots=True)
class PollingSettings:
    """Leader polling loop and stuck detection settings."""

    poll_interval_seconds: float = 1.0
    stuck_threshold_seconds: float = 300.0
    stuck_warning_cooldown_seconds: float = 300.0
    show_comments: bool = True


@dataclass(slots=True)
class WorkerSettings:
    """How worker processes are launched and retired."""

    command_template: str = DEFAULT_WORKER_COMMAND
    model_flag: str = "--model"
    no_tools_flag: str = "--no-tools"
    heartbeat_interval_seconds: float = 5.0
    kill_grace_seconds: float = 5.0
    keep_sessions: bool = False
    session_root: Path | None = None


@dataclass(slots=True)
class TicketSettings:
    """Ticket CLI invocation settings."""

    command: tuple[str, ...] = ("tk",)
    timeout_seconds: float = 5.0
    team_tag: str = "team"


@dataclass(slots=True)
class GitSettings:
    """Git subprocess settings."""

    timeout_seconds: float = 30.0
    worktree_dirname: str = ".worktrees"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    polling: PollingSettings = field(default_factory=PollingSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    tickets: TicketSettings = field(default_factory=TicketSettings)
    git: GitSettings = field(default_factory=GitSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults and minimum floors."""

        session_root = os.getenv("AGENT_TEAMS_SESSION_ROOT", "").strip()
        return cls(
            polling=PollingSettings(
                poll_interval_seconds=resolve_poll_interval_ms(
                    os.getenv("AGENT_TEAMS_POLL_INTERVAL_MS"),
                )
                / 1000,
                stuck_threshold_seconds=resolve_stuck_threshold_ms(
                    os.getenv("AGENT_TEAMS_STUCK_THRESHOLD_MS"),
                )
                / 1000,
                stuck_warning_cooldown_seconds=max(
                    0,
                    _parse_ms(
                        os.getenv("AGENT_TEAMS_STUCK_WARNING_COOLDOWN_MS"),
                        default=300_000,
                    ),
                )
                / 1000,
                show_comments=_env_bool("AGENT_TEAMS_SHOW_COMMENTS", default=True),
            ),
            worker=WorkerSettings(
                command_template=os.getenv("AGENT_TEAMS_WORKER_COMMAND", DEFAULT_WORKER_COMMAND),
                model_flag=os.getenv("AGENT_TEAMS_WORKER_MODEL_FLAG", "--model"),
                no_tools_flag=os.getenv("AGENT_TEAMS_WORKER_NO_TOOLS_FLAG", "--no-tools"),
                heartbeat_interval_seconds=resolve_heartbeat_interval_ms(
                    os.getenv("AGENT_TEAMS_WORKER_HEARTBEAT_MS"),
                )
                / 1000,
                kill_grace_seconds=float(os.getenv("AGENT_TEAMS_KILL_GRACE_SECONDS", "5")),
                keep_sessions=_env_bool("AGENT_TEAMS_KEEP_WORKER_SESSIONS", default=False),
                session_root=Path(session_root) if session_root else None,
            ),
            tickets=TicketSettings(
                command=tuple(shlex.split(os.getenv("AGENT_TEAMS_TICKET_COMMAND", "tk"))),
                timeout_seconds=float(os.getenv("AGENT_TEAMS_TICKET_TIMEOUT_SECONDS", "5")),
                team_tag=os.getenv("AGENT_TEAMS_TEAM_TAG", "team"),
            ),
            git=GitSettings(
                timeout_seconds=float(os.getenv("AGENT_TEAMS_GIT_TIMEOUT_SECONDS", "30")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if settings cannot drive a leader."""

        if not self.tickets.command:
            raise ValueError("AGENT_TEAMS_TICKET_COMMAND must not be empty.")
        if self.tickets.timeout_seconds <= 0:
            raise ValueError("AGENT_TEAMS_TICKET_TIMEOUT_SECONDS must be > 0.")
        if self.git.timeout_seconds <= 0:
            raise ValueError("AGENT_TEAMS_GIT_TIMEOUT_SECONDS must be > 0.")
        if self.worker.kill_grace_seconds < 0:
            raise ValueError("AGENT_TEAMS_KILL_GRACE_SECONDS must be >= 0.")
        if "{prompt}" not in self.worker.command_template:
            raise ValueError(
                "AGENT_TEAMS_WORKER_COMMAND must include the {prompt} placeholder.",
            )


def resolve_poll_interval_ms(raw: str | None) -> int:
    """Poll interval in milliseconds, raised to the 250 ms floor."""

    return max(POLL_INTERVAL_MIN_MS, _parse_ms(raw, default=1_000))


def resolve_stuck_threshold_ms(raw: str | None) -> int:
    """Stuck threshold in milliseconds, raised to the 30 s floor."""

    return max(STUCK_THRESHOLD_MIN_MS, _parse_ms(raw, default=300_000))


def resolve_heartbeat_interval_ms(raw: str | None) -> int:
    """Worker heartbeat interval; out-of-range values fall back to the default."""

    value = _parse_ms(raw, default=5_000)
    if value < HEARTBEAT_MIN_MS:
        return 5_000
    return value


def _parse_ms(raw: str | None, *, default: int) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        return int(float(raw.strip()))
    except (ValueError, OverflowError):
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
