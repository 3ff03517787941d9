"""Launcher interface for starting worker processes."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(slots=True)
class LaunchRequest:
    """Inputs required to start one worker process."""

    command_template: str
    prompt: str
    cwd: Path
    session_dir: Path
    env: Mapping[str, str]
    ticket_id: str
    worker_name: str
    model: str | None = None
    has_tools: bool | None = None
    model_flag: str = "--model"
    no_tools_flag: str = "--no-tools"


@dataclass(slots=True)
class LaunchedProcess:
    """A started worker process and where its output goes."""

    pid: int
    stdout_path: Path
    stderr_path: Path
    process: asyncio.subprocess.Process | None = None

    @property
    def exited(self) -> bool:
        return self.process is not None and self.process.returncode is not None


class WorkerLauncher(Protocol):
    """Protocol implemented by worker process launchers."""

    async def launch(self, request: LaunchRequest) -> LaunchedProcess:
        """Start the worker and return without waiting for it."""
