"""Bounded-time external command execution shared by ticket, git, and ps calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
NOT_FOUND_EXIT_CODE = 127


@dataclass(slots=True, frozen=True)
class CommandResult:
    """Exit status and captured output of one external command."""

    code: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.code == 0 and not self.timed_out


async def run_command(
    argv: Sequence[str],
    *,
    cwd: Path | str | None = None,
    timeout_seconds: float,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run ``argv`` to completion or until the timeout kills it.

    Launch failures and timeouts are reported through the result, not raised.
    """

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as error:
        return CommandResult(code=NOT_FOUND_EXIT_CODE, stdout="", stderr=str(error))

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except TimeoutError:
        logger.debug("Command timed out after %.1fs: %s", timeout_seconds, argv[0])
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()
        return CommandResult(
            code=TIMEOUT_EXIT_CODE,
            stdout="",
            stderr=f"timed out after {timeout_seconds}s",
            timed_out=True,
        )

    return CommandResult(
        code=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
