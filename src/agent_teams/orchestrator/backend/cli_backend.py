"""Subprocess-based launcher for CLI agent workers."""

from __future__ import annotations

import asyncio
import shlex

from agent_teams.orchestrator.backend.base import LaunchedProcess, LaunchRequest


class WorkerLaunchError(RuntimeError):
    """Worker launch error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class CliWorkerLauncher:
    """Render the worker command template and start it as an OS process."""

    async def launch(self, request: LaunchRequest) -> LaunchedProcess:
        request.session_dir.mkdir(parents=True, exist_ok=True)
        stdout_path = request.session_dir / "stdout.log"
        stderr_path = request.session_dir / "stderr.log"
        argv = build_run_args(request)

        try:
            with (
                stdout_path.open("w", encoding="utf-8") as stdout_handle,
                stderr_path.open("w", encoding="utf-8") as stderr_handle,
            ):
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    cwd=str(request.cwd),
                    env=dict(request.env),
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=stdout_handle,
                    stderr=stderr_handle,
                )
        except FileNotFoundError as error:
            raise WorkerLaunchError(
                f"Worker command not found: {argv[0]}",
                transient=False,
            ) from error
        except OSError as error:
            raise WorkerLaunchError(
                f"Worker command failed to start: {error}",
                transient=True,
            ) from error

        return LaunchedProcess(
            pid=process.pid,
            stdout_path=stdout_path,
            stderr_path=stderr_path,
            process=process,
        )


def build_run_args(request: LaunchRequest) -> list[str]:
    """Render the command template into argv, appending model/tool overrides."""

    stripped = request.command_template.strip()
    if not stripped:
        raise WorkerLaunchError("Worker command template is empty.", transient=False)
    if "{prompt}" not in stripped:
        raise WorkerLaunchError(
            "Worker command template must include {prompt}.",
            transient=False,
        )

    try:
        rendered = stripped.format(
            prompt=shlex.quote(request.prompt),
            session_dir=shlex.quote(str(request.session_dir)),
            ticket_id=shlex.quote(request.ticket_id),
            worker_name=shlex.quote(request.worker_name),
        )
    except (KeyError, IndexError) as error:
        raise WorkerLaunchError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise WorkerLaunchError(
            "Worker command template rendered empty command.",
            transient=False,
        )
    if request.model:
        argv += [request.model_flag, request.model]
    if request.has_tools is False and request.no_tools_flag:
        argv.append(request.no_tools_flag)
    return argv
