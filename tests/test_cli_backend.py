from __future__ import annotations

import asyncio
import shlex
import sys
from pathlib import Path

import allure
import pytest

from agent_teams.orchestrator.backend import CliWorkerLauncher, LaunchRequest, WorkerLaunchError
from agent_teams.orchestrator.backend.cli_backend import build_run_args

pytestmark = [
    allure.epic("Worker Runtime"),
    allure.feature("Worker Command Rendering"),
]


def _request(template: str, **overrides) -> LaunchRequest:
    values = {
        "command_template": template,
        "prompt": 'Read ticket "p-1"\nthen work',
        "cwd": Path("/repo"),
        "session_dir": Path("/tmp/team sessions/alice"),
        "env": {},
        "ticket_id": "p-1",
        "worker_name": "alice",
    }
    values.update(overrides)
    return LaunchRequest(**values)


def test_build_run_args_keeps_placeholder_values_intact() -> None:
    argv = build_run_args(
        _request("pi --session-dir {session_dir} --name {worker_name} -p {prompt}"),
    )

    assert argv == [
        "pi",
        "--session-dir",
        "/tmp/team sessions/alice",
        "--name",
        "alice",
        "-p",
        'Read ticket "p-1"\nthen work',
    ]


def test_build_run_args_appends_model_and_no_tools() -> None:
    argv = build_run_args(
        _request("agent {prompt}", model="anthropic/claude-sonnet", has_tools=False),
    )

    assert argv[-3:] == ["--model", "anthropic/claude-sonnet", "--no-tools"]


def test_build_run_args_honours_custom_flags() -> None:
    argv = build_run_args(
        _request(
            "agent {prompt}",
            model="m",
            has_tools=False,
            model_flag="-m",
            no_tools_flag="--bare",
        ),
    )

    assert argv[-3:] == ["-m", "m", "--bare"]


@pytest.mark.parametrize(
    ("template", "message"),
    [
        ("", "empty"),
        ("agent --session-dir {session_dir}", "{prompt}"),
        ("agent {prompt} {unknown}", "Unsupported command template placeholder"),
    ],
)
def test_build_run_args_rejects_bad_templates(template: str, message: str) -> None:
    with pytest.raises(WorkerLaunchError, match=message) as excinfo:
        build_run_args(_request(template))

    assert not excinfo.value.transient


def test_launch_redirects_output_into_session_dir(tmp_path) -> None:
    script = "import sys; print('out:' + sys.argv[1]); print('err', file=sys.stderr)"
    template = f"{shlex.quote(sys.executable)} -c {shlex.quote(script)} {{prompt}}"
    request = _request(template, cwd=tmp_path, session_dir=tmp_path / "session", prompt="hi")

    async def scenario() -> int:
        launched = await CliWorkerLauncher().launch(request)
        assert launched.process is not None
        return await launched.process.wait()

    assert asyncio.run(scenario()) == 0
    assert (tmp_path / "session" / "stdout.log").read_text("utf-8") == "out:hi\n"
    assert (tmp_path / "session" / "stderr.log").read_text("utf-8") == "err\n"


def test_launch_missing_binary_is_permanent_error(tmp_path) -> None:
    request = _request(
        "definitely-not-an-agent {prompt}",
        cwd=tmp_path,
        session_dir=tmp_path / "session",
    )

    with pytest.raises(WorkerLaunchError, match="not found") as excinfo:
        asyncio.run(CliWorkerLauncher().launch(request))

    assert not excinfo.value.transient
