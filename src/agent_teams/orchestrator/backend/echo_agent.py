"""Local demo worker agent for leader integration tests."""

from __future__ import annotations

import argparse
import asyncio
import subprocess
import sys
import time
from pathlib import Path

from agent_teams.orchestrator.worker import WorkerRuntime


def main(argv: list[str] | None = None) -> int:
    """Do a tiny deterministic piece of work for the ticket in the environment."""

    parser = argparse.ArgumentParser()
    parser.add_argument("-p", "--prompt", required=False, default="")
    parser.add_argument("--session-dir", required=False)
    parser.add_argument("--write", default=None, help="File to create in the working directory.")
    parser.add_argument("--commit", action="store_true", help="Commit the written file.")
    parser.add_argument("--comment", action="append", default=[], help="Progress note to leave.")
    parser.add_argument("--sleep", type=float, default=0.0, help="Seconds to idle before finishing.")
    parser.add_argument("--exit-code", type=int, default=0, help="Exit without closing the ticket.")
    args, _ = parser.parse_known_args(argv)

    runtime = WorkerRuntime.from_env()
    if runtime is None:
        print("echo_agent: not running as a team worker", file=sys.stderr)
        return 2

    runtime.write_heartbeat("agent_start")
    for comment in args.comment:
        asyncio.run(runtime.comment(comment))

    if args.write:
        target = Path(args.write)
        target.write_text(f"{runtime.worker_name} worked on {runtime.ticket_id}\n", "utf-8")
        if args.commit:
            subprocess.run(["git", "add", target.name], check=True)
            subprocess.run(
                [
                    "git",
                    "-c",
                    "user.name=echo-agent",
                    "-c",
                    "user.email=echo-agent@localhost",
                    "commit",
                    "--no-verify",
                    "-m",
                    f"{runtime.ticket_id}: {target.name}",
                ],
                check=True,
                capture_output=True,
            )

    if args.sleep:
        time.sleep(args.sleep)

    if args.exit_code:
        print(f"echo_agent: giving up on {runtime.ticket_id}", file=sys.stderr)
        return args.exit_code

    asyncio.run(runtime.finish())
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
