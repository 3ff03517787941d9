"""Worker retirement: stop the process, reconcile the worktree, drop the session."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from agent_teams.orchestrator.models import WorkerHandle
from agent_teams.orchestrator.spawner import is_process_alive, terminate_process
from agent_teams.orchestrator.worktree import (
    DEFAULT_GIT_TIMEOUT_SECONDS,
    DONE_SUFFIX,
    auto_commit_worktree_changes,
    branch_has_new_commits,
    remove_worktree,
    rename_branch,
    worktree_branch_name,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CleanupResult:
    branch_preserved: bool
    branch: str | None = None


async def cleanup_worker(  # noqa: PLR0913
    repo_dir: Path,
    worker: WorkerHandle,
    *,
    preserve_branch: bool = False,
    keep_sessions: bool = False,
    kill_grace_seconds: float = 5.0,
    git_timeout_seconds: float = DEFAULT_GIT_TIMEOUT_SECONDS,
) -> CleanupResult:
    """Retire one worker. Safe to call repeatedly for the same handle.

    With ``preserve_branch`` pending changes are auto-committed first, and a
    branch holding new commits survives worktree removal renamed to
    ``<branch>.done``. Branches without new commits are always deleted.
    """

    try:
        if is_process_alive(worker.pid):
            await terminate_process(worker.pid, grace_seconds=kill_grace_seconds)
    except OSError as error:
        logger.warning("Failed to stop worker %s (pid %d): %s", worker.name, worker.pid, error)

    branch_preserved = False
    kept_branch: str | None = None
    if worker.worktree_path is not None:
        branch = worktree_branch_name(worker.name, worker.ticket_id)
        if preserve_branch:
            await auto_commit_worktree_changes(
                worker.worktree_path,
                timeout_seconds=git_timeout_seconds,
            )
            branch_preserved = await branch_has_new_commits(
                repo_dir,
                branch,
                base=worker.base_commit,
                timeout_seconds=git_timeout_seconds,
            )
        await remove_worktree(
            repo_dir,
            worker.worktree_path,
            branch,
            keep_branch=branch_preserved,
            timeout_seconds=git_timeout_seconds,
        )
        if branch_preserved:
            kept_branch = branch + DONE_SUFFIX
            if not await rename_branch(
                repo_dir,
                branch,
                kept_branch,
                timeout_seconds=git_timeout_seconds,
            ):
                kept_branch = branch

    if not keep_sessions:
        await asyncio.to_thread(shutil.rmtree, worker.session_dir, ignore_errors=True)

    if branch_preserved:
        logger.info("Worker %s retired; branch %s preserved", worker.name, kept_branch)
    else:
        logger.info("Worker %s retired", worker.name)
    return CleanupResult(branch_preserved=branch_preserved, branch=kept_branch)
