"""Git worktree isolation: one branch and working directory per worker."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from agent_teams.orchestrator.commands import CommandResult, run_command

logger = logging.getLogger(__name__)

AUTO_COMMIT_AUTHOR_NAME = "agent-teams"
AUTO_COMMIT_AUTHOR_EMAIL = "agent-teams@localhost"
AUTO_COMMIT_MESSAGE = "auto-commit: uncommitted work preserved on worker close"
DONE_SUFFIX = ".done"
DEFAULT_GIT_TIMEOUT_SECONDS = 30.0


@dataclass(slots=True, frozen=True)
class WorktreeResult:
    """Outcome of a worktree mutation; failures never raise."""

    success: bool
    path: Path
    branch: str
    base_commit: str | None = None
    error: str | None = None


def worktree_branch_name(worker_name: str, ticket_id: str) -> str:
    return f"teams/{worker_name}/{ticket_id}"


def done_branch_name(worker_name: str, ticket_id: str) -> str:
    return worktree_branch_name(worker_name, ticket_id) + DONE_SUFFIX


def worker_worktree_path(repo_dir: Path, worker_name: str, *, dirname: str = ".worktrees") -> Path:
    return repo_dir / dirname / "teams" / worker_name


async def create_worktree(
    repo_dir: Path,
    worker_name: str,
    ticket_id: str,
    worktree_path: Path,
    *,
    timeout_seconds: float = DEFAULT_GIT_TIMEOUT_SECONDS,
) -> WorktreeResult:
    """Branch from the current HEAD and check it out at ``worktree_path``."""

    branch = worktree_branch_name(worker_name, ticket_id)
    base = await _git(repo_dir, "rev-parse", "HEAD", timeout_seconds=timeout_seconds)
    result = await _git(
        repo_dir,
        "worktree",
        "add",
        str(worktree_path),
        "-b",
        branch,
        "HEAD",
        timeout_seconds=timeout_seconds,
    )
    if not result.ok:
        return WorktreeResult(
            success=False,
            path=worktree_path,
            branch=branch,
            error=_describe_failure(result),
        )
    logger.info("Created worktree %s on %s", worktree_path, branch)
    return WorktreeResult(
        success=True,
        path=worktree_path,
        branch=branch,
        base_commit=(base.stdout.strip() or None) if base.ok else None,
    )


async def remove_worktree(
    repo_dir: Path,
    worktree_path: Path,
    branch: str,
    *,
    keep_branch: bool = True,
    timeout_seconds: float = DEFAULT_GIT_TIMEOUT_SECONDS,
) -> WorktreeResult:
    """Detach the worktree and optionally force-delete its branch.

    Both steps are best-effort: an already removed worktree or branch is success.
    """

    removed = await _git(
        repo_dir,
        "worktree",
        "remove",
        str(worktree_path),
        "--force",
        timeout_seconds=timeout_seconds,
    )
    if not removed.ok:
        logger.debug("git worktree remove %s: %s", worktree_path, _describe_failure(removed))
        await _git(repo_dir, "worktree", "prune", timeout_seconds=timeout_seconds)
    if not keep_branch:
        deleted = await _git(repo_dir, "branch", "-D", branch, timeout_seconds=timeout_seconds)
        if not deleted.ok:
            logger.debug("git branch -D %s: %s", branch, _describe_failure(deleted))
    return WorktreeResult(success=True, path=worktree_path, branch=branch)


async def branch_has_new_commits(
    repo_dir: Path,
    branch: str,
    *,
    base: str | None = None,
    timeout_seconds: float = DEFAULT_GIT_TIMEOUT_SECONDS,
) -> bool:
    """Whether ``branch`` has commits beyond ``base`` (the repository HEAD when unset)."""

    result = await _git(
        repo_dir,
        "rev-list",
        "--count",
        f"{base or 'HEAD'}..{branch}",
        timeout_seconds=timeout_seconds,
    )
    if not result.ok:
        return False
    try:
        return int(result.stdout.strip()) > 0
    except ValueError:
        return False


async def auto_commit_worktree_changes(
    worktree_path: Path,
    *,
    timeout_seconds: float = DEFAULT_GIT_TIMEOUT_SECONDS,
) -> bool:
    """Commit any uncommitted changes under a fixed identity. True if a commit was made."""

    if not worktree_path.is_dir():
        return False
    status = await _git(worktree_path, "status", "--porcelain", timeout_seconds=timeout_seconds)
    if not status.ok or not status.stdout.strip():
        return False
    added = await _git(worktree_path, "add", "-A", timeout_seconds=timeout_seconds)
    if not added.ok:
        logger.warning("git add failed in %s: %s", worktree_path, _describe_failure(added))
        return False
    committed = await _git(
        worktree_path,
        "-c",
        f"user.name={AUTO_COMMIT_AUTHOR_NAME}",
        "-c",
        f"user.email={AUTO_COMMIT_AUTHOR_EMAIL}",
        "commit",
        "--no-verify",
        f"--author={AUTO_COMMIT_AUTHOR_NAME} <{AUTO_COMMIT_AUTHOR_EMAIL}>",
        "-m",
        AUTO_COMMIT_MESSAGE,
        timeout_seconds=timeout_seconds,
    )
    if not committed.ok:
        logger.warning("git commit failed in %s: %s", worktree_path, _describe_failure(committed))
        return False
    logger.info("Auto-committed pending changes in %s", worktree_path)
    return True


async def rename_branch(
    repo_dir: Path,
    old_name: str,
    new_name: str,
    *,
    timeout_seconds: float = DEFAULT_GIT_TIMEOUT_SECONDS,
) -> bool:
    result = await _git(
        repo_dir,
        "branch",
        "-m",
        old_name,
        new_name,
        timeout_seconds=timeout_seconds,
    )
    if not result.ok:
        logger.warning("git branch -m %s %s: %s", old_name, new_name, _describe_failure(result))
    return result.ok


async def _git(cwd: Path, *args: str, timeout_seconds: float) -> CommandResult:
    return await run_command(["git", *args], cwd=cwd, timeout_seconds=timeout_seconds)


def _describe_failure(result: CommandResult) -> str:
    return result.stderr.strip() or result.stdout.strip() or f"git exited with {result.code}"
