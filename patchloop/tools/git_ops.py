"""Git operations for patchloop.

Every accepted edit becomes its own commit (a checkpoint), so the
surrounding environment can inspect or revert changes one task at a time.
A run works on its own branch, created on start unless already on one.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Optional

from patchloop.core.exceptions import GitOperationError, ToolError
from patchloop.tools.shell import run_command

logger = logging.getLogger("patchloop.tools.git_ops")


def is_git_repo(path: str) -> bool:
    """Check if the given path is inside a git repository."""
    try:
        result = run_command(["git", "rev-parse", "--is-inside-work-tree"], cwd=path)
    except ToolError:
        return False
    return result.success and result.stdout.strip() == "true"


def current_branch(repo_path: str) -> Optional[str]:
    """Name of the checked-out branch, or None when detached or unborn."""
    result = run_command(["git", "rev-parse", "--abbrev-ref", "HEAD"], cwd=repo_path)
    name = result.stdout.strip()
    if not result.success or not name or name == "HEAD":
        return None
    return name


def ensure_branch(repo_path: str, prefix: str = "patchloop/") -> Optional[str]:
    """Switch to a fresh ``<prefix><timestamp>`` branch unless already on one.

    Returns:
        The working branch name, or None when the path is not a git repo.
    """
    if not is_git_repo(repo_path):
        logger.info("Not a git repository, skipping branch setup: %s", repo_path)
        return None

    branch = current_branch(repo_path)
    if branch and branch.startswith(prefix):
        return branch

    stamp = datetime.now(UTC).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    name = f"{prefix}{stamp}"
    result = run_command(["git", "checkout", "-b", name], cwd=repo_path)
    if not result.success:
        raise GitOperationError(f"git checkout -b {name} failed: {result.stderr}")
    logger.info("Working on branch %s", name)
    return name


def commit(repo_path: str, message: str) -> str:
    """Stage every change (``git add -A``) and create a git commit.

    Args:
        repo_path: Path to the git repository.
        message: Commit message.

    Returns:
        Commit hash, or "" when there was nothing to commit.

    Raises:
        GitOperationError: If staging or commit fails.
    """
    result = run_command(["git", "add", "-A"], cwd=repo_path)
    if not result.success:
        raise GitOperationError(f"git add -A failed: {result.stderr}")

    result = run_command(["git", "commit", "-m", message], cwd=repo_path)
    if not result.success:
        if "nothing to commit" in result.stdout or "nothing added to commit" in result.stdout:
            logger.info("Nothing to commit")
            return ""
        raise GitOperationError(f"git commit failed: {result.stderr or result.stdout}")

    hash_result = run_command(["git", "rev-parse", "HEAD"], cwd=repo_path)
    commit_hash = hash_result.stdout.strip()
    logger.info("Committed %s: %s", commit_hash[:8], message)
    return commit_hash


def commit_safe(repo_path: str, message: str) -> str:
    """Checkpoint all changes; on a clean tree, outside a repo or on failure, return ""."""
    if not is_git_repo(repo_path):
        logger.debug("Not a git repository, skipping commit: %s", message)
        return ""
    try:
        if not get_status(repo_path).strip():
            logger.debug("Working tree clean, skipping commit: %s", message)
            return ""
        return commit(repo_path, message)
    except ToolError as e:
        logger.warning("Checkpoint commit failed (%s): %s", message, e)
        return ""


def get_status(repo_path: str) -> str:
    """Short status of the working tree; "" when clean."""
    result = run_command(["git", "status", "--short"], cwd=repo_path)
    return result.stdout
