"""Unified-diff application for patchloop.

Primary path: ``git apply --whitespace=fix`` against the working tree.

Fallback path (only when the primary path fails): rebuild the target file
from the diff's added lines. This is a destructive reconstruction, not a
patch: the target file is overwritten with exactly the ``+`` lines of the
diff, and any content not present as an added line is lost. It is kept for
compatibility with model output that is not cleanly applicable and can be
disabled with ``reconstruct=False`` (``loop.fallback_reconstruct``).
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

from patchloop.core.exceptions import PatchApplyError, ToolError
from patchloop.tools.file_ops import resolve_in_repo, write_file_atomic
from patchloop.tools.shell import run_command

logger = logging.getLogger("patchloop.tools.patch_apply")

_TARGET_HEADER = re.compile(r"^\+\+\+ (?:b/)?(.+?)\s*$")


def has_diff_headers(diff_text: Optional[str]) -> bool:
    """True when the text has both a ``--- `` line and a ``+++ `` line."""
    if not diff_text:
        return False
    lines = diff_text.splitlines()
    return any(ln.startswith("--- ") for ln in lines) and any(ln.startswith("+++ ") for ln in lines)


def apply_diff(diff_text: Optional[str], repo_path: str | Path, reconstruct: bool = True) -> bool:
    """Apply a unified diff to the working tree.

    Returns:
        True if the tree now reflects the diff (by either path), False if
        the diff was rejected. A False result leaves no new file state.
    """
    if not has_diff_headers(diff_text):
        logger.info("Rejected diff without ---/+++ headers")
        return False

    if _git_apply(diff_text, repo_path):
        return True

    if not reconstruct:
        logger.info("git apply failed and reconstruction is disabled; diff skipped")
        return False

    try:
        target = reconstruct_from_added_lines(diff_text, repo_path)
    except (PatchApplyError, ToolError) as e:
        logger.warning("Patch could not be applied: %s", e)
        return False

    logger.warning("git apply failed; rebuilt %s from the diff's added lines", target)
    return True


def _git_apply(diff_text: str, repo_path: str | Path) -> bool:
    payload = diff_text if diff_text.endswith("\n") else diff_text + "\n"
    try:
        result = run_command(
            ["git", "apply", "--whitespace=fix", "-"],
            cwd=str(repo_path),
            input_text=payload,
        )
    except ToolError as e:
        logger.debug("git apply unavailable: %s", e)
        return False
    if not result.success:
        logger.debug("git apply rejected diff: %s", result.stderr.strip())
    return result.success


def target_path(diff_text: str) -> str:
    """Path named by the first ``+++`` header (``b/`` prefix and timestamps dropped).

    Raises:
        PatchApplyError: If no usable target path is present.
    """
    for line in diff_text.splitlines():
        if not line.startswith("+++ "):
            continue
        header = line.split("\t", 1)[0]
        match = _TARGET_HEADER.match(header)
        if not match:
            break
        path = match.group(1).strip()
        if not path or path == "/dev/null":
            raise PatchApplyError("Diff deletes its target; nothing to reconstruct")
        return path
    raise PatchApplyError("Diff has no +++ target path")


def added_lines(diff_text: str) -> list[str]:
    """Every ``+`` line of the diff with the marker removed, headers excluded."""
    lines = []
    for line in diff_text.splitlines():
        if line.startswith("+++ ") or line == "+++":
            continue
        if line.startswith("+"):
            lines.append(line[1:])
    return lines


def reconstruct_from_added_lines(diff_text: str, repo_path: str | Path) -> Path:
    """Overwrite the diff's target with its added lines joined by newlines.

    Raises:
        PatchApplyError: If the diff has no target or no added lines.
        ToolError: If the path escapes the repository or the write fails.
    """
    relative = target_path(diff_text)
    content_lines = added_lines(diff_text)
    if not content_lines:
        raise PatchApplyError(f"Diff for {relative} has no added lines")
    destination = resolve_in_repo(repo_path, relative)
    return write_file_atomic(destination, "\n".join(content_lines))
