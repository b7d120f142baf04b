"""File operations for patchloop.

Working-tree helpers used by the loop: safe reads, atomic writes scoped to the
repository, the tree listing and manifest fed to the planner, the requirements
brief, and the build-output size metric.
"""

from __future__ import annotations

import json
import logging
import os
import re
import stat
import tempfile
from pathlib import Path
from typing import Any, Optional

from patchloop.core.exceptions import ToolError
from patchloop.core.models import FeatureSpec

logger = logging.getLogger("patchloop.tools.file_ops")

TREE_LIMIT = 500
IGNORED_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv"}
_ACCEPTANCE_LINE = re.compile(r"acceptance|criteria|criterio|aceptaci[oó]n", re.IGNORECASE)
_TITLE_LINE = re.compile(r"^#\s*(.+)$", re.MULTILINE)


def resolve_in_repo(repo_path: str | Path, relative: str) -> Path:
    """Resolve ``relative`` under the repository root.

    Raises:
        ToolError: If the path is absolute or escapes the repository.
    """
    root = Path(repo_path).resolve()
    candidate = Path(relative)
    if candidate.is_absolute():
        raise ToolError(f"Absolute paths are not allowed: {relative}")
    resolved = (root / candidate).resolve()
    if resolved != root and root not in resolved.parents:
        raise ToolError(f"Path escapes repository: {relative}")
    return resolved


def read_file_safe(path: str | Path) -> Optional[str]:
    """Return file contents, or None when it is missing or unreadable."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def _default_file_mode() -> int:
    """Mode a plain ``open(path, "w")`` would give a new file under the current umask."""
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def write_file_atomic(path: str | Path, content: str) -> Path:
    """Replace a file's contents in one step (temp file + rename).

    Parent directories are created. On failure the original file is untouched.

    Raises:
        ToolError: If the write fails.
    """
    p = Path(path)
    tmp_name: Optional[str] = None
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        if p.is_symlink():
            raise ToolError(f"Refusing to write through symlink: {p}")
        mode = stat.S_IMODE(p.stat().st_mode) if p.exists() else _default_file_mode()
        fd, tmp_name = tempfile.mkstemp(dir=p.parent, prefix=f".{p.name}.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        # mkstemp creates 0600 files.
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, p)
        tmp_name = None
        logger.debug("Wrote %d chars to %s", len(content), p)
        return p
    except ToolError:
        raise
    except OSError as e:
        raise ToolError(f"Failed to write {p}: {e}") from e
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)


def scan_repo_tree(root: str | Path, limit: int = TREE_LIMIT) -> str:
    """List repository files (relative, sorted, hidden entries skipped)."""
    base = Path(root)
    entries: list[str] = []
    for dirpath, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(
            d for d in dirnames if d not in IGNORED_DIRS and not d.startswith(".")
        )
        rel_dir = Path(dirpath).relative_to(base)
        for name in sorted(filenames):
            if name.startswith("."):
                continue
            entries.append((rel_dir / name).as_posix())
    entries.sort()
    return "\n".join(entries[:limit])


def read_manifest(root: str | Path) -> dict[str, Any]:
    """Parsed package.json of the working tree, or {} if absent or invalid."""
    text = read_file_safe(Path(root) / "package.json")
    if text is None:
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("package.json is not valid JSON, ignoring it")
        return {}
    return data if isinstance(data, dict) else {}


def measure_bundle(root: str | Path, build_dir: str = "dist") -> int:
    """Total size of the build output in KB (rounded); 0 when there is none."""
    out = Path(root) / build_dir
    if not out.is_dir():
        return 0
    total = 0
    for path in out.rglob("*"):
        if path.is_file():
            try:
                total += path.stat().st_size
            except OSError:
                continue
    return round(total / 1024)


def read_brief_to_spec(path: str | Path) -> FeatureSpec:
    """Turn the markdown requirements brief into a FeatureSpec.

    The title is the first ``#`` heading; every line mentioning acceptance
    criteria becomes a criterion. A missing brief yields the defaults.
    """
    text = read_file_safe(path) or ""
    criteria = []
    for line in text.splitlines():
        if _ACCEPTANCE_LINE.search(line):
            cleaned = re.sub(r"^\W+", "", line).strip()
            if cleaned:
                criteria.append(cleaned)

    spec = FeatureSpec()
    title = _TITLE_LINE.search(text)
    updates: dict[str, Any] = {}
    if title:
        updates["title"] = title.group(1).strip()
    if criteria:
        updates["acceptance_criteria"] = criteria
    return spec.model_copy(update=updates) if updates else spec
