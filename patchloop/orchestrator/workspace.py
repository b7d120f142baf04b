"""Working-tree collaborators for the loop controller.

Binds the tool functions to one repository root so the controller only
deals with relative paths and status strings. Tests substitute a subclass.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from patchloop.core.config import LoopConfig
from patchloop.core.exceptions import ToolError
from patchloop.core.models import FeatureSpec
from patchloop.tools import file_ops, git_ops, patch_apply, validation

logger = logging.getLogger("patchloop.orchestrator.workspace")


class Workspace:
    def __init__(self, root: str | Path, config: Optional[LoopConfig] = None):
        self.root = Path(root).resolve()
        self.config = config or LoopConfig()

    def _path(self, relative: str) -> Path:
        return self.root / relative

    # -- inputs ---------------------------------------------------------------

    def read_spec(self) -> FeatureSpec:
        return file_ops.read_brief_to_spec(self._path(self.config.brief_path))

    def scan_tree(self) -> str:
        return file_ops.scan_repo_tree(self.root)

    def read_manifest(self) -> dict[str, Any]:
        return file_ops.read_manifest(self.root)

    def read_file(self, relative: str) -> Optional[str]:
        try:
            path = file_ops.resolve_in_repo(self.root, relative)
        except ToolError:
            logger.warning("Ignoring task path outside the repository: %s", relative)
            return None
        return file_ops.read_file_safe(path)

    def read_evaluation_log(self) -> Optional[str]:
        if not self.config.evaluation_log_path:
            return None
        return file_ops.read_file_safe(self._path(self.config.evaluation_log_path))

    # -- mutations ------------------------------------------------------------

    def ensure_branch(self) -> Optional[str]:
        return git_ops.ensure_branch(str(self.root), self.config.branch_prefix)

    def apply_diff(self, diff_text: str) -> bool:
        return patch_apply.apply_diff(
            diff_text, self.root, reconstruct=self.config.fallback_reconstruct
        )

    def checkpoint(self, message: str) -> str:
        return git_ops.commit_safe(str(self.root), message)

    # -- validation -----------------------------------------------------------

    def run_tests(self) -> str:
        return validation.run_tests(self.root)

    def run_build(self) -> str:
        return validation.run_build(self.root)

    def measure_bundle(self) -> int:
        return file_ops.measure_bundle(self.root, self.config.build_dir)

    # -- artifacts ------------------------------------------------------------

    def write_json(self, relative: str, payload: dict[str, Any]) -> Path:
        """Overwrite an artifact file with pretty-printed JSON."""
        text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
        return file_ops.write_file_atomic(self._path(relative), text)
